# Overview: Service-layer operations for notifications; the Notifier seam used after commits.

"""
Notifier

Fire-and-forget messages to users. The negotiation engine calls
notify_safely() only after its unit of work has committed, so a slow or
failing notifier never holds an item lock and never undoes a transition.
Failures are logged and discarded.

The default Notifier persists rows to the notifications table; push/email
delivery lives outside this service and can be swapped in with init_app().
"""

from __future__ import annotations

from flask import current_app

from ..errors import ForbiddenError, NotFoundError
from ..extensions import db
from ..models import Notification
from ..time_utils import utcnow
from .offer_service import page_bounds


KIND_OFFER_RECEIVED = "offer_received"
KIND_OFFER_ACCEPTED = "offer_accepted"
KIND_OFFER_REJECTED = "offer_rejected"
KIND_OFFER_WITHDRAWN = "offer_withdrawn"
KIND_TRANSACTION_COMPLETED = "transaction_completed"
KIND_TRANSACTION_CANCELED = "transaction_canceled"
KIND_ITEM_DELETED = "item_deleted"

EXTENSION_KEY = "campus_cart.notifier"


class Notifier:
    """Interface for delivering a message to one user."""

    def notify(self, user_id: int, kind: str, title: str, body: str, context_data: dict | None = None) -> None:
        raise NotImplementedError


class NullNotifier(Notifier):
    def notify(self, user_id, kind, title, body, context_data=None) -> None:
        return None


class DatabaseNotifier(Notifier):
    """Stores notifications in their own short transaction."""

    def notify(self, user_id, kind, title, body, context_data=None) -> None:
        notification = Notification(
            user_id=user_id,
            kind=kind,
            title=title,
            body=body,
            data=dict(context_data or {}),
        )
        try:
            db.session.add(notification)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise


def init_app(app, notifier: Notifier | None = None) -> None:
    app.extensions[EXTENSION_KEY] = notifier or DatabaseNotifier()


def get_notifier() -> Notifier:
    notifier = current_app.extensions.get(EXTENSION_KEY)
    if notifier is None:
        notifier = DatabaseNotifier()
        current_app.extensions[EXTENSION_KEY] = notifier
    return notifier


def notify_safely(
    notifier: Notifier | None,
    user_id: int,
    kind: str,
    title: str,
    body: str,
    context_data: dict | None = None,
) -> bool:
    """Deliver one notification; returns False (and logs) on failure."""
    notifier = notifier or get_notifier()
    try:
        notifier.notify(user_id, kind, title, body, context_data or {})
        return True
    except Exception:
        current_app.logger.exception("Failed to notify user %s (%s)", user_id, kind)
        return False


def list_for_user(user_id: int, *, unread_only: bool = False, limit: int | None = None, offset: int | None = None) -> list[Notification]:
    limit, offset = page_bounds(limit, offset)
    query = db.session.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        query = query.filter(Notification.read_at.is_(None))
    return query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).offset(offset).all()


def mark_read(user_id: int, notification_id: int) -> Notification:
    notification = db.session.get(Notification, notification_id)
    if not notification:
        raise NotFoundError("Notification not found")
    if notification.user_id != user_id:
        raise ForbiddenError("Not your notification")
    if notification.read_at is None:
        notification.read_at = utcnow()
        db.session.commit()
    return notification
