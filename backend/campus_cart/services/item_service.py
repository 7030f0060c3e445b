# Overview: Service-layer operations for items; encapsulates business logic and database work.

"""
Item Store

The negotiation engine only needs {id, seller_id, status, is_negotiable} and
a way to write status. Those accessors (get_for_offer, lock_item,
update_status) never commit and never cascade to offers or transactions;
callers run them inside a unit of work that already holds the item lock.

create_item and soft_delete_item belong to the listing side and own their
own commit.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..errors import ForbiddenError, InvalidArgumentError, InvalidStateError, NotFoundError
from ..extensions import db
from ..models import Item, Offer
from ..models.items import ITEM_CONDITIONS, ITEM_DELETED, ITEM_STATUSES
from ..time_utils import utcnow
from ..validation import ModelValidationPolicy, enforce_rules_item, validate_payload
from .concurrency import lock_for_update, run_in_unit_of_work
from .notification_service import KIND_ITEM_DELETED, Notifier, notify_safely
from .offer_service import reject_pending_for_item


ITEM_POLICY = ModelValidationPolicy(
    writable_fields={
        "title",
        "description",
        "condition",
        "price_cents",
        "is_negotiable",
        "category_id",
        "latitude",
        "longitude",
    },
    required_on_create={"title", "price_cents"},
)


@dataclass(frozen=True)
class ItemSnapshot:
    """The slice of an item the negotiation engine reads."""
    id: int
    seller_id: int
    status: str
    is_negotiable: bool


def lock_item(item_id: int) -> Item | None:
    return lock_for_update(db.session.query(Item).filter_by(id=item_id)).first()


def get_item(item_id: int) -> Item:
    item = db.session.get(Item, item_id)
    if not item:
        raise NotFoundError("Item not found")
    return item


def get_for_offer(item_id: int, *, lock: bool = False) -> ItemSnapshot:
    item = lock_item(item_id) if lock else db.session.get(Item, item_id)
    if not item:
        raise NotFoundError("Item not found")
    return ItemSnapshot(
        id=item.id,
        seller_id=item.seller_id,
        status=item.status,
        is_negotiable=bool(item.is_negotiable),
    )


def update_status(item: Item, new_status: str) -> Item:
    """Unconditional status write; lifecycle rules are the caller's job."""
    if new_status not in ITEM_STATUSES:
        raise InvalidArgumentError(f"Invalid item status '{new_status}'")
    item.status = new_status
    if new_status == ITEM_DELETED and item.deleted_at is None:
        item.deleted_at = utcnow()
    db.session.flush()
    return item


def create_item(seller_id: int, payload: dict) -> Item:
    """Create an active listing owned by seller_id."""
    data = validate_payload(model=Item, payload=payload, policy=ITEM_POLICY)
    enforce_rules_item(data, ITEM_CONDITIONS)

    item = Item(seller_id=seller_id, **data)
    db.session.add(item)
    db.session.commit()
    return item


def soft_delete_item(
    actor_id: int,
    item_id: int,
    *,
    is_admin: bool = False,
    notifier: Notifier | None = None,
) -> tuple[Item, list[Offer]]:
    """
    Soft delete an item (owner or admin). Deleted is terminal.

    Pending offers on the item are rejected in the same unit of work and
    their buyers are told after commit. A live transaction is left to its
    parties: cancel/complete never move a deleted item out of DELETED.

    Returns the item and the offers that were rejected.
    """
    def _op():
        item = lock_item(item_id)
        if not item:
            raise NotFoundError("Item not found")
        if item.seller_id != actor_id and not is_admin:
            raise ForbiddenError("Only the seller or an admin can delete this item")
        if item.status == ITEM_DELETED:
            raise InvalidStateError("Item already deleted")

        rejected = reject_pending_for_item(item.id, decided_at=utcnow())
        update_status(item, ITEM_DELETED)
        return item, rejected

    item, rejected = run_in_unit_of_work(_op)
    current_app.logger.info(
        "Item %s deleted by user %s (admin=%s); %d pending offers rejected",
        item.id, actor_id, is_admin, len(rejected),
    )

    for offer in rejected:
        notify_safely(
            notifier,
            offer.buyer_id,
            KIND_ITEM_DELETED,
            "Listing removed",
            f"'{item.title}' is no longer available.",
            {"item_id": item.id, "offer_id": offer.id},
        )
    return item, rejected
