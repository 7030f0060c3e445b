# Overview: Service-layer operations for offers; encapsulates business logic and database work.

"""
Offer Store

Offer rows are scoped to one item and one buyer. Writes here never commit:
the negotiation engine calls them inside a unit of work that holds the item
lock, so a status write and its sibling rejections land together or not at
all. Terminal-status checks are the caller's responsibility.

Listings are advisory reads at read-committed isolation.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..errors import InvalidArgumentError, NotFoundError
from ..extensions import db
from ..models import Item, Offer
from ..models.offers import OFFER_ACCEPTED, OFFER_PENDING, OFFER_REJECTED, OFFER_STATUSES
from ..validation import MAX_MESSAGE_LENGTH, MAX_PRICE_CENTS, coerce_int, coerce_text
from .concurrency import lock_for_update


def page_bounds(limit: int | None, offset: int | None) -> tuple[int, int]:
    """Clamp pagination to the configured page sizes."""
    default_size = int(current_app.config.get("DEFAULT_PAGE_SIZE", 20))
    max_size = int(current_app.config.get("MAX_PAGE_SIZE", 100))
    limit = default_size if limit is None else coerce_int(limit, "limit", minimum=1)
    offset = 0 if offset is None else coerce_int(offset, "offset", minimum=0)
    return min(limit, max_size), offset


def _check_status_filter(status: str | None) -> None:
    if status is not None and status not in OFFER_STATUSES:
        raise InvalidArgumentError(f"status must be one of: {', '.join(OFFER_STATUSES)}")


def find_by_id(offer_id: int, *, lock: bool = False) -> Offer:
    query = db.session.query(Offer).filter_by(id=offer_id)
    if lock:
        query = lock_for_update(query)
    offer = query.first()
    if not offer:
        raise NotFoundError("Offer not found")
    return offer


def find_pending_by_buyer_and_item(buyer_id: int, item_id: int) -> Offer | None:
    return (
        db.session.query(Offer)
        .filter_by(buyer_id=buyer_id, item_id=item_id, status=OFFER_PENDING)
        .first()
    )


def create(item_id: int, buyer_id: int, amount_cents, message: str | None = None) -> Offer:
    """Insert a PENDING offer. amount_cents must be a non-negative integer."""
    amount_cents = coerce_int(amount_cents, "amount_cents", minimum=0, maximum=MAX_PRICE_CENTS)
    message = coerce_text(message, "message", max_length=MAX_MESSAGE_LENGTH)

    offer = Offer(
        item_id=item_id,
        buyer_id=buyer_id,
        amount_cents=amount_cents,
        message=message,
        status=OFFER_PENDING,
    )
    db.session.add(offer)
    db.session.flush()
    return offer


def set_status(offer: Offer, status: str, *, decided_at: datetime | None = None) -> Offer:
    """Unconditional status write."""
    if status not in OFFER_STATUSES:
        raise InvalidArgumentError(f"Invalid offer status '{status}'")
    offer.status = status
    if decided_at is not None:
        offer.decided_at = decided_at
    db.session.flush()
    return offer


def _reject_pending(query, decided_at: datetime) -> list[Offer]:
    offers = lock_for_update(query).all()
    for offer in offers:
        offer.status = OFFER_REJECTED
        offer.decided_at = decided_at
    db.session.flush()
    return offers


def reject_others_pending(item_id: int, except_offer_id: int, *, decided_at: datetime) -> list[Offer]:
    """
    Reject every other PENDING offer on the item.

    Runs in the accept unit of work: once committed, no sibling can be
    accepted because its re-read under the item lock sees REJECTED.
    """
    query = db.session.query(Offer).filter(
        Offer.item_id == item_id,
        Offer.status == OFFER_PENDING,
        Offer.id != except_offer_id,
    )
    return _reject_pending(query, decided_at)


def reject_pending_for_item(item_id: int, *, decided_at: datetime) -> list[Offer]:
    query = db.session.query(Offer).filter(
        Offer.item_id == item_id,
        Offer.status == OFFER_PENDING,
    )
    return _reject_pending(query, decided_at)


def find_accepted_for_item(item_id: int) -> list[Offer]:
    return db.session.query(Offer).filter_by(item_id=item_id, status=OFFER_ACCEPTED).all()


def list_for_item(item_id: int, *, status: str | None = None, limit: int | None = None, offset: int | None = None) -> list[Offer]:
    _check_status_filter(status)
    limit, offset = page_bounds(limit, offset)
    query = db.session.query(Offer).filter(Offer.item_id == item_id)
    if status:
        query = query.filter(Offer.status == status)
    return query.order_by(Offer.created_at.desc(), Offer.id.desc()).limit(limit).offset(offset).all()


def list_for_buyer(buyer_id: int, *, status: str | None = None, limit: int | None = None, offset: int | None = None) -> list[Offer]:
    _check_status_filter(status)
    limit, offset = page_bounds(limit, offset)
    query = db.session.query(Offer).filter(Offer.buyer_id == buyer_id)
    if status:
        query = query.filter(Offer.status == status)
    return query.order_by(Offer.created_at.desc(), Offer.id.desc()).limit(limit).offset(offset).all()


def list_for_seller(seller_id: int, *, status: str | None = None, limit: int | None = None, offset: int | None = None) -> list[Offer]:
    """Offers received on any of the seller's items."""
    _check_status_filter(status)
    limit, offset = page_bounds(limit, offset)
    query = (
        db.session.query(Offer)
        .join(Item, Item.id == Offer.item_id)
        .filter(Item.seller_id == seller_id)
    )
    if status:
        query = query.filter(Offer.status == status)
    return query.order_by(Offer.created_at.desc(), Offer.id.desc()).limit(limit).offset(offset).all()
