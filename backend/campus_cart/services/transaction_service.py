# Overview: Service-layer operations for transactions; encapsulates business logic and database work.

"""
Transaction Store

One settlement record per item cycle. "Live" means status != canceled; an
item never has more than one live row. Canceled rows are reused by the next
accept (revival) rather than accumulating.

STATE MACHINE:
    pending -> completed   (terminal)
    pending -> canceled    (terminal for this cycle; row may be revived)

Writes never commit; the negotiation engine owns the unit of work.
"""

from __future__ import annotations

from datetime import datetime

from ..errors import ConflictError, InvalidArgumentError, InvalidStateError, NotFoundError
from ..extensions import db
from ..models import Transaction
from ..models.transactions import TX_CANCELED, TX_COMPLETED, TX_PENDING, TX_STATUSES
from ..time_utils import utcnow
from ..validation import coerce_text
from .concurrency import lock_for_update
from .offer_service import page_bounds


ROLE_BUYER = "buyer"
ROLE_SELLER = "seller"
VALID_ROLES = {ROLE_BUYER, ROLE_SELLER}

MAX_LOCATION_NOTE_LENGTH = 255


def find_by_id(transaction_id: int, *, lock: bool = False) -> Transaction:
    query = db.session.query(Transaction).filter_by(id=transaction_id)
    if lock:
        query = lock_for_update(query)
    tx = query.first()
    if not tx:
        raise NotFoundError("Transaction not found")
    return tx


def get_by_item(item_id: int) -> Transaction | None:
    """The live (non-canceled) transaction for an item, if any."""
    return (
        db.session.query(Transaction)
        .filter(Transaction.item_id == item_id, Transaction.status != TX_CANCELED)
        .first()
    )


def get_canceled_by_item(item_id: int) -> Transaction | None:
    """Most recent canceled row for an item, candidate for revival."""
    return (
        db.session.query(Transaction)
        .filter(Transaction.item_id == item_id, Transaction.status == TX_CANCELED)
        .order_by(Transaction.updated_at.desc(), Transaction.id.desc())
        .first()
    )


def create(
    item_id: int,
    seller_id: int,
    buyer_id: int,
    agreed_price_cents: int,
    *,
    offer_id: int | None = None,
) -> Transaction:
    if get_by_item(item_id) is not None:
        raise ConflictError("A live transaction already exists for this item")

    tx = Transaction(
        item_id=item_id,
        offer_id=offer_id,
        seller_id=seller_id,
        buyer_id=buyer_id,
        agreed_price_cents=agreed_price_cents,
        status=TX_PENDING,
    )
    db.session.add(tx)
    db.session.flush()
    return tx


def revive_canceled(
    tx: Transaction,
    *,
    buyer_id: int,
    seller_id: int,
    agreed_price_cents: int,
    offer_id: int | None = None,
) -> Transaction:
    """Overwrite a canceled row with a new cycle's counterparties and price."""
    if tx.is_live:
        raise InvalidStateError("Only canceled transactions can be revived")

    tx.buyer_id = buyer_id
    tx.seller_id = seller_id
    tx.agreed_price_cents = agreed_price_cents
    tx.offer_id = offer_id
    tx.status = TX_PENDING
    tx.met_at = None
    tx.location_note = None
    tx.completed_at = None
    tx.canceled_at = None
    tx.canceled_by_user_id = None
    db.session.flush()
    return tx


def complete(tx: Transaction, *, met_at: datetime | None = None, location_note: str | None = None) -> Transaction:
    if tx.status != TX_PENDING:
        raise InvalidStateError("Only pending transactions can be completed")
    location_note = coerce_text(location_note, "location_note", max_length=MAX_LOCATION_NOTE_LENGTH)

    now = utcnow()
    tx.status = TX_COMPLETED
    tx.completed_at = now
    tx.met_at = met_at or now
    tx.location_note = location_note
    db.session.flush()
    return tx


def cancel(tx: Transaction, *, canceled_by_user_id: int | None = None) -> Transaction:
    if tx.status != TX_PENDING:
        raise InvalidStateError("Only pending transactions can be canceled")

    tx.status = TX_CANCELED
    tx.canceled_at = utcnow()
    tx.canceled_by_user_id = canceled_by_user_id
    db.session.flush()
    return tx


def count_for_item(item_id: int, *, live_only: bool = False) -> int:
    query = db.session.query(Transaction).filter(Transaction.item_id == item_id)
    if live_only:
        query = query.filter(Transaction.status != TX_CANCELED)
    return query.count()


def list_for_user(
    user_id: int,
    *,
    role: str | None = None,
    status: str | None = None,
    limit: int | None = None,
    offset: int | None = None,
) -> list[Transaction]:
    """Transactions where the user is buyer and/or seller, newest first."""
    if role is not None and role not in VALID_ROLES:
        raise InvalidArgumentError("role must be 'buyer' or 'seller'")
    if status is not None and status not in TX_STATUSES:
        raise InvalidArgumentError(f"status must be one of: {', '.join(TX_STATUSES)}")
    limit, offset = page_bounds(limit, offset)

    query = db.session.query(Transaction)
    if role == ROLE_BUYER:
        query = query.filter(Transaction.buyer_id == user_id)
    elif role == ROLE_SELLER:
        query = query.filter(Transaction.seller_id == user_id)
    else:
        query = query.filter((Transaction.buyer_id == user_id) | (Transaction.seller_id == user_id))
    if status:
        query = query.filter(Transaction.status == status)

    return query.order_by(Transaction.created_at.desc(), Transaction.id.desc()).limit(limit).offset(offset).all()
