# Overview: Negotiation engine; orchestrates items, offers, and transactions in atomic units of work.

"""
Negotiation Engine

================================================================================
PURPOSE: Keep Item.status, its offers, and its transaction mutually consistent
================================================================================

INVARIANT (committed state, per item):
    reserved/sold -> exactly one ACCEPTED offer and exactly one live transaction
    active        -> zero ACCEPTED offers and zero live transactions
    deleted       -> exempt (sink state)

LOCKING:
- The item row is the unit of mutual exclusion. Every write locks the item
  first, then the offer or transaction row, so lock order never inverts.
- Requests are validated into typed dataclasses before the unit of work
  starts; nothing inside the critical section parses input.
- Notifications go out only after commit, never while a lock is held.

RACE THE ACCEPT PATH CLOSES:
    Two sellers' tabs accept offers A and B on the same item. Both need the
    item lock. The winner accepts A and rejects B in the same commit; the
    loser then re-reads B under the lock, sees REJECTED, and fails with
    InvalidStateError. A buyer withdrawing B is serialized the same way.
================================================================================
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from flask import current_app

from ..errors import ConflictError, ForbiddenError, InvalidStateError, NotFoundError
from ..extensions import db
from ..models import Item, Offer, Transaction
from ..models.items import ITEM_ACTIVE, ITEM_DELETED, ITEM_RESERVED, ITEM_SOLD
from ..models.offers import OFFER_ACCEPTED, OFFER_REJECTED, OFFER_WITHDRAWN
from ..time_utils import utcnow
from ..validation import (
    MAX_MESSAGE_LENGTH,
    MAX_PRICE_CENTS,
    coerce_datetime,
    coerce_id,
    coerce_int,
    coerce_text,
)
from . import item_service, offer_service, transaction_service
from .concurrency import run_in_unit_of_work
from .notification_service import (
    KIND_OFFER_ACCEPTED,
    KIND_OFFER_RECEIVED,
    KIND_OFFER_REJECTED,
    KIND_OFFER_WITHDRAWN,
    KIND_TRANSACTION_CANCELED,
    KIND_TRANSACTION_COMPLETED,
    Notifier,
    notify_safely,
)


# =============================================================================
# TYPED REQUESTS / RESULTS
# =============================================================================

@dataclass(frozen=True)
class CreateOfferRequest:
    buyer_id: int
    item_id: int
    amount_cents: int
    message: str | None = None

    @classmethod
    def build(cls, buyer_id, item_id, amount_cents, message=None) -> "CreateOfferRequest":
        return cls(
            buyer_id=coerce_id(buyer_id, "buyer_id"),
            item_id=coerce_id(item_id, "item_id"),
            amount_cents=coerce_int(amount_cents, "amount_cents", minimum=0, maximum=MAX_PRICE_CENTS),
            message=coerce_text(message, "message", max_length=MAX_MESSAGE_LENGTH),
        )


@dataclass(frozen=True)
class OfferActionRequest:
    actor_id: int
    offer_id: int

    @classmethod
    def build(cls, actor_id, offer_id) -> "OfferActionRequest":
        return cls(actor_id=coerce_id(actor_id, "user_id"), offer_id=coerce_id(offer_id, "offer_id"))


@dataclass(frozen=True)
class TransactionActionRequest:
    user_id: int
    transaction_id: int

    @classmethod
    def build(cls, user_id, transaction_id) -> "TransactionActionRequest":
        return cls(
            user_id=coerce_id(user_id, "user_id"),
            transaction_id=coerce_id(transaction_id, "transaction_id"),
        )


@dataclass(frozen=True)
class CompleteTransactionRequest:
    user_id: int
    transaction_id: int
    met_at: datetime | None = None
    location_note: str | None = None

    @classmethod
    def build(cls, user_id, transaction_id, met_at=None, location_note=None) -> "CompleteTransactionRequest":
        return cls(
            user_id=coerce_id(user_id, "user_id"),
            transaction_id=coerce_id(transaction_id, "transaction_id"),
            met_at=coerce_datetime(met_at, "met_at"),
            location_note=coerce_text(
                location_note,
                "location_note",
                max_length=transaction_service.MAX_LOCATION_NOTE_LENGTH,
            ),
        )


@dataclass
class AcceptOfferResult:
    offer: Offer
    item: Item
    transaction: Transaction
    rejected_offers: list[Offer] = field(default_factory=list)
    revived: bool = False

    def to_dict(self) -> dict:
        return {
            "offer": self.offer.to_dict(),
            "item": self.item.to_dict(),
            "transaction": self.transaction.to_dict(),
            "rejected_offer_ids": [o.id for o in self.rejected_offers],
            "revived": self.revived,
        }


@dataclass
class SettlementResult:
    transaction: Transaction
    item: Item
    unwound_offer: Offer | None = None

    def to_dict(self) -> dict:
        return {
            "transaction": self.transaction.to_dict(),
            "item": self.item.to_dict(),
        }


# =============================================================================
# LOCK HELPERS (call only inside run_in_unit_of_work)
# =============================================================================

def _lock_offer_with_item(offer_id: int) -> tuple[Offer, Item]:
    item_id = db.session.query(Offer.item_id).filter(Offer.id == offer_id).scalar()
    if item_id is None:
        raise NotFoundError("Offer not found")

    item = item_service.lock_item(item_id)
    offer = offer_service.find_by_id(offer_id, lock=True)
    if item is None:
        raise NotFoundError("Item not found")
    return offer, item


def _lock_transaction_with_item(transaction_id: int) -> tuple[Transaction, Item]:
    item_id = db.session.query(Transaction.item_id).filter(Transaction.id == transaction_id).scalar()
    if item_id is None:
        raise NotFoundError("Transaction not found")

    item = item_service.lock_item(item_id)
    tx = transaction_service.find_by_id(transaction_id, lock=True)
    if item is None:
        raise NotFoundError("Item not found")
    return tx, item


def _require_pending(offer: Offer, action: str) -> None:
    if not offer.is_pending:
        raise InvalidStateError(f"Only pending offers can be {action}")


# =============================================================================
# OFFERS
# =============================================================================

def create_offer(buyer_id, item_id, amount_cents, message=None, *, notifier: Notifier | None = None) -> Offer:
    """Buyer proposes a price on an active, negotiable item they do not own."""
    req = CreateOfferRequest.build(buyer_id, item_id, amount_cents, message)

    def _op():
        item = item_service.get_for_offer(req.item_id, lock=True)
        if item.seller_id == req.buyer_id:
            raise InvalidStateError("Cannot offer on your own item")
        if item.status != ITEM_ACTIVE:
            raise InvalidStateError("Offers only allowed on active items")
        if not item.is_negotiable:
            raise InvalidStateError("Item is not negotiable")

        if offer_service.find_pending_by_buyer_and_item(req.buyer_id, req.item_id):
            raise ConflictError("You already have a pending offer on this item")

        offer = offer_service.create(req.item_id, req.buyer_id, req.amount_cents, req.message)
        return offer, item

    offer, item = run_in_unit_of_work(_op)
    title = item_service.get_item(item.id).title

    notify_safely(
        notifier,
        item.seller_id,
        KIND_OFFER_RECEIVED,
        "New offer",
        f"You received an offer of {offer.amount_cents} cents on '{title}'.",
        {"item_id": item.id, "offer_id": offer.id, "buyer_id": offer.buyer_id},
    )
    return offer


def accept_offer(seller_id, offer_id, *, notifier: Notifier | None = None) -> AcceptOfferResult:
    """
    Accept one pending offer; all-or-nothing.

    In one unit of work: offer -> accepted, sibling pending offers ->
    rejected, item -> reserved, transaction created or revived.
    """
    req = OfferActionRequest.build(seller_id, offer_id)

    def _op():
        offer, item = _lock_offer_with_item(req.offer_id)

        if item.seller_id != req.actor_id:
            raise ForbiddenError("Only the seller can accept this offer")
        _require_pending(offer, "accepted")
        # reserved is tolerated here; the offer-status check above is what
        # turns away a second accept on the same item
        if item.status not in (ITEM_ACTIVE, ITEM_RESERVED):
            raise InvalidStateError(f"Cannot accept offers on a {item.status} item")

        now = utcnow()
        offer_service.set_status(offer, OFFER_ACCEPTED, decided_at=now)
        rejected = offer_service.reject_others_pending(item.id, offer.id, decided_at=now)
        item_service.update_status(item, ITEM_RESERVED)

        live = transaction_service.get_by_item(item.id)
        if live is not None:
            raise ConflictError("A live transaction already exists for this item")

        canceled = transaction_service.get_canceled_by_item(item.id)
        if canceled is not None:
            tx = transaction_service.revive_canceled(
                canceled,
                buyer_id=offer.buyer_id,
                seller_id=item.seller_id,
                agreed_price_cents=offer.amount_cents,
                offer_id=offer.id,
            )
            revived = True
        else:
            tx = transaction_service.create(
                item.id,
                item.seller_id,
                offer.buyer_id,
                offer.amount_cents,
                offer_id=offer.id,
            )
            revived = False

        return AcceptOfferResult(offer=offer, item=item, transaction=tx, rejected_offers=rejected, revived=revived)

    result = run_in_unit_of_work(_op)
    current_app.logger.info(
        "Offer %s accepted on item %s (transaction %s, %d siblings rejected, revived=%s)",
        result.offer.id, result.item.id, result.transaction.id, len(result.rejected_offers), result.revived,
    )

    notify_safely(
        notifier,
        result.offer.buyer_id,
        KIND_OFFER_ACCEPTED,
        "Offer accepted",
        f"Your offer on '{result.item.title}' was accepted.",
        {"item_id": result.item.id, "offer_id": result.offer.id, "transaction_id": result.transaction.id},
    )
    if current_app.config.get("NOTIFY_LOSING_BIDDERS", True):
        for loser in result.rejected_offers:
            notify_safely(
                notifier,
                loser.buyer_id,
                KIND_OFFER_REJECTED,
                "Offer declined",
                f"'{result.item.title}' is reserved for another buyer.",
                {"item_id": result.item.id, "offer_id": loser.id},
            )
    return result


def reject_offer(seller_id, offer_id, *, notifier: Notifier | None = None) -> Offer:
    """Seller declines one pending offer; no item or transaction side effects."""
    req = OfferActionRequest.build(seller_id, offer_id)

    def _op():
        offer, item = _lock_offer_with_item(req.offer_id)
        if item.seller_id != req.actor_id:
            raise ForbiddenError("Only the seller can reject this offer")
        _require_pending(offer, "rejected")
        offer_service.set_status(offer, OFFER_REJECTED, decided_at=utcnow())
        return offer, item

    offer, item = run_in_unit_of_work(_op)

    notify_safely(
        notifier,
        offer.buyer_id,
        KIND_OFFER_REJECTED,
        "Offer declined",
        f"Your offer on '{item.title}' was declined.",
        {"item_id": item.id, "offer_id": offer.id},
    )
    return offer


def withdraw_offer(buyer_id, offer_id, *, notifier: Notifier | None = None) -> Offer:
    """Buyer pulls back their own pending offer."""
    req = OfferActionRequest.build(buyer_id, offer_id)

    def _op():
        offer, item = _lock_offer_with_item(req.offer_id)
        if offer.buyer_id != req.actor_id:
            raise ForbiddenError("Only the buyer can withdraw this offer")
        _require_pending(offer, "withdrawn")
        offer_service.set_status(offer, OFFER_WITHDRAWN, decided_at=utcnow())
        return offer, item

    offer, item = run_in_unit_of_work(_op)

    notify_safely(
        notifier,
        item.seller_id,
        KIND_OFFER_WITHDRAWN,
        "Offer withdrawn",
        f"An offer on '{item.title}' was withdrawn.",
        {"item_id": item.id, "offer_id": offer.id, "buyer_id": offer.buyer_id},
    )
    return offer


# =============================================================================
# TRANSACTIONS
# =============================================================================

def _counterparty(tx: Transaction, user_id: int) -> int:
    return tx.seller_id if user_id == tx.buyer_id else tx.buyer_id


def complete_transaction(
    user_id,
    transaction_id,
    met_at=None,
    location_note=None,
    *,
    notifier: Notifier | None = None,
) -> SettlementResult:
    """Either party marks the hand-off done: transaction -> completed, item -> sold."""
    req = CompleteTransactionRequest.build(user_id, transaction_id, met_at, location_note)

    def _op():
        tx, item = _lock_transaction_with_item(req.transaction_id)
        if not tx.is_party(req.user_id):
            raise ForbiddenError("Only the buyer or seller can complete this transaction")
        transaction_service.complete(tx, met_at=req.met_at, location_note=req.location_note)
        if item.status != ITEM_DELETED:
            item_service.update_status(item, ITEM_SOLD)
        return SettlementResult(transaction=tx, item=item)

    result = run_in_unit_of_work(_op)
    current_app.logger.info(
        "Transaction %s completed by user %s; item %s is %s",
        result.transaction.id, req.user_id, result.item.id, result.item.status,
    )

    notify_safely(
        notifier,
        _counterparty(result.transaction, req.user_id),
        KIND_TRANSACTION_COMPLETED,
        "Sale completed",
        f"The sale of '{result.item.title}' was marked complete.",
        {"item_id": result.item.id, "transaction_id": result.transaction.id},
    )
    return result


def cancel_transaction(user_id, transaction_id, *, notifier: Notifier | None = None) -> SettlementResult:
    """
    Either party calls off the deal: transaction -> canceled, item -> active.

    The accepted offer behind the transaction is unwound (withdrawn when the
    buyer cancels, rejected when the seller does) so the reopened item holds
    no accepted offer. A deleted item stays deleted.
    """
    req = TransactionActionRequest.build(user_id, transaction_id)

    def _op():
        tx, item = _lock_transaction_with_item(req.transaction_id)
        if not tx.is_party(req.user_id):
            raise ForbiddenError("Only the buyer or seller can cancel this transaction")
        transaction_service.cancel(tx, canceled_by_user_id=req.user_id)

        unwound_status = OFFER_WITHDRAWN if req.user_id == tx.buyer_id else OFFER_REJECTED
        if tx.offer_id is not None:
            linked = offer_service.find_by_id(tx.offer_id, lock=True)
            accepted = [linked] if linked.status == OFFER_ACCEPTED else []
        else:
            accepted = offer_service.find_accepted_for_item(item.id)
        now = utcnow()
        for offer in accepted:
            offer_service.set_status(offer, unwound_status, decided_at=now)

        if item.status != ITEM_DELETED:
            item_service.update_status(item, ITEM_ACTIVE)
        return SettlementResult(transaction=tx, item=item, unwound_offer=accepted[0] if accepted else None)

    result = run_in_unit_of_work(_op)
    current_app.logger.info(
        "Transaction %s canceled by user %s; item %s is %s",
        result.transaction.id, req.user_id, result.item.id, result.item.status,
    )

    notify_safely(
        notifier,
        _counterparty(result.transaction, req.user_id),
        KIND_TRANSACTION_CANCELED,
        "Sale canceled",
        f"The sale of '{result.item.title}' was canceled.",
        {"item_id": result.item.id, "transaction_id": result.transaction.id},
    )
    return result


# =============================================================================
# READS (advisory, read-committed)
# =============================================================================

def list_offers_for_item(seller_id: int, item_id: int, *, status=None, limit=None, offset=None) -> list[Offer]:
    item = item_service.get_item(item_id)
    if item.seller_id != seller_id:
        raise ForbiddenError("Only the seller can view offers on this item")
    return offer_service.list_for_item(item_id, status=status, limit=limit, offset=offset)


def list_my_offers(buyer_id: int, *, status=None, limit=None, offset=None) -> list[Offer]:
    return offer_service.list_for_buyer(buyer_id, status=status, limit=limit, offset=offset)


def list_received_offers(seller_id: int, *, status=None, limit=None, offset=None) -> list[Offer]:
    return offer_service.list_for_seller(seller_id, status=status, limit=limit, offset=offset)


def get_transaction(user_id: int, transaction_id: int) -> Transaction:
    tx = transaction_service.find_by_id(transaction_id)
    if not tx.is_party(user_id):
        raise ForbiddenError("Only the buyer or seller can view this transaction")
    return tx


def list_my_transactions(user_id: int, *, role=None, status=None, limit=None, offset=None) -> list[Transaction]:
    return transaction_service.list_for_user(user_id, role=role, status=status, limit=limit, offset=offset)
