# Overview: Read-only consistency audit of items against their offers and transactions.

"""
Consistency Audit

Evaluates the cross-entity invariant from committed state:

    reserved/sold -> exactly one ACCEPTED offer, exactly one live transaction
    active        -> zero ACCEPTED offers, zero live transactions
    deleted       -> not checked

Also flags a live transaction whose buyer/price disagree with the accepted
offer. Used by the `flask market audit` command and by the test suite.
"""

from __future__ import annotations

from ..errors import NotFoundError
from ..extensions import db
from ..models import Item, Offer, Transaction
from ..models.items import ITEM_ACTIVE, ITEM_RESERVED, ITEM_SOLD
from ..models.offers import OFFER_ACCEPTED, OFFER_PENDING
from ..models.transactions import TX_CANCELED, TX_COMPLETED, TX_PENDING


def _check(item: Item) -> list[str]:
    accepted = db.session.query(Offer).filter_by(item_id=item.id, status=OFFER_ACCEPTED).all()
    live = (
        db.session.query(Transaction)
        .filter(Transaction.item_id == item.id, Transaction.status != TX_CANCELED)
        .all()
    )
    problems: list[str] = []

    if item.status in (ITEM_RESERVED, ITEM_SOLD):
        if len(accepted) != 1:
            problems.append(f"{item.status} item has {len(accepted)} accepted offers (expected 1)")
        if len(live) != 1:
            problems.append(f"{item.status} item has {len(live)} live transactions (expected 1)")
        expected_tx_status = TX_PENDING if item.status == ITEM_RESERVED else TX_COMPLETED
        for tx in live:
            if tx.status != expected_tx_status:
                problems.append(f"{item.status} item has a {tx.status} transaction {tx.id}")
        if item.status == ITEM_RESERVED:
            pending = db.session.query(Offer).filter_by(item_id=item.id, status=OFFER_PENDING).count()
            if pending:
                problems.append(f"reserved item has {pending} pending offers")
    elif item.status == ITEM_ACTIVE:
        if accepted:
            problems.append(f"active item has {len(accepted)} accepted offers (expected 0)")
        if live:
            problems.append(f"active item has {len(live)} live transactions (expected 0)")

    if len(accepted) == 1 and len(live) == 1:
        offer, tx = accepted[0], live[0]
        if tx.buyer_id != offer.buyer_id:
            problems.append(f"transaction {tx.id} buyer {tx.buyer_id} != accepted offer buyer {offer.buyer_id}")
        if tx.agreed_price_cents != offer.amount_cents:
            problems.append(f"transaction {tx.id} price {tx.agreed_price_cents} != accepted offer amount {offer.amount_cents}")

    return problems


def check_item_consistency(item_id: int) -> list[str]:
    """Return human-readable invariant violations for one item (empty if consistent)."""
    item = db.session.get(Item, item_id)
    if not item:
        raise NotFoundError("Item not found")
    return _check(item)


def check_all_items() -> dict[int, list[str]]:
    """Violations keyed by item id; consistent items are omitted."""
    report: dict[int, list[str]] = {}
    for item in db.session.query(Item).order_by(Item.id).all():
        problems = _check(item)
        if problems:
            report[item.id] = problems
    return report
