"""
Negotiation engine tests: offer lifecycle, accept/complete/cancel, revival,
and the item/offer/transaction invariant after each sequence.
"""

import pytest

from campus_cart.errors import (
    ConflictError,
    ForbiddenError,
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
)
from campus_cart.extensions import db
from campus_cart.models import Item, Offer, Transaction
from campus_cart.models.items import ITEM_ACTIVE, ITEM_DELETED, ITEM_RESERVED, ITEM_SOLD
from campus_cart.models.offers import (
    OFFER_ACCEPTED,
    OFFER_PENDING,
    OFFER_REJECTED,
    OFFER_WITHDRAWN,
)
from campus_cart.models.transactions import TX_CANCELED, TX_COMPLETED, TX_PENDING
from campus_cart.services import audit_service, item_service, negotiation_service, transaction_service
from campus_cart.services.negotiation_service import CompleteTransactionRequest, CreateOfferRequest

from conftest import BUYER_ID, OTHER_BUYER_ID, OUTSIDER_ID, SELLER_ID


def _status(model, row_id):
    db.session.expire_all()
    return db.session.get(model, row_id).status


def _accepted_deal(item_id, amount=4000):
    offer = negotiation_service.create_offer(BUYER_ID, item_id, amount)
    return negotiation_service.accept_offer(SELLER_ID, offer.id)


# =============================================================================
# create_offer
# =============================================================================

def test_create_offer_is_pending_and_notifies_seller(item_id, notifier):
    offer = negotiation_service.create_offer(BUYER_ID, item_id, 4000, "  Can pick up today ")

    assert offer.status == OFFER_PENDING
    assert offer.amount_cents == 4000
    assert offer.message == "Can pick up today"
    assert notifier.kinds_for(SELLER_ID) == ["offer_received"]


def test_create_offer_on_own_item_fails(item_id):
    with pytest.raises(InvalidStateError):
        negotiation_service.create_offer(SELLER_ID, item_id, 4000)


def test_create_offer_on_missing_item_fails(db_session):
    with pytest.raises(NotFoundError):
        negotiation_service.create_offer(BUYER_ID, 12345, 4000)


def test_create_offer_requires_negotiable_item(make_item):
    fixed_price = make_item(is_negotiable=False)
    with pytest.raises(InvalidStateError):
        negotiation_service.create_offer(BUYER_ID, fixed_price, 4000)


def test_create_offer_requires_active_item(item_id):
    _accepted_deal(item_id)
    with pytest.raises(InvalidStateError):
        negotiation_service.create_offer(OTHER_BUYER_ID, item_id, 4500)


def test_duplicate_pending_offer_conflicts_until_withdrawn(item_id):
    first = negotiation_service.create_offer(BUYER_ID, item_id, 4000)
    with pytest.raises(ConflictError):
        negotiation_service.create_offer(BUYER_ID, item_id, 4100)

    negotiation_service.withdraw_offer(BUYER_ID, first.id)
    second = negotiation_service.create_offer(BUYER_ID, item_id, 4100)
    assert second.status == OFFER_PENDING
    assert second.id != first.id


@pytest.mark.parametrize("amount", [-1, True, 12.5, "12.5", "1e3", "abc", None])
def test_create_offer_rejects_bad_amounts(item_id, amount):
    with pytest.raises(InvalidArgumentError):
        negotiation_service.create_offer(BUYER_ID, item_id, amount)
    assert db.session.query(Offer).count() == 0


def test_zero_amount_offer_is_allowed(item_id):
    offer = negotiation_service.create_offer(BUYER_ID, item_id, 0)
    assert offer.amount_cents == 0


def test_request_builders_validate_before_any_write():
    with pytest.raises(InvalidArgumentError):
        CreateOfferRequest.build(0, 1, 100)
    with pytest.raises(InvalidArgumentError):
        CreateOfferRequest.build(1, 1, 100, message="x" * 1001)
    with pytest.raises(InvalidArgumentError):
        CompleteTransactionRequest.build(1, 1, met_at="not a date")

    req = CompleteTransactionRequest.build("2", "7", met_at="2026-10-19T15:00:00Z", location_note=" Library ")
    assert (req.user_id, req.transaction_id) == (2, 7)
    assert req.met_at.hour == 15
    assert req.location_note == "Library"


# =============================================================================
# accept_offer
# =============================================================================

def test_accept_reserves_item_rejects_siblings_and_opens_transaction(item_id, notifier):
    b1 = negotiation_service.create_offer(BUYER_ID, item_id, 4000)
    b2 = negotiation_service.create_offer(OTHER_BUYER_ID, item_id, 4200)
    notifier.reset()

    result = negotiation_service.accept_offer(SELLER_ID, b1.id)

    assert result.offer.status == OFFER_ACCEPTED
    assert result.item.status == ITEM_RESERVED
    assert result.transaction.status == TX_PENDING
    assert result.transaction.buyer_id == BUYER_ID
    assert result.transaction.seller_id == SELLER_ID
    assert result.transaction.agreed_price_cents == 4000
    assert result.transaction.offer_id == b1.id
    assert [o.id for o in result.rejected_offers] == [b2.id]
    assert result.revived is False

    assert _status(Offer, b2.id) == OFFER_REJECTED
    assert notifier.kinds_for(BUYER_ID) == ["offer_accepted"]
    assert notifier.kinds_for(OTHER_BUYER_ID) == ["offer_rejected"]
    assert audit_service.check_item_consistency(item_id) == []


def test_accepting_a_rejected_sibling_fails(item_id):
    b1 = negotiation_service.create_offer(BUYER_ID, item_id, 4000)
    b2 = negotiation_service.create_offer(OTHER_BUYER_ID, item_id, 4200)
    negotiation_service.accept_offer(SELLER_ID, b1.id)

    with pytest.raises(InvalidStateError):
        negotiation_service.accept_offer(SELLER_ID, b2.id)

    assert _status(Offer, b1.id) == OFFER_ACCEPTED
    assert _status(Item, item_id) == ITEM_RESERVED
    assert transaction_service.count_for_item(item_id) == 1
    assert audit_service.check_item_consistency(item_id) == []


def test_accept_by_non_seller_is_forbidden_and_changes_nothing(item_id):
    offer = negotiation_service.create_offer(BUYER_ID, item_id, 4000)

    with pytest.raises(ForbiddenError):
        negotiation_service.accept_offer(OUTSIDER_ID, offer.id)

    assert _status(Offer, offer.id) == OFFER_PENDING
    assert _status(Item, item_id) == ITEM_ACTIVE
    assert transaction_service.count_for_item(item_id) == 0


def test_accept_missing_offer_is_not_found(db_session):
    with pytest.raises(NotFoundError):
        negotiation_service.accept_offer(SELLER_ID, 4242)


def test_accept_rolls_back_when_a_live_transaction_already_exists(item_id, db_session):
    offer = negotiation_service.create_offer(BUYER_ID, item_id, 4000)
    other = negotiation_service.create_offer(OTHER_BUYER_ID, item_id, 4100)
    db_session.add(Transaction(
        item_id=item_id,
        seller_id=SELLER_ID,
        buyer_id=OTHER_BUYER_ID,
        agreed_price_cents=100,
        status=TX_PENDING,
    ))
    db_session.commit()

    with pytest.raises(ConflictError):
        negotiation_service.accept_offer(SELLER_ID, offer.id)

    # nothing from the failed unit of work is visible
    assert _status(Offer, offer.id) == OFFER_PENDING
    assert _status(Offer, other.id) == OFFER_PENDING
    assert _status(Item, item_id) == ITEM_ACTIVE


def test_accept_commits_even_when_notifier_fails(item_id, notifier):
    offer = negotiation_service.create_offer(BUYER_ID, item_id, 4000)
    notifier.reset()
    notifier.fail = True

    result = negotiation_service.accept_offer(SELLER_ID, offer.id)

    assert result.offer.status == OFFER_ACCEPTED
    assert _status(Item, item_id) == ITEM_RESERVED
    assert notifier.sent == []


def test_losing_bidders_not_notified_when_disabled(app, item_id, notifier, monkeypatch):
    monkeypatch.setitem(app.config, "NOTIFY_LOSING_BIDDERS", False)
    b1 = negotiation_service.create_offer(BUYER_ID, item_id, 4000)
    negotiation_service.create_offer(OTHER_BUYER_ID, item_id, 4200)
    notifier.reset()

    negotiation_service.accept_offer(SELLER_ID, b1.id)

    assert notifier.kinds_for(OTHER_BUYER_ID) == []
    assert notifier.kinds_for(BUYER_ID) == ["offer_accepted"]


# =============================================================================
# reject_offer / withdraw_offer
# =============================================================================

def test_reject_is_terminal(item_id, notifier):
    offer = negotiation_service.create_offer(BUYER_ID, item_id, 4000)

    rejected = negotiation_service.reject_offer(SELLER_ID, offer.id)
    assert rejected.status == OFFER_REJECTED
    assert rejected.decided_at is not None
    assert "offer_rejected" in notifier.kinds_for(BUYER_ID)

    with pytest.raises(InvalidStateError):
        negotiation_service.reject_offer(SELLER_ID, offer.id)
    with pytest.raises(InvalidStateError):
        negotiation_service.accept_offer(SELLER_ID, offer.id)
    with pytest.raises(InvalidStateError):
        negotiation_service.withdraw_offer(BUYER_ID, offer.id)
    assert _status(Item, item_id) == ITEM_ACTIVE


def test_reject_requires_seller(item_id):
    offer = negotiation_service.create_offer(BUYER_ID, item_id, 4000)
    with pytest.raises(ForbiddenError):
        negotiation_service.reject_offer(BUYER_ID, offer.id)


def test_withdraw_requires_buyer_and_is_terminal(item_id, notifier):
    offer = negotiation_service.create_offer(BUYER_ID, item_id, 4000)

    with pytest.raises(ForbiddenError):
        negotiation_service.withdraw_offer(SELLER_ID, offer.id)

    withdrawn = negotiation_service.withdraw_offer(BUYER_ID, offer.id)
    assert withdrawn.status == OFFER_WITHDRAWN
    assert notifier.kinds_for(SELLER_ID)[-1] == "offer_withdrawn"

    with pytest.raises(InvalidStateError):
        negotiation_service.withdraw_offer(BUYER_ID, offer.id)


def test_accepted_offer_cannot_be_withdrawn(item_id):
    result = _accepted_deal(item_id)
    with pytest.raises(InvalidStateError):
        negotiation_service.withdraw_offer(BUYER_ID, result.offer.id)
    assert _status(Item, item_id) == ITEM_RESERVED


# =============================================================================
# complete_transaction / cancel_transaction
# =============================================================================

def test_complete_marks_item_sold(item_id, notifier):
    deal = _accepted_deal(item_id)
    notifier.reset()

    result = negotiation_service.complete_transaction(
        BUYER_ID, deal.transaction.id, met_at="2026-10-19T15:00:00Z", location_note="Library lobby"
    )

    assert result.transaction.status == TX_COMPLETED
    assert result.transaction.completed_at is not None
    assert result.transaction.met_at.hour == 15
    assert result.transaction.location_note == "Library lobby"
    assert result.item.status == ITEM_SOLD
    assert notifier.kinds_for(SELLER_ID) == ["transaction_completed"]
    assert audit_service.check_item_consistency(item_id) == []


def test_complete_defaults_met_at(item_id):
    deal = _accepted_deal(item_id)
    result = negotiation_service.complete_transaction(SELLER_ID, deal.transaction.id)
    assert result.transaction.met_at is not None


def test_complete_then_cancel_fails(item_id):
    deal = _accepted_deal(item_id)
    negotiation_service.complete_transaction(SELLER_ID, deal.transaction.id)

    with pytest.raises(InvalidStateError):
        negotiation_service.cancel_transaction(BUYER_ID, deal.transaction.id)
    with pytest.raises(InvalidStateError):
        negotiation_service.complete_transaction(BUYER_ID, deal.transaction.id)

    assert _status(Item, item_id) == ITEM_SOLD
    assert _status(Transaction, deal.transaction.id) == TX_COMPLETED


def test_settlement_requires_a_party(item_id):
    deal = _accepted_deal(item_id)
    with pytest.raises(ForbiddenError):
        negotiation_service.complete_transaction(OUTSIDER_ID, deal.transaction.id)
    with pytest.raises(ForbiddenError):
        negotiation_service.cancel_transaction(OUTSIDER_ID, deal.transaction.id)
    with pytest.raises(ForbiddenError):
        negotiation_service.get_transaction(OUTSIDER_ID, deal.transaction.id)
    assert _status(Transaction, deal.transaction.id) == TX_PENDING


def test_buyer_cancel_reopens_item_and_withdraws_offer(item_id, notifier):
    deal = _accepted_deal(item_id)
    notifier.reset()

    result = negotiation_service.cancel_transaction(BUYER_ID, deal.transaction.id)

    assert result.transaction.status == TX_CANCELED
    assert result.transaction.canceled_by_user_id == BUYER_ID
    assert result.item.status == ITEM_ACTIVE
    assert result.unwound_offer.id == deal.offer.id
    assert _status(Offer, deal.offer.id) == OFFER_WITHDRAWN
    assert notifier.kinds_for(SELLER_ID) == ["transaction_canceled"]
    assert audit_service.check_item_consistency(item_id) == []


def test_seller_cancel_rejects_the_accepted_offer(item_id):
    deal = _accepted_deal(item_id)
    negotiation_service.cancel_transaction(SELLER_ID, deal.transaction.id)
    assert _status(Offer, deal.offer.id) == OFFER_REJECTED


def test_cancel_twice_fails(item_id):
    deal = _accepted_deal(item_id)
    negotiation_service.cancel_transaction(SELLER_ID, deal.transaction.id)
    with pytest.raises(InvalidStateError):
        negotiation_service.cancel_transaction(SELLER_ID, deal.transaction.id)


def test_cancel_then_new_accept_revives_the_same_row(item_id):
    first = _accepted_deal(item_id, amount=4000)
    negotiation_service.cancel_transaction(BUYER_ID, first.transaction.id)

    offer = negotiation_service.create_offer(OTHER_BUYER_ID, item_id, 4500)
    second = negotiation_service.accept_offer(SELLER_ID, offer.id)

    assert second.revived is True
    assert second.transaction.id == first.transaction.id
    assert second.transaction.status == TX_PENDING
    assert second.transaction.buyer_id == OTHER_BUYER_ID
    assert second.transaction.agreed_price_cents == 4500
    assert second.transaction.offer_id == offer.id
    assert second.transaction.canceled_at is None
    assert second.transaction.canceled_by_user_id is None
    assert transaction_service.count_for_item(item_id) == 1
    assert audit_service.check_item_consistency(item_id) == []

    negotiation_service.complete_transaction(OTHER_BUYER_ID, second.transaction.id)
    assert _status(Item, item_id) == ITEM_SOLD
    assert transaction_service.count_for_item(item_id) == 1


def test_same_buyer_can_offer_again_after_cancel(item_id):
    first = _accepted_deal(item_id)
    negotiation_service.cancel_transaction(SELLER_ID, first.transaction.id)

    again = negotiation_service.create_offer(BUYER_ID, item_id, 3900)
    result = negotiation_service.accept_offer(SELLER_ID, again.id)
    assert result.revived is True
    assert result.transaction.agreed_price_cents == 3900


# =============================================================================
# deleted is a sink
# =============================================================================

def test_deleted_item_stays_deleted_on_complete(item_id):
    deal = _accepted_deal(item_id)
    item_service.soft_delete_item(SELLER_ID, item_id)

    result = negotiation_service.complete_transaction(BUYER_ID, deal.transaction.id)

    assert result.transaction.status == TX_COMPLETED
    assert result.item.status == ITEM_DELETED


def test_deleted_item_stays_deleted_on_cancel(item_id):
    deal = _accepted_deal(item_id)
    item_service.soft_delete_item(OUTSIDER_ID, item_id, is_admin=True)

    result = negotiation_service.cancel_transaction(SELLER_ID, deal.transaction.id)

    assert result.transaction.status == TX_CANCELED
    assert result.item.status == ITEM_DELETED
    with pytest.raises(InvalidStateError):
        negotiation_service.create_offer(OTHER_BUYER_ID, item_id, 4000)


def test_accept_on_deleted_item_fails(item_id, db_session):
    offer = negotiation_service.create_offer(BUYER_ID, item_id, 4000)
    # a pending offer on a deleted item is only reachable by writing status directly
    item = db_session.get(Item, item_id)
    item.status = ITEM_DELETED
    db_session.commit()

    with pytest.raises(InvalidStateError):
        negotiation_service.accept_offer(SELLER_ID, offer.id)
    assert _status(Offer, offer.id) == OFFER_PENDING


# =============================================================================
# reads
# =============================================================================

def test_list_offers_for_item_is_seller_only(item_id):
    negotiation_service.create_offer(BUYER_ID, item_id, 4000)
    negotiation_service.create_offer(OTHER_BUYER_ID, item_id, 4200)

    offers = negotiation_service.list_offers_for_item(SELLER_ID, item_id)
    assert sorted(o.buyer_id for o in offers) == [BUYER_ID, OTHER_BUYER_ID]

    with pytest.raises(ForbiddenError):
        negotiation_service.list_offers_for_item(BUYER_ID, item_id)


def test_my_and_received_offers(item_id, make_item):
    other_item = make_item(seller_id=OUTSIDER_ID)
    negotiation_service.create_offer(BUYER_ID, item_id, 4000)
    negotiation_service.create_offer(BUYER_ID, other_item, 100)

    assert len(negotiation_service.list_my_offers(BUYER_ID)) == 2
    received = negotiation_service.list_received_offers(SELLER_ID)
    assert [o.item_id for o in received] == [item_id]
    assert negotiation_service.list_received_offers(SELLER_ID, status=OFFER_REJECTED) == []


def test_list_my_transactions_by_role(item_id):
    deal = _accepted_deal(item_id)

    assert [t.id for t in negotiation_service.list_my_transactions(BUYER_ID)] == [deal.transaction.id]
    assert negotiation_service.list_my_transactions(BUYER_ID, role="seller") == []
    assert len(negotiation_service.list_my_transactions(SELLER_ID, role="seller")) == 1
    with pytest.raises(InvalidArgumentError):
        negotiation_service.list_my_transactions(SELLER_ID, role="broker")
