# Overview: Flask API routes for offers; parses input and returns JSON responses.

# backend/campus_cart/routes/offers.py
"""
Offer API Routes

DESIGN:
- Thin adapter: every state change goes through negotiation_service
- Typed errors map to stable status codes (see campus_cart.errors)
- 503 + Retry-After on lock contention; the request is safe to resend
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import MarketError
from ..services import negotiation_service
from ..decorators import require_user
from .errors import error_response, query_paging


offers_bp = Blueprint("offers", __name__, url_prefix="/api/offers")


@offers_bp.post("/")
@require_user
def create_offer_route():
    """
    Make an offer on an item.

    Request body:
    {
        "item_id": 12,
        "amount_cents": 4000,
        "message": "Can pick up today"  (optional)
    }

    Returns:
        201: Offer created (pending)
        400: Invalid input
        404: Item not found
        409: Own item / item not active / not negotiable / duplicate pending offer
    """
    try:
        data = request.get_json(silent=True) or {}
        offer = negotiation_service.create_offer(
            g.user_id,
            data.get("item_id"),
            data.get("amount_cents"),
            data.get("message"),
        )
        return jsonify({"offer": offer.to_dict()}), 201

    except MarketError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create offer")
        return jsonify({"error": "Internal server error"}), 500


@offers_bp.get("/mine")
@require_user
def list_my_offers_route():
    try:
        offers = negotiation_service.list_my_offers(g.user_id, **query_paging())
        return jsonify({"offers": [o.to_dict() for o in offers]}), 200

    except MarketError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list my offers")
        return jsonify({"error": "Internal server error"}), 500


@offers_bp.get("/received")
@require_user
def list_received_offers_route():
    try:
        offers = negotiation_service.list_received_offers(g.user_id, **query_paging())
        return jsonify({"offers": [o.to_dict() for o in offers]}), 200

    except MarketError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list received offers")
        return jsonify({"error": "Internal server error"}), 500


@offers_bp.post("/<int:offer_id>/accept")
@require_user
def accept_offer_route(offer_id: int):
    """
    Accept an offer (seller only).

    Atomically rejects the item's other pending offers, reserves the item,
    and opens (or revives) its transaction.

    Returns:
        200: {offer, item, transaction, rejected_offer_ids, revived}
        403: Caller is not the seller
        404: Offer not found
        409: Offer not pending / item not open
        503: Busy, retry
    """
    try:
        result = negotiation_service.accept_offer(g.user_id, offer_id)
        return jsonify(result.to_dict()), 200

    except MarketError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to accept offer")
        return jsonify({"error": "Internal server error"}), 500


@offers_bp.post("/<int:offer_id>/reject")
@require_user
def reject_offer_route(offer_id: int):
    try:
        offer = negotiation_service.reject_offer(g.user_id, offer_id)
        return jsonify({"offer": offer.to_dict()}), 200

    except MarketError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reject offer")
        return jsonify({"error": "Internal server error"}), 500


@offers_bp.post("/<int:offer_id>/withdraw")
@require_user
def withdraw_offer_route(offer_id: int):
    try:
        offer = negotiation_service.withdraw_offer(g.user_id, offer_id)
        return jsonify({"offer": offer.to_dict()}), 200

    except MarketError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to withdraw offer")
        return jsonify({"error": "Internal server error"}), 500
