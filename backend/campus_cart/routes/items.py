# Overview: Flask API routes for item listings; parses input and returns JSON responses.

# backend/campus_cart/routes/items.py
"""
Item API Routes

Listing-side endpoints the negotiation engine depends on: create, read, and
soft delete. Offers on an item are visible only to its seller.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import MarketError
from ..services import item_service, negotiation_service
from ..decorators import require_user
from .errors import error_response, query_paging


items_bp = Blueprint("items", __name__, url_prefix="/api/items")


@items_bp.post("/")
@require_user
def create_item_route():
    """
    Create an active listing owned by the caller.

    Request body:
    {
        "title": "Desk lamp",
        "price_cents": 2500,
        "condition": "good",        (optional)
        "is_negotiable": true,      (optional)
        "description": "...",       (optional)
        "category_id": 3,           (optional)
        "latitude": 37.33, "longitude": -121.88  (optional, together)
    }
    """
    try:
        item = item_service.create_item(g.user_id, request.get_json(silent=True) or {})
        return jsonify({"item": item.to_dict()}), 201

    except MarketError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create item")
        return jsonify({"error": "Internal server error"}), 500


@items_bp.get("/<int:item_id>")
def get_item_route(item_id: int):
    try:
        item = item_service.get_item(item_id)
        return jsonify({"item": item.to_dict()}), 200

    except MarketError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get item")
        return jsonify({"error": "Internal server error"}), 500


@items_bp.delete("/<int:item_id>")
@require_user
def delete_item_route(item_id: int):
    """Soft delete (seller or admin). Pending offers on the item are rejected."""
    try:
        item, rejected = item_service.soft_delete_item(g.user_id, item_id, is_admin=g.is_admin)
        return jsonify({"item": item.to_dict(), "rejected_offer_ids": [o.id for o in rejected]}), 200

    except MarketError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete item")
        return jsonify({"error": "Internal server error"}), 500


@items_bp.get("/<int:item_id>/offers")
@require_user
def list_item_offers_route(item_id: int):
    """Offers on one item, newest first. Seller only."""
    try:
        offers = negotiation_service.list_offers_for_item(g.user_id, item_id, **query_paging())
        return jsonify({"offers": [o.to_dict() for o in offers]}), 200

    except MarketError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list item offers")
        return jsonify({"error": "Internal server error"}), 500
