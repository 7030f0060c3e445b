# Overview: Flask API routes for transactions; parses input and returns JSON responses.

# backend/campus_cart/routes/transactions.py
"""Transaction API routes. Only the buyer or seller can see or act on a transaction."""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import MarketError
from ..services import negotiation_service
from ..decorators import require_user
from .errors import error_response, query_paging


transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")


@transactions_bp.get("/")
@require_user
def list_transactions_route():
    """Caller's transactions; ?role=buyer|seller narrows the list."""
    try:
        txs = negotiation_service.list_my_transactions(
            g.user_id,
            role=request.args.get("role") or None,
            **query_paging(),
        )
        return jsonify({"transactions": [t.to_dict() for t in txs]}), 200

    except MarketError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list transactions")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.get("/<int:transaction_id>")
@require_user
def get_transaction_route(transaction_id: int):
    try:
        tx = negotiation_service.get_transaction(g.user_id, transaction_id)
        return jsonify({"transaction": tx.to_dict()}), 200

    except MarketError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get transaction")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.post("/<int:transaction_id>/complete")
@require_user
def complete_transaction_route(transaction_id: int):
    """
    Mark the hand-off done; the item becomes sold.

    Request body (optional):
    {
        "met_at": "2026-10-19T15:00:00Z",
        "location_note": "Library lobby"
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        result = negotiation_service.complete_transaction(
            g.user_id,
            transaction_id,
            met_at=data.get("met_at"),
            location_note=data.get("location_note"),
        )
        return jsonify(result.to_dict()), 200

    except MarketError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to complete transaction")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.post("/<int:transaction_id>/cancel")
@require_user
def cancel_transaction_route(transaction_id: int):
    """Call off the deal; the item reopens unless it was deleted."""
    try:
        result = negotiation_service.cancel_transaction(g.user_id, transaction_id)
        return jsonify(result.to_dict()), 200

    except MarketError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel transaction")
        return jsonify({"error": "Internal server error"}), 500
