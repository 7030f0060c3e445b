# Overview: Flask API routes for notifications; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import MarketError
from ..services import notification_service
from ..decorators import require_user
from .errors import error_response


notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")


@notifications_bp.get("/")
@require_user
def list_notifications_route():
    try:
        unread_only = request.args.get("unread", "").lower() in {"1", "true", "yes"}
        notifications = notification_service.list_for_user(
            g.user_id,
            unread_only=unread_only,
            limit=request.args.get("limit"),
            offset=request.args.get("offset"),
        )
        return jsonify({"notifications": [n.to_dict() for n in notifications]}), 200

    except MarketError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list notifications")
        return jsonify({"error": "Internal server error"}), 500


@notifications_bp.post("/<int:notification_id>/read")
@require_user
def mark_notification_read_route(notification_id: int):
    try:
        notification = notification_service.mark_read(g.user_id, notification_id)
        return jsonify({"notification": notification.to_dict()}), 200

    except MarketError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to mark notification read")
        return jsonify({"error": "Internal server error"}), 500
