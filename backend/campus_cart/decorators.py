# Overview: Request decorators for API routes.

from functools import wraps
from flask import current_app, request, jsonify, g


ADMIN_ROLE = "admin"


def require_user(f):
    """
    Require an authenticated caller.

    Credentials are checked by the upstream gateway, which forwards the
    caller id in AUTH_USER_HEADER (and an optional role in AUTH_ROLE_HEADER).
    Sets:
    - g.user_id: int caller id
    - g.is_admin: True when the gateway marked the caller as admin

    Returns 401 if the header is missing or not a positive integer.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = request.headers.get(current_app.config.get("AUTH_USER_HEADER", "X-User-Id"), "").strip()
        if not (raw.isascii() and raw.isdigit()) or int(raw) <= 0:
            return jsonify({"error": "Authentication required", "code": "unauthenticated"}), 401

        role = request.headers.get(current_app.config.get("AUTH_ROLE_HEADER", "X-User-Role"), "")
        g.user_id = int(raw)
        g.is_admin = role.strip().lower() == ADMIN_ROLE

        return f(*args, **kwargs)

    return decorated_function
