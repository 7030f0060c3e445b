# Overview: Shared JSON error responses for API routes.

from flask import jsonify, request

from ..errors import MarketError


def error_response(exc: MarketError):
    """One stable message and code per error type; store internals never leak."""
    response = jsonify(exc.to_dict())
    response.status_code = exc.status
    if exc.retryable:
        response.headers["Retry-After"] = "1"
    return response


def query_paging() -> dict:
    """limit/offset/status from the query string (validated by the services)."""
    return {
        "limit": request.args.get("limit"),
        "offset": request.args.get("offset"),
        "status": request.args.get("status") or None,
    }
