from __future__ import annotations
from datetime import datetime
from campus_cart.time_utils import parse_iso_datetime

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Boolean, Float, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from .errors import InvalidArgumentError


# Maximum price: $9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999
MAX_MESSAGE_LENGTH = 1000


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required on create
    """
    writable_fields: set[str]
    required_on_create: set[str] = field(default_factory=set)


def coerce_int(value: Any, name: str, *, minimum: int | None = None, maximum: int | None = None) -> int:
    """Strict integer coercion: rejects bools, floats, decimals and exponents."""
    if isinstance(value, bool):
        raise InvalidArgumentError(f"{name} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped or "e" in stripped.lower() or "." in stripped:
            raise InvalidArgumentError(f"{name} must be a plain integer")
        try:
            result = int(stripped)
        except ValueError:
            raise InvalidArgumentError(f"{name} must be an integer")
    else:
        raise InvalidArgumentError(f"{name} must be an integer")

    if minimum is not None and result < minimum:
        raise InvalidArgumentError(f"{name} must be >= {minimum}")
    if maximum is not None and result > maximum:
        raise InvalidArgumentError(f"{name} cannot exceed {maximum}")
    return result


def coerce_id(value: Any, name: str) -> int:
    return coerce_int(value, name, minimum=1)


def coerce_text(value: Any, name: str, *, max_length: int | None = None, required: bool = False) -> str | None:
    if value is None:
        if required:
            raise InvalidArgumentError(f"{name} is required")
        return None
    if not isinstance(value, str):
        raise InvalidArgumentError(f"{name} must be a string")
    text = value.strip()
    if not text:
        if required:
            raise InvalidArgumentError(f"{name} cannot be blank")
        return None
    if max_length is not None and len(text) > max_length:
        raise InvalidArgumentError(f"{name} exceeds max length {max_length}")
    return text


def coerce_datetime(value: Any, name: str) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        raise InvalidArgumentError(f"{name} must be an ISO-8601 datetime")
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise InvalidArgumentError(f"{name} must be an ISO-8601 datetime")


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if isinstance(coltype, Integer):
        return coerce_int(value, col.key)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise InvalidArgumentError(f"{col.key} must be a boolean")

    if isinstance(coltype, Float):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidArgumentError(f"{col.key} must be a number")
        return float(value)

    if isinstance(coltype, DateTime):
        return coerce_datetime(value, col.key)

    if isinstance(coltype, (String, Text)):
        if not isinstance(value, str):
            raise InvalidArgumentError(f"{col.key} must be a string")
        return value.strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
) -> dict:
    """
    Validates + normalizes incoming data against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create
    Returns a cleaned dict with only writable fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise InvalidArgumentError("Invalid JSON payload")

    missing = sorted(f for f in policy.required_on_create if payload.get(f) is None)
    if missing:
        raise InvalidArgumentError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields or k not in cols:
            raise InvalidArgumentError(f"Field not allowed: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable and k in policy.required_on_create:
                raise InvalidArgumentError(f"{k} cannot be null")
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise InvalidArgumentError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise InvalidArgumentError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_item(patch: dict, conditions: tuple[str, ...]) -> None:
    """Business rules that are not captured by SQLAlchemy metadata alone."""
    price = patch.get("price_cents")
    if price is not None:
        if price < 0:
            raise InvalidArgumentError("price_cents must be >= 0")
        if price > MAX_PRICE_CENTS:
            raise InvalidArgumentError(f"price_cents cannot exceed {MAX_PRICE_CENTS}")

    condition = patch.get("condition")
    if condition is not None and condition not in conditions:
        raise InvalidArgumentError(f"condition must be one of: {', '.join(conditions)}")

    latitude = patch.get("latitude")
    if latitude is not None and not -90.0 <= latitude <= 90.0:
        raise InvalidArgumentError("latitude must be between -90 and 90")
    longitude = patch.get("longitude")
    if longitude is not None and not -180.0 <= longitude <= 180.0:
        raise InvalidArgumentError("longitude must be between -180 and 180")
    if (latitude is None) != (longitude is None):
        raise InvalidArgumentError("latitude and longitude must be provided together")
