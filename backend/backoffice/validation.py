from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable

from sqlalchemy import Boolean, DateTime, Integer, Numeric, String, Text
from sqlalchemy.orm import DeclarativeMeta

from backoffice.errors import ValidationError
from backoffice.time_utils import parse_iso_datetime


# Largest monetary amount accepted anywhere (fits Numeric(12, 2))
MAX_AMOUNT = Decimal("9999999999.99")


# =============================================================================
# FIELD PRIMITIVES
# =============================================================================

def is_valid_uuid(value: Any) -> bool:
    """True when value is a canonical UUID string (any version)."""
    if not isinstance(value, str):
        return False
    try:
        return str(uuid.UUID(value)) == value.lower()
    except ValueError:
        return False


def require_uuid(value: Any, field: str) -> str:
    if not is_valid_uuid(value):
        raise ValidationError(f"{field} must be a valid UUID", field=field)
    return value.lower()


def require_fields(data: dict | None, fields: Iterable[str]) -> None:
    """Raise for the first field that is absent, None, or blank."""
    if data is None or not isinstance(data, dict):
        raise ValidationError("Invalid payload")
    missing = [f for f in fields if _is_blank(data.get(f))]
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            code="MISSING_REQUIRED_FIELD",
            field=missing[0],
            context={"missing": missing},
        )


def require_text(value: Any, field: str, *, max_length: int | None = None) -> str:
    if _is_blank(value):
        raise ValidationError(f"{field} is required", code="MISSING_REQUIRED_FIELD", field=field)
    text = str(value).strip()
    if max_length and len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}", field=field)
    return text


def require_positive_int(value: Any, field: str) -> int:
    # bool is an int subclass; floats are rejected rather than truncated
    if isinstance(value, bool) or not isinstance(value, int):
        if isinstance(value, str) and value.strip().isdigit():
            value = int(value.strip())
        else:
            raise ValidationError(f"{field} must be an integer", field=field)
    if value <= 0:
        raise ValidationError(f"{field} must be > 0", field=field)
    return value


def to_decimal(value: Any, field: str, *, allow_none: bool = False) -> Decimal | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        if allow_none:
            return None
        raise ValidationError(f"{field} is required", code="MISSING_REQUIRED_FIELD", field=field)
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", field=field)
    try:
        # str() first so floats keep their printed value (0.1, not 0.1000000000000000055)
        number = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number", field=field)
    if not number.is_finite():
        raise ValidationError(f"{field} must be a finite number", field=field)
    if number.copy_abs() > MAX_AMOUNT:
        raise ValidationError(f"{field} exceeds {MAX_AMOUNT}", field=field)
    return number


def require_non_negative_decimal(value: Any, field: str, *, default: Decimal | None = None) -> Decimal:
    if value is None and default is not None:
        return default
    number = to_decimal(value, field)
    if number < 0:
        raise ValidationError(f"{field} must be >= 0", field=field)
    return number


def require_positive_decimal(value: Any, field: str) -> Decimal:
    number = to_decimal(value, field)
    if number <= 0:
        raise ValidationError(f"{field} must be > 0", field=field)
    return number


def require_choice(value: Any, field: str, choices: Iterable[str]) -> str:
    allowed = sorted(choices)
    if value not in allowed:
        raise ValidationError(
            f"Invalid {field} '{value}'. Must be one of: {', '.join(allowed)}",
            field=field,
        )
    return value


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


# =============================================================================
# MODEL PAYLOAD POLICY
# =============================================================================

@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required on create
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped or not stripped.lstrip("-").isdigit():
                raise ValidationError(f"{col.key} must be an integer", field=col.key)
            return int(stripped)
        raise ValidationError(f"{col.key} must be an integer", field=col.key)

    if isinstance(coltype, Numeric):
        return to_decimal(value, col.key)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime", field=col.key)
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime", field=col.key)
            return dt
        raise ValidationError(f"{col.key} must be a datetime", field=col.key)

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes an incoming dict against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid payload")

    required = policy.required_on_create or set()
    if not partial:
        require_fields(payload, sorted(required))

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}", field=k)
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}", field=k)

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null", field=k)
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank", field=k)

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}", field=k)

        patch[k] = val

    return patch
