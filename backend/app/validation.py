# Overview: Request payload validation and voucher business rules shared by admin routes.

from __future__ import annotations
import re

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta


# Upper bound for any money amount, in the smallest currency unit
MAX_AMOUNT = 999_999_999

VOUCHER_CODE_RE = re.compile(r"^[A-Z0-9_-]{3,32}$")
DISCOUNT_TYPES = {"percent", "fixed"}


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate voucher code)."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Which columns of a model a client may write.

    - writable_fields: allowlist; anything else in the payload is rejected
    - required_on_create: keys that must be present when partial=False
    """
    writable_fields: set[str]
    required_on_create: set[str] = field(default_factory=set)


def _coerce_value(col, value: Any):
    """Coerce one JSON value to the column's Python type, strictly."""
    coltype = col.type

    if isinstance(coltype, Boolean):
        if not isinstance(value, bool):
            raise ValidationError(f"{col.key} must be true or false")
        return value

    if isinstance(coltype, Integer):
        # bool is an int subclass; floats and "1e3" style strings are refused
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str) and re.fullmatch(r"-?\d+", value.strip()):
            return int(value.strip())
        raise ValidationError(f"{col.key} must be an integer")

    if isinstance(coltype, (String, Text)):
        if not isinstance(value, str):
            raise ValidationError(f"{col.key} must be a string")
        return value.strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validate incoming JSON against the model's column metadata and a policy.

    partial=False is create semantics (required_on_create enforced);
    partial=True validates only the keys present.

    Returns a cleaned patch with only writable, coerced fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(f for f in policy.required_on_create if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = {c.key: c for c in model.__mapper__.columns}

    patch: dict = {}
    for key, raw in payload.items():
        if key not in policy.writable_fields or key not in cols:
            raise ValidationError(f"Field not allowed: {key}")
        col = cols[key]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{key} cannot be null")
            patch[key] = None
            continue

        value = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable and value == "":
            raise ValidationError(f"{key} cannot be blank")
        if isinstance(col.type, String) and col.type.length and len(value) > col.type.length:
            raise ValidationError(f"{key} exceeds max length {col.type.length}")

        patch[key] = value

    return patch


def normalize_voucher_code(code: Any) -> str:
    """Upper-case and strip a human-entered voucher code; reject malformed codes."""
    if not isinstance(code, str) or not code.strip():
        raise ValidationError("Voucher code is required")
    normalized = code.strip().upper()
    if not VOUCHER_CODE_RE.match(normalized):
        raise ValidationError(
            "Voucher code must be 3-32 characters of letters, digits, '-' or '_'"
        )
    return normalized


def _check_amount(patch: dict, key: str) -> None:
    value = patch.get(key)
    if value is None:
        return
    if value < 0:
        raise ValidationError(f"{key} must be >= 0")
    if value > MAX_AMOUNT:
        raise ValidationError(f"{key} cannot exceed {MAX_AMOUNT}")


def enforce_rules_voucher(patch: dict, current: dict | None = None) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.

    `current` holds the stored values on update so that cross-field rules
    (percent <= 100, both hour bounds) see the merged result.
    """
    merged = dict(current or {})
    merged.update(patch)

    if "code" in patch:
        patch["code"] = normalize_voucher_code(patch["code"])

    discount_type = merged.get("discount_type")
    if discount_type not in DISCOUNT_TYPES:
        raise ValidationError("discount_type must be 'percent' or 'fixed'")

    _check_amount(patch, "discount_value")
    _check_amount(patch, "min_order_value")

    value = merged.get("discount_value")
    if value is None:
        raise ValidationError("discount_value is required")
    if discount_type == "percent" and value > 100:
        raise ValidationError("percent discount_value cannot exceed 100")

    for key in ("start_hour", "end_hour"):
        hour = merged.get(key)
        if hour is not None and not 0 <= hour <= 24:
            raise ValidationError(f"{key} must be between 0 and 24")

    if (merged.get("start_hour") is None) != (merged.get("end_hour") is None):
        raise ValidationError("start_hour and end_hour must be set together")

    limit = merged.get("max_usage_per_user")
    if limit is not None and limit < 1:
        raise ValidationError("max_usage_per_user must be >= 1")
