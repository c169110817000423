from __future__ import annotations
from datetime import datetime
from jobbudget.time_utils import parse_iso_datetime

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from sqlalchemy import Integer, JSON, Numeric, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from .errors import InvalidAmount, ValidationError
from .models import Milestone


MAX_BUDGET_NOTES_LENGTH = 500
MAX_ESTIMATED_HOURS = 10_000


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what callers are allowed to set (security boundary)
    - required_on_create: fields required when creating
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


BUDGET_POLICY = ModelValidationPolicy(
    writable_fields={"type", "amount", "currency", "estimated_hours", "notes"},
    required_on_create={"type", "amount"},
)

MILESTONE_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "description", "amount", "percentage", "due_date",
        "deliverables", "acceptance_criteria", "notes",
    },
    required_on_create={"name", "amount"},
)

PAYMENT_POLICY = ModelValidationPolicy(
    writable_fields={"amount", "currency", "payment_type", "reference", "description", "notes"},
    required_on_create={"amount"},
)


def to_decimal(value: Any, field: str = "amount", *, error: type[ValidationError] = InvalidAmount) -> Decimal:
    """
    Coerce a caller-supplied number to Decimal.

    - Decimal / int / numeric str accepted as-is
    - float goes through str() so 0.1 stays 0.1
    - bool, NaN, Infinity and garbage are rejected with `error`
    """
    if isinstance(value, bool) or value is None:
        raise error(f"{field} must be a number")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise error(f"{field} must be a number")
    else:
        raise error(f"{field} must be a number")
    if not result.is_finite():
        raise error(f"{field} must be a finite number")
    return result


def coerce_enum(enum_cls: type[Enum], value: Any, field: str) -> Enum:
    """Map a str (any case) or enum member onto `enum_cls`."""
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        try:
            return enum_cls(value.strip().upper())
        except ValueError:
            pass
    allowed = ", ".join(m.value for m in enum_cls)
    raise ValidationError(f"Invalid {field} '{value}'. Must be one of: {allowed}")


def normalize_currency_code(code: Any) -> str:
    if not isinstance(code, str) or not code.strip():
        return ""
    return code.strip().upper()


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Money / percentages
    if isinstance(coltype, Numeric):
        error = InvalidAmount if col.key == "amount" else ValidationError
        return to_decimal(value, col.key, error=error)

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        # Already an int (but not bool which is a subclass of int)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        # String input - must be plain digits (with optional leading minus)
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                raise ValidationError(f"{col.key} must be an integer")
            # Reject scientific notation (e.g., "1e15", "1E10")
            if 'e' in stripped.lower():
                raise ValidationError(f"{col.key} must be a plain integer (scientific notation not allowed)")
            # Reject decimal points (e.g., "12.5")
            if '.' in stripped:
                raise ValidationError(f"{col.key} must be an integer (no decimals)")
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{col.key} must be an integer")
        # Reject floats explicitly
        if isinstance(value, float):
            raise ValidationError(f"{col.key} must be an integer, not a decimal")
        # Other types
        raise ValidationError(f"{col.key} must be an integer")

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return parse_iso_datetime(value)
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    # Lists of strings (deliverables)
    if isinstance(coltype, JSON):
        if not isinstance(value, (list, tuple)):
            raise ValidationError(f"{col.key} must be a list")
        items = [str(v).strip() for v in value]
        return [v for v in items if v]

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        if isinstance(value, Enum):
            return str(value.value).strip()
        return str(value).strip()

    # Default: leave as-is
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming data against:
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
        missing = sorted(f for f in required if payload.get(f) is None)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        # NULL handling
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_milestone(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    if "amount" in patch and patch["amount"] <= 0:
        raise InvalidAmount("Milestone amount must be greater than 0")

    if "percentage" in patch and patch["percentage"] is not None:
        if patch["percentage"] < 0 or patch["percentage"] > 100:
            raise ValidationError("Milestone percentage must be between 0 and 100")


def enforce_rules_budget(patch: dict, *, max_amount: Decimal) -> None:
    if "amount" in patch:
        if patch["amount"] <= 0:
            raise InvalidAmount("Budget amount must be greater than 0")
        if patch["amount"] > max_amount:
            raise InvalidAmount(f"Budget amount cannot exceed {max_amount:,}")

    hours = patch.get("estimated_hours")
    if hours is not None:
        if hours <= 0:
            raise ValidationError("Estimated hours must be greater than 0")
        if hours > MAX_ESTIMATED_HOURS:
            raise ValidationError(f"Estimated hours cannot exceed {MAX_ESTIMATED_HOURS:,}")

    notes = patch.get("notes")
    if notes and len(notes) > MAX_BUDGET_NOTES_LENGTH:
        raise ValidationError(f"Budget notes cannot exceed {MAX_BUDGET_NOTES_LENGTH} characters")


def clean_milestone_item(item: Any, position: int) -> dict:
    """
    Normalize one entry of a `milestones` list (budget create/replace).

    Unnamed entries become "Milestone <position>"; percentage defaults to 0.
    """
    if not isinstance(item, dict):
        raise ValidationError(f"Milestone {position} must be an object")

    data = dict(item)
    name = data.get("name")
    if name is None or (isinstance(name, str) and not name.strip()):
        data["name"] = f"Milestone {position}"
    if data.get("percentage") is None:
        data["percentage"] = 0

    patch = validate_payload(model=Milestone, payload=data, policy=MILESTONE_POLICY, partial=False)
    enforce_rules_milestone(patch)
    return patch
