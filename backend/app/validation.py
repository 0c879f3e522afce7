from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .errors import DomainError


# Maximum price: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999


class ValidationError(DomainError, ValueError):
    """400-level input problem."""
    code = "VALIDATION_ERROR"


class ConflictError(DomainError, ValueError):
    """409-level business rule conflict (e.g., duplicate SKU)."""
    code = "CONFLICT"
    http_status = 409


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = frozenset()  # type: ignore[assignment]


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_int(key: str, value: Any) -> int:
    # bool is an int subclass; never accept it as a quantity or price
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return _coerce_int(col.key, value)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in ("true", "false", "1", "0"):
            return value.strip().lower() in ("true", "1")
        raise ValidationError(f"{col.key} must be a boolean")

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    # JSON and anything else: leave as-is, per-model rules check shape
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(f for f in policy.required_on_create if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def _check_price(key: str, value: int | None) -> None:
    if value is None:
        return
    if value < 0:
        raise ValidationError(f"{key} must be >= 0")
    if value > MAX_PRICE_CENTS:
        raise ValidationError(f"{key} cannot exceed {MAX_PRICE_CENTS}")


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    _check_price("retail_price_cents", patch.get("retail_price_cents"))
    _check_price("wholesale_price_cents", patch.get("wholesale_price_cents"))

    if patch.get("min_wholesale_qty") is not None and patch["min_wholesale_qty"] < 1:
        raise ValidationError("min_wholesale_qty must be >= 1")

    for key in ("stock", "reserved_stock"):
        if key in patch:
            raise ValidationError(f"{key} can only change through stock movements")


def enforce_rules_variation(patch: dict) -> None:
    adjustment = patch.get("price_adjustment_cents")
    if adjustment is not None and abs(adjustment) > MAX_PRICE_CENTS:
        raise ValidationError("price_adjustment_cents out of range")

    if not patch.get("is_grade"):
        return

    sizes = patch.get("grade_sizes")
    pairs = patch.get("grade_pairs")
    if not isinstance(sizes, list) or not isinstance(pairs, list) or not sizes:
        raise ValidationError("grade variations need grade_sizes and grade_pairs lists")
    if len(sizes) != len(pairs):
        raise ValidationError("grade_sizes and grade_pairs must have the same length")
    if len(set(str(s) for s in sizes)) != len(sizes):
        raise ValidationError("grade_sizes must be unique")
    for p in pairs:
        if _coerce_int("grade_pairs", p) < 0:
            raise ValidationError("grade_pairs must be >= 0")

    config = patch.get("flexible_grade_config")
    if config is not None:
        if not isinstance(config, dict):
            raise ValidationError("flexible_grade_config must be an object")
        for flag in ("allow_half_grade", "allow_custom_mix"):
            if config.get(flag) is not None and not isinstance(config[flag], bool):
                raise ValidationError(f"{flag} must be a boolean")

        pct = config.get("half_grade_discount_percentage")
        if pct is not None:
            if isinstance(pct, bool) or not isinstance(pct, (int, float)):
                raise ValidationError("half_grade_discount_percentage must be a number")
            if not (0 <= pct <= 100):
                raise ValidationError("half_grade_discount_percentage must be between 0 and 100")

        adjustment = config.get("custom_mix_price_adjustment_cents")
        if adjustment is not None:
            if isinstance(adjustment, bool) or not isinstance(adjustment, int):
                raise ValidationError("custom_mix_price_adjustment_cents must be an integer")
            if abs(adjustment) > MAX_PRICE_CENTS:
                raise ValidationError("custom_mix_price_adjustment_cents out of range")

        min_pairs = config.get("custom_mix_min_pairs")
        if min_pairs is not None:
            if isinstance(min_pairs, bool) or not isinstance(min_pairs, int):
                raise ValidationError("custom_mix_min_pairs must be an integer")
            if min_pairs < 1:
                raise ValidationError("custom_mix_min_pairs must be >= 1")


# -----------------------------------------------------------------------------
# Request helpers for non-model payloads (cart lines, orders, transitions)
# -----------------------------------------------------------------------------

def require_int(payload: dict, key: str, *, minimum: int | None = None) -> int:
    if payload.get(key) is None:
        raise ValidationError(f"{key} required")
    value = _coerce_int(key, payload[key])
    if minimum is not None and value < minimum:
        raise ValidationError(f"{key} must be >= {minimum}")
    return value


def optional_int(payload: dict, key: str, *, minimum: int | None = None) -> int | None:
    if payload.get(key) is None:
        return None
    return require_int(payload, key, minimum=minimum)


def require_choice(payload: dict, key: str, choices: Iterable[str], *, default: str | None = None) -> str:
    value = payload.get(key, default)
    if value is None:
        raise ValidationError(f"{key} required")
    allowed = tuple(choices)
    if value not in allowed:
        raise ValidationError(f"{key} must be one of: {', '.join(allowed)}")
    return value


def require_text(payload: dict, key: str, *, max_length: int = 255) -> str:
    value = payload.get(key)
    if value is None or not str(value).strip():
        raise ValidationError(f"{key} required")
    value = str(value).strip()
    if len(value) > max_length:
        raise ValidationError(f"{key} exceeds max length {max_length}")
    return value


def parse_custom_selection(raw: Any) -> list[tuple[str, int]] | None:
    """
    Accepts [{"size": "36", "quantity": 2}, ...] and returns (size, quantity) pairs.

    The total is recomputed by the pricing layer; a client-supplied total is ignored.
    """
    if raw is None:
        return None
    items = raw.get("items") if isinstance(raw, dict) else raw
    if not isinstance(items, list):
        raise ValidationError("custom_selection must be a list of {size, quantity}")
    parsed = []
    for entry in items:
        if not isinstance(entry, dict) or "size" not in entry:
            raise ValidationError("custom_selection entries need size and quantity")
        qty = require_int(entry, "quantity", minimum=0)
        parsed.append((str(entry["size"]), qty))
    return parsed
