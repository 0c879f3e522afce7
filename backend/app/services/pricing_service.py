# Overview: Pure price resolution for cart lines; base/tier/variation/grade rules, no database access.

"""
Storefront Pricing Rules (authoritative)

================================================================================
PURPOSE: Turn a product selection into a unit price and a line total
================================================================================

PRECEDENCE:
1. Base price by catalog mode, falling back to the other price field when the
   preferred one is missing or zero.
2. Tier override: the active tier with the highest min_quantity that the
   effective quantity reaches replaces the base price.
3. Variation adjustment (non-grade variations): unit = price + adjustment.
4. Grade variations, one of:
   - full:   total = price x sum(grade_pairs)
   - half:   unit = price x (1 - discount%), total = unit x sum(floor(p/2))
   - custom: unit = price + custom adjustment, total = unit x selected pairs
   A half/custom request that cannot be honoured falls back to full.
5. Non-grade: total = unit x quantity.

ANOMALIES (recorded on the result, logged, never raised):
- PRICE_ANOMALY: unit price went below zero and was clamped to zero.
- GRADE_CONFIGURATION_MISSING: requested grade mode fell back to full.

All amounts are integer cents. Percentages round half-up to the cent.

Inputs are frozen snapshots (ProductPricing, VariationPricing, TierPricing)
so this module never touches the session.
================================================================================
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Sequence, Union

from ..errors import DomainError

logger = logging.getLogger(__name__)


CATALOG_RETAIL = "retail"
CATALOG_WHOLESALE = "wholesale"
CATALOG_MODES = (CATALOG_RETAIL, CATALOG_WHOLESALE)

GRADE_FULL = "full"
GRADE_HALF = "half"
GRADE_CUSTOM = "custom"
GRADE_MODES = (GRADE_FULL, GRADE_HALF, GRADE_CUSTOM)

TIER_RETAIL = "retail"
TIER_GRADUAL_WHOLESALE = "gradual_wholesale"
TIER_TYPES = (TIER_RETAIL, TIER_GRADUAL_WHOLESALE)

ANOMALY_PRICE = "PRICE_ANOMALY"
ANOMALY_GRADE_CONFIGURATION = "GRADE_CONFIGURATION_MISSING"


class PricingError(DomainError):
    """The selection cannot be priced at all (no price, unknown mode, empty grade)."""
    code = "PRICING_ERROR"


class GradeConfigurationMissing(DomainError):
    """
    Half/custom grade mode requested without the matching configuration.

    Recovered inside resolve_price() by pricing the full grade.
    """
    code = ANOMALY_GRADE_CONFIGURATION


# =============================================================================
# INPUT SNAPSHOTS
# =============================================================================

@dataclass(frozen=True)
class ProductPricing:
    product_id: int | None
    retail_price_cents: int | None
    wholesale_price_cents: int | None
    min_wholesale_qty: int = 1
    name: str | None = None

    @classmethod
    def from_model(cls, product) -> "ProductPricing":
        return cls(
            product_id=product.id,
            retail_price_cents=product.retail_price_cents,
            wholesale_price_cents=product.wholesale_price_cents,
            min_wholesale_qty=product.min_wholesale_qty or 1,
            name=product.name,
        )


@dataclass(frozen=True)
class FlexibleGradeConfig:
    allow_half_grade: bool = False
    half_grade_discount_percentage: Decimal = Decimal("0")
    allow_custom_mix: bool = False
    custom_mix_price_adjustment_cents: int = 0
    custom_mix_min_pairs: int | None = None

    @classmethod
    def from_dict(cls, raw: dict | None) -> "FlexibleGradeConfig | None":
        """
        None when there is no config or it cannot be read.

        A stored config with bad values disables half and custom modes
        (requests for them fall back to full grade) instead of failing the line.
        """
        if not raw:
            return None
        try:
            if not isinstance(raw, dict):
                raise TypeError(f"expected an object, got {type(raw).__name__}")
            min_pairs = raw.get("custom_mix_min_pairs")
            return cls(
                allow_half_grade=bool(raw.get("allow_half_grade", False)),
                half_grade_discount_percentage=_config_decimal(raw.get("half_grade_discount_percentage")),
                allow_custom_mix=bool(raw.get("allow_custom_mix", False)),
                custom_mix_price_adjustment_cents=_config_int(raw.get("custom_mix_price_adjustment_cents")),
                custom_mix_min_pairs=None if min_pairs is None else _config_int(min_pairs),
            )
        except (ArithmeticError, TypeError, ValueError) as exc:
            logger.warning("Ignoring malformed flexible_grade_config %r: %s", raw, exc)
            return None


def _config_int(value) -> int:
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"expected an integer, got {value!r}")
    return value


def _config_decimal(value) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        raise TypeError(f"expected a number, got {value!r}")
    return Decimal(str(value))


@dataclass(frozen=True)
class VariationPricing:
    variation_id: int | None
    product_id: int | None
    price_adjustment_cents: int = 0
    color: str | None = None
    size: str | None = None
    label: str | None = None
    is_grade: bool = False
    grade_sizes: tuple[str, ...] = ()
    grade_pairs: tuple[int, ...] = ()
    flexible_grade_config: FlexibleGradeConfig | None = None

    @property
    def total_pairs(self) -> int:
        return sum(self.grade_pairs)

    @classmethod
    def from_model(cls, variation) -> "VariationPricing":
        return cls(
            variation_id=variation.id,
            product_id=variation.product_id,
            price_adjustment_cents=variation.price_adjustment_cents or 0,
            color=variation.color,
            size=variation.size,
            label=variation.label,
            is_grade=bool(variation.is_grade),
            grade_sizes=tuple(str(s) for s in (variation.grade_sizes or ())),
            grade_pairs=tuple(int(p) for p in (variation.grade_pairs or ())),
            flexible_grade_config=FlexibleGradeConfig.from_dict(variation.flexible_grade_config),
        )


@dataclass(frozen=True)
class TierPricing:
    tier_order: int
    tier_type: str
    min_quantity: int
    price_cents: int
    is_active: bool = True
    tier_name: str | None = None

    @classmethod
    def from_model(cls, tier) -> "TierPricing":
        return cls(
            tier_order=tier.tier_order,
            tier_type=tier.tier_type,
            min_quantity=tier.min_quantity,
            price_cents=tier.price_cents,
            is_active=tier.is_active,
            tier_name=tier.tier_name,
        )

    def to_dict(self) -> dict:
        return {
            "tier_order": self.tier_order,
            "tier_type": self.tier_type,
            "tier_name": self.tier_name,
            "min_quantity": self.min_quantity,
            "price_cents": self.price_cents,
        }


@dataclass(frozen=True)
class CustomGradeSelection:
    """Buyer-chosen quantity per size for a custom-mix grade purchase."""
    items: tuple[tuple[str, int], ...]

    @property
    def total_pairs(self) -> int:
        return sum(qty for _, qty in self.items)

    @classmethod
    def from_pairs(cls, pairs: Iterable[tuple[str, int]]) -> "CustomGradeSelection":
        return cls(items=tuple((str(size), int(qty)) for size, qty in pairs if int(qty) > 0))

    def to_dict(self) -> dict:
        return {
            "items": [{"size": size, "quantity": qty} for size, qty in self.items],
            "total_pairs": self.total_pairs,
        }


# =============================================================================
# GRADE MODES (tagged union; each variant carries only what it needs)
# =============================================================================

@dataclass(frozen=True)
class FullGrade:
    pairs: int
    mode: str = field(default=GRADE_FULL, init=False)


@dataclass(frozen=True)
class HalfGrade:
    pairs: int
    discount_percentage: Decimal
    mode: str = field(default=GRADE_HALF, init=False)


@dataclass(frozen=True)
class CustomMix:
    selection: CustomGradeSelection
    price_adjustment_cents: int
    mode: str = field(default=GRADE_CUSTOM, init=False)

    @property
    def pairs(self) -> int:
        return self.selection.total_pairs


GradeMode = Union[FullGrade, HalfGrade, CustomMix]


@dataclass(frozen=True)
class PriceResult:
    unit_price_cents: int
    line_total_cents: int
    quantity_priced: int
    base_price_cents: int
    applied_tier: TierPricing | None = None
    grade_mode: str | None = None
    anomalies: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "quantity_priced": self.quantity_priced,
            "base_price_cents": self.base_price_cents,
            "applied_tier": self.applied_tier.to_dict() if self.applied_tier else None,
            "grade_mode": self.grade_mode,
            "anomalies": list(self.anomalies),
        }


# =============================================================================
# RULES
# =============================================================================

def select_base_price(product: ProductPricing, catalog_mode: str) -> int:
    """
    Base unit price for the catalog mode, falling back to the other price field.

    Raises:
        PricingError: unknown catalog mode, or neither price is set
    """
    if catalog_mode not in CATALOG_MODES:
        raise PricingError(
            f"Invalid catalog mode '{catalog_mode}'. Must be one of: {', '.join(CATALOG_MODES)}"
        )

    retail = product.retail_price_cents or 0
    wholesale = product.wholesale_price_cents or 0

    if catalog_mode == CATALOG_WHOLESALE:
        preferred, fallback = wholesale, retail
    else:
        preferred, fallback = retail, wholesale

    if preferred > 0:
        return preferred
    if fallback > 0:
        return fallback

    raise PricingError("Product has no price", details={"product_id": product.product_id})


def resolve_tier(tiers: Sequence[TierPricing] | None, effective_quantity: int) -> TierPricing | None:
    """Highest-min_quantity active tier reached by effective_quantity (ties: highest tier_order)."""
    if not tiers:
        return None
    qualifying = [t for t in tiers if t.is_active and t.min_quantity <= effective_quantity]
    if not qualifying:
        return None
    return max(qualifying, key=lambda t: (t.min_quantity, t.tier_order))


def next_tier_hint(
    tiers: Sequence[TierPricing] | None,
    effective_quantity: int,
    current_price_cents: int,
) -> dict | None:
    """Quantity still needed for the next cheaper tier, and the per-unit saving it brings."""
    if not tiers:
        return None
    upcoming = sorted(
        (t for t in tiers if t.is_active and t.min_quantity > effective_quantity),
        key=lambda t: t.min_quantity,
    )
    for tier in upcoming:
        if tier.price_cents < current_price_cents:
            return {
                "quantity_needed": tier.min_quantity - effective_quantity,
                "tier_name": tier.tier_name,
                "price_cents": tier.price_cents,
                "unit_savings_cents": current_price_cents - tier.price_cents,
            }
    return None


def effective_tier_quantity(line_quantity: int, *, mode: str, cart_quantity: int | None = None) -> int:
    """
    Quantity compared against tier thresholds.

    mode is the store's tier_quantity_mode: "per_line" uses the line itself,
    "cart_total" uses the aggregate cart quantity computed by the caller.
    """
    if mode == "cart_total":
        if cart_quantity is None:
            raise PricingError("cart_quantity is required when tiers use the cart total")
        return cart_quantity
    if mode != "per_line":
        raise PricingError(f"Invalid tier quantity mode '{mode}'")
    return line_quantity


def validate_price_tiers(tiers: Sequence[TierPricing]) -> None:
    """
    Enforce tier table invariants before saving.

    - exactly one active retail tier
    - active gradual_wholesale tiers strictly increasing in min_quantity by tier_order
    - unique tier_order, positive min_quantity, non-negative price
    """
    orders = [t.tier_order for t in tiers]
    if len(orders) != len(set(orders)):
        raise PricingError("tier_order values must be unique")

    for t in tiers:
        if t.tier_type not in TIER_TYPES:
            raise PricingError(f"Invalid tier_type '{t.tier_type}'")
        if t.min_quantity < 1:
            raise PricingError("min_quantity must be >= 1")
        if t.price_cents < 0:
            raise PricingError("price_cents must be >= 0")

    active = [t for t in tiers if t.is_active]
    retail = [t for t in active if t.tier_type == TIER_RETAIL]
    if len(retail) != 1:
        raise PricingError(
            "Exactly one active retail tier is required",
            details={"active_retail_tiers": len(retail)},
        )

    gradual = sorted((t for t in active if t.tier_type == TIER_GRADUAL_WHOLESALE), key=lambda t: t.tier_order)
    previous = retail[0].min_quantity
    for t in gradual:
        if t.min_quantity <= previous:
            raise PricingError(
                "gradual_wholesale tiers must have strictly increasing min_quantity",
                details={"tier_order": t.tier_order, "min_quantity": t.min_quantity},
            )
        previous = t.min_quantity


def half_grade_pairs(grade_pairs: Sequence[int]) -> list[int]:
    """Half of each per-size count, rounded down."""
    return [int(p) // 2 for p in grade_pairs]


def apply_percentage_discount(amount_cents: int, percentage) -> int:
    pct = Decimal(str(percentage))
    discounted = Decimal(amount_cents) * (Decimal(100) - pct) / Decimal(100)
    return int(discounted.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def grade_mode_for(
    variation: VariationPricing,
    requested_mode: str,
    custom_selection: CustomGradeSelection | None = None,
) -> GradeMode:
    """
    Build the grade mode variant for a purchase.

    Raises:
        PricingError: unknown mode, or the grade itself has no pairs
        GradeConfigurationMissing: half/custom requested but not configured or not satisfiable
    """
    if requested_mode not in GRADE_MODES:
        raise PricingError(f"Invalid grade mode '{requested_mode}'. Must be one of: {', '.join(GRADE_MODES)}")

    if requested_mode == GRADE_FULL:
        return full_grade(variation)

    config = variation.flexible_grade_config

    if requested_mode == GRADE_HALF:
        if config is None or not config.allow_half_grade:
            raise GradeConfigurationMissing("Half grade is not enabled for this variation")
        pairs = sum(half_grade_pairs(variation.grade_pairs))
        if pairs <= 0:
            raise GradeConfigurationMissing("Half grade has no pairs")
        return HalfGrade(pairs=pairs, discount_percentage=config.half_grade_discount_percentage)

    if config is None or not config.allow_custom_mix:
        raise GradeConfigurationMissing("Custom mix is not enabled for this variation")
    if custom_selection is None or custom_selection.total_pairs <= 0:
        raise GradeConfigurationMissing("Custom mix requires a size selection")
    unknown = [size for size, _ in custom_selection.items if size not in variation.grade_sizes]
    if unknown:
        raise GradeConfigurationMissing(
            "Custom mix selection contains sizes outside the grade",
            details={"sizes": unknown},
        )
    return CustomMix(selection=custom_selection, price_adjustment_cents=config.custom_mix_price_adjustment_cents)


def full_grade(variation: VariationPricing) -> FullGrade:
    pairs = variation.total_pairs
    if pairs <= 0:
        raise PricingError("Grade has no pairs configured", details={"variation_id": variation.variation_id})
    return FullGrade(pairs=pairs)


def _clamp(unit_price_cents: int, anomalies: list[str], context: dict) -> int:
    if unit_price_cents < 0:
        logger.warning("Negative unit price clamped to zero for review: %s (computed %s)", context, unit_price_cents)
        anomalies.append(ANOMALY_PRICE)
        return 0
    return unit_price_cents


def _price_grade(mode: GradeMode, price_cents: int, anomalies: list[str], context: dict) -> tuple[int, int]:
    if isinstance(mode, HalfGrade):
        unit = apply_percentage_discount(price_cents, mode.discount_percentage)
    elif isinstance(mode, CustomMix):
        unit = price_cents + mode.price_adjustment_cents
    else:
        unit = price_cents
    unit = _clamp(unit, anomalies, context)
    return unit, unit * mode.pairs


def resolve_price(
    product: ProductPricing,
    *,
    catalog_mode: str,
    quantity: int,
    variation: VariationPricing | None = None,
    tiers: Sequence[TierPricing] | None = None,
    grade_mode: str = GRADE_FULL,
    custom_selection: CustomGradeSelection | None = None,
    effective_quantity: int | None = None,
) -> PriceResult:
    """
    Resolve unit price and line total for one selection.

    effective_quantity is the quantity compared against tier thresholds. It
    defaults to the line quantity, or to the priced pair count for grades.

    Raises:
        PricingError: the selection cannot be priced at all
    """
    base = select_base_price(product, catalog_mode)
    anomalies: list[str] = []
    context = {
        "product_id": product.product_id,
        "variation_id": variation.variation_id if variation else None,
    }

    if variation is not None and variation.is_grade:
        try:
            mode = grade_mode_for(variation, grade_mode, custom_selection)
        except GradeConfigurationMissing as exc:
            logger.warning(
                "Grade mode %r unavailable for %s, pricing full grade: %s",
                grade_mode, context, exc.message,
            )
            anomalies.append(ANOMALY_GRADE_CONFIGURATION)
            mode = full_grade(variation)

        tier_qty = effective_quantity if effective_quantity is not None else mode.pairs
        tier = resolve_tier(tiers, tier_qty)
        price = tier.price_cents if tier else base

        try:
            unit, total = _price_grade(mode, price, anomalies, context)
        except (ArithmeticError, TypeError, ValueError) as exc:
            # Unexpected config values (e.g. a malformed discount): charge the full grade
            logger.warning("Grade computation failed for %s, pricing full grade: %s", context, exc)
            if ANOMALY_GRADE_CONFIGURATION not in anomalies:
                anomalies.append(ANOMALY_GRADE_CONFIGURATION)
            mode = full_grade(variation)
            tier_qty = effective_quantity if effective_quantity is not None else mode.pairs
            tier = resolve_tier(tiers, tier_qty)
            price = tier.price_cents if tier else base
            unit, total = _price_grade(mode, price, anomalies, context)

        return PriceResult(
            unit_price_cents=unit,
            line_total_cents=total,
            quantity_priced=mode.pairs,
            base_price_cents=base,
            applied_tier=tier,
            grade_mode=mode.mode,
            anomalies=tuple(anomalies),
        )

    if quantity < 1:
        raise PricingError("quantity must be >= 1")

    tier_qty = effective_quantity if effective_quantity is not None else quantity
    tier = resolve_tier(tiers, tier_qty)
    price = tier.price_cents if tier else base

    unit = price
    if variation is not None:
        unit += variation.price_adjustment_cents
    unit = _clamp(unit, anomalies, context)

    return PriceResult(
        unit_price_cents=unit,
        line_total_cents=unit * quantity,
        quantity_priced=quantity,
        base_price_cents=base,
        applied_tier=tier,
        grade_mode=None,
        anomalies=tuple(anomalies),
    )
