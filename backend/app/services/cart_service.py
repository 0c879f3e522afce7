# Overview: Service-layer operations for cart lines; quantity rules, line identity and order-item snapshots.

from __future__ import annotations

import re
from dataclasses import dataclass, field

from ..errors import DomainError, NotFoundError
from ..extensions import db
from ..models import Product, ProductVariation, ProductPriceTier
from .pricing_service import (
    CATALOG_MODES,
    CATALOG_WHOLESALE,
    GRADE_FULL,
    GRADE_CUSTOM,
    GRADE_MODES,
    CustomGradeSelection,
    PricingError,
    ProductPricing,
    TierPricing,
    VariationPricing,
    effective_tier_quantity,
    resolve_price,
)
from .store_service import tier_quantity_mode


class CartLineError(DomainError):
    """Raised when a selection cannot become a cart line."""
    code = "CART_LINE_ERROR"


@dataclass(frozen=True)
class CartLine:
    line_id: str
    product_id: int
    variation_id: int | None
    name: str | None
    variation_label: str | None
    catalog_mode: str
    quantity: int
    unit_price_cents: int
    line_total_cents: int
    grade_mode: str | None = None
    custom_selection: CustomGradeSelection | None = None
    anomalies: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "line_id": self.line_id,
            "product_id": self.product_id,
            "variation_id": self.variation_id,
            "name": self.name,
            "variation_label": self.variation_label,
            "catalog_mode": self.catalog_mode,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "grade_mode": self.grade_mode,
            "custom_selection": self.custom_selection.to_dict() if self.custom_selection else None,
            "anomalies": list(self.anomalies),
        }


def minimum_quantity(product: ProductPricing, catalog_mode: str) -> int:
    """1 in retail; the product's wholesale minimum (at least 1) in wholesale."""
    if catalog_mode == CATALOG_WHOLESALE:
        return max(1, product.min_wholesale_qty or 1)
    return 1


def _slug(value: str | None) -> str:
    return re.sub(r"[^a-z0-9]+", "_", (value or "").strip().lower()).strip("_")


def line_identity(
    product_id: int,
    catalog_mode: str,
    variation: VariationPricing | None = None,
    grade_mode: str | None = None,
) -> str:
    """
    Deterministic line id: same product/mode/variation/grade mode -> same id.

    Variations are keyed by id when persisted, otherwise by normalised color and size.
    """
    parts = [str(product_id), catalog_mode]
    if variation is not None:
        if variation.variation_id is not None:
            parts.append(str(variation.variation_id))
        else:
            parts.append(_slug(variation.color))
            parts.append(_slug(variation.size))
    if grade_mode and grade_mode != GRADE_FULL:
        parts.append(grade_mode)
    return "-".join(parts)


def build_cart_line(
    product: ProductPricing,
    *,
    catalog_mode: str,
    quantity: int,
    variation: VariationPricing | None = None,
    grade_mode: str = GRADE_FULL,
    custom_selection: CustomGradeSelection | None = None,
    tiers: list[TierPricing] | None = None,
    effective_quantity: int | None = None,
    product_active: bool = True,
    variation_active: bool = True,
) -> CartLine:
    """
    Validate a selection and price it into a CartLine.

    RULES:
    - quantity must be positive; it is raised to the catalog minimum, never lowered
    - grade variations are always one bundle (quantity 1)
    - custom mixes must reach custom_mix_min_pairs when configured

    Raises:
        CartLineError: invalid selection, or the product cannot be priced
    """
    if catalog_mode not in CATALOG_MODES:
        raise CartLineError(
            f"Invalid catalog mode '{catalog_mode}'. Must be one of: {', '.join(CATALOG_MODES)}"
        )
    if grade_mode not in GRADE_MODES:
        raise CartLineError(
            f"Invalid grade mode '{grade_mode}'. Must be one of: {', '.join(GRADE_MODES)}"
        )
    if quantity is None or quantity < 1:
        raise CartLineError("Quantity must be positive", details={"quantity": quantity})
    if not product_active:
        raise CartLineError("Product is not available", details={"product_id": product.product_id})

    if variation is not None:
        if not variation_active:
            raise CartLineError("Variation is not available", details={"variation_id": variation.variation_id})
        if variation.product_id is not None and variation.product_id != product.product_id:
            raise CartLineError(
                "Variation does not belong to product",
                details={"product_id": product.product_id, "variation_id": variation.variation_id},
            )

    is_grade = variation is not None and variation.is_grade

    if is_grade:
        line_quantity = 1
        if grade_mode == GRADE_CUSTOM and custom_selection is not None:
            config = variation.flexible_grade_config
            min_pairs = config.custom_mix_min_pairs if config else None
            if min_pairs and custom_selection.total_pairs < min_pairs:
                raise CartLineError(
                    f"Custom mix needs at least {min_pairs} pairs",
                    details={"selected_pairs": custom_selection.total_pairs, "min_pairs": min_pairs},
                )
    else:
        line_quantity = max(quantity, minimum_quantity(product, catalog_mode))

    try:
        result = resolve_price(
            product,
            catalog_mode=catalog_mode,
            quantity=line_quantity,
            variation=variation,
            tiers=tiers,
            grade_mode=grade_mode if is_grade else GRADE_FULL,
            custom_selection=custom_selection if is_grade else None,
            effective_quantity=effective_quantity,
        )
    except PricingError as exc:
        raise CartLineError(exc.message, details=exc.details) from exc

    priced_grade_mode = result.grade_mode if is_grade else None
    return CartLine(
        line_id=line_identity(product.product_id, catalog_mode, variation, priced_grade_mode),
        product_id=product.product_id,
        variation_id=variation.variation_id if variation else None,
        name=product.name,
        variation_label=variation.label if variation else None,
        catalog_mode=catalog_mode,
        quantity=line_quantity,
        unit_price_cents=result.unit_price_cents,
        line_total_cents=result.line_total_cents,
        grade_mode=priced_grade_mode,
        custom_selection=custom_selection if priced_grade_mode == GRADE_CUSTOM else None,
        anomalies=result.anomalies,
    )


def line_snapshot(line: CartLine) -> dict:
    """Order-item dict persisted in Order.items."""
    snapshot = {
        "line_id": line.line_id,
        "product_id": line.product_id,
        "variation_id": line.variation_id,
        "name": line.name,
        "variation_label": line.variation_label,
        "quantity": line.quantity,
        "unit_price_cents": line.unit_price_cents,
        "line_total_cents": line.line_total_cents,
        "catalog_mode": line.catalog_mode,
        "grade_mode": line.grade_mode,
    }
    if line.custom_selection is not None:
        snapshot["custom_selection"] = line.custom_selection.to_dict()
    return snapshot


# -----------------------------------------------------------------------------
# Database-backed entry point (routes, order creation)
# -----------------------------------------------------------------------------

def load_pricing_inputs(
    store_id: int,
    product_id: int,
    variation_id: int | None = None,
) -> tuple[Product, ProductVariation | None, list[TierPricing]]:
    product = db.session.query(Product).filter_by(id=product_id, store_id=store_id).first()
    if not product:
        raise NotFoundError("Product not found", details={"product_id": product_id})

    variation = None
    if variation_id is not None:
        variation = db.session.query(ProductVariation).filter_by(id=variation_id).first()
        if not variation:
            raise NotFoundError("Variation not found", details={"variation_id": variation_id})

    tiers = [
        TierPricing.from_model(t)
        for t in db.session.query(ProductPriceTier).filter_by(product_id=product_id).all()
    ]
    return product, variation, tiers


def build_line_for_store(
    store_id: int,
    *,
    product_id: int,
    catalog_mode: str,
    quantity: int,
    variation_id: int | None = None,
    grade_mode: str = GRADE_FULL,
    custom_selection: list[tuple[str, int]] | None = None,
    cart_quantity: int | None = None,
) -> CartLine:
    """
    Load the product rows and build a line.

    cart_quantity is the aggregate cart quantity; it only matters when the
    store prices tiers on the cart total.
    """
    product, variation, tiers = load_pricing_inputs(store_id, product_id, variation_id)

    mode = tier_quantity_mode(store_id)
    effective_quantity = None
    if mode == "cart_total" and cart_quantity is not None:
        effective_quantity = effective_tier_quantity(quantity, mode=mode, cart_quantity=cart_quantity)

    return build_cart_line(
        ProductPricing.from_model(product),
        catalog_mode=catalog_mode,
        quantity=quantity,
        variation=VariationPricing.from_model(variation) if variation else None,
        grade_mode=grade_mode,
        custom_selection=CustomGradeSelection.from_pairs(custom_selection) if custom_selection else None,
        tiers=tiers,
        effective_quantity=effective_quantity,
        product_active=product.is_active,
        variation_active=variation.is_active if variation else True,
    )
