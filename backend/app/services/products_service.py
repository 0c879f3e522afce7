# backend/app/services/products_service.py
"""
Catalog Service

Products, variations and price tiers per store. Stock counters are never set
here: new rows start at zero and change through stock_ledger_service.adjust_stock.
"""
from __future__ import annotations

from ..errors import NotFoundError
from ..extensions import db
from ..models import Product, ProductPriceTier, ProductVariation
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    ValidationError,
    enforce_rules_product,
    enforce_rules_variation,
    validate_payload,
)
from .concurrency import lock_for_update, run_with_retry
from .pricing_service import PricingError, TierPricing, validate_price_tiers
from .store_service import require_active_store

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "sku", "name", "description", "retail_price_cents", "wholesale_price_cents",
        "min_wholesale_qty", "allow_negative_stock", "is_active",
    },
    required_on_create={"sku", "name"},
)

VARIATION_POLICY = ModelValidationPolicy(
    writable_fields={
        "color", "size", "sku", "price_adjustment_cents", "is_active", "is_grade",
        "grade_name", "grade_sizes", "grade_pairs", "flexible_grade_config",
    },
)

TIER_POLICY = ModelValidationPolicy(
    writable_fields={"tier_order", "tier_type", "tier_name", "min_quantity", "price_cents", "is_active"},
    required_on_create={"tier_order", "tier_type", "min_quantity", "price_cents"},
)


def _require_product(product_id: int, *, lock: bool = False) -> Product:
    q = db.session.query(Product).filter_by(id=product_id)
    if lock:
        q = lock_for_update(q)
    product = q.first()
    if product is None:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    return product


def list_products(store_id: int, *, include_inactive: bool = False) -> list[Product]:
    q = db.session.query(Product).filter_by(store_id=store_id)
    if not include_inactive:
        q = q.filter(Product.is_active.is_(True))
    return q.order_by(Product.name.asc(), Product.id.asc()).all()


def get_product_detail(product_id: int) -> dict:
    product = _require_product(product_id)
    data = product.to_dict()
    data["variations"] = [
        v.to_dict()
        for v in db.session.query(ProductVariation).filter_by(product_id=product_id).order_by(ProductVariation.id.asc())
    ]
    data["price_tiers"] = [
        t.to_dict()
        for t in db.session.query(ProductPriceTier)
        .filter_by(product_id=product_id)
        .order_by(ProductPriceTier.tier_order.asc())
    ]
    return data


def create_product(store_id: int, payload: dict) -> Product:
    """
    Raises:
        ValidationError: payload problems
        ConflictError: SKU already exists in the store
    """
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    enforce_rules_product(patch)

    def _op():
        require_active_store(store_id)
        existing = db.session.query(Product).filter_by(store_id=store_id, sku=patch["sku"]).first()
        if existing:
            raise ConflictError("SKU already exists for this store.", details={"sku": patch["sku"]})

        product = Product(store_id=store_id, stock=0, reserved_stock=0, **patch)
        db.session.add(product)
        db.session.commit()
        return product

    return run_with_retry(_op)


def update_product(product_id: int, payload: dict) -> Product:
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
    enforce_rules_product(patch)

    def _op():
        product = _require_product(product_id, lock=True)
        if "sku" in patch and patch["sku"] != product.sku:
            clash = db.session.query(Product).filter_by(store_id=product.store_id, sku=patch["sku"]).first()
            if clash:
                raise ConflictError("SKU already exists for this store.", details={"sku": patch["sku"]})
        for key, value in patch.items():
            setattr(product, key, value)
        db.session.commit()
        return product

    return run_with_retry(_op)


def create_variation(product_id: int, payload: dict) -> ProductVariation:
    patch = validate_payload(model=ProductVariation, payload=payload, policy=VARIATION_POLICY, partial=False)
    if patch.get("is_grade"):
        patch["grade_sizes"] = [str(s) for s in patch.get("grade_sizes") or []]
    enforce_rules_variation(patch)
    if patch.get("is_grade"):
        patch["grade_pairs"] = [int(p) for p in patch["grade_pairs"]]
    elif not patch.get("color") and not patch.get("size"):
        raise ValidationError("Variation needs a color or a size")

    def _op():
        _require_product(product_id)
        variation = ProductVariation(product_id=product_id, stock=0, reserved_stock=0, **patch)
        db.session.add(variation)
        db.session.commit()
        return variation

    return run_with_retry(_op)


def replace_price_tiers(product_id: int, tiers_payload: list) -> list[ProductPriceTier]:
    """
    Replace the whole tier table of a product.

    The new table is checked as a unit (one active retail tier, strictly
    increasing gradual_wholesale thresholds) before anything is written.
    """
    if not isinstance(tiers_payload, list) or not tiers_payload:
        raise ValidationError("tiers must be a non-empty list")

    patches = []
    for raw in tiers_payload:
        patch = validate_payload(model=ProductPriceTier, payload=raw, policy=TIER_POLICY, partial=False)
        patch.setdefault("is_active", True)
        patches.append(patch)

    try:
        validate_price_tiers([
            TierPricing(
                tier_order=p["tier_order"],
                tier_type=p["tier_type"],
                min_quantity=p["min_quantity"],
                price_cents=p["price_cents"],
                is_active=p["is_active"],
                tier_name=p.get("tier_name"),
            )
            for p in patches
        ])
    except PricingError as exc:
        raise ValidationError(exc.message, details=exc.details) from exc

    def _op():
        _require_product(product_id, lock=True)
        db.session.query(ProductPriceTier).filter_by(product_id=product_id).delete(synchronize_session=False)
        db.session.flush()
        rows = [ProductPriceTier(product_id=product_id, **p) for p in patches]
        db.session.add_all(rows)
        db.session.commit()
        return rows

    return run_with_retry(_op)
