from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z


class Product(db.Model):
    """
    Product master data with its stock counters.

    MULTI-TENANT: Products are scoped to stores via store_id.

    PRICES: retail_price_cents and wholesale_price_cents are independently
    optional. The pricing layer falls back from one to the other so a zero or
    missing field never zeroes out a transaction.

    STOCK COUNTERS (written only by stock_ledger_service):
    - stock: on-hand quantity
    - reserved_stock: quantity held by open order reservations
    - available = stock - reserved_stock
    Invariant: reserved_stock <= stock unless allow_negative_stock.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("store_id", "sku", name="uq_products_store_sku"),
        db.Index("ix_products_store_active", "store_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # Authoritative storage in cents (frontend may only format for display)
    retail_price_cents = db.Column(db.Integer, nullable=True)
    wholesale_price_cents = db.Column(db.Integer, nullable=True)
    min_wholesale_qty = db.Column(db.Integer, nullable=False, default=1)

    stock = db.Column(db.Integer, nullable=False, default=0)
    reserved_stock = db.Column(db.Integer, nullable=False, default=0)
    allow_negative_stock = db.Column(db.Boolean, nullable=False, default=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    store = db.relationship("Store", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def available_stock(self) -> int:
        return (self.stock or 0) - (self.reserved_stock or 0)

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r} store_id={self.store_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "retail_price_cents": self.retail_price_cents,
            "wholesale_price_cents": self.wholesale_price_cents,
            "min_wholesale_qty": self.min_wholesale_qty,
            "stock": self.stock,
            "reserved_stock": self.reserved_stock,
            "available_stock": self.available_stock,
            "allow_negative_stock": self.allow_negative_stock,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductVariation(db.Model):
    """
    Color/size variation of a product with its own stock counters.

    GRADE VARIATIONS: is_grade=True means the variation is sold as a bundle
    across grade_sizes, with grade_pairs[i] units of grade_sizes[i].
    flexible_grade_config optionally enables half-grade and custom-mix purchases:
        {
            "allow_half_grade": bool,
            "half_grade_discount_percentage": number (0-100),
            "allow_custom_mix": bool,
            "custom_mix_price_adjustment_cents": int,
            "custom_mix_min_pairs": int
        }

    allow_negative_stock is inherited from the parent product.
    """
    __tablename__ = "product_variations"
    __table_args__ = (
        db.Index("ix_product_variations_product_active", "product_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    color = db.Column(db.String(64), nullable=True)
    size = db.Column(db.String(32), nullable=True)
    sku = db.Column(db.String(64), nullable=True)

    stock = db.Column(db.Integer, nullable=False, default=0)
    reserved_stock = db.Column(db.Integer, nullable=False, default=0)

    # Signed offset applied to the resolved base/tier price
    price_adjustment_cents = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    is_grade = db.Column(db.Boolean, nullable=False, default=False)
    grade_name = db.Column(db.String(120), nullable=True)
    grade_sizes = db.Column(db.JSON, nullable=True)
    grade_pairs = db.Column(db.JSON, nullable=True)
    flexible_grade_config = db.Column(db.JSON, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("variations", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def available_stock(self) -> int:
        return (self.stock or 0) - (self.reserved_stock or 0)

    @property
    def label(self) -> str:
        if self.is_grade and self.grade_name:
            return self.grade_name
        parts = [p for p in (self.color, self.size) if p]
        return " / ".join(parts)

    def __repr__(self) -> str:
        return f"<ProductVariation id={self.id} product_id={self.product_id} label={self.label!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "color": self.color,
            "size": self.size,
            "sku": self.sku,
            "label": self.label,
            "stock": self.stock,
            "reserved_stock": self.reserved_stock,
            "available_stock": self.available_stock,
            "price_adjustment_cents": self.price_adjustment_cents,
            "is_active": self.is_active,
            "is_grade": self.is_grade,
            "grade_name": self.grade_name,
            "grade_sizes": self.grade_sizes,
            "grade_pairs": self.grade_pairs,
            "flexible_grade_config": self.flexible_grade_config,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
        }


class ProductPriceTier(db.Model):
    """
    Quantity threshold at which an absolute unit price applies.

    tier_order 1 is the retail tier; gradual_wholesale tiers follow with
    strictly increasing min_quantity (checked by pricing_service.validate_price_tiers).
    """
    __tablename__ = "product_price_tiers"
    __table_args__ = (
        db.UniqueConstraint("product_id", "tier_order", name="uq_price_tiers_product_order"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    tier_order = db.Column(db.Integer, nullable=False)
    tier_type = db.Column(db.String(32), nullable=False)  # retail, gradual_wholesale
    tier_name = db.Column(db.String(64), nullable=True)
    min_quantity = db.Column(db.Integer, nullable=False, default=1)
    price_cents = db.Column(db.Integer, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("price_tiers", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "tier_order": self.tier_order,
            "tier_type": self.tier_type,
            "tier_name": self.tier_name,
            "min_quantity": self.min_quantity,
            "price_cents": self.price_cents,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class StockMovement(db.Model):
    """
    Append-only stock ledger entry.

    Written only by stock_ledger_service; never updated or deleted.
    movement_type: reservation | release | sale | adjustment
    previous_stock/new_stock snapshot the on-hand counter around the movement.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_order_entity", "order_id", "product_id", "variation_id"),
        db.Index("ix_stock_movements_type_expires", "movement_type", "expires_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    variation_id = db.Column(db.Integer, db.ForeignKey("product_variations.id"), nullable=True, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)

    movement_type = db.Column(db.String(16), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    previous_stock = db.Column(db.Integer, nullable=True)
    new_stock = db.Column(db.Integer, nullable=True)

    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    note = db.Column(db.String(255), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        index=True,
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "product_id": self.product_id,
            "variation_id": self.variation_id,
            "order_id": self.order_id,
            "movement_type": self.movement_type,
            "quantity": self.quantity,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "expires_at": to_utc_z(self.expires_at),
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
        }
