from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class StockKeepingUnit(db.Model):
    """
    Sellable variant (size/color combination) of a catalog product.

    Product records themselves live in the catalog service; only the
    reference is kept here.

    INVARIANT: stock_quantity == SUM(signed StockMovement quantities) and is
    never negative. Only inventory_service.adjust_stock mutates it.
    """
    __tablename__ = "stock_keeping_units"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_skus_sku"),
        db.Index("ix_skus_product", "product_id"),
        db.CheckConstraint("stock_quantity >= 0", name="ck_skus_stock_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, nullable=True)

    sku = db.Column(db.String(64), nullable=False)
    size = db.Column(db.String(32), nullable=True)
    color = db.Column(db.String(64), nullable=True)
    description = db.Column(db.String(255), nullable=True)

    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    unit_price_cents = db.Column(db.Integer, nullable=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<StockKeepingUnit id={self.id} sku={self.sku!r} stock={self.stock_quantity}>"

    @property
    def label(self) -> str:
        parts = [self.description or self.sku]
        variant = " / ".join(p for p in (self.size, self.color) if p)
        if variant:
            parts.append(f"({variant})")
        return " ".join(parts)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "sku": self.sku,
            "size": self.size,
            "color": self.color,
            "description": self.description,
            "stock_quantity": self.stock_quantity,
            "unit_price_cents": self.unit_price_cents,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only journal of stock changes.

    DIRECTIONS:
    - IN: stock added (initial load, receipts, invoice void)
    - OUT: stock removed (invoice issuance)

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_sku_occurred", "sku_id", "occurred_at"),
        db.CheckConstraint("quantity > 0", name="ck_stock_movements_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku_id = db.Column(db.Integer, db.ForeignKey("stock_keeping_units.id"), nullable=False, index=True)

    direction = db.Column(db.String(8), nullable=False)  # IN, OUT
    quantity = db.Column(db.Integer, nullable=False)
    stock_after = db.Column(db.Integer, nullable=False)

    description = db.Column(db.String(255), nullable=True)
    document_reference = db.Column(db.String(64), nullable=True, index=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    sku = db.relationship("StockKeepingUnit", backref=db.backref("movements", lazy=True))

    @property
    def signed_quantity(self) -> int:
        return self.quantity if self.direction == "IN" else -self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku_id": self.sku_id,
            "direction": self.direction,
            "quantity": self.quantity,
            "stock_after": self.stock_after,
            "description": self.description,
            "document_reference": self.document_reference,
            "occurred_at": to_utc_z(self.occurred_at),
        }
