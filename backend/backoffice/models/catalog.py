from __future__ import annotations

from ..extensions import db
from backoffice.time_utils import to_utc_z
from .base import new_id, decimal_str


class Product(db.Model):
    """Sellable product. Stock lives in InventoryRecord, never on the product."""
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_active_name", "is_active", "name_es"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    sku = db.Column(db.String(64), nullable=True, unique=True)
    name_es = db.Column(db.String(255), nullable=False)
    name_en = db.Column(db.String(255), nullable=True)
    base_price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name_es!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name_es": self.name_es,
            "name_en": self.name_en,
            "base_price": decimal_str(self.base_price),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Combo(db.Model):
    """Bundle of products sold as a single order item."""
    __tablename__ = "combos"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name_es = db.Column(db.String(255), nullable=False)
    name_en = db.Column(db.String(255), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    items = db.relationship("ComboItem", backref="combo", lazy=True, cascade="all, delete-orphan")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name_es": self.name_es,
            "name_en": self.name_en,
            "is_active": self.is_active,
            "items": [i.to_dict() for i in self.items],
        }


class ComboItem(db.Model):
    """Constituent product of a combo; quantity is per one combo unit."""
    __tablename__ = "combo_items"
    __table_args__ = (
        db.UniqueConstraint("combo_id", "product_id", name="uq_combo_items_combo_product"),
        db.CheckConstraint("quantity > 0", name="ck_combo_items_quantity_positive"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    combo_id = db.Column(db.String(36), db.ForeignKey("combos.id"), nullable=False, index=True)
    product_id = db.Column(db.String(36), db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "combo_id": self.combo_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
        }


class InventoryRecord(db.Model):
    """
    Stock for one product.

    quantity is the physical count; reserved_quantity is held against
    unconfirmed orders. Availability is always derived, never stored.
    """
    __tablename__ = "inventory"
    __table_args__ = (
        db.CheckConstraint("quantity >= 0", name="ck_inventory_quantity_non_negative"),
        db.CheckConstraint("reserved_quantity >= 0", name="ck_inventory_reserved_non_negative"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    product_id = db.Column(db.String(36), db.ForeignKey("products.id"), nullable=False, unique=True)
    quantity = db.Column(db.Integer, nullable=False, default=0)
    reserved_quantity = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product", backref=db.backref("inventory", uselist=False, lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def available_quantity(self) -> int:
        return (self.quantity or 0) - (self.reserved_quantity or 0)

    def __repr__(self) -> str:
        return (
            f"<InventoryRecord id={self.id} product_id={self.product_id} "
            f"quantity={self.quantity} reserved={self.reserved_quantity}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "reserved_quantity": self.reserved_quantity,
            "available_quantity": self.available_quantity,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryMovement(db.Model):
    """Append-only audit of inventory changes (reserved, released, sold)."""
    __tablename__ = "inventory_movements"
    __table_args__ = (
        db.Index("ix_inventory_movements_inventory_created", "inventory_id", "created_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    inventory_id = db.Column(db.String(36), db.ForeignKey("inventory.id"), nullable=False, index=True)
    movement_type = db.Column(db.String(16), nullable=False, index=True)
    quantity_change = db.Column(db.Integer, nullable=False)
    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.String(36), nullable=True, index=True)
    notes = db.Column(db.String(255), nullable=True)
    created_by = db.Column(db.String(36), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "inventory_id": self.inventory_id,
            "movement_type": self.movement_type,
            "quantity_change": self.quantity_change,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }
