from __future__ import annotations

from ..extensions import db
from backoffice.time_utils import to_utc_z
from .base import new_id, decimal_str


class Order(db.Model):
    """
    Product / combo / remittance-bundle purchase.

    status and payment_status are separate lifecycles coupled by one rule:
    payment must be validated before the order leaves pending (except to
    cancelled). inventory_state records where the order's stock stands so
    that a hold is always either reduced or released, never both.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_order_number"),
        db.Index("ix_orders_user_created", "user_id", "created_at"),
        db.Index("ix_orders_status_payment", "status", "payment_status"),
        db.CheckConstraint("subtotal >= 0", name="ck_orders_subtotal_non_negative"),
        db.CheckConstraint("discount_amount >= 0", name="ck_orders_discount_non_negative"),
        db.CheckConstraint("shipping_cost >= 0", name="ck_orders_shipping_non_negative"),
        db.CheckConstraint("tax_amount >= 0", name="ck_orders_tax_non_negative"),
        db.CheckConstraint("total_amount >= 0", name="ck_orders_total_non_negative"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    order_number = db.Column(db.String(32), nullable=False)
    user_id = db.Column(db.String(36), nullable=False, index=True)
    order_type = db.Column(db.String(16), nullable=False, default="product")

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    payment_status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    inventory_state = db.Column(db.String(16), nullable=False, default="none")

    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    discount_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    shipping_cost = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    tax_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(12, 2), nullable=False)
    currency_code = db.Column(db.String(10), nullable=False, default="USD")

    shipping_address = db.Column(db.JSON, nullable=True)
    recipient_info = db.Column(db.JSON, nullable=True)
    delivery_instructions = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    offer_id = db.Column(db.String(36), nullable=True)

    payment_method = db.Column(db.String(32), nullable=False, default="zelle")
    payment_reference = db.Column(db.String(200), nullable=True)
    payment_proof_url = db.Column(db.Text, nullable=True)
    payment_proof_uploaded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    payment_account_id = db.Column(db.String(36), db.ForeignKey("payment_accounts.id"), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)
    delivery_proof_url = db.Column(db.Text, nullable=True)
    tracking_info = db.Column(db.String(255), nullable=True)

    validated_by = db.Column(db.String(36), nullable=True)
    validated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    processing_started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    dispatched_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by = db.Column(db.String(36), nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        order_by="OrderItem.position",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order {self.order_number} status={self.status} payment={self.payment_status}>"

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "user_id": self.user_id,
            "order_type": self.order_type,
            "status": self.status,
            "payment_status": self.payment_status,
            "inventory_state": self.inventory_state,
            "subtotal": decimal_str(self.subtotal),
            "discount_amount": decimal_str(self.discount_amount),
            "shipping_cost": decimal_str(self.shipping_cost),
            "tax_amount": decimal_str(self.tax_amount),
            "total_amount": decimal_str(self.total_amount),
            "currency_code": self.currency_code,
            "shipping_address": self.shipping_address,
            "recipient_info": self.recipient_info,
            "delivery_instructions": self.delivery_instructions,
            "notes": self.notes,
            "offer_id": self.offer_id,
            "payment_method": self.payment_method,
            "payment_reference": self.payment_reference,
            "payment_proof_url": self.payment_proof_url,
            "payment_proof_uploaded_at": to_utc_z(self.payment_proof_uploaded_at),
            "payment_account_id": self.payment_account_id,
            "rejection_reason": self.rejection_reason,
            "delivery_proof_url": self.delivery_proof_url,
            "tracking_info": self.tracking_info,
            "validated_by": self.validated_by,
            "validated_at": to_utc_z(self.validated_at),
            "processing_started_at": to_utc_z(self.processing_started_at),
            "dispatched_at": to_utc_z(self.dispatched_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "completed_at": to_utc_z(self.completed_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancelled_by": self.cancelled_by,
            "cancellation_reason": self.cancellation_reason,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """Line on an order (product, combo, or remittance)."""
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    order_id = db.Column(db.String(36), db.ForeignKey("orders.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)
    item_type = db.Column(db.String(16), nullable=False)
    item_id = db.Column(db.String(36), nullable=True)
    item_name_es = db.Column(db.String(255), nullable=True)
    item_name_en = db.Column(db.String(255), nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    total_price = db.Column(db.Numeric(12, 2), nullable=False)
    inventory_id = db.Column(db.String(36), db.ForeignKey("inventory.id"), nullable=True, index=True)
    remittance_amount = db.Column(db.Numeric(12, 2), nullable=True)
    exchange_rate = db.Column(db.Numeric(12, 4), nullable=True)
    recipient_data = db.Column(db.JSON, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "position": self.position,
            "item_type": self.item_type,
            "item_id": self.item_id,
            "item_name_es": self.item_name_es,
            "item_name_en": self.item_name_en,
            "quantity": self.quantity,
            "unit_price": decimal_str(self.unit_price),
            "total_price": decimal_str(self.total_price),
            "inventory_id": self.inventory_id,
            "remittance_amount": decimal_str(self.remittance_amount),
            "exchange_rate": decimal_str(self.exchange_rate),
            "recipient_data": self.recipient_data,
        }


class OrderStatusHistory(db.Model):
    """Append-only record of order status/payment-status changes."""
    __tablename__ = "order_status_history"
    __table_args__ = (
        db.Index("ix_order_status_history_order_created", "order_id", "created_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    order_id = db.Column(db.String(36), db.ForeignKey("orders.id"), nullable=False)
    previous_status = db.Column(db.String(16), nullable=True)
    new_status = db.Column(db.String(16), nullable=False)
    previous_payment_status = db.Column(db.String(16), nullable=True)
    new_payment_status = db.Column(db.String(16), nullable=True)
    changed_by = db.Column(db.String(36), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "previous_payment_status": self.previous_payment_status,
            "new_payment_status": self.new_payment_status,
            "changed_by": self.changed_by,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
