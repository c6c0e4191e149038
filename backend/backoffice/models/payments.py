from __future__ import annotations

from ..extensions import db
from backoffice.time_utils import to_utc_z
from .base import new_id, decimal_str


class PaymentAccount(db.Model):
    """
    Collection account (Zelle or similar) customers pay into.

    Accounts rotate: the selector picks the lowest priority, least recently
    used account whose running daily/monthly totals leave room for the
    amount.
    """
    __tablename__ = "payment_accounts"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    account_name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(30), nullable=True)
    bank_name = db.Column(db.String(200), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    for_products = db.Column(db.Boolean, nullable=False, default=True)
    for_remittances = db.Column(db.Boolean, nullable=False, default=True)
    priority = db.Column(db.Integer, nullable=False, default=0)

    daily_limit = db.Column(db.Numeric(12, 2), nullable=True)
    monthly_limit = db.Column(db.Numeric(12, 2), nullable=True)
    current_daily_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    current_monthly_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "account_name": self.account_name,
            "email": self.email,
            "phone": self.phone,
            "bank_name": self.bank_name,
            "is_active": self.is_active,
            "for_products": self.for_products,
            "for_remittances": self.for_remittances,
            "priority": self.priority,
            "daily_limit": decimal_str(self.daily_limit),
            "monthly_limit": decimal_str(self.monthly_limit),
            "current_daily_amount": decimal_str(self.current_daily_amount),
            "current_monthly_amount": decimal_str(self.current_monthly_amount),
            "last_used_at": to_utc_z(self.last_used_at),
        }


class PaymentAccountTransaction(db.Model):
    """Payment expected on / received by a collection account."""
    __tablename__ = "payment_account_transactions"
    __table_args__ = (
        db.Index("ix_payment_account_tx_reference", "reference_type", "reference_id"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    payment_account_id = db.Column(db.String(36), db.ForeignKey("payment_accounts.id"), nullable=False, index=True)
    reference_type = db.Column(db.String(16), nullable=False)  # order, remittance
    reference_id = db.Column(db.String(36), nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="pending")  # pending, validated, rejected
    notes = db.Column(db.Text, nullable=True)
    validated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    payment_account = db.relationship("PaymentAccount", backref=db.backref("transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_account_id": self.payment_account_id,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "amount": decimal_str(self.amount),
            "status": self.status,
            "notes": self.notes,
            "validated_at": to_utc_z(self.validated_at),
            "created_at": to_utc_z(self.created_at),
        }
