from __future__ import annotations

from ..extensions import db
from backoffice.time_utils import to_utc_z
from .base import new_id, decimal_str


class RemittanceType(db.Model):
    """
    Admin-configured remittance template.

    exchange_rate: 1 unit of currency_code = X units of delivery_currency.
    A NULL or zero rate means "use the configured exchange_rates table".
    max_amount NULL means no upper limit.
    """
    __tablename__ = "remittance_types"
    __table_args__ = (
        db.Index("ix_remittance_types_active_order", "is_active", "display_order"),
        db.CheckConstraint(
            "commission_percentage >= 0 AND commission_percentage < 100",
            name="ck_remittance_types_commission_pct",
        ),
        db.CheckConstraint("commission_fixed >= 0", name="ck_remittance_types_commission_fixed"),
        db.CheckConstraint("min_amount > 0", name="ck_remittance_types_min_positive"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(200), nullable=False)
    currency_code = db.Column(db.String(10), nullable=False, index=True)
    delivery_currency = db.Column(db.String(10), nullable=False)

    exchange_rate = db.Column(db.Numeric(12, 4), nullable=True)
    commission_percentage = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    commission_fixed = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    min_amount = db.Column(db.Numeric(12, 2), nullable=False)
    max_amount = db.Column(db.Numeric(12, 2), nullable=True)

    delivery_method = db.Column(db.String(32), nullable=False, default="cash")
    max_delivery_days = db.Column(db.Integer, nullable=False, default=3)
    warning_days = db.Column(db.Integer, nullable=False, default=2)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    display_order = db.Column(db.Integer, nullable=False, default=0)
    description = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.String(36), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<RemittanceType {self.name!r} {self.currency_code}->{self.delivery_currency}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "currency_code": self.currency_code,
            "delivery_currency": self.delivery_currency,
            "exchange_rate": decimal_str(self.exchange_rate),
            "commission_percentage": decimal_str(self.commission_percentage),
            "commission_fixed": decimal_str(self.commission_fixed),
            "min_amount": decimal_str(self.min_amount),
            "max_amount": decimal_str(self.max_amount),
            "delivery_method": self.delivery_method,
            "max_delivery_days": self.max_delivery_days,
            "warning_days": self.warning_days,
            "is_active": self.is_active,
            "display_order": self.display_order,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Remittance(db.Model):
    """
    Send-money order. Monetary fields are a snapshot of the type at creation
    (or at the last admin recalculation); amount_to_deliver is always derived.
    """
    __tablename__ = "remittances"
    __table_args__ = (
        db.UniqueConstraint("remittance_number", name="uq_remittances_number"),
        db.Index("ix_remittances_user_created", "user_id", "created_at"),
        db.Index("ix_remittances_status_created", "status", "created_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    remittance_number = db.Column(db.String(50), nullable=False)
    user_id = db.Column(db.String(36), nullable=False, index=True)
    remittance_type_id = db.Column(db.String(36), db.ForeignKey("remittance_types.id"), nullable=False, index=True)

    amount_sent = db.Column(db.Numeric(12, 2), nullable=False)
    exchange_rate = db.Column(db.Numeric(12, 4), nullable=False)
    rate_source = db.Column(db.String(16), nullable=False, default="type")
    commission_percentage = db.Column(db.Numeric(5, 2), nullable=False)
    commission_fixed = db.Column(db.Numeric(10, 2), nullable=False)
    commission_total = db.Column(db.Numeric(10, 2), nullable=False)
    offer_discount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    amount_to_deliver = db.Column(db.Numeric(14, 2), nullable=False)
    currency_sent = db.Column(db.String(10), nullable=False)
    currency_delivered = db.Column(db.String(10), nullable=False)
    delivery_method = db.Column(db.String(32), nullable=False, default="cash")

    recipient_id = db.Column(db.String(36), db.ForeignKey("recipients.id"), nullable=True)
    recipient_bank_account_id = db.Column(db.String(36), db.ForeignKey("recipient_bank_accounts.id"), nullable=True)
    recipient_name = db.Column(db.String(200), nullable=False)
    recipient_phone = db.Column(db.String(30), nullable=False)
    recipient_id_number = db.Column(db.String(50), nullable=True)
    recipient_address = db.Column(db.Text, nullable=True)
    recipient_province = db.Column(db.String(100), nullable=True)
    recipient_municipality = db.Column(db.String(100), nullable=True)
    delivery_notes = db.Column(db.Text, nullable=True)
    offer_id = db.Column(db.String(36), nullable=True)

    status = db.Column(db.String(32), nullable=False, default="payment_pending", index=True)

    payment_account_id = db.Column(db.String(36), db.ForeignKey("payment_accounts.id"), nullable=True)
    payment_proof_url = db.Column(db.Text, nullable=True)
    payment_reference = db.Column(db.String(200), nullable=True)
    payment_proof_notes = db.Column(db.Text, nullable=True)
    payment_proof_uploaded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    payment_validated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    payment_validated_by = db.Column(db.String(36), nullable=True)
    payment_validation_notes = db.Column(db.Text, nullable=True)
    payment_rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    payment_rejection_reason = db.Column(db.Text, nullable=True)
    max_delivery_date = db.Column(db.DateTime(timezone=True), nullable=True)

    processing_started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    processing_notes = db.Column(db.Text, nullable=True)

    delivery_proof_url = db.Column(db.Text, nullable=True)
    delivery_notes_admin = db.Column(db.Text, nullable=True)
    delivered_to_name = db.Column(db.String(200), nullable=True)
    delivered_to_id = db.Column(db.String(50), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_by = db.Column(db.String(36), nullable=True)

    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completion_notes = db.Column(db.Text, nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by = db.Column(db.String(36), nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)
    recalculated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    remittance_type = db.relationship("RemittanceType", backref=db.backref("remittances", lazy=True))
    bank_transfers = db.relationship("BankTransfer", backref="remittance", lazy=True)
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Remittance {self.remittance_number} status={self.status}>"

    def to_dict(self, include_type: bool = False) -> dict:
        data = {
            "id": self.id,
            "remittance_number": self.remittance_number,
            "user_id": self.user_id,
            "remittance_type_id": self.remittance_type_id,
            "amount_sent": decimal_str(self.amount_sent),
            "exchange_rate": decimal_str(self.exchange_rate),
            "rate_source": self.rate_source,
            "commission_percentage": decimal_str(self.commission_percentage),
            "commission_fixed": decimal_str(self.commission_fixed),
            "commission_total": decimal_str(self.commission_total),
            "offer_discount": decimal_str(self.offer_discount),
            "amount_to_deliver": decimal_str(self.amount_to_deliver),
            "currency_sent": self.currency_sent,
            "currency_delivered": self.currency_delivered,
            "delivery_method": self.delivery_method,
            "recipient_id": self.recipient_id,
            "recipient_bank_account_id": self.recipient_bank_account_id,
            "recipient_name": self.recipient_name,
            "recipient_phone": self.recipient_phone,
            "recipient_id_number": self.recipient_id_number,
            "recipient_address": self.recipient_address,
            "recipient_province": self.recipient_province,
            "recipient_municipality": self.recipient_municipality,
            "delivery_notes": self.delivery_notes,
            "offer_id": self.offer_id,
            "status": self.status,
            "payment_account_id": self.payment_account_id,
            "payment_proof_url": self.payment_proof_url,
            "payment_reference": self.payment_reference,
            "payment_proof_notes": self.payment_proof_notes,
            "payment_proof_uploaded_at": to_utc_z(self.payment_proof_uploaded_at),
            "payment_validated_at": to_utc_z(self.payment_validated_at),
            "payment_validated_by": self.payment_validated_by,
            "payment_validation_notes": self.payment_validation_notes,
            "payment_rejected_at": to_utc_z(self.payment_rejected_at),
            "payment_rejection_reason": self.payment_rejection_reason,
            "max_delivery_date": to_utc_z(self.max_delivery_date),
            "processing_started_at": to_utc_z(self.processing_started_at),
            "processing_notes": self.processing_notes,
            "delivery_proof_url": self.delivery_proof_url,
            "delivery_notes_admin": self.delivery_notes_admin,
            "delivered_to_name": self.delivered_to_name,
            "delivered_to_id": self.delivered_to_id,
            "delivered_at": to_utc_z(self.delivered_at),
            "delivered_by": self.delivered_by,
            "completed_at": to_utc_z(self.completed_at),
            "completion_notes": self.completion_notes,
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancelled_by": self.cancelled_by,
            "cancellation_reason": self.cancellation_reason,
            "recalculated_at": to_utc_z(self.recalculated_at),
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_type and self.remittance_type is not None:
            data["remittance_type"] = self.remittance_type.to_dict()
        return data


class RemittanceStatusHistory(db.Model):
    __tablename__ = "remittance_status_history"
    __table_args__ = (
        db.Index("ix_remittance_history_remittance_created", "remittance_id", "created_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    remittance_id = db.Column(db.String(36), db.ForeignKey("remittances.id"), nullable=False)
    old_status = db.Column(db.String(32), nullable=True)
    new_status = db.Column(db.String(32), nullable=False)
    changed_by = db.Column(db.String(36), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "remittance_id": self.remittance_id,
            "old_status": self.old_status,
            "new_status": self.new_status,
            "changed_by": self.changed_by,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class BankTransfer(db.Model):
    """
    Non-cash delivery sub-record. Informational: its status never gates the
    remittance's own lifecycle.
    """
    __tablename__ = "remittance_bank_transfers"
    __table_args__ = (
        db.CheckConstraint(
            "amount_transferred IS NULL OR amount_transferred > 0",
            name="ck_bank_transfers_amount_positive",
        ),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    remittance_id = db.Column(db.String(36), db.ForeignKey("remittances.id"), nullable=False, index=True)
    recipient_bank_account_id = db.Column(
        db.String(36), db.ForeignKey("recipient_bank_accounts.id"), nullable=False, index=True
    )
    status = db.Column(db.String(16), nullable=False, default="pending")
    processed_by = db.Column(db.String(36), nullable=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    amount_transferred = db.Column(db.Numeric(14, 2), nullable=True)
    error_message = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "remittance_id": self.remittance_id,
            "recipient_bank_account_id": self.recipient_bank_account_id,
            "status": self.status,
            "processed_by": self.processed_by,
            "processed_at": to_utc_z(self.processed_at),
            "amount_transferred": decimal_str(self.amount_transferred),
            "error_message": self.error_message,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Recipient(db.Model):
    """Saved remittance recipient owned by a user."""
    __tablename__ = "recipients"
    __table_args__ = (
        db.Index("ix_recipients_user_active", "user_id", "is_active"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    user_id = db.Column(db.String(36), nullable=False)
    full_name = db.Column(db.String(200), nullable=False)
    phone = db.Column(db.String(30), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    id_number = db.Column(db.String(50), nullable=True)
    address = db.Column(db.Text, nullable=True)
    province = db.Column(db.String(100), nullable=True)
    municipality = db.Column(db.String(100), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    is_favorite = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    bank_accounts = db.relationship("RecipientBankAccount", backref="recipient", lazy=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "full_name": self.full_name,
            "phone": self.phone,
            "email": self.email,
            "id_number": self.id_number,
            "address": self.address,
            "province": self.province,
            "municipality": self.municipality,
            "notes": self.notes,
            "is_favorite": self.is_favorite,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class RecipientBankAccount(db.Model):
    __tablename__ = "recipient_bank_accounts"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    recipient_id = db.Column(db.String(36), db.ForeignKey("recipients.id"), nullable=False, index=True)
    bank_name = db.Column(db.String(200), nullable=False)
    account_holder_name = db.Column(db.String(200), nullable=False)
    account_number = db.Column(db.String(64), nullable=False)
    currency_code = db.Column(db.String(10), nullable=False)
    account_type = db.Column(db.String(32), nullable=True)
    is_default = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def account_number_last4(self) -> str:
        return (self.account_number or "")[-4:]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "recipient_id": self.recipient_id,
            "bank_name": self.bank_name,
            "account_holder_name": self.account_holder_name,
            "account_number_masked": f"****{self.account_number_last4}",
            "currency_code": self.currency_code,
            "account_type": self.account_type,
            "is_default": self.is_default,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class ExchangeRate(db.Model):
    """Configured exchange rates; the newest active row per pair wins."""
    __tablename__ = "exchange_rates"
    __table_args__ = (
        db.Index("ix_exchange_rates_pair_effective", "from_currency", "to_currency", "effective_date"),
        db.CheckConstraint("rate > 0", name="ck_exchange_rates_rate_positive"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    from_currency = db.Column(db.String(10), nullable=False)
    to_currency = db.Column(db.String(10), nullable=False)
    rate = db.Column(db.Numeric(12, 4), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    effective_date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "from_currency": self.from_currency,
            "to_currency": self.to_currency,
            "rate": decimal_str(self.rate),
            "is_active": self.is_active,
            "effective_date": to_utc_z(self.effective_date),
        }
