# Overview: Remittance lifecycle (quote, create, payment review, processing, delivery, cancel) and bank-transfer tracking.

"""
Remittance State Machine

================================================================================
PURPOSE: Move remittances through a linear pipeline with one rework loop
================================================================================

STATUS (see transitions.REMITTANCE_STATUS_TRANSITIONS):
    payment_pending -> payment_proof_uploaded -> payment_validated
        -> processing -> delivered -> completed
    payment_proof_uploaded -> payment_rejected -> payment_pending (re-upload)
    cancellable from payment_pending, payment_proof_uploaded,
    payment_validated, payment_rejected, processing

RULES:
1. Monetary fields are a snapshot taken at creation:
       commission_total  = effective commission (after any offer discount)
       amount_to_deliver = (amount_sent - commission_total) * exchange_rate
   rate_source records where the rate came from (type | configured |
   fallback). Only recalculate_remittance_at_current_rate changes them, and
   only while payment is still open (payment_pending, payment_rejected).
2. Confirming delivery requires a delivery proof: uploaded now, passed as a
   URL, or already on the record.
3. Non-cash delivery (transfer, card) needs a recipient bank account; a
   BankTransfer row is created in the same transaction. Its status is
   informational and never gates the remittance.
4. Every operation is one transaction on the locked remittance row.
   History, activity log and payment-account bookkeeping are best effort;
   notifications go out after commit.
================================================================================
"""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

from flask import current_app
from sqlalchemy import func, or_

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import BankTransfer, Remittance, RemittanceStatusHistory, RemittanceType
from ..time_utils import coerce_datetime, utcnow
from ..validation import require_choice, require_positive_decimal, require_text, require_uuid, to_decimal
from .auth_service import require_owner
from .calculator import calculate_delivery, resolve_exchange_rate
from .collaborators import get_collaborator
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_document_number
from .payment_account_service import assign_account, sync_reference_rejected, sync_reference_validated
from .recipient_service import get_bank_account, get_recipient
from .remittance_type_service import BANK_DELIVERY_METHODS
from .side_effects import best_effort, dispatch_notification, isolated_write
from .storage_service import store_proof
from .transitions import (
    BANK_TRANSFER_TRANSITIONS,
    CANCELLABLE_REMITTANCE_STATUSES,
    REMITTANCE_STATUS_TRANSITIONS,
)


RECALCULABLE_STATUSES = frozenset({"payment_pending", "payment_rejected"})
ALERT_STATUSES = ("payment_validated", "processing")
ALERT_THRESHOLD_HOURS = 24
MAX_PAGE_SIZE = 500


# =============================================================================
# NUMBERS AND QUOTES
# =============================================================================

def generate_remittance_number() -> str:
    """REM-YYYY-NNNN from the per-year sequence; runs in the caller's transaction."""
    year = str(utcnow().year)
    return next_document_number(document_type="REM", period=year, prefix="REM")


def _load_type(remittance_type_id: str, *, active_only: bool) -> RemittanceType:
    remittance_type_id = require_uuid(remittance_type_id, "remittance_type_id")
    q = db.session.query(RemittanceType).filter(RemittanceType.id == remittance_type_id)
    if active_only:
        q = q.filter(RemittanceType.is_active.is_(True))
    rtype = q.first()
    if rtype is None:
        raise NotFoundError("Remittance type not found or inactive", field="remittance_type_id")
    return rtype


def _check_amount_limits(rtype: RemittanceType, amount: Decimal) -> None:
    if amount < Decimal(rtype.min_amount):
        raise ValidationError(
            f"Minimum amount: {rtype.min_amount} {rtype.currency_code}",
            code="AMOUNT_OUT_OF_RANGE",
            field="amount",
            context={"min_amount": str(rtype.min_amount), "amount": str(amount)},
        )
    if rtype.max_amount is not None and amount > Decimal(rtype.max_amount):
        raise ValidationError(
            f"Maximum amount: {rtype.max_amount} {rtype.currency_code}",
            code="AMOUNT_OUT_OF_RANGE",
            field="amount",
            context={"max_amount": str(rtype.max_amount), "amount": str(amount)},
        )


def _quote(rtype: RemittanceType, amount: Decimal, offer_discount: Decimal = Decimal("0")):
    resolved = resolve_exchange_rate(rtype, get_collaborator("rates"))
    quote = calculate_delivery(
        amount,
        resolved.rate,
        rtype.commission_percentage or 0,
        rtype.commission_fixed or 0,
        offer_discount,
    ).rounded()
    if quote.amount_to_deliver <= 0:
        raise ValidationError(
            "Amount does not cover the commission",
            code="AMOUNT_OUT_OF_RANGE",
            field="amount",
            context={"amount": str(amount), "commission": str(quote.commission_total)},
        )
    return quote, resolved


def calculate_remittance(remittance_type_id: str, amount, *, offer_discount=0) -> dict:
    """Quote a remittance against an active type without persisting anything."""
    amount = require_positive_decimal(amount, "amount")
    rtype = _load_type(remittance_type_id, active_only=True)
    _check_amount_limits(rtype, amount)
    quote, resolved = _quote(rtype, amount, to_decimal(offer_discount, "offer_discount"))
    return {
        **quote.to_dict(),
        "rate_source": resolved.rate_source,
        "currency_sent": rtype.currency_code,
        "currency_delivered": rtype.delivery_currency,
        "delivery_method": rtype.delivery_method,
    }


# =============================================================================
# INTERNAL HELPERS
# =============================================================================

def _lock_remittance(remittance_id: str) -> Remittance:
    remittance_id = require_uuid(remittance_id, "remittance_id")
    remittance = lock_for_update(db.session.query(Remittance).filter_by(id=remittance_id)).first()
    if remittance is None:
        raise NotFoundError("Remittance not found", context={"remittance_id": remittance_id})
    return remittance


def _record_history(remittance: Remittance, old_status, changed_by, notes) -> bool:
    def _build():
        db.session.add(RemittanceStatusHistory(
            remittance_id=remittance.id,
            old_status=old_status,
            new_status=remittance.status,
            changed_by=changed_by,
            notes=notes,
            created_at=utcnow(),
        ))
    return isolated_write("remittance status history", _build, entity_id=remittance.id)


def _log_activity(action: str, remittance: Remittance, actor_id, description: str, **metadata) -> str:
    logger = get_collaborator("activity_logger")
    return best_effort(
        f"activity log {action}",
        lambda: logger.log(
            action=action,
            entity_type="remittance",
            entity_id=remittance.id,
            performed_by=actor_id,
            description=description,
            metadata={"remittance_number": remittance.remittance_number, **metadata},
        ),
        entity_id=remittance.id,
        default="error",
    )


def _move(remittance: Remittance, new_status: str, actor_id, notes) -> str:
    """Check the table edge, apply it and write history. Returns the old status."""
    REMITTANCE_STATUS_TRANSITIONS.require_transition(remittance.status, new_status)
    old_status = remittance.status
    remittance.status = new_status
    db.session.flush()
    _record_history(remittance, old_status, actor_id, notes)
    return old_status


def _notify_user(event: str, remittance: Remittance) -> None:
    dispatch_notification(event, remittance.to_dict(), remittance.user_id)


def _notify_admin(event: str, remittance: Remittance) -> None:
    dispatch_notification(
        event,
        remittance.to_dict(),
        current_app.config.get("ADMIN_NOTIFICATION_RECIPIENT"),
    )


def _resolve_offer_discount(code: str, amount: Decimal, user_id: str) -> tuple[str | None, Decimal]:
    result = get_collaborator("offers").validate_offer(code, amount, user_id) or {}
    if not result.get("valid"):
        raise ValidationError(
            f"Offer '{code}' is not valid: {result.get('reason') or 'rejected'}",
            field="offer_code",
        )
    offer = result.get("offer") or {}
    discount = to_decimal(offer.get("discount_amount") or 0, "offer_discount")
    return offer.get("id"), max(Decimal("0"), discount)


# =============================================================================
# CREATE
# =============================================================================

def create_remittance(data: dict, user_id: str | None = None) -> Remittance:
    """
    Create a remittance in payment_pending.

    data keys: remittance_type_id, amount (required); recipient_id or
    recipient_name + recipient_phone; recipient_bank_account_id (required
    for transfer/card delivery); recipient_address, recipient_province
    (or recipient_city), recipient_municipality, recipient_id_number,
    notes, offer_code.

    user_id defaults to the authenticated user.
    """
    if not isinstance(data, dict):
        raise ValidationError("Invalid remittance data")
    if user_id is None:
        user_id = get_collaborator("auth").get_current_user()["id"]

    if not data.get("remittance_type_id") or data.get("amount") in (None, ""):
        raise ValidationError(
            "remittance_type_id and amount are required",
            code="MISSING_REQUIRED_FIELD",
            field="remittance_type_id" if not data.get("remittance_type_id") else "amount",
        )
    amount = require_positive_decimal(data.get("amount"), "amount")
    rtype = _load_type(data["remittance_type_id"], active_only=True)
    _check_amount_limits(rtype, amount)

    recipient_fields = _recipient_fields(data, user_id)
    bank_account_id = _bank_account_for(rtype, data, user_id, recipient_fields.get("recipient_id"))

    offer_id, offer_discount = None, Decimal("0")
    if data.get("offer_code"):
        offer_id, offer_discount = _resolve_offer_discount(data["offer_code"], amount, user_id)

    def _op():
        quote, resolved = _quote(rtype, amount, offer_discount)
        remittance = Remittance(
            remittance_number=generate_remittance_number(),
            user_id=user_id,
            remittance_type_id=rtype.id,
            amount_sent=quote.amount_sent,
            exchange_rate=quote.exchange_rate,
            rate_source=resolved.rate_source,
            commission_percentage=quote.commission_percentage,
            commission_fixed=quote.commission_fixed,
            commission_total=quote.effective_commission,
            offer_discount=quote.offer_discount,
            amount_to_deliver=quote.amount_to_deliver,
            currency_sent=rtype.currency_code,
            currency_delivered=rtype.delivery_currency,
            delivery_method=rtype.delivery_method,
            recipient_bank_account_id=bank_account_id,
            offer_id=offer_id,
            status="payment_pending",
            **recipient_fields,
        )
        db.session.add(remittance)
        db.session.flush()

        if bank_account_id:
            db.session.add(BankTransfer(
                remittance_id=remittance.id,
                recipient_bank_account_id=bank_account_id,
                status="pending",
            ))

        def _assign():
            account, _tx = assign_account(
                "remittance", remittance.amount_sent,
                reference_type="remittance", reference_id=remittance.id,
            )
            if account is None:
                current_app.logger.warning("No payment account available for remittance %s", remittance.id)
                return
            remittance.payment_account_id = account.id

        isolated_write("payment account assignment", _assign, entity_id=remittance.id)
        db.session.flush()

        _record_history(remittance, None, user_id, "Remittance created")
        _log_activity(
            "remittance_created", remittance, user_id, f"Remittance {remittance.remittance_number} created",
            amount_sent=str(remittance.amount_sent), rate_source=resolved.rate_source,
        )
        db.session.commit()
        return remittance

    remittance = run_with_retry(_op, operation="remittance.create")
    if remittance.rate_source == "fallback":
        current_app.logger.warning(
            "Remittance %s created with fallback exchange rate 1", remittance.remittance_number
        )
    if remittance.offer_id:
        best_effort(
            "offer usage",
            get_collaborator("offers").record_usage,
            remittance.offer_id, remittance.user_id, remittance.id,
            entity_id=remittance.id,
        )
    _notify_admin("remittance.created", remittance)
    return remittance


def _recipient_fields(data: dict, user_id: str) -> dict:
    recipient_id = data.get("recipient_id")
    if recipient_id:
        recipient = get_recipient(recipient_id, user_id)
        return {
            "recipient_id": recipient.id,
            "recipient_name": recipient.full_name,
            "recipient_phone": recipient.phone,
            "recipient_id_number": data.get("recipient_id_number") or recipient.id_number,
            "recipient_address": data.get("recipient_address") or recipient.address,
            "recipient_province": data.get("recipient_province") or recipient.province,
            "recipient_municipality": data.get("recipient_municipality") or recipient.municipality,
            "delivery_notes": data.get("notes") or data.get("delivery_notes"),
        }
    if not data.get("recipient_name") or not data.get("recipient_phone"):
        raise ValidationError(
            "recipient_name and recipient_phone are required",
            code="MISSING_REQUIRED_FIELD",
            field="recipient_name" if not data.get("recipient_name") else "recipient_phone",
        )
    return {
        "recipient_id": None,
        "recipient_name": require_text(data["recipient_name"], "recipient_name", max_length=200),
        "recipient_phone": require_text(data["recipient_phone"], "recipient_phone", max_length=30),
        "recipient_id_number": data.get("recipient_id_number"),
        "recipient_address": data.get("recipient_address"),
        "recipient_province": data.get("recipient_province") or data.get("recipient_city"),
        "recipient_municipality": data.get("recipient_municipality"),
        "delivery_notes": data.get("notes") or data.get("delivery_notes"),
    }


def _bank_account_for(rtype: RemittanceType, data: dict, user_id: str, recipient_id: str | None) -> str | None:
    account_id = data.get("recipient_bank_account_id")
    if rtype.delivery_method not in BANK_DELIVERY_METHODS:
        return None
    if not account_id:
        raise ValidationError(
            f"A recipient bank account is required for {rtype.delivery_method} delivery",
            code="MISSING_REQUIRED_FIELD",
            field="recipient_bank_account_id",
        )
    account = get_bank_account(account_id, user_id, recipient_id=recipient_id)
    if account.currency_code != rtype.delivery_currency:
        raise ValidationError(
            f"Bank account currency {account.currency_code} does not match delivery currency {rtype.delivery_currency}",
            field="recipient_bank_account_id",
        )
    return account.id


# =============================================================================
# PAYMENT REVIEW
# =============================================================================

def upload_payment_proof(
    file,
    remittance_id: str,
    user_id: str,
    *,
    payment_reference: str,
    notes: str | None = None,
) -> Remittance:
    """
    Store the user's proof of payment: payment_pending -> payment_proof_uploaded.

    A rejected payment first goes back to payment_pending (the rework loop).
    """
    payment_reference = require_text(payment_reference, "payment_reference", max_length=200)
    remittance_id = require_uuid(remittance_id, "remittance_id")
    remittance = db.session.query(Remittance).filter_by(id=remittance_id).first()
    if remittance is None:
        raise NotFoundError("Remittance not found", context={"remittance_id": remittance_id})
    require_owner(remittance, user_id, entity_name="remittance")
    _check_proof_upload_allowed(remittance)

    proof_url = store_proof(
        file,
        bucket=current_app.config["REMITTANCE_PROOFS_BUCKET"],
        folder=user_id,
        prefix=remittance.remittance_number,
    )

    def _op():
        remittance = _lock_remittance(remittance_id)
        require_owner(remittance, user_id, entity_name="remittance")
        _check_proof_upload_allowed(remittance)
        if remittance.status == "payment_rejected":
            _move(remittance, "payment_pending", user_id, "Payment proof re-submitted")
        remittance.payment_proof_url = proof_url
        remittance.payment_reference = payment_reference
        remittance.payment_proof_notes = notes
        remittance.payment_proof_uploaded_at = utcnow()
        _move(remittance, "payment_proof_uploaded", user_id, "Payment proof uploaded")
        _log_activity("payment_proof_uploaded", remittance, user_id, "Payment proof uploaded", proof_url=proof_url)
        db.session.commit()
        return remittance

    remittance = run_with_retry(_op, operation="remittance.upload_payment_proof", entity_id=remittance_id)
    _notify_admin("remittance.payment_proof_uploaded", remittance)
    return remittance


def _check_proof_upload_allowed(remittance: Remittance) -> None:
    if remittance.status not in ("payment_pending", "payment_rejected"):
        REMITTANCE_STATUS_TRANSITIONS.require_transition(remittance.status, "payment_proof_uploaded")


def validate_payment(remittance_id: str, admin_id: str, notes: str | None = None) -> Remittance:
    """
    payment_proof_uploaded -> payment_validated. Sets max_delivery_date from
    the type's max_delivery_days.
    """
    def _op():
        remittance = _lock_remittance(remittance_id)
        now = utcnow()
        remittance.payment_validated_at = now
        remittance.payment_validated_by = admin_id
        remittance.payment_validation_notes = notes
        days = remittance.remittance_type.max_delivery_days if remittance.remittance_type else 3
        remittance.max_delivery_date = now + timedelta(days=days or 0)
        _move(remittance, "payment_validated", admin_id, notes or "Payment validated")

        logged = _log_activity("payment_validated", remittance, admin_id, "Payment validated")
        if logged == "inserted":
            isolated_write(
                "payment account sync",
                lambda: sync_reference_validated("remittance", remittance.id),
                entity_id=remittance.id,
            )
        db.session.commit()
        return remittance

    remittance = run_with_retry(_op, operation="remittance.validate_payment", entity_id=remittance_id)
    _notify_user("remittance.payment_validated", remittance)
    return remittance


def reject_payment(remittance_id: str, admin_id: str, reason: str) -> Remittance:
    """payment_proof_uploaded -> payment_rejected; a reason is mandatory."""
    reason = require_text(reason, "reason")

    def _op():
        remittance = _lock_remittance(remittance_id)
        remittance.payment_rejected_at = utcnow()
        remittance.payment_rejection_reason = reason
        _move(remittance, "payment_rejected", admin_id, f"Payment rejected: {reason}")
        _log_activity("payment_rejected", remittance, admin_id, f"Payment rejected: {reason}")
        isolated_write(
            "payment account sync",
            lambda: sync_reference_rejected("remittance", remittance.id, reason),
            entity_id=remittance.id,
        )
        db.session.commit()
        return remittance

    remittance = run_with_retry(_op, operation="remittance.reject_payment", entity_id=remittance_id)
    _notify_user("remittance.payment_rejected", remittance)
    return remittance


# =============================================================================
# FULFILMENT
# =============================================================================

def start_processing(remittance_id: str, admin_id: str, notes: str | None = None) -> Remittance:
    def _op():
        remittance = _lock_remittance(remittance_id)
        remittance.processing_started_at = utcnow()
        remittance.processing_notes = notes
        _move(remittance, "processing", admin_id, notes or "Processing started")
        _log_activity("processing_started", remittance, admin_id, "Processing started")
        db.session.commit()
        return remittance

    remittance = run_with_retry(_op, operation="remittance.start_processing", entity_id=remittance_id)
    _notify_user("remittance.processing", remittance)
    return remittance


def confirm_delivery(
    remittance_id: str,
    admin_id: str,
    proof_file=None,
    *,
    proof_url: str | None = None,
    notes: str | None = None,
    delivered_to_name: str | None = None,
    delivered_to_id: str | None = None,
) -> Remittance:
    """
    processing -> delivered.

    A delivery proof is mandatory: a new upload, an explicit URL, or one
    already stored on the remittance. Without it the call fails with
    DELIVERY_PROOF_REQUIRED and nothing changes.
    """
    remittance_id = require_uuid(remittance_id, "remittance_id")
    current = db.session.query(Remittance).filter_by(id=remittance_id).first()
    if current is None:
        raise NotFoundError("Remittance not found", context={"remittance_id": remittance_id})
    REMITTANCE_STATUS_TRANSITIONS.require_transition(current.status, "delivered")

    if proof_file is not None:
        proof_url = store_proof(
            proof_file,
            bucket=current_app.config["REMITTANCE_PROOFS_BUCKET"],
            folder="delivery",
            prefix=f"{current.remittance_number}_delivery",
        )

    def _op():
        remittance = _lock_remittance(remittance_id)
        REMITTANCE_STATUS_TRANSITIONS.require_transition(remittance.status, "delivered")
        final_proof = (proof_url or "").strip() or (remittance.delivery_proof_url or "").strip()
        if not final_proof:
            raise ValidationError(
                "A delivery proof is required to confirm delivery",
                code="DELIVERY_PROOF_REQUIRED",
                field="delivery_proof",
            )
        remittance.delivery_proof_url = final_proof
        remittance.delivery_notes_admin = notes
        remittance.delivered_to_name = delivered_to_name
        remittance.delivered_to_id = delivered_to_id
        remittance.delivered_at = utcnow()
        remittance.delivered_by = admin_id
        _move(remittance, "delivered", admin_id, notes or "Delivery confirmed")
        _log_activity("delivered", remittance, admin_id, "Delivery confirmed", proof_url=final_proof)
        db.session.commit()
        return remittance

    remittance = run_with_retry(_op, operation="remittance.confirm_delivery", entity_id=remittance_id)
    _notify_user("remittance.delivered", remittance)
    return remittance


def complete_remittance(remittance_id: str, admin_id: str, notes: str | None = None) -> Remittance:
    def _op():
        remittance = _lock_remittance(remittance_id)
        remittance.completed_at = utcnow()
        remittance.completion_notes = notes
        _move(remittance, "completed", admin_id, notes or "Remittance completed")
        _log_activity("completed", remittance, admin_id, "Remittance completed")
        db.session.commit()
        return remittance

    remittance = run_with_retry(_op, operation="remittance.complete", entity_id=remittance_id)
    _notify_user("remittance.completed", remittance)
    return remittance


# =============================================================================
# CANCEL
# =============================================================================

def _cancel(remittance_id: str, actor_id: str, reason: str | None, *, owner_id: str | None, action: str) -> Remittance:
    def _op():
        remittance = _lock_remittance(remittance_id)
        if owner_id is not None:
            require_owner(remittance, owner_id, entity_name="remittance")
        if remittance.status not in CANCELLABLE_REMITTANCE_STATUSES:
            raise ValidationError(
                f"Remittance cannot be cancelled from status '{remittance.status}'",
                code="INVALID_TRANSITION",
                field="status",
                context={"from": remittance.status, "allowed": sorted(CANCELLABLE_REMITTANCE_STATUSES)},
            )
        old_status = remittance.status
        remittance.status = "cancelled"
        remittance.cancelled_at = utcnow()
        remittance.cancelled_by = actor_id
        remittance.cancellation_reason = reason
        db.session.flush()
        _record_history(remittance, old_status, actor_id, reason or "Remittance cancelled")
        _log_activity(action, remittance, actor_id, reason or "Remittance cancelled", previous_status=old_status)
        isolated_write(
            "payment account sync",
            lambda: sync_reference_rejected("remittance", remittance.id, "Remittance cancelled"),
            entity_id=remittance.id,
        )
        db.session.commit()
        return remittance

    remittance = run_with_retry(_op, operation=f"remittance.{action}", entity_id=remittance_id)
    if owner_id is None:
        _notify_user("remittance.cancelled", remittance)
    else:
        _notify_admin("remittance.cancelled", remittance)
    return remittance


def cancel_remittance(remittance_id: str, user_id: str, reason: str | None = None) -> Remittance:
    """User cancel; only the owner may cancel."""
    return _cancel(remittance_id, user_id, reason, owner_id=user_id, action="cancelled_by_user")


def cancel_remittance_by_admin(remittance_id: str, admin_id: str, reason: str) -> Remittance:
    reason = require_text(reason, "reason")
    return _cancel(remittance_id, admin_id, reason, owner_id=None, action="cancelled_by_admin")


# =============================================================================
# RECALCULATION
# =============================================================================

def recalculate_remittance_at_current_rate(remittance_id: str, admin_id: str | None = None) -> Remittance:
    """
    Re-derive rate and commission from the type's current configuration.

    Only while payment is still open (payment_pending, payment_rejected);
    the status is re-checked on the locked row, so a concurrent status change
    wins and this call fails without writing. The sent amount is re-checked
    against the type's current limits.
    """
    def _op():
        remittance = _lock_remittance(remittance_id)
        if remittance.status not in RECALCULABLE_STATUSES:
            raise ValidationError(
                f"Remittance can only be recalculated while payment is open (status: {remittance.status})",
                code="INVALID_TRANSITION",
                field="status",
                context={"from": remittance.status, "allowed": sorted(RECALCULABLE_STATUSES)},
            )
        rtype = _load_type(remittance.remittance_type_id, active_only=False)
        amount = Decimal(remittance.amount_sent)
        _check_amount_limits(rtype, amount)
        quote, resolved = _quote(rtype, amount, Decimal(remittance.offer_discount or 0))

        before = {
            "exchange_rate": str(remittance.exchange_rate),
            "commission_total": str(remittance.commission_total),
            "amount_to_deliver": str(remittance.amount_to_deliver),
        }
        remittance.exchange_rate = quote.exchange_rate
        remittance.rate_source = resolved.rate_source
        remittance.commission_percentage = quote.commission_percentage
        remittance.commission_fixed = quote.commission_fixed
        remittance.commission_total = quote.effective_commission
        remittance.amount_to_deliver = quote.amount_to_deliver
        remittance.currency_delivered = rtype.delivery_currency
        remittance.recalculated_at = utcnow()
        db.session.flush()

        _log_activity(
            "recalculated", remittance, admin_id, "Remittance recalculated at current rate",
            before=before,
            after={
                "exchange_rate": str(quote.exchange_rate),
                "commission_total": str(quote.effective_commission),
                "amount_to_deliver": str(quote.amount_to_deliver),
            },
            rate_source=resolved.rate_source,
        )
        db.session.commit()
        return remittance

    return run_with_retry(_op, operation="remittance.recalculate", entity_id=remittance_id)


# =============================================================================
# BANK TRANSFERS
# =============================================================================

def update_bank_transfer_status(
    transfer_id: str,
    new_status: str,
    admin_id: str,
    *,
    amount_transferred=None,
    error_message: str | None = None,
) -> BankTransfer:
    """Move a bank transfer along its own table; never touches the remittance status."""
    transfer_id = require_uuid(transfer_id, "transfer_id")

    def _op():
        transfer = lock_for_update(db.session.query(BankTransfer).filter_by(id=transfer_id)).first()
        if transfer is None:
            raise NotFoundError("Bank transfer not found", context={"transfer_id": transfer_id})
        BANK_TRANSFER_TRANSITIONS.require_transition(transfer.status, new_status)

        transfer.status = new_status
        if new_status in ("confirmed", "transferred"):
            transfer.processed_by = admin_id
            transfer.processed_at = utcnow()
        if new_status == "transferred":
            if amount_transferred is not None:
                transfer.amount_transferred = require_positive_decimal(amount_transferred, "amount_transferred")
            elif transfer.amount_transferred is None:
                transfer.amount_transferred = transfer.remittance.amount_to_deliver
        if new_status == "failed":
            transfer.error_message = error_message or "Transfer failed"
        elif new_status == "pending":
            transfer.error_message = None
        db.session.flush()

        best_effort(
            "activity log bank_transfer",
            lambda: get_collaborator("activity_logger").log(
                action=f"bank_transfer_{new_status}",
                entity_type="remittance",
                entity_id=transfer.remittance_id,
                performed_by=admin_id,
                description=f"Bank transfer {transfer.id} -> {new_status}",
                metadata={"transfer_id": transfer.id, "error_message": transfer.error_message},
            ),
            entity_id=transfer.remittance_id,
        )
        db.session.commit()
        return transfer

    return run_with_retry(_op, operation="remittance.bank_transfer_status", entity_id=transfer_id)


def get_bank_transfers(remittance_id: str) -> list[BankTransfer]:
    remittance_id = require_uuid(remittance_id, "remittance_id")
    return (
        db.session.query(BankTransfer)
        .filter_by(remittance_id=remittance_id)
        .order_by(BankTransfer.created_at.asc())
        .all()
    )


# =============================================================================
# READS
# =============================================================================

def get_remittance(remittance_id: str, *, user_id: str | None = None) -> Remittance:
    remittance_id = require_uuid(remittance_id, "remittance_id")
    remittance = db.session.query(Remittance).filter_by(id=remittance_id).first()
    if remittance is None:
        raise NotFoundError("Remittance not found", context={"remittance_id": remittance_id})
    if user_id is not None:
        require_owner(remittance, user_id, entity_name="remittance")
    return remittance


def get_remittance_status_history(remittance_id: str) -> list[RemittanceStatusHistory]:
    return (
        db.session.query(RemittanceStatusHistory)
        .filter_by(remittance_id=remittance_id)
        .order_by(RemittanceStatusHistory.created_at.asc())
        .all()
    )


def get_remittance_details(remittance_id: str, *, user_id: str | None = None) -> dict:
    """Remittance with its type, status history, bank transfers and delivery alert."""
    remittance = get_remittance(remittance_id, user_id=user_id)
    data = remittance.to_dict(include_type=True)
    data["status_history"] = [h.to_dict() for h in get_remittance_status_history(remittance.id)]
    data["bank_transfers"] = [t.to_dict() for t in get_bank_transfers(remittance.id)]
    data["delivery_alert"] = calculate_delivery_alert(remittance)
    return data


def _page(limit: int, offset: int) -> tuple[int, int]:
    return min(max(1, limit), MAX_PAGE_SIZE), max(0, offset)


def list_user_remittances(user_id: str, *, status: str | None = None, limit: int = 50, offset: int = 0) -> list[Remittance]:
    q = db.session.query(Remittance).filter(Remittance.user_id == user_id)
    if status:
        q = q.filter(Remittance.status == require_choice(status, "status", REMITTANCE_STATUS_TRANSITIONS.states))
    limit, offset = _page(limit, offset)
    return q.order_by(Remittance.created_at.desc()).offset(offset).limit(limit).all()


def list_remittances(
    *,
    status: str | None = None,
    user_id: str | None = None,
    date_from=None,
    date_to=None,
    search: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Remittance], int]:
    """Admin listing; search matches remittance number or recipient name."""
    q = db.session.query(Remittance)
    if status:
        q = q.filter(Remittance.status == require_choice(status, "status", REMITTANCE_STATUS_TRANSITIONS.states))
    if user_id:
        q = q.filter(Remittance.user_id == user_id)
    if date_from is not None:
        q = q.filter(Remittance.created_at >= coerce_datetime(date_from))
    if date_to is not None:
        q = q.filter(Remittance.created_at <= coerce_datetime(date_to))
    if search:
        term = f"%{search.strip()}%"
        q = q.filter(or_(Remittance.remittance_number.ilike(term), Remittance.recipient_name.ilike(term)))

    total = q.count()
    limit, offset = _page(limit, offset)
    rows = q.order_by(Remittance.created_at.desc(), Remittance.remittance_number.desc()).offset(offset).limit(limit).all()
    return rows, total


# =============================================================================
# ALERTS AND STATS
# =============================================================================

def calculate_delivery_alert(remittance: Remittance, *, now=None) -> dict:
    """
    Delivery deadline indicator.

    levels: info (not validated yet, or more than 48h left), warning (<48h),
    error (<24h or overdue), success (delivered/completed).
    """
    if remittance.payment_validated_at is None or remittance.max_delivery_date is None:
        return {"level": "info", "message": "Pending validation", "hours_remaining": None}
    if remittance.status in ("delivered", "completed"):
        return {"level": "success", "message": "Delivered", "hours_remaining": None}

    now = coerce_datetime(now) if now is not None else utcnow()
    hours = (coerce_datetime(remittance.max_delivery_date) - now).total_seconds() / 3600
    if hours < 0:
        return {"level": "error", "message": "Delivery overdue", "hours_remaining": hours}
    if hours < 24:
        return {"level": "error", "message": f"{round(hours)} hours left", "hours_remaining": hours}
    if hours < 48:
        return {"level": "warning", "message": f"{round(hours / 24)} days left", "hours_remaining": hours}
    return {"level": "info", "message": f"{round(hours / 24)} days left", "hours_remaining": hours}


def get_remittances_needing_alert(*, now=None, threshold_hours: int = ALERT_THRESHOLD_HOURS) -> list[Remittance]:
    """Validated or processing remittances due within threshold_hours (or overdue), soonest first."""
    now = coerce_datetime(now) if now is not None else utcnow()
    return (
        db.session.query(Remittance)
        .filter(
            Remittance.status.in_(ALERT_STATUSES),
            Remittance.max_delivery_date.isnot(None),
            Remittance.max_delivery_date <= now + timedelta(hours=threshold_hours),
        )
        .order_by(Remittance.max_delivery_date.asc())
        .all()
    )


def get_remittance_stats(*, date_from=None, date_to=None) -> dict:
    """Counts per status, amounts and average hours from creation to completion."""
    q = db.session.query(Remittance.status, func.count(Remittance.id), func.sum(Remittance.amount_sent))
    if date_from is not None:
        q = q.filter(Remittance.created_at >= coerce_datetime(date_from))
    if date_to is not None:
        q = q.filter(Remittance.created_at <= coerce_datetime(date_to))

    by_status = {}
    total_amount = Decimal("0")
    completed_amount = Decimal("0")
    for status, count, amount in q.group_by(Remittance.status).all():
        by_status[status] = int(count)
        total_amount += Decimal(amount or 0)
        if status == "completed":
            completed_amount = Decimal(amount or 0)

    completed = db.session.query(Remittance.created_at, Remittance.completed_at).filter(
        Remittance.status == "completed", Remittance.completed_at.isnot(None)
    )
    if date_from is not None:
        completed = completed.filter(Remittance.created_at >= coerce_datetime(date_from))
    if date_to is not None:
        completed = completed.filter(Remittance.created_at <= coerce_datetime(date_to))
    durations = [
        (coerce_datetime(done) - coerce_datetime(created)).total_seconds() / 3600
        for created, done in completed.all()
    ]

    return {
        "total": sum(by_status.values()),
        "by_status": by_status,
        "total_amount": total_amount,
        "completed_amount": completed_amount,
        "avg_processing_hours": (sum(durations) / len(durations)) if durations else 0.0,
    }
