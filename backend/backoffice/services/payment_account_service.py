# Overview: Payment-collection accounts (Zelle-style) with automatic rotation and usage counters.

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import or_

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import PaymentAccount, PaymentAccountTransaction
from ..time_utils import utcnow
from ..validation import (
    ModelValidationPolicy,
    require_choice,
    require_positive_decimal,
    validate_payload,
)
from .concurrency import lock_for_update, run_with_retry


TRANSACTION_TYPES = {"product", "combo", "remittance"}
REFERENCE_TYPES = {"order", "remittance"}
TRANSACTION_STATUSES = {"pending", "validated", "rejected"}
RESET_PERIODS = {"daily", "monthly"}

ACCOUNT_POLICY = ModelValidationPolicy(
    writable_fields={
        "account_name",
        "email",
        "phone",
        "bank_name",
        "is_active",
        "for_products",
        "for_remittances",
        "priority",
        "daily_limit",
        "monthly_limit",
    },
    required_on_create={"account_name"},
)


class PaymentAccountError(ValidationError):
    """Raised when an account cannot take a payment."""


def create_payment_account(data: dict) -> PaymentAccount:
    patch = validate_payload(model=PaymentAccount, payload=data, policy=ACCOUNT_POLICY, partial=False)
    for limit in ("daily_limit", "monthly_limit"):
        if patch.get(limit) is not None and patch[limit] <= 0:
            raise ValidationError(f"{limit} must be > 0", field=limit)

    def _op():
        account = PaymentAccount(**patch)
        db.session.add(account)
        db.session.commit()
        return account
    return run_with_retry(_op, operation="payment_account.create")


def update_payment_account(account_id: str, data: dict) -> PaymentAccount:
    patch = validate_payload(model=PaymentAccount, payload=data, policy=ACCOUNT_POLICY, partial=True)

    def _op():
        account = lock_for_update(db.session.query(PaymentAccount).filter_by(id=account_id)).first()
        if account is None:
            raise NotFoundError("Payment account not found")
        for key, value in patch.items():
            setattr(account, key, value)
        db.session.commit()
        return account
    return run_with_retry(_op, operation="payment_account.update", entity_id=account_id)


def list_payment_accounts(*, active_only: bool = False) -> list[PaymentAccount]:
    q = db.session.query(PaymentAccount)
    if active_only:
        q = q.filter(PaymentAccount.is_active.is_(True))
    return q.order_by(PaymentAccount.priority.asc(), PaymentAccount.account_name.asc()).all()


def select_available_account(transaction_type: str, amount) -> PaymentAccount | None:
    """
    Rotation: active accounts enabled for the transaction type whose daily
    and monthly running totals still fit ``amount``, lowest priority first,
    then least recently used (never-used first). Returns the locked row or
    None. No commit.
    """
    require_choice(transaction_type, "transaction_type", TRANSACTION_TYPES)
    amount = require_positive_decimal(amount, "amount")

    q = db.session.query(PaymentAccount).filter(PaymentAccount.is_active.is_(True))
    if transaction_type == "remittance":
        q = q.filter(PaymentAccount.for_remittances.is_(True))
    else:
        q = q.filter(PaymentAccount.for_products.is_(True))
    q = q.filter(
        or_(PaymentAccount.daily_limit.is_(None),
            PaymentAccount.current_daily_amount + amount <= PaymentAccount.daily_limit),
        or_(PaymentAccount.monthly_limit.is_(None),
            PaymentAccount.current_monthly_amount + amount <= PaymentAccount.monthly_limit),
    )
    q = q.order_by(
        PaymentAccount.priority.asc(),
        PaymentAccount.last_used_at.is_(None).desc(),
        PaymentAccount.last_used_at.asc(),
        PaymentAccount.id.asc(),
    )
    return lock_for_update(q).first()


def _apply_usage(account: PaymentAccount, amount: Decimal) -> None:
    account.current_daily_amount = max(Decimal("0"), Decimal(account.current_daily_amount or 0) + amount)
    account.current_monthly_amount = max(Decimal("0"), Decimal(account.current_monthly_amount or 0) + amount)


def register_account_transaction(
    account: PaymentAccount,
    *,
    reference_type: str,
    reference_id: str,
    amount,
    notes: str | None = None,
) -> PaymentAccountTransaction:
    """Record an expected payment and bump the account's counters. No commit."""
    require_choice(reference_type, "reference_type", REFERENCE_TYPES)
    amount = require_positive_decimal(amount, "amount")
    tx = PaymentAccountTransaction(
        payment_account_id=account.id,
        reference_type=reference_type,
        reference_id=reference_id,
        amount=amount,
        status="pending",
        notes=notes,
        created_at=utcnow(),
    )
    db.session.add(tx)
    _apply_usage(account, amount)
    account.last_used_at = utcnow()
    db.session.flush()
    return tx


def assign_account(transaction_type: str, amount, *, reference_type: str, reference_id: str):
    """
    Pick an account by rotation and register the expected payment on it.
    Returns (account, transaction) or (None, None) when no account fits.
    No commit.
    """
    account = select_available_account(transaction_type, amount)
    if account is None:
        return None, None
    tx = register_account_transaction(
        account, reference_type=reference_type, reference_id=reference_id, amount=amount
    )
    return account, tx


def _load_transaction(transaction_id: str) -> PaymentAccountTransaction:
    tx = lock_for_update(
        db.session.query(PaymentAccountTransaction).filter_by(id=transaction_id)
    ).first()
    if tx is None:
        raise NotFoundError("Payment account transaction not found")
    return tx


def _mark_validated(tx: PaymentAccountTransaction, notes: str | None = None) -> None:
    if tx.status != "pending":
        raise ValidationError(f"Transaction is already {tx.status}", field="status")
    tx.status = "validated"
    tx.validated_at = utcnow()
    if notes:
        tx.notes = notes


def _mark_rejected(tx: PaymentAccountTransaction, reason: str | None) -> None:
    if tx.status != "pending":
        raise ValidationError(f"Transaction is already {tx.status}", field="status")
    account = lock_for_update(db.session.query(PaymentAccount).filter_by(id=tx.payment_account_id)).first()
    tx.status = "rejected"
    tx.validated_at = utcnow()
    tx.notes = reason
    if account is not None:
        _apply_usage(account, -Decimal(tx.amount))


def validate_account_transaction(transaction_id: str, *, notes: str | None = None) -> PaymentAccountTransaction:
    def _op():
        tx = _load_transaction(transaction_id)
        _mark_validated(tx, notes)
        db.session.commit()
        return tx
    return run_with_retry(_op, operation="payment_account.validate_transaction", entity_id=transaction_id)


def reject_account_transaction(transaction_id: str, reason: str | None = None) -> PaymentAccountTransaction:
    """Reject and give the amount back to the account's counters (clamped at zero)."""
    def _op():
        tx = _load_transaction(transaction_id)
        _mark_rejected(tx, reason)
        db.session.commit()
        return tx
    return run_with_retry(_op, operation="payment_account.reject_transaction", entity_id=transaction_id)


def _pending_for_reference(reference_type: str, reference_id: str) -> list[PaymentAccountTransaction]:
    return (
        db.session.query(PaymentAccountTransaction)
        .filter_by(reference_type=reference_type, reference_id=reference_id, status="pending")
        .all()
    )


def sync_reference_validated(reference_type: str, reference_id: str) -> int:
    """Validate every pending account transaction for a paid order/remittance. No commit."""
    rows = _pending_for_reference(reference_type, reference_id)
    for tx in rows:
        _mark_validated(tx)
    db.session.flush()
    return len(rows)


def sync_reference_rejected(reference_type: str, reference_id: str, reason: str | None = None) -> int:
    """Reject pending account transactions for a rejected payment. No commit."""
    rows = _pending_for_reference(reference_type, reference_id)
    for tx in rows:
        _mark_rejected(tx, reason)
    db.session.flush()
    return len(rows)


def reset_counters(period: str, *, account_id: str | None = None) -> int:
    """Zero the daily or monthly running totals (all accounts, or one)."""
    require_choice(period, "period", RESET_PERIODS)
    column = "current_daily_amount" if period == "daily" else "current_monthly_amount"

    def _op():
        q = db.session.query(PaymentAccount)
        if account_id:
            q = q.filter(PaymentAccount.id == account_id)
        accounts = lock_for_update(q.order_by(PaymentAccount.id)).all()
        if account_id and not accounts:
            raise NotFoundError("Payment account not found")
        for account in accounts:
            setattr(account, column, Decimal("0"))
        db.session.commit()
        return len(accounts)
    return run_with_retry(_op, operation=f"payment_account.reset_{period}", entity_id=account_id)


def get_account_stats(account_id: str) -> dict:
    rows = db.session.query(PaymentAccountTransaction).filter_by(payment_account_id=account_id).all()
    zero = Decimal("0")
    return {
        "total_transactions": len(rows),
        "total_amount": sum((Decimal(r.amount) for r in rows), zero),
        "validated_amount": sum((Decimal(r.amount) for r in rows if r.status == "validated"), zero),
        "pending_amount": sum((Decimal(r.amount) for r in rows if r.status == "pending"), zero),
        "by_reference_type": {t: sum(1 for r in rows if r.reference_type == t) for t in sorted(REFERENCE_TYPES)},
    }
