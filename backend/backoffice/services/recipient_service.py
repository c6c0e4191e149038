# Overview: Saved remittance recipients and their bank accounts (owner-scoped).

from __future__ import annotations

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Recipient, RecipientBankAccount
from ..validation import ModelValidationPolicy, require_text, validate_payload
from .auth_service import require_owner
from .concurrency import run_with_retry


RECIPIENT_POLICY = ModelValidationPolicy(
    writable_fields={
        "full_name",
        "phone",
        "email",
        "id_number",
        "address",
        "province",
        "municipality",
        "notes",
        "is_favorite",
    },
    required_on_create={"full_name", "phone"},
)

BANK_ACCOUNT_POLICY = ModelValidationPolicy(
    writable_fields={
        "bank_name",
        "account_holder_name",
        "account_number",
        "currency_code",
        "account_type",
        "is_default",
    },
    required_on_create={"bank_name", "account_holder_name", "account_number", "currency_code"},
)


def get_recipient(recipient_id: str, user_id: str) -> Recipient:
    recipient = db.session.query(Recipient).filter_by(id=recipient_id).first()
    if recipient is None or not recipient.is_active:
        raise NotFoundError("Recipient not found", field="recipient_id")
    require_owner(recipient, user_id, entity_name="recipient")
    return recipient


def create_recipient(user_id: str, data: dict) -> Recipient:
    user_id = require_text(user_id, "user_id", max_length=36)
    patch = validate_payload(model=Recipient, payload=data, policy=RECIPIENT_POLICY, partial=False)

    def _op():
        recipient = Recipient(user_id=user_id, **patch)
        db.session.add(recipient)
        db.session.commit()
        return recipient
    return run_with_retry(_op, operation="recipient.create")


def list_recipients(user_id: str) -> list[Recipient]:
    return (
        db.session.query(Recipient)
        .filter(Recipient.user_id == user_id, Recipient.is_active.is_(True))
        .order_by(Recipient.is_favorite.desc(), Recipient.full_name.asc())
        .all()
    )


def update_recipient(recipient_id: str, user_id: str, data: dict) -> Recipient:
    patch = validate_payload(model=Recipient, payload=data, policy=RECIPIENT_POLICY, partial=True)

    def _op():
        recipient = get_recipient(recipient_id, user_id)
        for key, value in patch.items():
            setattr(recipient, key, value)
        db.session.commit()
        return recipient
    return run_with_retry(_op, operation="recipient.update", entity_id=recipient_id)


def delete_recipient(recipient_id: str, user_id: str) -> Recipient:
    """Soft delete: past remittances keep pointing at the row."""
    def _op():
        recipient = get_recipient(recipient_id, user_id)
        recipient.is_active = False
        for account in recipient.bank_accounts:
            account.is_active = False
        db.session.commit()
        return recipient
    return run_with_retry(_op, operation="recipient.delete", entity_id=recipient_id)


def add_bank_account(recipient_id: str, user_id: str, data: dict) -> RecipientBankAccount:
    patch = validate_payload(model=RecipientBankAccount, payload=data, policy=BANK_ACCOUNT_POLICY, partial=False)
    patch["currency_code"] = patch["currency_code"].upper()
    if len(patch["account_number"]) < 4:
        raise ValidationError("account_number is too short", field="account_number")
    wants_default = bool(patch.pop("is_default", False))

    def _op():
        recipient = get_recipient(recipient_id, user_id)
        active = [a for a in recipient.bank_accounts if a.is_active]
        # first account becomes the default; a new default demotes the old one
        is_default = wants_default or not active
        if is_default:
            for account in active:
                account.is_default = False
        account = RecipientBankAccount(recipient_id=recipient.id, is_default=is_default, **patch)
        db.session.add(account)
        db.session.commit()
        return account
    return run_with_retry(_op, operation="recipient.add_bank_account", entity_id=recipient_id)


def list_bank_accounts(recipient_id: str, user_id: str) -> list[RecipientBankAccount]:
    get_recipient(recipient_id, user_id)
    return (
        db.session.query(RecipientBankAccount)
        .filter(RecipientBankAccount.recipient_id == recipient_id, RecipientBankAccount.is_active.is_(True))
        .order_by(RecipientBankAccount.is_default.desc(), RecipientBankAccount.created_at.asc())
        .all()
    )


def get_bank_account(account_id: str, user_id: str, *, recipient_id: str | None = None) -> RecipientBankAccount:
    account = db.session.query(RecipientBankAccount).filter_by(id=account_id).first()
    if account is None or not account.is_active:
        raise NotFoundError("Bank account not found", field="recipient_bank_account_id")
    if recipient_id is not None and account.recipient_id != recipient_id:
        raise ValidationError(
            "Bank account does not belong to the selected recipient",
            field="recipient_bank_account_id",
        )
    get_recipient(account.recipient_id, user_id)
    return account


def deactivate_bank_account(account_id: str, user_id: str) -> RecipientBankAccount:
    def _op():
        account = get_bank_account(account_id, user_id)
        account.is_active = False
        account.is_default = False
        db.session.commit()
        return account
    return run_with_retry(_op, operation="recipient.deactivate_bank_account", entity_id=account_id)
