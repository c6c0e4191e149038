# Overview: Pytest coverage for the remittance lifecycle, recalculation, bank transfers and delivery alerts.

"""
Remittance lifecycle tests

Covers the creation snapshot (rate, commission, offer discount), the
payment rework loop, the delivery-proof gate, cancellation rules,
recalculation while payment is open, bank-transfer tracking and the
delivery deadline alerts.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from backoffice.errors import NotFoundError, PermissionDeniedError, ValidationError
from backoffice.models import BankTransfer, PaymentAccountTransaction, Remittance
from backoffice.services import (
    payment_account_service,
    rate_service,
    recipient_service,
    remittance_service,
    remittance_type_service,
)
from backoffice.time_utils import utcnow

from conftest import ADMIN_ID, OTHER_USER_ID, USER_ID, proof_file, remittance_payload


def create(rtype, amount="100", **extra):
    return remittance_service.create_remittance(remittance_payload(rtype, amount, **extra), USER_ID)


def upload(remittance, reference="ZL-99"):
    return remittance_service.upload_payment_proof(
        proof_file(), remittance.id, USER_ID, payment_reference=reference
    )


def validated(rtype, amount="100"):
    remittance = create(rtype, amount)
    upload(remittance)
    return remittance_service.validate_payment(remittance.id, ADMIN_ID)


def in_processing(rtype, amount="100"):
    remittance = validated(rtype, amount)
    return remittance_service.start_processing(remittance.id, ADMIN_ID)


def bank_account(currency="CUP"):
    recipient = recipient_service.create_recipient(USER_ID, {"full_name": "Maria Perez", "phone": "+5355512345"})
    account = recipient_service.add_bank_account(recipient.id, USER_ID, {
        "bank_name": "BPA",
        "account_holder_name": "Maria Perez",
        "account_number": "9200129912345678",
        "currency_code": currency,
    })
    return recipient, account


class TestCreate:
    def test_snapshot_amounts(self, db_session, cash_type):
        """rate 24, 2% + 1 on 100: commission 3, deliver 2328."""
        remittance = create(cash_type)
        assert remittance.status == "payment_pending"
        assert remittance.commission_total == Decimal("3")
        assert remittance.amount_to_deliver == Decimal("2328")
        assert remittance.exchange_rate == Decimal("24")
        assert remittance.rate_source == "type"
        assert (remittance.currency_sent, remittance.currency_delivered) == ("USD", "CUP")
        assert remittance.recipient_province == "La Habana"

    def test_numbers_are_sequential(self, db_session, cash_type):
        year = utcnow().year
        first = create(cash_type)
        second = create(cash_type)
        assert first.remittance_number == f"REM-{year}-0001"
        assert second.remittance_number == f"REM-{year}-0002"

    @pytest.mark.parametrize("amount", ["5", "1000.01"])
    def test_amount_limits(self, db_session, cash_type, amount):
        with pytest.raises(ValidationError) as exc:
            create(cash_type, amount)
        assert exc.value.code == "AMOUNT_OUT_OF_RANGE"
        assert db_session.query(Remittance).count() == 0

    @pytest.mark.parametrize("fixed", ["9.80", "10"])
    def test_commission_must_leave_something_to_deliver(self, db_session, cash_type, fixed):
        """On 10 at 2% the commission is 0.20 + fixed; nothing left means rejected."""
        remittance_type_service.update_remittance_type(cash_type.id, {"commission_fixed": fixed})
        with pytest.raises(ValidationError) as exc:
            create(cash_type, "10")
        assert exc.value.code == "AMOUNT_OUT_OF_RANGE"
        assert exc.value.field == "amount"
        assert db_session.query(Remittance).count() == 0
        with pytest.raises(ValidationError):
            remittance_service.calculate_remittance(cash_type.id, "10")

    def test_recipient_required(self, db_session, cash_type):
        with pytest.raises(ValidationError) as exc:
            remittance_service.create_remittance(
                {"remittance_type_id": cash_type.id, "amount": "50", "recipient_name": "Ana"}, USER_ID
            )
        assert exc.value.field == "recipient_phone"

    def test_inactive_type(self, db_session, cash_type):
        remittance_type_service.update_remittance_type(cash_type.id, {"is_active": False})
        with pytest.raises(NotFoundError):
            create(cash_type)

    def test_offer_discount_lowers_commission(self, db_session, cash_type, offers):
        remittance = create(cash_type, offer_code="SAVE5")
        assert remittance.offer_id == "offer-save5"
        assert remittance.offer_discount == Decimal("5")
        assert remittance.commission_total == Decimal("0")
        assert remittance.amount_to_deliver == Decimal("2400")
        assert offers.used == [("offer-save5", USER_ID, remittance.id)]

    def test_saved_recipient(self, db_session, cash_type):
        recipient = recipient_service.create_recipient(
            USER_ID, {"full_name": "Jose Diaz", "phone": "+5355500000", "province": "Matanzas"}
        )
        remittance = remittance_service.create_remittance(
            {"remittance_type_id": cash_type.id, "amount": "50", "recipient_id": recipient.id}, USER_ID
        )
        assert remittance.recipient_id == recipient.id
        assert remittance.recipient_name == "Jose Diaz"
        assert remittance.recipient_province == "Matanzas"

    def test_someone_elses_recipient(self, db_session, cash_type):
        recipient = recipient_service.create_recipient(OTHER_USER_ID, {"full_name": "X", "phone": "1"})
        with pytest.raises(PermissionDeniedError):
            remittance_service.create_remittance(
                {"remittance_type_id": cash_type.id, "amount": "50", "recipient_id": recipient.id}, USER_ID
            )

    def test_user_from_auth_context(self, app, db_session, cash_type):
        from flask import g
        g.current_user = {"id": OTHER_USER_ID}
        try:
            remittance = remittance_service.create_remittance(remittance_payload(cash_type))
        finally:
            del g.current_user
        assert remittance.user_id == OTHER_USER_ID

    def test_admin_notified(self, db_session, cash_type, notifier):
        create(cash_type)
        assert notifier.events() == ["remittance.created"]

    def test_quote_without_persisting(self, db_session, cash_type):
        quote = remittance_service.calculate_remittance(cash_type.id, "100")
        assert Decimal(quote["amount_to_deliver"]) == Decimal("2328")
        assert quote["rate_source"] == "type"
        assert db_session.query(Remittance).count() == 0


class TestBankDelivery:
    def test_transfer_creates_bank_transfer(self, db_session, transfer_type):
        rate_service.set_exchange_rate("USD", "CUP", "320")
        db_session.commit()
        recipient, account = bank_account()

        remittance = create(transfer_type, recipient_id=recipient.id, recipient_bank_account_id=account.id)
        assert remittance.rate_source == "configured"
        assert remittance.amount_to_deliver == Decimal("31040")

        (transfer,) = remittance_service.get_bank_transfers(remittance.id)
        assert transfer.status == "pending"
        assert transfer.recipient_bank_account_id == account.id

    def test_bank_account_required(self, db_session, transfer_type):
        with pytest.raises(ValidationError) as exc:
            create(transfer_type)
        assert exc.value.field == "recipient_bank_account_id"

    def test_bank_account_currency_must_match(self, db_session, transfer_type):
        recipient, account = bank_account(currency="usd")
        with pytest.raises(ValidationError):
            create(transfer_type, recipient_id=recipient.id, recipient_bank_account_id=account.id)

    def test_fallback_rate(self, db_session, transfer_type):
        recipient, account = bank_account()
        remittance = create(transfer_type, recipient_id=recipient.id, recipient_bank_account_id=account.id)
        assert remittance.rate_source == "fallback"
        assert remittance.exchange_rate == Decimal("1")
        assert remittance.amount_to_deliver == Decimal("97")

    def test_transfer_status_is_informational(self, db_session, transfer_type):
        rate_service.set_exchange_rate("USD", "CUP", "320")
        db_session.commit()
        recipient, account = bank_account()
        remittance = create(transfer_type, recipient_id=recipient.id, recipient_bank_account_id=account.id)
        (transfer,) = remittance_service.get_bank_transfers(remittance.id)

        transfer = remittance_service.update_bank_transfer_status(transfer.id, "failed", ADMIN_ID, error_message="Account closed")
        assert transfer.error_message == "Account closed"
        transfer = remittance_service.update_bank_transfer_status(transfer.id, "pending", ADMIN_ID)
        assert transfer.error_message is None
        remittance_service.update_bank_transfer_status(transfer.id, "confirmed", ADMIN_ID)
        transfer = remittance_service.update_bank_transfer_status(transfer.id, "transferred", ADMIN_ID)

        assert transfer.processed_by == ADMIN_ID
        assert transfer.amount_transferred == Decimal("31040")
        assert db_session.get(Remittance, remittance.id).status == "payment_pending"

        with pytest.raises(ValidationError):
            remittance_service.update_bank_transfer_status(transfer.id, "pending", ADMIN_ID)


class TestPaymentReview:
    def test_upload_requires_reference(self, db_session, cash_type):
        remittance = create(cash_type)
        with pytest.raises(ValidationError) as exc:
            upload(remittance, reference="")
        assert exc.value.field == "payment_reference"

    def test_upload_stores_proof(self, db_session, cash_type):
        remittance = upload(create(cash_type))
        assert remittance.status == "payment_proof_uploaded"
        assert remittance.payment_reference == "ZL-99"
        assert remittance.payment_proof_url.startswith(f"/storage/remittance-proofs/{USER_ID}/REM-")

    def test_validate_sets_deadline(self, db_session, cash_type, notifier):
        remittance = validated(cash_type)
        assert remittance.status == "payment_validated"
        assert remittance.max_delivery_date - remittance.payment_validated_at == timedelta(days=3)
        assert notifier.sent[-1]["event"] == "remittance.payment_validated"
        assert notifier.sent[-1]["recipient"] == USER_ID

    def test_validate_without_proof_fails(self, db_session, cash_type):
        remittance = create(cash_type)
        with pytest.raises(ValidationError):
            remittance_service.validate_payment(remittance.id, ADMIN_ID)

    def test_rework_loop(self, db_session, cash_type):
        remittance = upload(create(cash_type))
        remittance = remittance_service.reject_payment(remittance.id, ADMIN_ID, "Amount does not match")
        assert remittance.status == "payment_rejected"
        assert remittance.payment_rejection_reason == "Amount does not match"

        remittance = upload(remittance, reference="ZL-100")
        assert remittance.status == "payment_proof_uploaded"
        history = [h.new_status for h in remittance_service.get_remittance_status_history(remittance.id)]
        assert history == [
            "payment_pending",
            "payment_proof_uploaded",
            "payment_rejected",
            "payment_pending",
            "payment_proof_uploaded",
        ]

    def test_payment_account_synced(self, db_session, cash_type):
        payment_account_service.create_payment_account({"account_name": "Zelle R", "for_products": False})
        remittance = validated(cash_type)
        assert remittance.payment_account_id is not None
        tx = db_session.query(PaymentAccountTransaction).filter_by(reference_id=remittance.id).one()
        assert tx.status == "validated"
        assert tx.amount == Decimal("100")


class TestDelivery:
    def test_proof_required(self, db_session, cash_type):
        """No upload, no URL, nothing stored: delivery is refused."""
        remittance = in_processing(cash_type)
        with pytest.raises(ValidationError) as exc:
            remittance_service.confirm_delivery(remittance.id, ADMIN_ID)
        assert exc.value.code == "DELIVERY_PROOF_REQUIRED"
        assert db_session.get(Remittance, remittance.id).status == "processing"

    def test_confirm_with_uploaded_proof_and_complete(self, db_session, cash_type):
        remittance = in_processing(cash_type)
        remittance = remittance_service.confirm_delivery(
            remittance.id, ADMIN_ID, proof_file("delivery.webp", "image/webp"),
            delivered_to_name="Maria Perez", delivered_to_id="85010112345",
        )
        assert remittance.status == "delivered"
        assert remittance.delivered_by == ADMIN_ID
        assert "/remittance-proofs/delivery/" in remittance.delivery_proof_url

        remittance = remittance_service.complete_remittance(remittance.id, ADMIN_ID, "All good")
        assert remittance.status == "completed"
        assert remittance.completion_notes == "All good"

    def test_confirm_with_url(self, db_session, cash_type):
        remittance = in_processing(cash_type)
        remittance = remittance_service.confirm_delivery(remittance.id, ADMIN_ID, proof_url="https://cdn.example.com/d.jpg")
        assert remittance.delivery_proof_url == "https://cdn.example.com/d.jpg"

    def test_cannot_deliver_before_processing(self, db_session, cash_type):
        remittance = validated(cash_type)
        with pytest.raises(ValidationError) as exc:
            remittance_service.confirm_delivery(remittance.id, ADMIN_ID, proof_url="https://cdn.example.com/d.jpg")
        assert exc.value.code == "INVALID_TRANSITION"


class TestCancel:
    def test_user_cancel(self, db_session, cash_type):
        remittance = remittance_service.cancel_remittance(create(cash_type).id, USER_ID, "Changed my mind")
        assert remittance.status == "cancelled"
        assert remittance.cancelled_by == USER_ID

    def test_only_owner_cancels(self, db_session, cash_type):
        remittance = create(cash_type)
        with pytest.raises(PermissionDeniedError):
            remittance_service.cancel_remittance(remittance.id, OTHER_USER_ID)

    def test_admin_cancel_from_processing(self, db_session, cash_type):
        remittance = in_processing(cash_type)
        remittance = remittance_service.cancel_remittance_by_admin(remittance.id, ADMIN_ID, "Recipient unreachable")
        assert remittance.status == "cancelled"

    def test_delivered_cannot_be_cancelled(self, db_session, cash_type):
        remittance = in_processing(cash_type)
        remittance_service.confirm_delivery(remittance.id, ADMIN_ID, proof_url="https://cdn.example.com/d.jpg")
        with pytest.raises(ValidationError):
            remittance_service.cancel_remittance_by_admin(remittance.id, ADMIN_ID, "Too late")
        assert db_session.get(Remittance, remittance.id).status == "delivered"

    def test_cancel_releases_account_usage(self, db_session, cash_type):
        account = payment_account_service.create_payment_account({"account_name": "Zelle R"})
        remittance = create(cash_type)
        remittance_service.cancel_remittance(remittance.id, USER_ID)
        db_session.refresh(account)
        assert account.current_daily_amount == Decimal("0")
        tx = db_session.query(PaymentAccountTransaction).filter_by(reference_id=remittance.id).one()
        assert tx.status == "rejected"


class TestRecalculate:
    def test_uses_current_rate(self, db_session, cash_type):
        remittance = create(cash_type)
        remittance_type_service.update_remittance_type(cash_type.id, {"exchange_rate": "25"})
        remittance = remittance_service.recalculate_remittance_at_current_rate(remittance.id, ADMIN_ID)
        assert remittance.exchange_rate == Decimal("25")
        assert remittance.amount_to_deliver == Decimal("2425")
        assert remittance.recalculated_at is not None

    def test_only_while_payment_open(self, db_session, cash_type):
        remittance = upload(create(cash_type))
        with pytest.raises(ValidationError) as exc:
            remittance_service.recalculate_remittance_at_current_rate(remittance.id, ADMIN_ID)
        assert exc.value.code == "INVALID_TRANSITION"

    def test_rechecks_limits(self, db_session, cash_type):
        remittance = create(cash_type, "500")
        remittance_type_service.update_remittance_type(cash_type.id, {"max_amount": "400"})
        with pytest.raises(ValidationError) as exc:
            remittance_service.recalculate_remittance_at_current_rate(remittance.id, ADMIN_ID)
        assert exc.value.code == "AMOUNT_OUT_OF_RANGE"
        assert db_session.get(Remittance, remittance.id).amount_to_deliver == Decimal("11736")

    def test_rejects_commission_above_amount(self, db_session, cash_type):
        remittance = create(cash_type, "10")
        remittance_type_service.update_remittance_type(cash_type.id, {"commission_fixed": "20"})
        with pytest.raises(ValidationError) as exc:
            remittance_service.recalculate_remittance_at_current_rate(remittance.id, ADMIN_ID)
        assert exc.value.code == "AMOUNT_OUT_OF_RANGE"
        stored = db_session.get(Remittance, remittance.id)
        assert stored.amount_to_deliver == Decimal("211.20")
        assert stored.recalculated_at is None


class TestAlerts:
    def test_levels(self, db_session, cash_type):
        remittance = in_processing(cash_type)
        due = remittance.max_delivery_date

        assert remittance_service.calculate_delivery_alert(remittance, now=due - timedelta(hours=72))["level"] == "info"
        assert remittance_service.calculate_delivery_alert(remittance, now=due - timedelta(hours=30))["level"] == "warning"
        assert remittance_service.calculate_delivery_alert(remittance, now=due - timedelta(hours=10))["level"] == "error"
        overdue = remittance_service.calculate_delivery_alert(remittance, now=due + timedelta(hours=1))
        assert overdue["level"] == "error"
        assert overdue["message"] == "Delivery overdue"

    def test_pending_and_delivered(self, db_session, cash_type):
        pending = create(cash_type)
        assert remittance_service.calculate_delivery_alert(pending)["message"] == "Pending validation"

        remittance = in_processing(cash_type)
        remittance = remittance_service.confirm_delivery(remittance.id, ADMIN_ID, proof_url="https://cdn.example.com/d.jpg")
        assert remittance_service.calculate_delivery_alert(remittance)["level"] == "success"

    def test_needing_alert(self, db_session, cash_type):
        remittance = in_processing(cash_type)
        due = remittance.max_delivery_date
        assert remittance_service.get_remittances_needing_alert(now=due - timedelta(hours=48)) == []
        rows = remittance_service.get_remittances_needing_alert(now=due - timedelta(hours=10))
        assert [r.id for r in rows] == [remittance.id]


class TestReads:
    def test_details(self, db_session, cash_type):
        remittance = validated(cash_type)
        details = remittance_service.get_remittance_details(remittance.id, user_id=USER_ID)
        assert details["remittance_type"]["id"] == cash_type.id
        assert len(details["status_history"]) == 3
        assert details["bank_transfers"] == []
        assert details["delivery_alert"]["level"] == "info"

    def test_ids_are_case_insensitive(self, db_session, cash_type):
        remittance = create(cash_type)
        assert remittance_service.get_remittance(remittance.id.upper()).id == remittance.id
        upload_result = remittance_service.upload_payment_proof(
            proof_file(), remittance.id.upper(), USER_ID, payment_reference="ZL-1"
        )
        assert upload_result.status == "payment_proof_uploaded"

    def test_details_owner_only(self, db_session, cash_type):
        remittance = create(cash_type)
        with pytest.raises(PermissionDeniedError):
            remittance_service.get_remittance_details(remittance.id, user_id=OTHER_USER_ID)

    def test_list_and_search(self, db_session, cash_type):
        create(cash_type)
        create(cash_type, recipient_name="Pedro Gomez")
        rows, total = remittance_service.list_remittances(search="pedro")
        assert total == 1
        assert rows[0].recipient_name == "Pedro Gomez"
        assert len(remittance_service.list_user_remittances(USER_ID)) == 2

    def test_stats(self, db_session, cash_type):
        done = in_processing(cash_type, "200")
        remittance_service.confirm_delivery(done.id, ADMIN_ID, proof_url="https://cdn.example.com/d.jpg")
        remittance_service.complete_remittance(done.id, ADMIN_ID)
        create(cash_type, "50")

        stats = remittance_service.get_remittance_stats()
        assert stats["total"] == 2
        assert stats["by_status"] == {"completed": 1, "payment_pending": 1}
        assert stats["total_amount"] == Decimal("250")
        assert stats["completed_amount"] == Decimal("200")
        assert stats["avg_processing_hours"] >= 0


def test_bank_transfer_rows_follow_remittance(db_session, transfer_type):
    recipient, account = bank_account()
    create(transfer_type, recipient_id=recipient.id, recipient_bank_account_id=account.id)
    assert db_session.query(BankTransfer).count() == 1
