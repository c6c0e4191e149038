# Overview: Pytest coverage for the order lifecycle and its stock compensation.

"""
Order lifecycle tests

Covers checkout holds, payment proof upload, validation (sale) and
rejection (release), the payment gate, fulfilment with delivery proof,
cancel/reopen, payment-account bookkeeping, offers and notifications.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from backoffice.errors import NotFoundError, PermissionDeniedError, ValidationError
from backoffice.models import Order, OrderStatusHistory, PaymentAccountTransaction
from backoffice.services import order_service, payment_account_service

from conftest import (
    ADMIN_ID,
    OTHER_USER_ID,
    USER_ID,
    make_combo,
    make_stock,
    order_payload,
    product_line,
    proof_file,
)


def levels(session, record):
    session.refresh(record)
    return record.quantity, record.reserved_quantity


def checkout(record, qty=2, **extra):
    return order_service.create_order(order_payload(str(Decimal("4.50") * qty), **extra), [product_line(record, qty)])


def paid_order(record, qty=2):
    order = checkout(record, qty)
    order_service.upload_payment_proof(proof_file(), order.id, USER_ID)
    return order_service.validate_payment(order.id, ADMIN_ID)


class TestCheckout:
    def test_create_reserves_stock(self, db_session, stock):
        """20 on hand, order of 2 -> pending with 2 reserved."""
        order = checkout(stock, 2)
        assert order.status == "pending"
        assert order.payment_status == "pending"
        assert order.inventory_state == "reserved"
        assert order.order_number.startswith("ORD-")
        assert levels(db_session, stock) == (20, 2)

    def test_items_are_stored_in_order(self, db_session, stock):
        other = make_stock(db_session, quantity=5, name="Beans")
        order = order_service.create_order(
            order_payload("13.50"),
            [product_line(stock, 1), product_line(other, 2)],
        )
        assert [i.inventory_id for i in order.items] == [stock.id, other.id]
        assert order.items[1].total_price == Decimal("9.00")

    def test_empty_items_rejected(self, db_session):
        with pytest.raises(ValidationError) as exc:
            order_service.create_order(order_payload("10"), [])
        assert exc.value.field == "items"
        assert db_session.query(Order).count() == 0

    def test_unknown_inventory_rolls_back_everything(self, db_session, stock):
        bad = product_line(stock, 1)
        bad["inventory_id"] = "0f0e0d0c-0b0a-4908-8706-050403020100"
        with pytest.raises(NotFoundError):
            order_service.create_order(order_payload("9.00"), [product_line(stock, 1), bad])
        assert db_session.query(Order).count() == 0
        assert levels(db_session, stock) == (20, 0)

    def test_history_and_admin_notification(self, db_session, stock, notifier):
        order = checkout(stock)
        history = order_service.get_order_status_history(order.id)
        assert [(h.previous_status, h.new_status) for h in history] == [(None, "pending")]
        assert notifier.sent[-1]["event"] == "order.created"
        assert notifier.sent[-1]["recipient"] == "admin@example.com"

    def test_order_numbers_are_unique(self, db_session, stock):
        numbers = {checkout(stock, 1).order_number for _ in range(5)}
        assert len(numbers) == 5


class TestOffers:
    def test_valid_offer_is_recorded(self, db_session, stock, offers):
        order = checkout(stock, offer_code="SAVE5")
        assert order.offer_id == "offer-save5"
        assert offers.used == [("offer-save5", USER_ID, order.id)]

    def test_invalid_offer_blocks_checkout(self, db_session, stock, offers):
        with pytest.raises(ValidationError) as exc:
            checkout(stock, offer_code="NOPE")
        assert exc.value.field == "offer_code"
        assert levels(db_session, stock) == (20, 0)


class TestPaymentReview:
    def test_reject_releases_hold(self, db_session, stock):
        """Rejection keeps the order pending and gives the stock back."""
        order = checkout(stock, 2)
        order = order_service.reject_payment(order.id, ADMIN_ID, "Blurry screenshot")
        assert (order.status, order.payment_status) == ("pending", "rejected")
        assert order.rejection_reason == "Blurry screenshot"
        assert order.inventory_state == "released"
        assert levels(db_session, stock) == (20, 0)

    def test_reject_requires_reason(self, db_session, stock):
        order = checkout(stock)
        with pytest.raises(ValidationError):
            order_service.reject_payment(order.id, ADMIN_ID, "  ")

    def test_upload_proof(self, db_session, stock, notifier):
        order = checkout(stock)
        order = order_service.upload_payment_proof(proof_file(), order.id, USER_ID, payment_reference="ZL-1")
        assert order.payment_status == "proof_uploaded"
        assert order.payment_reference == "ZL-1"
        assert order.payment_proof_url.startswith("/storage/order-documents/payment-proofs/")
        assert "order.payment_proof_uploaded" in notifier.events()

    def test_reupload_after_rejection_takes_hold_again(self, db_session, stock):
        order = checkout(stock, 3)
        order_service.reject_payment(order.id, ADMIN_ID, "Wrong amount")
        order = order_service.upload_payment_proof(proof_file(), order.id, USER_ID)
        assert order.payment_status == "proof_uploaded"
        assert order.rejection_reason is None
        assert levels(db_session, stock) == (20, 3)

    def test_upload_rejects_bad_file_type(self, db_session, stock):
        order = checkout(stock)
        with pytest.raises(ValidationError):
            order_service.upload_payment_proof(
                proof_file("proof.pdf", "application/pdf"), order.id, USER_ID
            )
        assert db_session.get(Order, order.id).payment_status == "pending"

    def test_upload_only_by_owner(self, db_session, stock):
        order = checkout(stock)
        with pytest.raises(PermissionDeniedError):
            order_service.upload_payment_proof(proof_file(), order.id, OTHER_USER_ID)

    def test_validate_converts_hold_into_sale(self, db_session, stock, notifier):
        order = paid_order(stock, 2)
        assert (order.status, order.payment_status) == ("processing", "validated")
        assert order.inventory_state == "reduced"
        assert order.validated_by == ADMIN_ID
        assert order.processing_started_at is not None
        assert levels(db_session, stock) == (18, 0)
        assert notifier.sent[-1] == {
            "event": "order.payment_validated", "recipient": USER_ID, "locale": "es", "id": order.id,
        }

    def test_validate_needs_proof_unless_override(self, db_session, stock):
        order = checkout(stock)
        with pytest.raises(ValidationError):
            order_service.validate_payment(order.id, ADMIN_ID)
        order = order_service.validate_payment(order.id, ADMIN_ID, override=True)
        assert order.payment_status == "validated"

    def test_validate_twice_fails(self, db_session, stock):
        order = paid_order(stock)
        with pytest.raises(ValidationError):
            order_service.validate_payment(order.id, ADMIN_ID)
        assert levels(db_session, stock) == (18, 0)

    def test_short_stock_fails_whole_validation(self, db_session):
        """Nothing is sold when any line is short."""
        plenty = make_stock(db_session, quantity=30, name="Oil")
        scarce = make_stock(db_session, quantity=3, name="Coffee")
        order = order_service.create_order(
            order_payload("20"), [product_line(plenty, 5), product_line(scarce, 2)]
        )
        # another customer holds the rest of the coffee
        order_service.create_order(order_payload("9"), [product_line(scarce, 2)])
        order_service.upload_payment_proof(proof_file(), order.id, USER_ID)

        with pytest.raises(ValidationError) as exc:
            order_service.validate_payment(order.id, ADMIN_ID)
        assert exc.value.code == "INSUFFICIENT_STOCK"

        reloaded = db_session.get(Order, order.id)
        assert (reloaded.status, reloaded.payment_status) == ("pending", "proof_uploaded")
        assert levels(db_session, plenty) == (30, 5)
        assert levels(db_session, scarce) == (3, 4)

    def test_combo_constituents_are_sold(self, db_session):
        rice = make_stock(db_session, quantity=10, name="Rice")
        oil = make_stock(db_session, quantity=10, name="Oil")
        combo = make_combo(db_session, [(rice, 2), (oil, 1)])
        order = order_service.create_order(
            order_payload("30", order_type="combo"),
            [{"item_type": "combo", "item_id": combo.id, "quantity": 2, "unit_price": "15"}],
        )
        assert order.inventory_state == "none"
        assert levels(db_session, rice) == (10, 0)

        order_service.validate_payment(order.id, ADMIN_ID, override=True)
        assert levels(db_session, rice) == (6, 0)
        assert levels(db_session, oil) == (8, 0)


class TestFulfilment:
    def test_payment_gate(self, db_session, stock):
        order = checkout(stock)
        with pytest.raises(ValidationError) as exc:
            order_service.start_processing_order(order.id, ADMIN_ID)
        assert exc.value.field == "payment_status"

    def test_full_lifecycle(self, db_session, stock):
        order = paid_order(stock)
        order = order_service.mark_order_as_dispatched(order.id, ADMIN_ID, "TRACK-123")
        assert order.status == "dispatched"
        assert order.tracking_info == "TRACK-123"

        order = order_service.mark_order_as_delivered(order.id, proof_file("delivery.jpg", "image/jpeg"), ADMIN_ID)
        assert order.status == "delivered"
        assert order.delivery_proof_url.startswith("/storage/order-documents/delivery-proofs/")

        order = order_service.complete_order(order.id, ADMIN_ID)
        assert order.status == "completed"
        assert order.completed_at is not None

        statuses = [h.new_status for h in order_service.get_order_status_history(order.id)]
        assert statuses == ["pending", "pending", "processing", "dispatched", "delivered", "completed"]

    def test_delivery_requires_proof(self, db_session, stock):
        order = paid_order(stock)
        order_service.mark_order_as_dispatched(order.id, ADMIN_ID)
        with pytest.raises(ValidationError) as exc:
            order_service.mark_order_as_delivered(order.id, None, ADMIN_ID)
        assert exc.value.code == "MISSING_REQUIRED_FIELD"
        assert db_session.get(Order, order.id).status == "dispatched"

    @pytest.mark.parametrize("target", ["pending", "processing", "cancelled", "delivered"])
    def test_completed_is_terminal(self, db_session, stock, target):
        order = paid_order(stock)
        order_service.mark_order_as_dispatched(order.id, ADMIN_ID)
        order_service.mark_order_as_delivered(order.id, proof_file(), ADMIN_ID)
        order_service.complete_order(order.id, ADMIN_ID)

        with pytest.raises(ValidationError) as exc:
            order_service.update_order_status(order.id, target, ADMIN_ID)
        assert exc.value.context["allowed"] == []

    def test_days_in_processing(self, db_session, stock):
        order = paid_order(stock)
        later = order.processing_started_at + timedelta(days=1, hours=2)
        assert order_service.get_days_in_processing(order, now=later) == 2
        assert order_service.get_days_in_processing(checkout(stock)) is None


class TestCancelReopen:
    def test_admin_cancel_releases_hold(self, db_session, stock):
        order = checkout(stock, 4)
        order = order_service.cancel_order(order.id, ADMIN_ID, "Out of delivery zone")
        assert order.status == "cancelled"
        assert order.cancelled_by == ADMIN_ID
        assert order.cancellation_reason == "Out of delivery zone"
        assert levels(db_session, stock) == (20, 0)

    def test_user_cancel_only_while_pending(self, db_session, stock):
        order = paid_order(stock)
        with pytest.raises(ValidationError):
            order_service.cancel_order_by_user(order.id, USER_ID)

    def test_user_cancel_checks_owner(self, db_session, stock):
        order = checkout(stock)
        with pytest.raises(PermissionDeniedError):
            order_service.cancel_order_by_user(order.id, OTHER_USER_ID)
        assert levels(db_session, stock) == (20, 2)

    def test_reopen_resets_payment_and_reserves(self, db_session, stock):
        order = checkout(stock, 2)
        order_service.reject_payment(order.id, ADMIN_ID, "No funds received")
        order_service.cancel_order_by_user(order.id, USER_ID)

        order = order_service.reopen_order(order.id, USER_ID)
        assert (order.status, order.payment_status) == ("pending", "pending")
        assert order.rejection_reason is None
        assert order.inventory_state == "reserved"
        assert levels(db_session, stock) == (20, 2)

    def test_reopen_by_admin_needs_reason(self, db_session, stock):
        order = checkout(stock)
        order_service.cancel_order(order.id, ADMIN_ID)
        with pytest.raises(ValidationError):
            order_service.reopen_order_by_admin(order.id, ADMIN_ID, "")
        order = order_service.reopen_order_by_admin(order.id, ADMIN_ID, "Customer called")
        assert order.status == "pending"

    def test_double_cancel_fails(self, db_session, stock):
        order = checkout(stock)
        order_service.cancel_order(order.id, ADMIN_ID)
        with pytest.raises(ValidationError):
            order_service.cancel_order(order.id, ADMIN_ID)
        assert levels(db_session, stock) == (20, 0)


class TestPaymentAccounts:
    def test_account_assigned_and_synced(self, db_session, stock):
        account = payment_account_service.create_payment_account({"account_name": "Zelle A", "email": "a@x.com"})
        order = checkout(stock)
        assert order.payment_account_id == account.id

        order_service.upload_payment_proof(proof_file(), order.id, USER_ID)
        order_service.validate_payment(order.id, ADMIN_ID)
        tx = db_session.query(PaymentAccountTransaction).filter_by(reference_id=order.id).one()
        assert tx.status == "validated"

    def test_rejection_gives_amount_back(self, db_session, stock):
        account = payment_account_service.create_payment_account({"account_name": "Zelle A"})
        order = checkout(stock, 2)
        db_session.refresh(account)
        assert account.current_daily_amount == Decimal("9.00")

        order_service.reject_payment(order.id, ADMIN_ID, "Not received")
        db_session.refresh(account)
        assert account.current_daily_amount == Decimal("0.00")

    def test_no_account_is_not_an_error(self, db_session, stock):
        order = checkout(stock)
        assert order.payment_account_id is None


class TestReads:
    def test_list_orders_filters_and_counts(self, db_session, stock):
        first = checkout(stock, 1)
        checkout(stock, 1, user_id=OTHER_USER_ID)
        order_service.cancel_order(first.id, ADMIN_ID)

        rows, total = order_service.list_orders(status="pending")
        assert total == 1
        assert rows[0].user_id == OTHER_USER_ID
        assert order_service.get_pending_orders_count() == 1
        assert [o.id for o in order_service.list_user_orders(USER_ID)] == [first.id]

    def test_unknown_order(self, db_session):
        with pytest.raises(NotFoundError):
            order_service.get_order("0f0e0d0c-0b0a-4908-8706-050403020100")

    def test_ids_are_case_insensitive(self, db_session, stock):
        order = checkout(stock)
        assert order_service.get_order(order.id.upper()).id == order.id
        order = order_service.upload_payment_proof(proof_file(), order.id.upper(), USER_ID)
        assert order.payment_status == "proof_uploaded"
        order = order_service.validate_payment(order.id.upper(), ADMIN_ID)
        assert order.status == "processing"

    def test_history_written_per_transition(self, db_session, stock):
        order = checkout(stock)
        order_service.cancel_order(order.id, ADMIN_ID)
        assert db_session.query(OrderStatusHistory).filter_by(order_id=order.id).count() == 2
