# Overview: Pytest coverage for the Flask CLI command groups.

from datetime import timedelta

from backoffice.services import order_service, remittance_service, remittance_type_service
from backoffice.services import payment_account_service

from conftest import ADMIN_ID, USER_ID, order_payload, product_line, proof_file, remittance_payload


def run(app, *args):
    return app.test_cli_runner().invoke(args=list(args))


class TestRemittanceTypes:
    def test_create_and_list(self, app, db_session):
        result = run(
            app, "remittance-types", "create",
            "--name", "USD -> CUP cash", "--currency", "usd", "--delivery-currency", "cup",
            "--commission-pct", "2", "--commission-fixed", "1", "--min-amount", "10",
        )
        assert result.exit_code == 0, result.output
        assert "PASS Created remittance type USD -> CUP cash" in result.output

        listing = run(app, "remittance-types", "list")
        assert "USD->CUP" in listing.output
        assert "rate=table" in listing.output

    def test_create_rejected(self, app, db_session):
        result = run(
            app, "remittance-types", "create",
            "--name", "Broken", "--currency", "USD", "--delivery-currency", "CUP", "--min-amount", "0",
        )
        assert result.exit_code == 1
        assert "validation" in result.output
        assert remittance_type_service.list_remittance_types() == []

    def test_empty_list(self, app, db_session):
        assert "No remittance types configured." in run(app, "remittance-types", "list", "--active-only").output


class TestPaymentAccounts:
    def test_reset_counters(self, app, db_session):
        payment_account_service.create_payment_account({"account_name": "Zelle"})
        result = run(app, "payment-accounts", "reset-counters", "--period", "daily")
        assert result.exit_code == 0
        assert "PASS Reset daily counters on 1 account(s)" in result.output

    def test_reset_unknown_account(self, app, db_session):
        result = run(app, "payment-accounts", "reset-counters", "--period", "monthly", "--account-id", "nope")
        assert result.exit_code == 1
        assert "not_found" in result.output

    def test_bad_period(self, app, db_session):
        assert run(app, "payment-accounts", "reset-counters", "--period", "weekly").exit_code == 2

    def test_list(self, app, db_session):
        payment_account_service.create_payment_account({"account_name": "Zelle", "for_products": False})
        output = run(app, "payment-accounts", "list").output
        assert "Zelle" in output
        assert "remittances" in output


def test_pending_count(app, db_session, stock):
    order_service.create_order(order_payload("9.00"), [product_line(stock, 2)])
    result = run(app, "orders", "pending-count")
    assert result.output.strip() == "1"


def test_remittance_alerts(app, db_session, cash_type):
    assert "No remittances close" in run(app, "remittances", "alerts").output

    remittance_type_service.update_remittance_type(cash_type.id, {"max_delivery_days": 0})
    remittance = remittance_service.create_remittance(remittance_payload(cash_type), USER_ID)
    remittance_service.upload_payment_proof(proof_file(), remittance.id, USER_ID, payment_reference="ZL-1")
    remittance = remittance_service.validate_payment(remittance.id, ADMIN_ID)
    assert remittance.max_delivery_date - remittance.payment_validated_at == timedelta(0)

    output = run(app, "remittances", "alerts").output
    assert remittance.remittance_number in output
    assert "ERROR" in output
