# Overview: Pytest coverage for the remittance exchange/commission calculator.

from decimal import Decimal

import pytest

from backoffice.errors import ValidationError
from backoffice.models import RemittanceType
from backoffice.services.calculator import (
    calculate_amount_to_send,
    calculate_delivery,
    quantize_money,
    resolve_exchange_rate,
)


class FixedRates:
    def __init__(self, rate):
        self.rate = rate

    def get_rate(self, from_currency, to_currency):
        return self.rate


class BrokenRates:
    def get_rate(self, from_currency, to_currency):
        raise RuntimeError("rates service down")


class TestForward:
    def test_commission_and_delivery(self):
        """100 USD at 24 with 2% + 1: commission 3, deliver 2328."""
        quote = calculate_delivery("100", "24", "2", "1")
        assert quote.commission_total == Decimal("3")
        assert quote.amount_to_deliver == Decimal("2328")

    def test_same_inputs_same_output(self):
        first = calculate_delivery("250.55", "24.5", "2.5", "1.25", "0.5")
        second = calculate_delivery("250.55", "24.5", "2.5", "1.25", "0.5")
        assert first == second

    def test_offer_discount_reduces_commission(self):
        quote = calculate_delivery("100", "24", "2", "1", "2")
        assert quote.commission_total == Decimal("3")
        assert quote.effective_commission == Decimal("1")
        assert quote.amount_to_deliver == Decimal("2376")

    def test_discount_never_makes_commission_negative(self):
        quote = calculate_delivery("100", "24", "2", "1", "50")
        assert quote.effective_commission == Decimal("0")
        assert quote.amount_to_deliver == Decimal("2400")

    def test_rounded_keeps_formula_exact(self):
        quote = calculate_delivery("33.33", "24.123456", "2.5", "0.99").rounded()
        assert quote.exchange_rate == Decimal("24.1235")
        assert quote.amount_to_deliver == quantize_money(
            (quote.amount_sent - quote.effective_commission) * quote.exchange_rate
        )

    @pytest.mark.parametrize("amount", ["0", "-5"])
    def test_amount_must_be_positive(self, amount):
        with pytest.raises(ValidationError):
            calculate_delivery(amount, "24", "2", "1")

    def test_rate_must_be_positive(self):
        with pytest.raises(ValidationError) as exc:
            calculate_delivery("100", "0", "2", "1")
        assert exc.value.field == "exchange_rate"


class TestReverse:
    def test_reverse_formula(self):
        quote = calculate_amount_to_send("2328", "24", "2", "1")
        assert quantize_money(quote.amount_to_send) == Decimal("100.00")

    @pytest.mark.parametrize("target", ["10", "2328", "5000.55", "24000"])
    def test_round_trip(self, target):
        reverse = calculate_amount_to_send(target, "24", "2", "1")
        sent = quantize_money(reverse.amount_to_send)
        forward = calculate_delivery(sent, "24", "2", "1").rounded()
        # one cent of rounding on the sent side moves delivery by at most rate * 0.01
        assert abs(forward.amount_to_deliver - Decimal(target)) <= Decimal("0.25")

    def test_percentage_of_100_is_rejected(self):
        with pytest.raises(ValidationError) as exc:
            calculate_amount_to_send("100", "24", "100", "1")
        assert exc.value.field == "commission_percentage"


class TestResolveRate:
    def _type(self, rate):
        return RemittanceType(
            id="type-1", name="t", currency_code="USD", delivery_currency="CUP",
            exchange_rate=rate, min_amount=Decimal("1"),
        )

    def test_type_rate_wins(self, app):
        resolved = resolve_exchange_rate(self._type(Decimal("24")), FixedRates(Decimal("300")))
        assert resolved.rate == Decimal("24")
        assert resolved.rate_source == "type"

    def test_configured_rate(self, app):
        resolved = resolve_exchange_rate(self._type(None), FixedRates(Decimal("300")))
        assert resolved.rate == Decimal("300")
        assert resolved.rate_source == "configured"

    def test_fallback_to_one(self, app):
        resolved = resolve_exchange_rate(self._type(None), FixedRates(None))
        assert resolved.rate == Decimal("1")
        assert resolved.is_fallback

    def test_provider_failure_falls_back(self, app):
        resolved = resolve_exchange_rate(self._type(None), BrokenRates())
        assert resolved.rate_source == "fallback"
