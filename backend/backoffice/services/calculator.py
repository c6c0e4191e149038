# Overview: Exchange and commission math for remittances.

"""
Remittance calculator

Forward:
    commission_total     = amount * pct / 100 + fixed
    effective_commission = max(0, commission_total - offer_discount)
    amount_to_deliver    = (amount - effective_commission) * rate

Reverse (what must be sent for the recipient to get X):
    amount = (X / rate + fixed) / (1 - pct / 100)

Both functions are pure and return unrounded Decimals; quantize_money /
quantize_rate and RemittanceQuote.rounded() produce the values that get
persisted. Money rounds half-up to cents, rates to 4 places.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any

from flask import current_app

from ..errors import ValidationError
from ..validation import to_decimal

CENT = Decimal("0.01")
RATE_STEP = Decimal("0.0001")
HUNDRED = Decimal("100")
ZERO = Decimal("0")
ONE = Decimal("1")

RATE_SOURCES = {"type", "configured", "fallback"}


def quantize_money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def quantize_rate(value: Decimal) -> Decimal:
    return Decimal(value).quantize(RATE_STEP, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class RemittanceQuote:
    amount_sent: Decimal
    exchange_rate: Decimal
    commission_percentage: Decimal
    commission_fixed: Decimal
    commission_total: Decimal
    offer_discount: Decimal
    effective_commission: Decimal
    amount_to_deliver: Decimal

    def rounded(self) -> "RemittanceQuote":
        """
        Persistable copy: money to cents, rate to 4 places, and
        amount_to_deliver recomputed from the rounded commission and rate so
        the stored row satisfies (amount_sent - commission) * rate exactly.
        """
        rate = quantize_rate(self.exchange_rate)
        amount = quantize_money(self.amount_sent)
        effective = quantize_money(self.effective_commission)
        return RemittanceQuote(
            amount_sent=amount,
            exchange_rate=rate,
            commission_percentage=self.commission_percentage.quantize(CENT, rounding=ROUND_HALF_UP),
            commission_fixed=quantize_money(self.commission_fixed),
            commission_total=quantize_money(self.commission_total),
            offer_discount=quantize_money(self.offer_discount),
            effective_commission=effective,
            amount_to_deliver=quantize_money((amount - effective) * rate),
        )

    def to_dict(self) -> dict:
        return {k: str(v) for k, v in self.__dict__.items()}


@dataclass(frozen=True)
class ReverseQuote:
    amount_to_deliver: Decimal
    amount_to_send: Decimal
    commission_total: Decimal
    exchange_rate: Decimal

    def to_dict(self) -> dict:
        return {k: str(v) for k, v in self.__dict__.items()}


@dataclass(frozen=True)
class ResolvedRate:
    rate: Decimal
    rate_source: str  # type | configured | fallback

    @property
    def is_fallback(self) -> bool:
        return self.rate_source == "fallback"


def _check_inputs(exchange_rate, commission_percentage, commission_fixed):
    rate = to_decimal(exchange_rate, "exchange_rate")
    if rate <= 0:
        raise ValidationError("exchange_rate must be > 0", field="exchange_rate")
    pct = to_decimal(commission_percentage, "commission_percentage")
    if pct < 0:
        raise ValidationError("commission_percentage must be >= 0", field="commission_percentage")
    fixed = to_decimal(commission_fixed, "commission_fixed")
    if fixed < 0:
        raise ValidationError("commission_fixed must be >= 0", field="commission_fixed")
    return rate, pct, fixed


def calculate_delivery(
    amount: Any,
    exchange_rate: Any,
    commission_percentage: Any,
    commission_fixed: Any,
    offer_discount: Any = 0,
) -> RemittanceQuote:
    amount = to_decimal(amount, "amount")
    if amount <= 0:
        raise ValidationError("amount must be > 0", field="amount")
    rate, pct, fixed = _check_inputs(exchange_rate, commission_percentage, commission_fixed)
    discount = to_decimal(offer_discount, "offer_discount", allow_none=True) or ZERO
    if discount < 0:
        raise ValidationError("offer_discount must be >= 0", field="offer_discount")

    commission_total = amount * pct / HUNDRED + fixed
    effective = max(ZERO, commission_total - discount)
    return RemittanceQuote(
        amount_sent=amount,
        exchange_rate=rate,
        commission_percentage=pct,
        commission_fixed=fixed,
        commission_total=commission_total,
        offer_discount=discount,
        effective_commission=effective,
        amount_to_deliver=(amount - effective) * rate,
    )


def calculate_amount_to_send(
    amount_to_deliver: Any,
    exchange_rate: Any,
    commission_percentage: Any,
    commission_fixed: Any,
) -> ReverseQuote:
    target = to_decimal(amount_to_deliver, "amount_to_deliver")
    if target <= 0:
        raise ValidationError("amount_to_deliver must be > 0", field="amount_to_deliver")
    rate, pct, fixed = _check_inputs(exchange_rate, commission_percentage, commission_fixed)
    if pct >= HUNDRED:
        raise ValidationError(
            "commission_percentage must be < 100 to solve for the amount to send",
            field="commission_percentage",
        )

    amount = (target / rate + fixed) / (ONE - pct / HUNDRED)
    return ReverseQuote(
        amount_to_deliver=target,
        amount_to_send=amount,
        commission_total=amount * pct / HUNDRED + fixed,
        exchange_rate=rate,
    )


def resolve_exchange_rate(remittance_type, provider) -> ResolvedRate:
    """
    Type-level rate first, then the configured rate table, then 1.

    Falling back to 1 keeps remittances flowing when no rate is configured;
    it is logged and tagged so callers can flag it.
    """
    type_rate = remittance_type.exchange_rate
    if type_rate is not None and Decimal(type_rate) > 0:
        return ResolvedRate(Decimal(type_rate), "type")

    configured = None
    if provider is not None:
        try:
            configured = provider.get_rate(remittance_type.currency_code, remittance_type.delivery_currency)
        except Exception as exc:
            current_app.logger.warning(
                "Rate lookup %s->%s failed: %s",
                remittance_type.currency_code, remittance_type.delivery_currency, exc,
            )
    if configured is not None and Decimal(str(configured)) > 0:
        return ResolvedRate(Decimal(str(configured)), "configured")

    current_app.logger.warning(
        "No exchange rate for %s->%s (remittance type %s); falling back to 1",
        remittance_type.currency_code, remittance_type.delivery_currency, remittance_type.id,
    )
    return ResolvedRate(ONE, "fallback")
