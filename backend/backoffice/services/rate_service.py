# Overview: Exchange-rate lookups against the configured exchange_rates table.

from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..models import ExchangeRate
from ..time_utils import utcnow


class DatabaseRateProvider:
    """Newest active rate per currency pair whose effective date has passed."""

    def get_rate(self, from_currency: str, to_currency: str) -> Decimal | None:
        if not from_currency or not to_currency:
            return None
        if from_currency == to_currency:
            return Decimal("1")
        row = (
            db.session.query(ExchangeRate)
            .filter(
                ExchangeRate.from_currency == from_currency,
                ExchangeRate.to_currency == to_currency,
                ExchangeRate.is_active.is_(True),
                ExchangeRate.effective_date <= utcnow(),
            )
            .order_by(ExchangeRate.effective_date.desc())
            .first()
        )
        return Decimal(row.rate) if row else None


def set_exchange_rate(from_currency: str, to_currency: str, rate, *, effective_date=None) -> ExchangeRate:
    """Add a new active rate for the pair (older rows stay for history). Caller commits."""
    row = ExchangeRate(
        from_currency=from_currency,
        to_currency=to_currency,
        rate=Decimal(str(rate)),
        is_active=True,
        effective_date=effective_date or utcnow(),
    )
    db.session.add(row)
    db.session.flush()
    return row
