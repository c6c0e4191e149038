# Overview: Default discount/offer resolver (no offers configured).

from __future__ import annotations

from decimal import Decimal


class NullOfferResolver:
    """
    Offer calculation lives outside the back office. This resolver accepts
    no codes; a deployment installs a real one via set_collaborator.
    """

    def validate_offer(self, code: str | None, subtotal: Decimal, user_id: str) -> dict:
        if not code:
            return {"valid": False, "reason": "no_code"}
        return {"valid": False, "reason": "offers_not_configured"}

    def record_usage(self, offer_id: str, user_id: str, order_id: str) -> None:
        return None
