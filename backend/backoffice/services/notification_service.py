# Overview: Default notifier; writes notifications to the application log.

from __future__ import annotations

from flask import current_app

# Events emitted by the lifecycle services
ORDER_EVENTS = {
    "order.created",
    "order.payment_proof_uploaded",
    "order.payment_validated",
    "order.payment_rejected",
    "order.status_changed",
    "order.cancelled",
}
REMITTANCE_EVENTS = {
    "remittance.created",
    "remittance.payment_proof_uploaded",
    "remittance.payment_validated",
    "remittance.payment_rejected",
    "remittance.processing",
    "remittance.delivered",
    "remittance.completed",
    "remittance.cancelled",
}


class LoggingNotifier:
    """
    Stand-in for the messaging channel (WhatsApp in production).

    Delivery itself is external; this adapter records what would be sent.
    """

    def notify(self, event: str, payload: dict, recipient: str, locale: str) -> None:
        current_app.logger.info(
            "notify event=%s recipient=%s locale=%s entity=%s",
            event, recipient, locale, payload.get("id"),
        )
