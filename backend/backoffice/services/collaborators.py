# Overview: Registry of external collaborators (auth, storage, audit log, notifications, rates, offers).

"""
External collaborators live in ``app.extensions["backoffice"]`` so that a
deployment (or a test) can swap any of them without touching the services.

    auth             get_current_user() -> {"id", "email"} | UnauthenticatedError
    storage          upload / get_public_url / create_signed_url
    activity_logger  log(...) -> "inserted" | "error"
    notifier         notify(event, payload, recipient, locale)
    rates            get_rate(from_currency, to_currency) -> Decimal | None
    offers           validate_offer(code, subtotal, user_id) / record_usage(...)
"""

from __future__ import annotations

from flask import Flask, current_app

EXTENSION_KEY = "backoffice"

COLLABORATOR_NAMES = ("auth", "storage", "activity_logger", "notifier", "rates", "offers")


def install_default_collaborators(app: Flask) -> dict:
    from .activity_service import DatabaseActivityLogger
    from .auth_service import AuthContext
    from .notification_service import LoggingNotifier
    from .offer_service import NullOfferResolver
    from .rate_service import DatabaseRateProvider
    from .storage_service import LocalFileStorage

    registry = {
        "auth": AuthContext(),
        "storage": LocalFileStorage.from_config(app.config),
        "activity_logger": DatabaseActivityLogger(),
        "notifier": LoggingNotifier(),
        "rates": DatabaseRateProvider(),
        "offers": NullOfferResolver(),
    }
    app.extensions[EXTENSION_KEY] = registry
    return registry


def get_collaborator(name: str):
    try:
        return current_app.extensions[EXTENSION_KEY][name]
    except KeyError:
        raise RuntimeError(f"Collaborator '{name}' is not installed on this app")


def set_collaborator(app: Flask, name: str, implementation) -> None:
    if name not in COLLABORATOR_NAMES:
        raise ValueError(f"Unknown collaborator '{name}'")
    app.extensions.setdefault(EXTENSION_KEY, {})[name] = implementation
