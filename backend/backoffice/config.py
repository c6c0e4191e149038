# backend/backoffice/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key (also signs storage URLs)
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///backoffice.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Object storage (local adapter)
    STORAGE_ROOT = os.environ.get("STORAGE_ROOT", "storage")
    STORAGE_PUBLIC_BASE_URL = os.environ.get("STORAGE_PUBLIC_BASE_URL", "/storage")
    SIGNED_URL_TTL_SECONDS = int(os.environ.get("SIGNED_URL_TTL_SECONDS", "3600"))
    ORDER_DOCUMENTS_BUCKET = "order-documents"
    REMITTANCE_PROOFS_BUCKET = "remittance-proofs"

    # Notification/storage calls may not hold a lifecycle operation longer than this
    SIDE_EFFECT_TIMEOUT_SECONDS = float(os.environ.get("SIDE_EFFECT_TIMEOUT_SECONDS", "5.0"))

    TRANSACTION_RETRY_ATTEMPTS = int(os.environ.get("TRANSACTION_RETRY_ATTEMPTS", "3"))

    DEFAULT_LOCALE = os.environ.get("DEFAULT_LOCALE", "es")
    ADMIN_NOTIFICATION_RECIPIENT = os.environ.get("ADMIN_NOTIFICATION_RECIPIENT")
