# Overview: Domain error taxonomy shared by every service.

"""
Back-office error taxonomy.

Every primary-mutation failure surfaces as a BackofficeError subclass with a
machine-readable ``kind`` and ``code`` plus a human-readable message.
Callers that render errors for end users use ``localized(locale)``, which
looks the code up in a small English/Spanish catalogue and falls back to
the raw message.

KINDS:
    validation       missing/malformed input, illegal state transition
    not_found        entity id has no row
    permission       ownership or role check failed
    unauthenticated  no current user
    conflict         business-rule conflict, lost concurrent update
    db               underlying store failure (wrapped with operation context)
    external         storage/third-party failure on a critical path
    internal         unexpected
"""

from __future__ import annotations

from typing import Any


MESSAGES: dict[str, dict[str, str]] = {
    "VALIDATION_FAILED": {
        "en": "The provided data is invalid.",
        "es": "Los datos proporcionados no son válidos.",
    },
    "MISSING_REQUIRED_FIELD": {
        "en": "A required field is missing.",
        "es": "Falta un campo requerido.",
    },
    "INVALID_TRANSITION": {
        "en": "This action is not allowed in the current state.",
        "es": "Esta acción no está permitida en el estado actual.",
    },
    "INSUFFICIENT_STOCK": {
        "en": "There is not enough stock to complete the operation.",
        "es": "No hay suficiente inventario para completar la operación.",
    },
    "DELIVERY_PROOF_REQUIRED": {
        "en": "A delivery proof is required before confirming delivery.",
        "es": "Se requiere evidencia de entrega antes de confirmar la entrega.",
    },
    "AMOUNT_OUT_OF_RANGE": {
        "en": "The amount is outside the allowed limits.",
        "es": "El monto está fuera de los límites permitidos.",
    },
    "NOT_FOUND": {
        "en": "The requested resource was not found.",
        "es": "El recurso solicitado no fue encontrado.",
    },
    "FORBIDDEN": {
        "en": "You do not have permission to perform this action.",
        "es": "No tiene permisos para realizar esta acción.",
    },
    "AUTH_REQUIRED": {
        "en": "Authentication required. Please log in.",
        "es": "Se requiere autenticación. Por favor inicie sesión.",
    },
    "CONFLICT": {
        "en": "There is a conflict with existing data.",
        "es": "Existe un conflicto con los datos existentes.",
    },
    "STATE_CHANGED": {
        "en": "The record was changed by someone else. Please retry.",
        "es": "El registro fue modificado por otra persona. Intente de nuevo.",
    },
    "DB_ERROR": {
        "en": "A database error occurred. Please try again.",
        "es": "Ocurrió un error de base de datos. Intente de nuevo.",
    },
    "EXTERNAL_SERVICE_ERROR": {
        "en": "An external service is unavailable. Please try again.",
        "es": "Un servicio externo no está disponible. Intente de nuevo.",
    },
    "INTERNAL_ERROR": {
        "en": "An unexpected error occurred.",
        "es": "Ocurrió un error inesperado.",
    },
}


class BackofficeError(Exception):
    """Base for every expected, structured failure."""

    kind = "internal"
    default_code = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        field: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.field = field
        self.context = dict(context or {})

    def localized(self, locale: str = "es") -> str:
        entry = MESSAGES.get(self.code)
        if not entry:
            return self.message
        return entry.get(locale) or entry.get("en") or self.message

    def to_dict(self, locale: str | None = None) -> dict:
        data = {
            "kind": self.kind,
            "code": self.code,
            "message": self.message,
            "field": self.field,
            "context": self.context,
        }
        if locale:
            data["localized_message"] = self.localized(locale)
        return data


class ValidationError(BackofficeError):
    """400-level input problem or illegal state transition."""

    kind = "validation"
    default_code = "VALIDATION_FAILED"


class InsufficientStockError(ValidationError):
    default_code = "INSUFFICIENT_STOCK"


class NotFoundError(BackofficeError):
    kind = "not_found"
    default_code = "NOT_FOUND"


class PermissionDeniedError(BackofficeError):
    """Ownership or role check failed."""

    kind = "permission"
    default_code = "FORBIDDEN"


class UnauthenticatedError(BackofficeError):
    kind = "unauthenticated"
    default_code = "AUTH_REQUIRED"


class ConflictError(BackofficeError):
    """409-level business rule conflict."""

    kind = "conflict"
    default_code = "CONFLICT"


class DbError(BackofficeError):
    kind = "db"
    default_code = "DB_ERROR"


class ExternalServiceError(BackofficeError):
    kind = "external"
    default_code = "EXTERNAL_SERVICE_ERROR"


class InternalError(BackofficeError):
    kind = "internal"
    default_code = "INTERNAL_ERROR"
