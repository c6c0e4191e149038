# Overview: Current-user lookup for lifecycle operations.

from __future__ import annotations

from flask import g, has_app_context

from ..errors import UnauthenticatedError, PermissionDeniedError


class AuthContext:
    """
    Reads the authenticated user from ``flask.g.current_user``.

    Whatever authenticates the request (session, token, admin console) is
    expected to put ``{"id": ..., "email": ...}`` there; this object only
    reads it.
    """

    def get_current_user(self) -> dict:
        user = getattr(g, "current_user", None) if has_app_context() else None
        if not user or not user.get("id"):
            raise UnauthenticatedError("Authentication required")
        return {"id": str(user["id"]), "email": user.get("email")}


def require_owner(entity, user_id: str, *, entity_name: str) -> None:
    """Ownership check used by every user-initiated operation."""
    if str(entity.user_id) != str(user_id):
        raise PermissionDeniedError(
            f"You do not have permission to modify this {entity_name}",
            context={"entity_id": entity.id},
        )
