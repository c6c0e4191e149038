# Overview: Status transition tables for orders, payments, remittances and bank transfers.

"""
Transition tables

================================================================================
PURPOSE: Single source of truth for which status moves are legal
================================================================================

Each table maps a current state to the set of states it may move to next.
Edges are directed and there are no implicit self-loops: asking to move a
record to the state it is already in is an illegal transition like any other.

ORDER STATUS:
    pending     -> processing, cancelled
    processing  -> dispatched, cancelled
    dispatched  -> delivered
    delivered   -> completed
    completed   -> (terminal)
    cancelled   -> pending          (reopen only)

ORDER PAYMENT STATUS:
    pending         -> proof_uploaded, rejected, validated
    proof_uploaded  -> validated, rejected, pending
    validated       -> (terminal)
    rejected        -> pending

REMITTANCE STATUS:
    payment_pending         -> payment_proof_uploaded, cancelled
    payment_proof_uploaded  -> payment_validated, payment_rejected
    payment_validated       -> processing
    payment_rejected        -> payment_pending
    processing              -> delivered
    delivered               -> completed
    completed, cancelled    -> (terminal)

    Cancellation is guarded separately: allowed from every non-terminal
    state except delivered (CANCELLABLE_REMITTANCE_STATUSES).

BANK TRANSFER STATUS:
    pending      -> confirmed, failed
    confirmed    -> transferred, failed
    transferred  -> reversed
    failed       -> pending          (retry)
    reversed     -> (terminal)

Tables are immutable module constants; nothing mutates them at runtime.
================================================================================
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Iterable, Mapping

from ..errors import ValidationError


class TransitionTable:
    """Frozen state -> allowed-next-states mapping."""

    def __init__(self, name: str, edges: Mapping[str, Iterable[str]]):
        self.name = name
        self._edges = MappingProxyType({state: frozenset(targets) for state, targets in edges.items()})
        unknown = {t for targets in self._edges.values() for t in targets} - set(self._edges)
        if unknown:
            raise ValueError(f"{name}: transitions to undeclared states {sorted(unknown)}")

    @property
    def states(self) -> frozenset[str]:
        return frozenset(self._edges)

    def is_state(self, state: str) -> bool:
        return state in self._edges

    def allowed_from(self, state: str) -> list[str]:
        """Allowed destinations in a stable order (empty for terminal or unknown states)."""
        return sorted(self._edges.get(state, ()))

    def can_transition(self, from_state: str, to_state: str) -> bool:
        return to_state in self._edges.get(from_state, ())

    def is_terminal(self, state: str) -> bool:
        return self.is_state(state) and not self._edges[state]

    def require_transition(self, from_state: str, to_state: str, *, field: str = "status") -> None:
        """
        Raise ValidationError unless from_state -> to_state is an edge.

        The error names every allowed destination so callers can surface a
        useful message; a terminal state reports an empty list.
        """
        if not self.is_state(to_state):
            raise ValidationError(
                f"Invalid {field} '{to_state}'. Must be one of: {', '.join(sorted(self._edges))}",
                field=field,
            )
        if self.can_transition(from_state, to_state):
            return
        allowed = self.allowed_from(from_state)
        shown = ", ".join(allowed) if allowed else "none"
        raise ValidationError(
            f"Invalid {field} transition from '{from_state}' to '{to_state}'. Allowed: {shown}",
            code="INVALID_TRANSITION",
            field=field,
            context={
                "table": self.name,
                "from": from_state,
                "to": to_state,
                "allowed": allowed,
            },
        )


ORDER_STATUS_TRANSITIONS = TransitionTable(
    "order_status",
    {
        "pending": {"processing", "cancelled"},
        "processing": {"dispatched", "cancelled"},
        "dispatched": {"delivered"},
        "delivered": {"completed"},
        "completed": set(),
        "cancelled": {"pending"},
    },
)

PAYMENT_STATUS_TRANSITIONS = TransitionTable(
    "payment_status",
    {
        "pending": {"proof_uploaded", "rejected", "validated"},
        "proof_uploaded": {"validated", "rejected", "pending"},
        "validated": set(),
        "rejected": {"pending"},
    },
)

REMITTANCE_STATUS_TRANSITIONS = TransitionTable(
    "remittance_status",
    {
        "payment_pending": {"payment_proof_uploaded", "cancelled"},
        "payment_proof_uploaded": {"payment_validated", "payment_rejected"},
        "payment_validated": {"processing"},
        "payment_rejected": {"payment_pending"},
        "processing": {"delivered"},
        "delivered": {"completed"},
        "completed": set(),
        "cancelled": set(),
    },
)

BANK_TRANSFER_TRANSITIONS = TransitionTable(
    "bank_transfer_status",
    {
        "pending": {"confirmed", "failed"},
        "confirmed": {"transferred", "failed"},
        "transferred": {"reversed"},
        "failed": {"pending"},
        "reversed": set(),
    },
)

CANCELLABLE_REMITTANCE_STATUSES = frozenset({
    "payment_pending",
    "payment_proof_uploaded",
    "payment_validated",
    "payment_rejected",
    "processing",
})

ORDER_ADMIN_CANCELLABLE_STATUSES = frozenset({"pending", "processing"})
ORDER_USER_CANCELLABLE_STATUSES = frozenset({"pending"})
