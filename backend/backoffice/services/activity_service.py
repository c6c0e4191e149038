# Overview: Append-only activity (audit) log for back-office actions.

from __future__ import annotations

from typing import Any, Optional

from ..extensions import db
from ..models import ActivityLog
from ..time_utils import utcnow
from .side_effects import isolated_write
"""
Activity log invariants

- Append-only: rows are never updated or deleted.
- Rows are written inside the caller's transaction, in a SAVEPOINT, so a
  failed audit write never rolls back the action it describes.
- The logger reports "inserted" or "error"; callers use that only to decide
  whether to chain follow-up bookkeeping.
"""

INSERTED = "inserted"
ERROR = "error"


def append_activity(
    *,
    action: str,
    entity_type: str,
    entity_id: str | None,
    performed_by: str | None = None,
    description: Optional[str] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> ActivityLog:
    """Add one activity row and flush it. No commit, no error handling."""
    row = ActivityLog(
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        performed_by=performed_by,
        description=description,
        details=metadata,
        created_at=utcnow(),
    )
    db.session.add(row)
    db.session.flush()
    return row


class DatabaseActivityLogger:
    def log(
        self,
        *,
        action: str,
        entity_type: str,
        entity_id: str | None,
        performed_by: str | None = None,
        description: str | None = None,
        metadata: dict | None = None,
    ) -> str:
        ok = isolated_write(
            f"activity log {action}",
            lambda: append_activity(
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                performed_by=performed_by,
                description=description,
                metadata=metadata,
            ),
            entity_id=entity_id,
        )
        return INSERTED if ok else ERROR


def list_activity(entity_type: str, entity_id: str, *, limit: int = 100) -> list[ActivityLog]:
    return (
        db.session.query(ActivityLog)
        .filter_by(entity_type=entity_type, entity_id=entity_id)
        .order_by(ActivityLog.created_at.asc())
        .limit(limit)
        .all()
    )
