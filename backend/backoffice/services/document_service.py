# Overview: Human-readable document numbers backed by per-type, per-period sequences.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def _bump(document_type: str, period: str) -> int | None:
    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.document_type == document_type,
            DocumentSequence.period == period,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None
    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type, period=period)
        .scalar()
    )
    return current - 1


def next_document_number(
    *,
    document_type: str,
    period: str,
    prefix: str,
    pad: int = 4,
) -> str:
    """
    Atomically allocate the next number for (document_type, period), e.g.
    REM-2026-0001.

    Runs inside the caller's transaction: the UPDATE takes the row lock and
    is released at the caller's commit, so two transactions never get the
    same number. The first number of a period inserts the sequence row in a
    SAVEPOINT; if a concurrent transaction inserted it first, the UPDATE
    path is taken instead.
    """
    if not document_type:
        raise DocumentSequenceError("document_type is required")
    if not period:
        raise DocumentSequenceError("period is required")

    next_num = _bump(document_type, period)
    if next_num is None:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(document_type=document_type, period=period, next_number=2))
            next_num = 1
        except IntegrityError:
            next_num = _bump(document_type, period)
            if next_num is None:
                raise DocumentSequenceError(f"Could not allocate {document_type} number for {period}")

    return f"{prefix}-{period}-{next_num:0{pad}d}"
