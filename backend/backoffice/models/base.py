from __future__ import annotations

import uuid
from decimal import Decimal


def new_id() -> str:
    """Opaque, globally unique primary key (UUID4 string)."""
    return str(uuid.uuid4())


def decimal_str(value: Decimal | None) -> str | None:
    return None if value is None else str(value)
