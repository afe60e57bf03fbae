"""Declarative base shared by all models, plus column value helpers."""

import secrets
import time
from datetime import datetime, timezone

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what DATETIME columns hand back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def generate_id(prefix: str) -> str:
    """Sortable public id, e.g. ``req_18c1f2a9b3e_4f9a1c2d``."""
    return f"{prefix}_{int(time.time() * 1000):x}_{secrets.token_hex(4)}"
