from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


def utc_now() -> datetime:
    # Stored naive (UTC) so values round-trip identically on SQLite and MySQL.
    return datetime.now(timezone.utc).replace(tzinfo=None)
