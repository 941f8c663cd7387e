from __future__ import annotations
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def iso(dt: Optional[datetime]) -> Optional[str]:
    dt = as_utc(dt)
    return dt.isoformat().replace('+00:00', 'Z') if dt else None


def parse_iso(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    return as_utc(datetime.fromisoformat(raw.replace('Z', '+00:00')))
