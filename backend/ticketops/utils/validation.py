"""Reusable validation helpers for request payloads.

All helpers abort with 400 so handlers can use them inline before any mutation.
"""
from __future__ import annotations
from typing import Any, Iterable, Optional
from flask import abort


def validate_status(new_status: str, allowed: Iterable[str], field_name: str = 'status') -> str:
    """Validate that new_status is inside allowed.

    Returns the status (to enable inline usage) or aborts with 400.
    """
    if new_status not in allowed:
        abort(400, description=f"{field_name} invalid")
    return new_status


def require_text(data: dict, field_name: str, max_len: Optional[int] = None) -> str:
    val = data.get(field_name)
    if not isinstance(val, str) or not val.strip():
        abort(400, description=f"{field_name} required")
    val = val.strip()
    if max_len and len(val) > max_len:
        abort(400, description=f"{field_name} too long")
    return val


def optional_text(data: dict, field_name: str) -> Optional[str]:
    val = data.get(field_name)
    if val is None:
        return None
    if not isinstance(val, str):
        abort(400, description=f"{field_name} invalid")
    return val.strip() or None


def int_in_range(value: Any, field_name: str, low: int, high: int) -> int:
    if isinstance(value, bool):
        abort(400, description=f"{field_name} invalid")
    try:
        num = int(value)
    except (TypeError, ValueError):
        abort(400, description=f"{field_name} invalid")
    if num < low or num > high:
        abort(400, description=f"{field_name} must be between {low} and {high}")
    return num


def require_int(data: dict, field_name: str) -> int:
    val = data.get(field_name)
    if isinstance(val, bool) or not isinstance(val, int):
        abort(400, description=f"{field_name} required")
    return val

__all__ = ['validate_status', 'require_text', 'optional_text', 'int_in_range', 'require_int']
