"""Outbound notifications (email, live-update push).

Delivery is pluggable through ``app.config['NOTIFIER']``: a callable taking
``(event, payload)``. Without one, events are only logged. Delivery failures
never undo a committed mutation; callers get a warning string to pass back to
the client instead.
"""
from __future__ import annotations
from typing import Any, Dict, List, Optional

from flask import current_app


def loggable(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Payload copy safe for the log: credential values are masked."""
    return {k: ('***' if 'password' in k.lower() else v) for k, v in payload.items()}


def notify(event: str, payload: Dict[str, Any]) -> None:
    notifier = current_app.config.get('NOTIFIER')
    if notifier is None:
        current_app.logger.info('notification %s %s', event, loggable(payload))
        return
    notifier(event, payload)


def notify_safely(event: str, payload: Dict[str, Any], warnings: Optional[List[str]] = None) -> Optional[str]:
    """Send and swallow delivery errors, returning a client-facing warning."""
    try:
        notify(event, payload)
    except Exception as exc:  # any transport error is non-fatal here
        current_app.logger.warning('notification %s failed: %s', event, exc)
        message = f'Notification {event} could not be delivered'
        if warnings is not None:
            warnings.append(message)
        return message
    return None


def with_warnings(body: Dict[str, Any], warnings: List[str]) -> Dict[str, Any]:
    if warnings:
        body = dict(body)
        body['warnings'] = list(warnings)
    return body
