from __future__ import annotations
"""Audit logging decorator for mutating route handlers.

Usage:

@audit_log('AST.CREATE', entity='Asset', entity_id_key='id', meta_keys=['asset_code', 'status'])
def create_asset():
    ... return _asset_json(a), 201

@audit_log('TKT.ASSIGN', entity='Ticket', entity_id_key='id', diff_keys=['status', 'assigned_to'],
           pre_fetch=lambda a, kw: _prefetch_ticket(kw.get('ticket_id')))
def assign(ticket_id): ...

Parameters:
  action: audit action code (e.g. TKT.ASSIGN)
  entity: entity label (Ticket, Asset, RmaRequest, User)
  entity_id_key: key in the returned JSON whose value becomes entity_id.
  entity_id_arg: path parameter used for entity_id when the key is absent.
  meta_keys: keys projected from the returned JSON into meta.
  meta_builder: callable(data, rv, args, kwargs) -> dict; overrides meta_keys.
  diff_keys + pre_fetch: record {'before', 'after'} for keys that changed.

The handler has already committed its own work when the decorator runs; the
audit row is committed separately so a failure here never undoes the mutation.
"""

from functools import wraps
from typing import Any, Callable, Iterable, Optional, Dict

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ticketops.services.audit import add_audit
from ticketops import get_db


def _extract_payload(rv: Any):
    """Return the JSON-able dict of a view return value (dict, (dict, status), ...)."""
    if isinstance(rv, tuple) and rv:
        return rv[0]
    return rv


def audit_log(
    action: str,
    *,
    entity: Optional[str] = None,
    entity_id_key: Optional[str] = None,
    entity_id_arg: Optional[str] = None,
    meta_keys: Optional[Iterable[str]] = None,
    meta_builder: Optional[Callable[[dict, Any, tuple, dict], dict]] = None,
    diff_keys: Optional[Iterable[str]] = None,
    pre_fetch: Optional[Callable[[tuple, dict], Dict[str, Any]]] = None,
):
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            before_snapshot = pre_fetch(args, kwargs) if (diff_keys and pre_fetch) else None
            rv = fn(*args, **kwargs)
            data = _extract_payload(rv)
            if not isinstance(data, dict):
                data = {}
            entity_id = None
            if entity_id_key and entity_id_key in data:
                entity_id = data.get(entity_id_key)
            elif entity_id_arg and entity_id_arg in kwargs:
                entity_id = kwargs.get(entity_id_arg)
            if meta_builder:
                meta = meta_builder(data, rv, args, kwargs) or {}
            else:
                meta = {k: data.get(k) for k in (meta_keys or []) if k in data}
            if diff_keys and before_snapshot:
                changes = {}
                for k in diff_keys:
                    if k in before_snapshot and k in data and before_snapshot.get(k) != data.get(k):
                        changes[k] = {'before': before_snapshot.get(k), 'after': data.get(k)}
                if changes:
                    meta['changes'] = changes
            session = get_db()
            try:
                add_audit(action, entity, entity_id, meta)
                session.commit()
            except SQLAlchemyError:
                session.rollback()
                current_app.logger.warning('Audit write failed for %s %s', action, entity_id, exc_info=True)
            return rv
        return wrapper
    return outer
