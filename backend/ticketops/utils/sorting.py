from __future__ import annotations
from flask import abort

def apply_multi_sort(query, sort_expr: str | None, allowed: dict, tie_breaker, default=None):
    """Apply a multi-field sort to a SQLAlchemy select.
    sort_expr: comma-separated keys, '-' prefix for descending (e.g. "priority,-created_on").
    allowed: mapping of field key -> column object.
    default: clauses used when no sort is requested.
    """
    if not sort_expr:
        clauses = list(default or [])
        clauses.append(tie_breaker.asc())
        return query.order_by(*clauses)
    clauses = []
    for raw in sort_expr.split(','):
        token = raw.strip()
        if not token:
            continue
        desc = token.startswith('-')
        key = token.lstrip('-')
        col = allowed.get(key)
        if col is None:
            abort(400, description=f'Invalid sort field {key}')
        clauses.append(col.desc() if desc else col.asc())
    clauses.append(tie_breaker.asc())
    return query.order_by(*clauses)
