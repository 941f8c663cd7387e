from __future__ import annotations
from typing import Any, Dict, List
from flask import abort

def csv_values(raw: str) -> List[str]:
    return [p.strip() for p in str(raw).split(',') if p.strip()]


def apply_filters(query, specs: Dict[str, Dict[str, Any]], params: Dict[str, Any]):
    """Build WHERE clauses from query-string params.

    specs: { param_name: { 'op': callable(query, value)->query, 'coerce': callable (optional),
                           'validate': callable(value)->bool (optional) } }
    Empty params are ignored; coercion or validation failures abort 400.
    """
    for name, meta in specs.items():
        val = params.get(name)
        if val is None or val == '':
            continue
        if 'coerce' in meta:
            try:
                val = meta['coerce'](val)
            except (TypeError, ValueError):
                abort(400, description=f'{name} invalid')
        if 'validate' in meta and not meta['validate'](val):
            abort(400, description=f'{name} invalid')
        query = meta['op'](query, val)
    return query
