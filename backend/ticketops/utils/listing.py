from __future__ import annotations
from typing import Iterable, Optional, Tuple
from flask import request, abort, make_response, jsonify
from sqlalchemy.orm import Query
from ticketops.config.pagination import normalize_pagination
import hashlib
from datetime import datetime, timedelta
from email.utils import parsedate_to_datetime, format_datetime
from ticketops.utils.timeutil import as_utc

TIMESTAMP_TOLERANCE = timedelta(seconds=1)


def canonicalize_timestamp(dt: datetime) -> datetime:
    """Return UTC tz-aware timestamp truncated to whole seconds."""
    return as_utc(dt).replace(microsecond=0)


def apply_pagination(q: Query) -> Tuple[Query, int, int, int]:
    try:
        limit, offset = normalize_pagination(request.args.get('limit'), request.args.get('offset'))
    except ValueError as e:
        abort(400, description=str(e))
    total = q.count()
    return q.offset(offset).limit(limit), total, limit, offset


def latest_timestamp(rows) -> Optional[datetime]:
    stamps = [as_utc(r.updated_at) for r in rows if getattr(r, 'updated_at', None)]
    return max(stamps) if stamps else None


def compute_etag(ids: Iterable[int], total: int, limit: int, offset: int, latest_ts: Optional[str] = '') -> str:
    seed = f"{list(ids)}|{total}|{limit}|{offset}|{latest_ts or ''}"
    return hashlib.sha256(seed.encode()).hexdigest()[:32]


def build_list_payload(rows: list, total: int, limit: int, offset: int):
    return {
        'data': rows,
        'pagination': {
            'total': total,
            'limit': limit,
            'offset': offset,
            'returned': len(rows)
        }
    }


def _http_date(dt: datetime) -> str:
    return format_datetime(dt, usegmt=True)


def _set_freshness_headers(resp, etag: str, latest_c: Optional[datetime]):
    resp.headers['ETag'] = etag
    if latest_c:
        resp.headers['Last-Modified'] = _http_date(latest_c)
        resp.headers['X-Last-Modified-ISO'] = latest_c.isoformat().replace('+00:00', 'Z')
    return resp


def make_cached_list_response(rows: list, total: int, limit: int, offset: int, latest_ts: Optional[datetime] = None):
    ids = [r.get('id') for r in rows]
    latest_ts_c = canonicalize_timestamp(latest_ts) if isinstance(latest_ts, datetime) else None
    latest_iso = latest_ts_c.isoformat().replace('+00:00', 'Z') if latest_ts_c else ''
    etag = compute_etag(ids, total, limit, offset, latest_iso)
    resp = make_response(build_list_payload(rows, total, limit, offset))
    return _set_freshness_headers(resp, etag, latest_ts_c), etag


def _parse_if_modified_since(header_val: str) -> Optional[datetime]:
    if not header_val:
        return None
    try:
        return as_utc(datetime.fromisoformat(header_val.replace('Z', '+00:00')))
    except ValueError:
        pass
    try:
        return as_utc(parsedate_to_datetime(header_val))
    except (TypeError, ValueError):
        return None


def handle_conditional(etag_value: str, latest_ts: Optional[datetime]):
    """Evaluate conditional request headers.

    If-None-Match takes precedence over If-Modified-Since (RFC 9110).
    Returns a 304 response when the client copy is fresh, else None.
    """
    latest_c = canonicalize_timestamp(latest_ts) if latest_ts else None
    inm = request.headers.get('If-None-Match')
    if inm:
        if inm.strip('"') == etag_value:
            return _set_freshness_headers(make_response('', 304), etag_value, latest_c)
        return None
    ims_raw = request.headers.get('If-Modified-Since')
    if ims_raw and latest_c:
        ims_dt = _parse_if_modified_since(ims_raw)
        if ims_dt and latest_c <= canonicalize_timestamp(ims_dt) + TIMESTAMP_TOLERANCE:
            return _set_freshness_headers(make_response('', 304), etag_value, latest_c)
    return None


def cached_list(rows_json: list, total: int, limit: int, offset: int, latest_ts: Optional[datetime], head: bool = False):
    """List response with ETag/Last-Modified, short-circuiting to 304 when fresh."""
    resp, etag = make_cached_list_response(rows_json, total, limit, offset, latest_ts)
    cond = handle_conditional(etag, latest_ts)
    if cond:
        return cond
    if head:
        resp.set_data(b'')
    return resp


def cached_entity(body: dict, latest_ts: Optional[datetime]):
    latest_c = canonicalize_timestamp(latest_ts) if latest_ts else None
    etag = compute_etag([body.get('id')], 1, 1, 0, latest_c.isoformat() if latest_c else '')
    cond = handle_conditional(etag, latest_ts)
    if cond:
        return cond
    resp = make_response(jsonify(body))
    resp = _set_freshness_headers(resp, etag, latest_c)
    if request.method == 'HEAD':
        resp.set_data(b'')
    return resp
