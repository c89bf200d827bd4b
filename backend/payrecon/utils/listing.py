from __future__ import annotations
"""List endpoint helpers: limit/offset pagination plus ETag / Last-Modified validators."""
from typing import Iterable, Optional, Tuple
from flask import request, make_response
from sqlalchemy import func, select
from payrecon.config.pagination import normalize_pagination
from payrecon.errors import ValidationError
import hashlib
from datetime import datetime, timezone, timedelta
from email.utils import parsedate_to_datetime, format_datetime

TIMESTAMP_TOLERANCE = timedelta(seconds=1)

def canonicalize_timestamp(dt: datetime) -> datetime:
    """Return UTC tz-aware timestamp truncated to whole seconds."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.replace(microsecond=0)

def iso_z(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    return canonicalize_timestamp(dt).isoformat().replace('+00:00', 'Z')

def paginate(session, stmt) -> Tuple[list, int, int, int]:
    """Execute ``stmt`` (a 2.x select of one entity) for the requested page."""
    try:
        limit, offset = normalize_pagination(request.args.get('limit'), request.args.get('offset'))
    except ValueError as e:
        raise ValidationError(str(e))
    total = session.execute(select(func.count()).select_from(stmt.order_by(None).subquery())).scalar_one()
    rows = session.execute(stmt.offset(offset).limit(limit)).scalars().all()
    return rows, total, limit, offset

def compute_etag(ids: Iterable[int], total: int, limit: int, offset: int, latest_ts: Optional[str] = '') -> str:
    seed = f"{list(ids)}|{total}|{limit}|{offset}|{latest_ts or ''}"
    return hashlib.sha256(seed.encode()).hexdigest()[:32]

def _http_date(dt: datetime) -> str:
    return format_datetime(dt, usegmt=True)

def _set_validators(resp, etag: str, latest_ts: Optional[datetime]):
    resp.headers['ETag'] = etag
    if latest_ts:
        latest_c = canonicalize_timestamp(latest_ts)
        resp.headers['Last-Modified'] = _http_date(latest_c)
        resp.headers['X-Last-Modified-ISO'] = iso_z(latest_c)
    return resp

def make_cached_list_response(rows: list, total: int, limit: int, offset: int, latest_ts: Optional[datetime] = None):
    etag = compute_etag([r.get('id') for r in rows], total, limit, offset, iso_z(latest_ts))
    resp = make_response({
        'data': rows,
        'pagination': {'total': total, 'limit': limit, 'offset': offset, 'returned': len(rows)},
    })
    return _set_validators(resp, etag, latest_ts), etag

def _parse_if_modified_since(header_val: str) -> Optional[datetime]:
    try:
        dt = datetime.fromisoformat(header_val.replace('Z', '+00:00'))
    except ValueError:
        try:
            dt = parsedate_to_datetime(header_val)
        except (TypeError, ValueError):
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt

def handle_conditional(etag_value: str, latest_ts: Optional[datetime]):
    """Return a 304 response when If-None-Match / If-Modified-Since are satisfied, else None.

    If-None-Match takes precedence over If-Modified-Since.
    """
    inm = request.headers.get('If-None-Match')
    if inm:
        if inm.strip('"') == etag_value:
            return _set_validators(make_response('', 304), etag_value, latest_ts)
        return None
    ims_raw = request.headers.get('If-Modified-Since')
    if ims_raw and latest_ts:
        ims_dt = _parse_if_modified_since(ims_raw)
        if ims_dt and canonicalize_timestamp(latest_ts) <= canonicalize_timestamp(ims_dt) + TIMESTAMP_TOLERANCE:
            return _set_validators(make_response('', 304), etag_value, latest_ts)
    return None
