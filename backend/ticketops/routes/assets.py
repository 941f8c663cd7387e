from flask import Blueprint, request, abort
from sqlalchemy import select
from ticketops.decorators.auth import require_permissions
from ticketops.decorators.audit import audit_log
from ticketops.utils.listing import apply_pagination, cached_list, cached_entity, latest_timestamp
from ticketops.utils.sorting import apply_multi_sort
from ticketops.utils.filters import apply_filters, csv_values
from ticketops.utils.timeutil import iso, utcnow
from ticketops.utils.validation import require_text, optional_text, validate_status, int_in_range, require_int
from ticketops.utils.security import encrypt_secret, decrypt_secret
from ticketops.services.policy import current_actor, assert_site_access, filter_query_by_sites
from ticketops.services.rma_workflow import asset_rma_history
from ticketops import get_db
from ticketops.models.asset import Asset
from ticketops.models.site import Site

assets_bp = Blueprint('assets', __name__)

TEXT_FIELDS = ('device_type', 'make', 'model', 'serial_number', 'mac', 'ip_address', 'location_name',
               'location_description', 'stock_location', 'username')

SORT_FIELDS = {
    'id': Asset.id,
    'asset_code': Asset.asset_code,
    'asset_type': Asset.asset_type,
    'status': Asset.status,
    'criticality': Asset.criticality,
    'updated_at': Asset.updated_at,
}

FILTERS = {
    'status': {
        'coerce': csv_values,
        'validate': lambda vals: bool(vals) and all(v in Asset.ALL_STATUSES for v in vals),
        'op': lambda q, vals: q.filter(Asset.status.in_(vals)),
    },
    'asset_type': {'op': lambda q, v: q.filter(Asset.asset_type == v)},
    'site_id': {'coerce': int, 'op': lambda q, v: q.filter(Asset.site_id == v)},
    'criticality': {'coerce': int, 'validate': lambda v: v in Asset.CRITICALITY_VALUES, 'op': lambda q, v: q.filter(Asset.criticality == v)},
    'search': {'op': lambda q, v: q.filter(Asset.asset_code.ilike(f'%{v}%') | Asset.serial_number.ilike(f'%{v}%'))},
}


@assets_bp.get('')
@require_permissions('AST.READ')
def list_assets():
    session = get_db()
    q = filter_query_by_sites(session.query(Asset), Asset.site_id, current_actor())
    q = apply_filters(q, FILTERS, request.args)
    q = apply_multi_sort(q, request.args.get('sort'), SORT_FIELDS, Asset.id)
    paged_q, total, limit, offset = apply_pagination(q)
    rows = paged_q.all()
    return cached_list([asset_json(a) for a in rows], total, limit, offset, latest_timestamp(rows))


@assets_bp.post('')
@require_permissions('AST.MANAGE')
@audit_log('AST.CREATE', entity='Asset', entity_id_key='id', meta_keys=['asset_code', 'site_id', 'status'])
def create_asset():
    session = get_db()
    data = request.get_json(silent=True) or {}
    code = require_text(data, 'asset_code', max_len=50)
    asset_type = require_text(data, 'asset_type', max_len=50)
    site_id = require_int(data, 'site_id')
    if not session.get(Site, site_id):
        abort(404, description='Site not found')
    assert_site_access(current_actor(), site_id)
    if session.execute(select(Asset).where(Asset.asset_code == code)).scalar_one_or_none():
        abort(409, description='asset_code already exists')
    a = Asset(
        asset_code=code,
        asset_type=asset_type,
        site_id=site_id,
        status=validate_status(data.get('status', Asset.STATUS_OPERATIONAL), Asset.ALL_STATUSES),
        criticality=int_in_range(data.get('criticality', 2), 'criticality', 1, 3),
        password_encrypted=encrypt_secret(optional_text(data, 'password')),
        is_active=True,
        updated_at=utcnow(),
    )
    for f in TEXT_FIELDS:
        setattr(a, f, optional_text(data, f))
    session.add(a)
    session.commit()
    return asset_json(a), 201


@assets_bp.route('/<int:asset_id>', methods=['GET', 'HEAD'])
@require_permissions('AST.READ')
def get_asset(asset_id: int):
    a = _get_asset_or_404(asset_id)
    assert_site_access(current_actor(), a.site_id)
    return cached_entity(asset_json(a), a.updated_at)


@assets_bp.patch('/<int:asset_id>')
@require_permissions('AST.MANAGE')
@audit_log('AST.UPDATE', entity='Asset', entity_id_key='id', diff_keys=['status', 'site_id', 'criticality'],
           pre_fetch=lambda a, kw: _prefetch_asset(kw.get('asset_id')))
def update_asset(asset_id: int):
    session = get_db()
    a = _get_asset_or_404(asset_id)
    actor = current_actor()
    assert_site_access(actor, a.site_id)
    data = request.get_json(silent=True) or {}
    if 'asset_code' in data:
        code = require_text(data, 'asset_code', max_len=50)
        clash = session.execute(select(Asset).where(Asset.asset_code == code, Asset.id != a.id)).scalar_one_or_none()
        if clash:
            abort(409, description='asset_code already exists')
        a.asset_code = code
    if 'asset_type' in data:
        a.asset_type = require_text(data, 'asset_type', max_len=50)
    if 'site_id' in data:
        site_id = require_int(data, 'site_id')
        if not session.get(Site, site_id):
            abort(404, description='Site not found')
        assert_site_access(actor, site_id)
        a.site_id = site_id
    if 'status' in data:
        a.status = validate_status(data['status'], Asset.ALL_STATUSES)
    if 'criticality' in data:
        a.criticality = int_in_range(data['criticality'], 'criticality', 1, 3)
    if 'is_active' in data:
        a.is_active = bool(data['is_active'])
    if 'password' in data:
        a.password_encrypted = encrypt_secret(optional_text(data, 'password'))
    for f in TEXT_FIELDS:
        if f in data:
            setattr(a, f, optional_text(data, f))
    a.updated_at = utcnow()
    session.commit()
    return asset_json(a)


@assets_bp.get('/<int:asset_id>/credentials')
@require_permissions('AST.MANAGE')
@audit_log('AST.CREDENTIALS.READ', entity='Asset', entity_id_arg='asset_id', meta_keys=['username'])
def get_credentials(asset_id: int):
    a = _get_asset_or_404(asset_id)
    assert_site_access(current_actor(), a.site_id)
    return {'asset_id': a.id, 'username': a.username, 'password': decrypt_secret(a.password_encrypted)}


@assets_bp.get('/<int:asset_id>/rma-history')
@require_permissions('AST.READ', 'RMA.READ')
def rma_history(asset_id: int):
    from ticketops.routes.rma import rma_json
    a = _get_asset_or_404(asset_id)
    assert_site_access(current_actor(), a.site_id)
    return {'asset_id': a.id, 'data': [rma_json(r) for r in asset_rma_history(get_db(), a.id)]}


def _get_asset_or_404(asset_id: int) -> Asset:
    a = get_db().get(Asset, asset_id)
    if not a:
        abort(404, description='Asset not found')
    return a


def asset_json(a: Asset):
    body = {
        'id': a.id,
        'asset_code': a.asset_code,
        'asset_type': a.asset_type,
        'site_id': a.site_id,
        'status': a.status,
        'criticality': a.criticality,
        'is_active': a.is_active,
        # never expose the credential itself
        'has_password': bool(a.password_encrypted),
        'updated_at': iso(a.updated_at),
    }
    for f in TEXT_FIELDS:
        body[f] = getattr(a, f)
    return body


def _prefetch_asset(asset_id: int):
    a = get_db().get(Asset, asset_id)
    if not a:
        return {}
    return {'status': a.status, 'site_id': a.site_id, 'criticality': a.criticality}
