from flask import Blueprint, request, abort
from sqlalchemy import select, update
from ticketops.decorators.auth import require_permissions
from ticketops.decorators.audit import audit_log
from ticketops.utils.listing import apply_pagination, cached_list, cached_entity, latest_timestamp
from ticketops.utils.sorting import apply_multi_sort
from ticketops.utils.filters import apply_filters
from ticketops.utils.timeutil import iso, utcnow
from ticketops.utils.validation import require_text, optional_text
from ticketops.services.policy import current_actor, assert_site_access
from ticketops import get_db
from ticketops.models.site import Site

sites_bp = Blueprint('sites', __name__)

TEXT_FIELDS = ('city', 'address', 'contact_person', 'contact_phone')

FILTERS = {
    'city': {'op': lambda q, v: q.filter(Site.city == v)},
    'is_active': {'coerce': lambda v: str(v).lower() in ('1', 'true', 'yes'), 'op': lambda q, v: q.filter(Site.is_active.is_(v))},
    'search': {'op': lambda q, v: q.filter(Site.site_code.ilike(f'%{v}%') | Site.site_name.ilike(f'%{v}%'))},
}


@sites_bp.get('')
@require_permissions('SITE.READ')
def list_sites():
    session = get_db()
    actor = current_actor()
    q = session.query(Site)
    if actor.site_ids:
        q = q.filter(Site.id.in_(actor.site_ids))
    q = apply_filters(q, FILTERS, request.args)
    q = apply_multi_sort(q, request.args.get('sort'), {'site_code': Site.site_code, 'site_name': Site.site_name, 'id': Site.id}, Site.id)
    paged_q, total, limit, offset = apply_pagination(q)
    rows = paged_q.all()
    return cached_list([site_json(s) for s in rows], total, limit, offset, latest_timestamp(rows))


@sites_bp.post('')
@require_permissions('SITE.MANAGE')
@audit_log('SITE.CREATE', entity='Site', entity_id_key='id', meta_keys=['site_code', 'is_head_office'])
def create_site():
    session = get_db()
    data = request.get_json(silent=True) or {}
    code = require_text(data, 'site_code', max_len=32)
    name = require_text(data, 'site_name', max_len=128)
    if session.execute(select(Site).where(Site.site_code == code)).scalar_one_or_none():
        abort(409, description='site_code already exists')
    s = Site(site_code=code, site_name=name, is_head_office=bool(data.get('is_head_office', False)),
             is_active=True, updated_at=utcnow())
    for f in TEXT_FIELDS:
        setattr(s, f, optional_text(data, f))
    if s.is_head_office:
        _clear_head_office(session)
    session.add(s)
    session.commit()
    return site_json(s), 201


@sites_bp.route('/<int:site_id>', methods=['GET', 'HEAD'])
@require_permissions('SITE.READ')
def get_site(site_id: int):
    s = _get_site_or_404(site_id)
    assert_site_access(current_actor(), s.id)
    return cached_entity(site_json(s), s.updated_at)


@sites_bp.patch('/<int:site_id>')
@require_permissions('SITE.MANAGE')
@audit_log('SITE.UPDATE', entity='Site', entity_id_key='id', diff_keys=['site_name', 'is_head_office', 'is_active'],
           pre_fetch=lambda a, kw: _prefetch_site(kw.get('site_id')))
def update_site(site_id: int):
    session = get_db()
    s = _get_site_or_404(site_id)
    data = request.get_json(silent=True) or {}
    if 'site_name' in data:
        s.site_name = require_text(data, 'site_name', max_len=128)
    for f in TEXT_FIELDS:
        if f in data:
            setattr(s, f, optional_text(data, f))
    if 'is_active' in data:
        s.is_active = bool(data['is_active'])
    if data.get('is_head_office') is True and not s.is_head_office:
        _clear_head_office(session)
        s.is_head_office = True
    elif data.get('is_head_office') is False:
        s.is_head_office = False
    s.updated_at = utcnow()
    session.commit()
    return site_json(s)


def _clear_head_office(session):
    # Only one site carries the head-office flag
    session.execute(update(Site).where(Site.is_head_office.is_(True)).values(is_head_office=False, updated_at=utcnow()))


def _get_site_or_404(site_id: int) -> Site:
    s = get_db().get(Site, site_id)
    if not s:
        abort(404, description='Site not found')
    return s


def site_json(s: Site):
    return {
        'id': s.id,
        'site_code': s.site_code,
        'site_name': s.site_name,
        'city': s.city,
        'address': s.address,
        'contact_person': s.contact_person,
        'contact_phone': s.contact_phone,
        'is_head_office': s.is_head_office,
        'is_active': s.is_active,
        'updated_at': iso(s.updated_at),
    }


def _prefetch_site(site_id: int):
    s = get_db().get(Site, site_id)
    if not s:
        return {}
    return {'site_name': s.site_name, 'is_head_office': s.is_head_office, 'is_active': s.is_active}
