import secrets
from flask import Blueprint, request, abort, current_app
from sqlalchemy import select, or_
from ticketops.decorators.auth import require_permissions
from ticketops.decorators.audit import audit_log
from ticketops.utils.listing import apply_pagination, cached_list, latest_timestamp
from ticketops.utils.filters import apply_filters
from ticketops.utils.timeutil import iso, utcnow
from ticketops.utils.validation import require_text, optional_text
from ticketops.services.policy import current_actor
from ticketops.services.notifications import notify_safely, with_warnings
from ticketops.constants.permissions import ROLE_CLIENT_VIEWER
from ticketops import get_db
from ticketops.models.authz import User
from ticketops.models.client_registration import ClientRegistration
from ticketops.models.site import Site

clients_bp = Blueprint('clients', __name__)


@clients_bp.post('/registrations')
def register():
    """Public self-service signup; an admin approves before any account exists."""
    session = get_db()
    data = request.get_json(silent=True) or {}
    email = require_text(data, 'email', max_len=128)
    if '@' not in email:
        abort(400, description='email invalid')
    site_id = data.get('site_id')
    if site_id is not None and (not isinstance(site_id, int) or not session.get(Site, site_id)):
        abort(400, description='site_id invalid')
    pending = session.execute(select(ClientRegistration).where(
        ClientRegistration.email == email, ClientRegistration.status == ClientRegistration.STATUS_PENDING)
    ).scalar_one_or_none()
    if pending:
        abort(409, description='A registration for this email is already pending')
    now = utcnow()
    reg = ClientRegistration(
        full_name=require_text(data, 'full_name', max_len=128),
        email=email,
        mobile_number=optional_text(data, 'mobile_number'),
        organization=optional_text(data, 'organization'),
        site_id=site_id,
        status=ClientRegistration.STATUS_PENDING,
        created_on=now,
        updated_at=now,
    )
    session.add(reg)
    session.commit()
    current_app.logger.info('client registration %s received for %s', reg.id, email)
    return registration_json(reg), 201


@clients_bp.get('/registrations')
@require_permissions('ADMIN.CLIENT.MANAGE')
def list_registrations():
    session = get_db()
    q = apply_filters(session.query(ClientRegistration), {
        'status': {
            'validate': lambda v: v in ClientRegistration.ALL_STATUSES,
            'op': lambda q, v: q.filter(ClientRegistration.status == v),
        },
    }, request.args)
    paged_q, total, limit, offset = apply_pagination(q.order_by(ClientRegistration.id.desc()))
    rows = paged_q.all()
    return cached_list([registration_json(r) for r in rows], total, limit, offset, latest_timestamp(rows))


@clients_bp.post('/registrations/<int:registration_id>/approve')
@require_permissions('ADMIN.CLIENT.MANAGE')
@audit_log('CLIENT.APPROVE', entity='ClientRegistration', entity_id_key='id', meta_keys=['email', 'user_id'])
def approve(registration_id: int):
    session = get_db()
    reg = _get_pending_or_abort(registration_id)
    clash = session.execute(select(User).where(or_(User.email == reg.email, User.username == reg.email))).scalar_one_or_none()
    if clash:
        abort(409, description='A user with this email already exists')
    temp_password = secrets.token_urlsafe(9)
    user = User(username=reg.email, email=reg.email, full_name=reg.full_name, mobile_number=reg.mobile_number,
                role=ROLE_CLIENT_VIEWER, is_active=True, password_hash='',
                site_scope={'allow': [reg.site_id]} if reg.site_id else None)
    user.set_password(temp_password)
    session.add(user)
    session.flush()
    now = utcnow()
    reg.status = ClientRegistration.STATUS_APPROVED
    reg.user_id = user.id
    reg.reviewed_by = current_actor().user_id
    reg.reviewed_on = now
    reg.updated_at = now
    session.commit()
    # The account exists now; a failed email only produces a warning
    warnings = []
    notify_safely('client.approved', {'email': reg.email, 'username': user.username,
                                      'temporary_password': temp_password}, warnings)
    body = registration_json(reg)
    body['temporary_password'] = temp_password
    return with_warnings(body, warnings)


@clients_bp.post('/registrations/<int:registration_id>/reject')
@require_permissions('ADMIN.CLIENT.MANAGE')
@audit_log('CLIENT.REJECT', entity='ClientRegistration', entity_id_key='id', meta_keys=['email', 'rejection_reason'])
def reject(registration_id: int):
    session = get_db()
    data = request.get_json(silent=True) or {}
    reason = require_text(data, 'reason', max_len=1000)
    reg = _get_pending_or_abort(registration_id)
    now = utcnow()
    reg.status = ClientRegistration.STATUS_REJECTED
    reg.rejection_reason = reason
    reg.reviewed_by = current_actor().user_id
    reg.reviewed_on = now
    reg.updated_at = now
    session.commit()
    warnings = []
    notify_safely('client.rejected', {'email': reg.email, 'reason': reason}, warnings)
    return with_warnings(registration_json(reg), warnings)


def _get_pending_or_abort(registration_id: int) -> ClientRegistration:
    reg = get_db().get(ClientRegistration, registration_id)
    if not reg:
        abort(404, description='Registration not found')
    if reg.status != ClientRegistration.STATUS_PENDING:
        abort(409, description=f'Registration already {reg.status}')
    return reg


def registration_json(r: ClientRegistration):
    return {
        'id': r.id,
        'full_name': r.full_name,
        'email': r.email,
        'mobile_number': r.mobile_number,
        'organization': r.organization,
        'site_id': r.site_id,
        'status': r.status,
        'rejection_reason': r.rejection_reason,
        'reviewed_by': r.reviewed_by,
        'reviewed_on': iso(r.reviewed_on),
        'user_id': r.user_id,
        'created_on': iso(r.created_on),
    }
