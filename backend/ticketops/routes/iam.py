from flask import Blueprint, request, abort
from flask_jwt_extended import create_access_token, jwt_required, get_jwt_identity
from sqlalchemy import select, or_
from ticketops.models.authz import User, UserRight
from ticketops.models.audit import AuditLog
from ticketops import get_db
from ticketops.services.policy import compute_effective_permissions
from ticketops.constants.permissions import ALL_ROLES, ALL_PERMISSION_CODES
from ticketops.utils.listing import apply_pagination, cached_list, latest_timestamp
from ticketops.utils.filters import apply_filters
from ticketops.utils.timeutil import iso
from ticketops.utils.validation import require_text, optional_text, validate_status
from ticketops.decorators.audit import audit_log
from ticketops.decorators.auth import require_permissions

iam_bp = Blueprint('iam', __name__)


@iam_bp.post('/auth/login')
def login():
    data = request.get_json(silent=True) or {}
    login_name = data.get('username') or data.get('email')
    password = data.get('password')
    if not login_name or not password:
        abort(400, description='username (or email) & password required')
    session = get_db()
    user = session.execute(
        select(User).where(or_(User.username == login_name, User.email == login_name))
    ).scalar_one_or_none()
    if not user or not user.verify_password(password):
        abort(401, description='invalid credentials')
    if not user.is_active:
        abort(403, description='account disabled')
    # JWT identity must be a string (flask-jwt-extended v4 requirement)
    token = create_access_token(identity=str(user.id), additional_claims=compute_effective_permissions(user))
    return {'access_token': token}


@iam_bp.get('/auth/me')
@jwt_required()
def me():
    user = _get_user_or_404(int(get_jwt_identity()))
    body = user_json(user)
    body.update(compute_effective_permissions(user))
    return body


@iam_bp.get('/users')
@require_permissions('ADMIN.USER.MANAGE')
def list_users():
    session = get_db()
    q = session.query(User)
    q = apply_filters(q, {
        'role': {'validate': lambda v: v in ALL_ROLES, 'op': lambda q, v: q.filter(User.role == v)},
        'is_active': {'coerce': lambda v: str(v).lower() in ('1', 'true', 'yes'), 'op': lambda q, v: q.filter(User.is_active.is_(v))},
        'search': {'op': lambda q, v: q.filter(User.username.ilike(f'%{v}%') | User.full_name.ilike(f'%{v}%'))},
    }, request.args)
    paged_q, total, limit, offset = apply_pagination(q.order_by(User.id.asc()))
    rows = paged_q.all()
    return cached_list([user_json(u) for u in rows], total, limit, offset, latest_timestamp(rows))


@iam_bp.post('/users')
@require_permissions('ADMIN.USER.MANAGE')
@audit_log('USER.CREATE', entity='User', entity_id_key='id', meta_keys=['username', 'role'])
def create_user():
    session = get_db()
    data = request.get_json(silent=True) or {}
    username = require_text(data, 'username', max_len=64)
    email = require_text(data, 'email', max_len=128)
    password = require_text(data, 'password')
    role = validate_status(data.get('role'), ALL_ROLES, 'role')
    clash = session.execute(select(User).where(or_(User.username == username, User.email == email))).scalar_one_or_none()
    if clash:
        abort(409, description='username or email already exists')
    u = User(username=username, email=email, full_name=optional_text(data, 'full_name') or username,
             mobile_number=optional_text(data, 'mobile_number'), role=role, is_active=True,
             site_scope=_site_scope(data.get('site_ids')), password_hash='')
    u.set_password(password)
    session.add(u)
    session.commit()
    return user_json(u), 201


@iam_bp.patch('/users/<int:user_id>')
@require_permissions('ADMIN.USER.MANAGE')
@audit_log('USER.UPDATE', entity='User', entity_id_key='id', diff_keys=['role', 'is_active', 'site_ids'],
           pre_fetch=lambda a, kw: _prefetch_user(kw.get('user_id')))
def update_user(user_id: int):
    session = get_db()
    u = _get_user_or_404(user_id)
    data = request.get_json(silent=True) or {}
    if 'role' in data:
        u.role = validate_status(data['role'], ALL_ROLES, 'role')
    if 'full_name' in data:
        u.full_name = require_text(data, 'full_name', max_len=128)
    if 'is_active' in data:
        u.is_active = bool(data['is_active'])
    if 'site_ids' in data:
        u.site_scope = _site_scope(data['site_ids'])
    if 'password' in data:
        u.set_password(require_text(data, 'password'))
    session.commit()
    return user_json(u)


@iam_bp.get('/users/<int:user_id>/rights')
@require_permissions('ADMIN.RIGHTS.MANAGE')
def get_rights(user_id: int):
    u = _get_user_or_404(user_id)
    return _rights_json(u)


@iam_bp.put('/users/<int:user_id>/rights')
@require_permissions('ADMIN.RIGHTS.MANAGE')
@audit_log('USER.RIGHTS.REPLACE', entity='User', entity_id_key='user_id', meta_keys=['rights'])
def replace_rights(user_id: int):
    session = get_db()
    u = _get_user_or_404(user_id)
    data = request.get_json(silent=True) or {}
    rights = data.get('rights')
    if not isinstance(rights, list) or not all(isinstance(r, str) for r in rights):
        abort(400, description='rights must be a list of permission codes')
    unknown = sorted(set(rights) - set(ALL_PERMISSION_CODES))
    if unknown:
        abort(400, description=f"Unknown permission code(s): {', '.join(unknown)}")
    if u.rights is None:
        u.rights = UserRight(user_id=u.id, rights=sorted(set(rights)))
    else:
        u.rights.rights = sorted(set(rights))
    session.commit()
    return _rights_json(u)


@iam_bp.get('/audit-logs')
@require_permissions('ADMIN.AUDIT.READ')
def list_audit_logs():
    session = get_db()
    q = session.query(AuditLog)
    q = apply_filters(q, {
        'actor_user_id': {'coerce': int, 'op': lambda q, v: q.filter(AuditLog.actor_user_id == v)},
        'action': {'op': lambda q, v: q.filter(AuditLog.action == v)},
        'entity': {'op': lambda q, v: q.filter(AuditLog.entity == v)},
        'entity_id': {'op': lambda q, v: q.filter(AuditLog.entity_id == str(v))},
    }, request.args)
    paged_q, total, limit, offset = apply_pagination(q.order_by(AuditLog.id.desc()))
    rows = paged_q.all()
    data = [
        {'id': r.id, 'actor_user_id': r.actor_user_id, 'actor_role': r.actor_role, 'action': r.action,
         'entity': r.entity, 'entity_id': r.entity_id, 'meta': r.meta, 'created_at': iso(r.created_at)}
        for r in rows
    ]
    return {'data': data, 'pagination': {'total': total, 'limit': limit, 'offset': offset, 'returned': len(data)}}


def _site_scope(raw):
    if raw is None:
        return None
    if not isinstance(raw, list) or not all(isinstance(s, int) and not isinstance(s, bool) for s in raw):
        abort(400, description='site_ids must be a list of ints')
    return {'allow': sorted(set(raw))} if raw else None


def _get_user_or_404(user_id: int) -> User:
    u = get_db().get(User, user_id)
    if not u:
        abort(404, description='User not found')
    return u


def _rights_json(u: User):
    eff = compute_effective_permissions(u)
    return {
        'user_id': u.id,
        'role': u.role,
        'rights': list(u.rights.rights) if u.rights else [],
        'effective_permissions': eff['perms'],
    }


def user_json(u: User):
    return {
        'id': u.id,
        'username': u.username,
        'full_name': u.full_name,
        'email': u.email,
        'mobile_number': u.mobile_number,
        'role': u.role,
        'is_active': u.is_active,
        'site_ids': u.site_ids(),
    }


def _prefetch_user(user_id: int):
    u = get_db().get(User, user_id)
    if not u:
        return {}
    return {'role': u.role, 'is_active': u.is_active, 'site_ids': u.site_ids()}
