from __future__ import annotations
from flask import Blueprint, request, abort, current_app
from sqlalchemy import or_
from ticketops.decorators.auth import require_permissions
from ticketops.decorators.audit import audit_log
from ticketops.utils.listing import apply_pagination, cached_list, cached_entity, latest_timestamp
from ticketops.utils.sorting import apply_multi_sort
from ticketops.utils.filters import apply_filters, csv_values
from ticketops.utils.timeutil import iso, utcnow
from ticketops.services.policy import current_actor, assert_site_access, filter_query_by_sites
from ticketops.services.notifications import with_warnings
from ticketops.services import sla
from ticketops.services import ticket_workflow as wf
from ticketops.constants.permissions import ENGINEER_ROLES, ROLE_CLIENT_VIEWER
from ticketops.constants.sla import ALL_PRIORITIES, ALL_SLA_STATUSES
from ticketops import get_db
from ticketops.models.ticket import Ticket, TicketActivity

tickets_bp = Blueprint('tickets', __name__)

SORT_FIELDS = {
    'id': Ticket.id,
    'ticket_number': Ticket.ticket_number,
    'status': Ticket.status,
    'priority': Ticket.priority,
    'priority_score': Ticket.priority_score,
    'created_on': Ticket.created_on,
    'updated_at': Ticket.updated_at,
    'sla_restore_due': Ticket.sla_restore_due,
}


def _at_risk_minutes() -> int:
    return int(current_app.config.get('SLA_AT_RISK_MINUTES', sla.DEFAULT_AT_RISK_MINUTES))


def _filter_specs(now):
    return {
        'status': {
            'coerce': csv_values,
            'validate': lambda vals: bool(vals) and all(v in Ticket.ALL_STATUSES for v in vals),
            'op': lambda q, vals: q.filter(Ticket.status.in_(vals)),
        },
        'priority': {
            'validate': lambda v: v in ALL_PRIORITIES,
            'op': lambda q, v: q.filter(Ticket.priority == v),
        },
        'category': {'op': lambda q, v: q.filter(Ticket.category == v)},
        'site_id': {'coerce': int, 'op': lambda q, v: q.filter(Ticket.site_id == v)},
        'asset_id': {'coerce': int, 'op': lambda q, v: q.filter(Ticket.asset_id == v)},
        'assigned_to': {'coerce': int, 'op': lambda q, v: q.filter(Ticket.assigned_to == v)},
        'sla_status': {
            'validate': lambda v: v in ALL_SLA_STATUSES,
            'op': lambda q, v: q.filter(sla.sla_status_clause(v, now, _at_risk_minutes())),
        },
        'search': {
            'op': lambda q, v: q.filter(Ticket.ticket_number.ilike(f'%{v}%') | Ticket.title.ilike(f'%{v}%')),
        },
    }


def _list_query():
    session = get_db()
    actor = current_actor()
    now = utcnow()
    q = session.query(Ticket)
    q = filter_query_by_sites(q, Ticket.site_id, actor)
    # Engineers work their own queue (assigned or raised by them), plus the escalation pool when they can take from it
    if actor.role in ENGINEER_ROLES:
        mine = or_(Ticket.assigned_to == actor.user_id, Ticket.created_by == actor.user_id)
        if actor.has('TKT.ESCALATION.ACCEPT'):
            mine = or_(mine, Ticket.status == Ticket.STATUS_ESCALATED)
        q = q.filter(mine)
    q = apply_filters(q, _filter_specs(now), request.args)
    q = apply_multi_sort(q, request.args.get('sort'), SORT_FIELDS, Ticket.id, default=[Ticket.created_on.desc()])
    return q, now


@tickets_bp.route('', methods=['GET', 'HEAD'])
@require_permissions('TKT.READ')
def list_tickets():
    q, now = _list_query()
    paged_q, total, limit, offset = apply_pagination(q)
    rows = paged_q.all()
    rows_json = [ticket_json(t, now) for t in rows]
    return cached_list(rows_json, total, limit, offset, latest_timestamp(rows), head=request.method == 'HEAD')


@tickets_bp.post('')
@require_permissions('TKT.CREATE')
@audit_log('TKT.CREATE', entity='Ticket', entity_id_key='id', meta_keys=['ticket_number', 'priority', 'status'])
def create_ticket():
    session = get_db()
    t, warnings = wf.create_ticket(session, current_actor(), request.get_json(silent=True) or {})
    return with_warnings(ticket_json(t), warnings), 201


@tickets_bp.route('/<int:ticket_id>', methods=['GET', 'HEAD'])
@require_permissions('TKT.READ')
def get_ticket(ticket_id: int):
    t = _load_visible(ticket_id)
    return cached_entity(ticket_json(t), t.updated_at)


@tickets_bp.patch('/<int:ticket_id>')
@require_permissions('TKT.EDIT')
@audit_log('TKT.UPDATE', entity='Ticket', entity_id_key='id',
           diff_keys=['title', 'category', 'sub_category', 'impact', 'urgency', 'priority'],
           pre_fetch=lambda a, kw: _prefetch_ticket(kw.get('ticket_id')))
def update_ticket(ticket_id: int):
    session = get_db()
    t = _load_visible(ticket_id)
    wf.update_ticket(session, current_actor(), t, request.get_json(silent=True) or {})
    return ticket_json(t)


@tickets_bp.get('/<int:ticket_id>/actions')
@require_permissions('TKT.READ')
def list_actions(ticket_id: int):
    t = _load_visible(ticket_id)
    return {'ticket_id': t.id, 'status': t.status, 'actions': wf.allowed_actions(current_actor(), t)}


@tickets_bp.get('/<int:ticket_id>/sla')
@require_permissions('TKT.READ')
def get_sla(ticket_id: int):
    t = _load_visible(ticket_id)
    return sla.sla_view(t, utcnow(), _at_risk_minutes())


@tickets_bp.get('/<int:ticket_id>/activities')
@require_permissions('TKT.READ')
def list_activities(ticket_id: int):
    session = get_db()
    t = _load_visible(ticket_id)
    q = session.query(TicketActivity).filter(TicketActivity.ticket_id == t.id)
    if current_actor().role == ROLE_CLIENT_VIEWER:
        q = q.filter(TicketActivity.is_internal.is_(False))
    rows = q.order_by(TicketActivity.id.asc()).all()
    return {'data': [activity_json(a) for a in rows]}


@tickets_bp.post('/<int:ticket_id>/activities')
@require_permissions('TKT.COMMENT')
def add_comment(ticket_id: int):
    session = get_db()
    t = _load_visible(ticket_id)
    act = wf.add_comment(session, current_actor(), t, request.get_json(silent=True) or {})
    return activity_json(act), 201


def _make_transition_view(action: str):
    @require_permissions('TKT.READ')
    @audit_log(f'TKT.{action.upper()}', entity='Ticket', entity_id_key='id',
               diff_keys=['status', 'assigned_to', 'escalation_level'],
               pre_fetch=lambda a, kw: _prefetch_ticket(kw.get('ticket_id')), meta_keys=['status'])
    def transition(ticket_id: int):
        session = get_db()
        payload = request.get_json(silent=True) or {}
        t, warnings = wf.execute_transition(session, current_actor(), ticket_id, action, payload)
        return with_warnings(ticket_json(t), warnings)
    return transition


for _action in wf.TICKET_FSM.rules:
    tickets_bp.add_url_rule(
        f"/<int:ticket_id>/{_action.replace('_', '-')}",
        endpoint=f'transition_{_action}',
        view_func=_make_transition_view(_action),
        methods=['POST'],
    )


def _load_visible(ticket_id: int) -> Ticket:
    t = wf.get_ticket_or_404(get_db(), ticket_id)
    actor = current_actor()
    assert_site_access(actor, t.site_id)
    if actor.role in ENGINEER_ROLES and actor.user_id not in (t.assigned_to, t.created_by):
        pooled = t.status == Ticket.STATUS_ESCALATED and actor.has('TKT.ESCALATION.ACCEPT')
        if not pooled:
            abort(403, description='Ticket not assigned to you')
    return t


def ticket_json(t: Ticket, now=None):
    now = now or utcnow()
    response_breached, restore_breached = sla.breach_flags(t, now)
    return {
        'id': t.id,
        'ticket_number': t.ticket_number,
        'title': t.title,
        'description': t.description,
        'category': t.category,
        'sub_category': t.sub_category,
        'status': t.status,
        'impact': t.impact,
        'urgency': t.urgency,
        'priority_score': t.priority_score,
        'priority': t.priority,
        'asset_id': t.asset_id,
        'site_id': t.site_id,
        'created_by': t.created_by,
        'created_on': iso(t.created_on),
        'assigned_to': t.assigned_to,
        'assigned_on': iso(t.assigned_on),
        'acknowledged_on': iso(t.acknowledged_on),
        'resolved_on': iso(t.resolved_on),
        'verified_on': iso(t.verified_on),
        'verified_by': t.verified_by,
        'closed_on': iso(t.closed_on),
        'cancelled_on': iso(t.cancelled_on),
        'reopened_on': iso(t.reopened_on),
        'root_cause': t.root_cause,
        'resolution_summary': t.resolution_summary,
        'rejection_reason': t.rejection_reason,
        'escalation_level': t.escalation_level,
        'escalation_reason': t.escalation_reason,
        'escalated_on': iso(t.escalated_on),
        'escalation_accepted_by': t.escalation_accepted_by,
        'escalation_accepted_on': iso(t.escalation_accepted_on),
        'sla_policy_id': t.sla_policy_id,
        'sla_response_due': iso(t.sla_response_due),
        'sla_restore_due': iso(t.sla_restore_due),
        'is_sla_response_breached': response_breached,
        'is_sla_restore_breached': restore_breached,
        'sla_status': sla.sla_status(t, now, _at_risk_minutes()),
        'updated_at': iso(t.updated_at),
    }


def activity_json(a: TicketActivity):
    return {
        'id': a.id,
        'ticket_id': a.ticket_id,
        'user_id': a.user_id,
        'content': a.content,
        'activity_type': a.activity_type,
        'is_internal': a.is_internal,
        'old_status': a.old_status,
        'new_status': a.new_status,
        'created_at': iso(a.created_at),
    }


def _prefetch_ticket(ticket_id: int):
    t = get_db().get(Ticket, ticket_id)
    if not t:
        return {}
    return {'status': t.status, 'assigned_to': t.assigned_to, 'escalation_level': t.escalation_level,
            'title': t.title, 'category': t.category, 'sub_category': t.sub_category,
            'impact': t.impact, 'urgency': t.urgency, 'priority': t.priority}
