"""Ticket lifecycle: creation, edits and the status transition executor.

Every transition goes through `execute_transition`, which applies the same
sequence for each action:

1. policy check (`can_perform`) -> 403
2. optional `expected_status` guard and the transition table -> 409
3. required payload fields -> 400
4. a conditional UPDATE keyed on the prior status -> 409 when another request won
5. an activity row recording old/new status and the actor, plus the actor's
   work-log entry, in the same commit
"""
from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from flask import abort, current_app
from sqlalchemy import select, update, func

from ticketops.constants.permissions import ROLE_CLIENT_VIEWER, expand_role_permissions
from ticketops.constants.sla import DEFAULT_ASSET_CRITICALITY
from ticketops.models.asset import Asset
from ticketops.models.authz import User
from ticketops.models.site import Site
from ticketops.models.ticket import Ticket, TicketActivity
from ticketops.services.notifications import notify_safely
from ticketops.services.policy import Actor, assert_can_perform, assert_site_access, can_perform
from ticketops.services import sla
from ticketops.services.worklog import TICKET_ACTION_CATEGORIES, log_work
from ticketops.utils.fsm import Transition, TransitionTable
from ticketops.utils.timeutil import utcnow
from ticketops.utils.validation import require_text, optional_text, int_in_range, require_int

T = Ticket

TICKET_FSM = TransitionTable({
    'assign': Transition((T.STATUS_OPEN, T.STATUS_ASSIGNED), T.STATUS_ASSIGNED, ('assignee_id',)),
    'acknowledge': Transition((T.STATUS_ASSIGNED,), T.STATUS_ACKNOWLEDGED),
    'start': Transition((T.STATUS_ACKNOWLEDGED,), T.STATUS_IN_PROGRESS),
    'hold': Transition((T.STATUS_IN_PROGRESS,), T.STATUS_ON_HOLD, ('reason',)),
    'resume': Transition((T.STATUS_ON_HOLD,), T.STATUS_IN_PROGRESS),
    'resolve': Transition((T.STATUS_IN_PROGRESS,), T.STATUS_RESOLVED, ('root_cause', 'resolution_summary')),
    'verify': Transition((T.STATUS_RESOLVED,), T.STATUS_VERIFIED),
    'close': Transition((T.STATUS_RESOLVED, T.STATUS_VERIFIED), T.STATUS_CLOSED),
    'reject_resolution': Transition((T.STATUS_RESOLVED,), T.STATUS_RESOLUTION_REJECTED, ('reason',)),
    'acknowledge_rejection': Transition((T.STATUS_RESOLUTION_REJECTED,), T.STATUS_IN_PROGRESS),
    'escalate': Transition((T.STATUS_OPEN, T.STATUS_ASSIGNED, T.STATUS_ACKNOWLEDGED, T.STATUS_IN_PROGRESS,
                            T.STATUS_ON_HOLD, T.STATUS_RESOLVED, T.STATUS_RESOLUTION_REJECTED, T.STATUS_VERIFIED),
                           T.STATUS_ESCALATED, ('reason',)),
    'accept_escalation': Transition((T.STATUS_ESCALATED,), T.STATUS_IN_PROGRESS),
    'delegate_escalation': Transition((T.STATUS_ESCALATED,), T.STATUS_IN_PROGRESS, ('assignee_id',)),
    'reopen': Transition((T.STATUS_CLOSED,), T.STATUS_OPEN, ('reason',)),
    'cancel': Transition((T.STATUS_OPEN, T.STATUS_ASSIGNED, T.STATUS_ACKNOWLEDGED, T.STATUS_IN_PROGRESS,
                          T.STATUS_ON_HOLD, T.STATUS_ESCALATED), T.STATUS_CANCELLED, ('reason',)),
}, field_name='ticket status')

ACTIVITY_TYPES = {
    'assign': TicketActivity.TYPE_ASSIGNMENT,
    'delegate_escalation': TicketActivity.TYPE_ASSIGNMENT,
    'escalate': TicketActivity.TYPE_ESCALATION,
    'accept_escalation': TicketActivity.TYPE_ESCALATION,
    'resolve': TicketActivity.TYPE_RESOLUTION,
}

EDITABLE_FIELDS = ('title', 'description', 'category', 'sub_category', 'impact', 'urgency')


def get_ticket_or_404(session, ticket_id: int) -> Ticket:
    t = session.execute(select(Ticket).where(Ticket.id == ticket_id)).scalar_one_or_none()
    if not t:
        abort(404, description='Ticket not found')
    return t


def generate_ticket_number(session, now: datetime) -> str:
    prefix = f"TKT-{now:%Y%m%d}-"
    count = session.execute(select(func.count(Ticket.id)).where(Ticket.ticket_number.like(f'{prefix}%'))).scalar_one()
    return f"{prefix}{count + 1:04d}"


def record_activity(session, ticket_id: int, user_id: int, content: str, activity_type: str = TicketActivity.TYPE_COMMENT,
                    old_status: Optional[str] = None, new_status: Optional[str] = None, is_internal: bool = False,
                    now: Optional[datetime] = None) -> TicketActivity:
    act = TicketActivity(
        ticket_id=ticket_id,
        user_id=user_id,
        content=content,
        activity_type=activity_type,
        is_internal=is_internal,
        old_status=old_status,
        new_status=new_status,
        created_at=now or utcnow(),
    )
    session.add(act)
    return act


def _criticality(asset: Optional[Asset]) -> int:
    return asset.criticality if asset is not None and asset.criticality else DEFAULT_ASSET_CRITICALITY


def _load_assignee(session, user_id: Any, ticket_site_id: int) -> User:
    if isinstance(user_id, bool) or not isinstance(user_id, int):
        abort(400, description='assignee_id invalid')
    user = session.get(User, user_id)
    if not user or not user.is_active:
        abort(400, description='assignee_id invalid')
    if user.role == ROLE_CLIENT_VIEWER:
        abort(400, description='Client viewers cannot be assigned tickets')
    scoped = user.site_ids()
    if scoped and ticket_site_id not in scoped:
        abort(400, description='Assignee has no access to the ticket site')
    return user


def create_ticket(session, actor: Actor, data: Dict[str, Any], now: Optional[datetime] = None) -> Tuple[Ticket, List[str]]:
    now = now or utcnow()
    title = require_text(data, 'title', max_len=200)
    category = require_text(data, 'category', max_len=64)
    impact = int_in_range(data.get('impact'), 'impact', 1, 5)
    urgency = int_in_range(data.get('urgency'), 'urgency', 1, 5)
    asset = None
    if data.get('asset_id') is not None:
        asset = session.get(Asset, require_int(data, 'asset_id'))
        if not asset:
            abort(404, description='Asset not found')
    if asset is not None:
        site_id = asset.site_id
        if data.get('site_id') is not None and data.get('site_id') != site_id:
            abort(400, description='site_id does not match the asset site')
    else:
        site_id = require_int(data, 'site_id')
        if not session.get(Site, site_id):
            abort(404, description='Site not found')
    assert_site_access(actor, site_id)

    score = sla.priority_score(impact, urgency, _criticality(asset))
    priority = sla.priority_for_score(score)
    policy = sla.resolve_policy(session, priority)
    response_due, restore_due = sla.compute_due_dates(now, policy)

    assignee = None
    if data.get('assigned_to') is not None:
        if not actor.has('TKT.ASSIGN'):
            abort(403, description='Missing permission')
        assignee = _load_assignee(session, data.get('assigned_to'), site_id)

    t = Ticket(
        ticket_number=generate_ticket_number(session, now),
        title=title,
        description=optional_text(data, 'description'),
        category=category,
        sub_category=optional_text(data, 'sub_category'),
        status=Ticket.STATUS_ASSIGNED if assignee else Ticket.STATUS_OPEN,
        impact=impact,
        urgency=urgency,
        priority_score=score,
        priority=priority,
        asset_id=asset.id if asset else None,
        site_id=site_id,
        created_by=actor.user_id,
        assigned_to=assignee.id if assignee else None,
        assigned_on=now if assignee else None,
        escalation_level=0,
        sla_policy_id=policy.policy_id,
        sla_response_due=response_due,
        sla_restore_due=restore_due,
        is_sla_response_breached=False,
        is_sla_restore_breached=False,
        created_on=now,
        updated_at=now,
    )
    session.add(t)
    session.flush()
    record_activity(session, t.id, actor.user_id, f"Ticket created with priority {priority}",
                    TicketActivity.TYPE_STATUS_CHANGE, None, t.status, now=now)
    if assignee:
        record_activity(session, t.id, actor.user_id, f"Assigned to {assignee.full_name}",
                        TicketActivity.TYPE_ASSIGNMENT, None, t.status, now=now)
    log_work(session, actor.user_id, 'TicketCreated', f"Created {t.ticket_number}: {title}",
             ticket_id=t.id, site_id=site_id, ref_type='Ticket', ref_id=t.id, now=now)
    session.commit()
    current_app.logger.info('ticket %s created (%s, score %s) by user %s', t.ticket_number, priority, score, actor.user_id)
    warnings: List[str] = []
    notify_safely('ticket.created', {'ticket_id': t.id, 'ticket_number': t.ticket_number,
                                     'assigned_to': t.assigned_to}, warnings)
    return t, warnings


def update_ticket(session, actor: Actor, ticket: Ticket, data: Dict[str, Any], now: Optional[datetime] = None) -> Ticket:
    """Edit descriptive fields. Priority follows impact/urgency; SLA due times stay as created."""
    now = now or utcnow()
    assert_can_perform(actor, 'update', ticket)
    if ticket.status in Ticket.TERMINAL_STATUSES:
        abort(409, description=f'Ticket is {ticket.status}')
    unknown = [k for k in data if k not in EDITABLE_FIELDS]
    if unknown:
        abort(400, description=f"Field(s) not editable: {', '.join(sorted(unknown))}")
    if 'title' in data:
        ticket.title = require_text(data, 'title', max_len=200)
    if 'category' in data:
        ticket.category = require_text(data, 'category', max_len=64)
    if 'description' in data:
        ticket.description = optional_text(data, 'description')
    if 'sub_category' in data:
        ticket.sub_category = optional_text(data, 'sub_category')
    if 'impact' in data:
        ticket.impact = int_in_range(data.get('impact'), 'impact', 1, 5)
    if 'urgency' in data:
        ticket.urgency = int_in_range(data.get('urgency'), 'urgency', 1, 5)
    asset = session.get(Asset, ticket.asset_id) if ticket.asset_id else None
    ticket.priority_score = sla.priority_score(ticket.impact, ticket.urgency, _criticality(asset))
    ticket.priority = sla.priority_for_score(ticket.priority_score)
    ticket.updated_at = now
    log_work(session, actor.user_id, 'TicketUpdated', f"Updated {ticket.ticket_number}",
             ticket_id=ticket.id, site_id=ticket.site_id, ref_type='Ticket', ref_id=ticket.id, now=now)
    session.commit()
    return ticket


def add_comment(session, actor: Actor, ticket: Ticket, data: Dict[str, Any]) -> TicketActivity:
    assert_can_perform(actor, 'comment', ticket)
    content = require_text(data, 'content', max_len=4000)
    act = record_activity(session, ticket.id, actor.user_id, content, TicketActivity.TYPE_COMMENT,
                          is_internal=bool(data.get('is_internal', False)))
    session.commit()
    return act


def allowed_actions(actor: Actor, ticket: Ticket) -> List[str]:
    actions = []
    for action in TICKET_FSM.actions_from(ticket.status):
        if action == 'escalate' and ticket.escalation_level >= Ticket.MAX_ESCALATION_LEVEL:
            continue
        if can_perform(actor, action, ticket):
            actions.append(action)
    return actions


def _transition_effects(session, actor: Actor, t: Ticket, action: str, payload: Dict[str, Any], now: datetime):
    """Column values, activity text and extra WHERE criteria for one action."""
    values: Dict[str, Any] = {}
    where = []
    reason = str(payload.get('reason') or '').strip()
    content = None

    if action == 'assign':
        user = _load_assignee(session, payload.get('assignee_id'), t.site_id)
        values.update(assigned_to=user.id, assigned_on=now)
        content = f"Assigned to {user.full_name}"
    elif action == 'acknowledge':
        values.update(acknowledged_on=now)
    elif action == 'hold':
        content = f"Put on hold: {reason}"
    elif action == 'resolve':
        root_cause = str(payload['root_cause']).strip()
        summary = str(payload['resolution_summary']).strip()
        values.update(resolved_on=now, root_cause=root_cause, resolution_summary=summary, rejection_reason=None)
        content = f"Resolved. Root cause: {root_cause}. Summary: {summary}"
    elif action == 'verify':
        values.update(verified_on=now, verified_by=actor.user_id)
    elif action == 'close':
        values.update(closed_on=now)
    elif action == 'reject_resolution':
        # back to active work; SLA counts again from here
        values.update(rejection_reason=reason, resolved_on=None)
        content = f"Resolution rejected: {reason}"
    elif action == 'escalate':
        level = t.escalation_level + 1
        values.update(escalation_level=level, escalation_reason=reason, escalated_on=now,
                      escalation_accepted_by=None, escalation_accepted_on=None,
                      resolved_on=None, root_cause=None, resolution_summary=None,
                      verified_on=None, verified_by=None)
        where.append(Ticket.escalation_level == t.escalation_level)
        content = f"Escalated to level {level}: {reason}"
    elif action == 'accept_escalation':
        values.update(assigned_to=actor.user_id, assigned_on=now,
                      escalation_accepted_by=actor.user_id, escalation_accepted_on=now)
        content = "Escalation accepted"
    elif action == 'delegate_escalation':
        user = _load_assignee(session, payload.get('assignee_id'), t.site_id)
        rights = user.rights.rights if user.rights else []
        if 'TKT.ESCALATION.ACCEPT' not in expand_role_permissions(user.role, rights or []):
            abort(400, description='Delegate cannot accept escalations')
        values.update(assigned_to=user.id, assigned_on=now,
                      escalation_accepted_by=user.id, escalation_accepted_on=now)
        content = f"Escalation delegated to {user.full_name}"
    elif action == 'reopen':
        policy = sla.resolve_policy(session, t.priority)
        response_due, restore_due = sla.compute_due_dates(now, policy)
        values.update(
            reopened_on=now, assigned_to=None, assigned_on=None, acknowledged_on=None,
            resolved_on=None, root_cause=None, resolution_summary=None, rejection_reason=None,
            verified_on=None, verified_by=None, closed_on=None,
            escalation_accepted_by=None, escalation_accepted_on=None,
            sla_policy_id=policy.policy_id, sla_response_due=response_due, sla_restore_due=restore_due,
            is_sla_response_breached=False, is_sla_restore_breached=False,
        )
        content = f"Reopened: {reason}"
    elif action == 'cancel':
        values.update(cancelled_on=now)
        content = f"Cancelled: {reason}"

    if action != 'reopen':
        response, restore = sla.breach_flags(t, now)
        values.setdefault('is_sla_response_breached', response)
        values.setdefault('is_sla_restore_breached', restore)
    return values, content, where


def execute_transition(session, actor: Actor, ticket_id: int, action: str, payload: Optional[Dict[str, Any]] = None,
                       now: Optional[datetime] = None) -> Tuple[Ticket, List[str]]:
    payload = payload or {}
    now = now or utcnow()
    t = get_ticket_or_404(session, ticket_id)
    assert_site_access(actor, t.site_id)
    rule = TICKET_FSM.get(action)
    assert_can_perform(actor, action, t)
    expected = payload.get('expected_status')
    if expected is not None and expected != t.status:
        abort(409, description=f'Ticket status is {t.status}, expected {expected}')
    TICKET_FSM.assert_can_apply(action, t.status)
    if action == 'escalate' and t.escalation_level >= Ticket.MAX_ESCALATION_LEVEL:
        abort(409, description=f'Escalation level already at maximum ({Ticket.MAX_ESCALATION_LEVEL})')
    TICKET_FSM.assert_required(action, payload)

    prior = t.status
    values, content, where = _transition_effects(session, actor, t, action, payload, now)
    values.update(status=rule.target, updated_at=now)
    stmt = (
        update(Ticket)
        .where(Ticket.id == t.id, Ticket.status == prior, *where)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = session.execute(stmt)
    if result.rowcount != 1:
        session.rollback()
        abort(409, description='Ticket was modified concurrently; reload and retry')
    record_activity(
        session, t.id, actor.user_id,
        content or f"Status changed from {prior} to {rule.target}",
        ACTIVITY_TYPES.get(action, TicketActivity.TYPE_STATUS_CHANGE),
        prior, rule.target, now=now,
    )
    log_work(session, actor.user_id, TICKET_ACTION_CATEGORIES.get(action, 'TicketUpdated'),
             f"{t.ticket_number}: {prior} -> {rule.target}",
             ticket_id=t.id, site_id=t.site_id, ref_type='Ticket', ref_id=t.id, now=now)
    session.commit()
    session.refresh(t)
    current_app.logger.info('ticket %s %s %s -> %s by user %s', t.ticket_number, action, prior, t.status, actor.user_id)
    warnings: List[str] = []
    notify_safely(f'ticket.{action}', {'ticket_id': t.id, 'ticket_number': t.ticket_number,
                                       'status': t.status, 'assigned_to': t.assigned_to}, warnings)
    return t, warnings
