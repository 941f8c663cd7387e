"""SLA arithmetic: priority derivation, due dates, breach flags and display status.

Due dates are fixed when a ticket is created (or reopened) and never recomputed
afterwards. Breach flags are evaluated against a reference instant:

* the resolution / closure / cancellation time once the ticket has one,
* otherwise the current time.

The response target is measured at acknowledgement when that has happened.
Persisted flags are sticky: a breach recorded at a transition stays recorded.
"""
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Tuple

from sqlalchemy import and_, or_, select

from ticketops.constants.sla import (
    PRIORITY_THRESHOLDS, PRIORITY_P4, DEFAULT_SLA_POLICIES,
    SLA_ON_TRACK, SLA_AT_RISK, SLA_BREACHED, SLA_NOT_APPLICABLE,
)
from ticketops.models.sla_policy import SlaPolicy
from ticketops.models.ticket import Ticket
from ticketops.utils.timeutil import as_utc, iso, utcnow

DEFAULT_AT_RISK_MINUTES = 30


@dataclass(frozen=True)
class PolicyTargets:
    priority: str
    response_minutes: int
    restore_minutes: int
    policy_id: Optional[int] = None
    policy_name: Optional[str] = None


def priority_score(impact: int, urgency: int, criticality: int) -> int:
    return impact * urgency * criticality


def priority_for_score(score: int) -> str:
    for minimum, priority in PRIORITY_THRESHOLDS:
        if score >= minimum:
            return priority
    return PRIORITY_P4


def builtin_targets(priority: str) -> PolicyTargets:
    for row in DEFAULT_SLA_POLICIES:
        if row['priority'] == priority:
            return PolicyTargets(priority, row['response_minutes'], row['restore_minutes'], None, row['policy_name'])
    raise ValueError(f'unknown priority {priority}')


def resolve_policy(session, priority: str) -> PolicyTargets:
    """Active policy row for the priority, else the built-in table."""
    row = session.execute(
        select(SlaPolicy).where(SlaPolicy.priority == priority, SlaPolicy.is_active.is_(True)).order_by(SlaPolicy.id.asc())
    ).scalars().first()
    if row is None:
        return builtin_targets(priority)
    return PolicyTargets(priority, row.response_minutes, row.restore_minutes, row.id, row.policy_name)


def compute_due_dates(start: datetime, policy: PolicyTargets) -> Tuple[datetime, datetime]:
    start = as_utc(start)
    return (start + timedelta(minutes=policy.response_minutes),
            start + timedelta(minutes=policy.restore_minutes))


def reference_instant(ticket: Ticket, now: Optional[datetime] = None) -> datetime:
    for stamp in (ticket.resolved_on, ticket.closed_on, ticket.cancelled_on):
        if stamp is not None:
            return as_utc(stamp)
    return as_utc(now) if now else utcnow()


def breach_flags(ticket: Ticket, now: Optional[datetime] = None) -> Tuple[bool, bool]:
    """(response_breached, restore_breached) for the ticket at `now`."""
    ref = reference_instant(ticket, now)
    response_due = as_utc(ticket.sla_response_due)
    restore_due = as_utc(ticket.sla_restore_due)
    response_ref = as_utc(ticket.acknowledged_on) or ref
    response = bool(ticket.is_sla_response_breached) or bool(response_due and response_ref > response_due)
    restore = bool(ticket.is_sla_restore_breached) or bool(restore_due and ref > restore_due)
    return response, restore


def is_open(ticket: Ticket) -> bool:
    return ticket.resolved_on is None and ticket.closed_on is None and ticket.cancelled_on is None


def sla_status(ticket: Ticket, now: Optional[datetime] = None, at_risk_minutes: int = DEFAULT_AT_RISK_MINUTES) -> str:
    if ticket.sla_restore_due is None:
        return SLA_NOT_APPLICABLE
    response, restore = breach_flags(ticket, now)
    if response or restore:
        return SLA_BREACHED
    if not is_open(ticket):
        return SLA_ON_TRACK
    now = as_utc(now) if now else utcnow()
    if as_utc(ticket.sla_restore_due) - now <= timedelta(minutes=at_risk_minutes):
        return SLA_AT_RISK
    return SLA_ON_TRACK


def minutes_remaining(ticket: Ticket, now: Optional[datetime] = None) -> Optional[int]:
    if ticket.sla_restore_due is None or not is_open(ticket):
        return None
    now = as_utc(now) if now else utcnow()
    return int((as_utc(ticket.sla_restore_due) - now).total_seconds() // 60)


def sla_view(ticket: Ticket, now: Optional[datetime] = None, at_risk_minutes: int = DEFAULT_AT_RISK_MINUTES) -> dict:
    now = as_utc(now) if now else utcnow()
    response, restore = breach_flags(ticket, now)
    return {
        'ticket_id': ticket.id,
        'priority': ticket.priority,
        'response_due': iso(ticket.sla_response_due),
        'restore_due': iso(ticket.sla_restore_due),
        'is_response_breached': response,
        'is_restore_breached': restore,
        'status': sla_status(ticket, now, at_risk_minutes),
        'minutes_remaining': minutes_remaining(ticket, now),
        'evaluated_at': iso(now),
    }


def sla_status_clause(status: str, now: datetime, at_risk_minutes: int = DEFAULT_AT_RISK_MINUTES):
    """SQL criterion equivalent of sla_status() for list filtering.

    Terminal transitions persist the flags, so only open tickets need the
    time comparison.
    """
    open_ = and_(Ticket.resolved_on.is_(None), Ticket.closed_on.is_(None), Ticket.cancelled_on.is_(None))
    breached = or_(
        Ticket.is_sla_response_breached.is_(True),
        Ticket.is_sla_restore_breached.is_(True),
        and_(open_, Ticket.sla_restore_due < now),
        and_(open_, Ticket.acknowledged_on.is_(None), Ticket.sla_response_due < now),
    )
    has_due = Ticket.sla_restore_due.is_not(None)
    at_risk = and_(open_, Ticket.sla_restore_due <= now + timedelta(minutes=at_risk_minutes))
    if status == SLA_NOT_APPLICABLE:
        return Ticket.sla_restore_due.is_(None)
    if status == SLA_BREACHED:
        return and_(has_due, breached)
    if status == SLA_AT_RISK:
        return and_(has_due, ~breached, at_risk)
    return and_(has_due, ~breached, ~at_risk)
