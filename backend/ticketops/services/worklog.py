"""Daily work logs.

Every user has at most one `WorkLog` per UTC day. Ticket, RMA and stock
operations append an automatic entry inside their own unit of work, so an
entry exists exactly when the operation committed. Users add manual entries
(site visits, training, ...) and a free-text daily summary themselves.
"""
from __future__ import annotations
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

from flask import abort
from sqlalchemy import select

from ticketops.models.site import Site
from ticketops.models.ticket import Ticket
from ticketops.models.worklog import WorkLog, WorkLogEntry
from ticketops.utils.timeutil import utcnow
from ticketops.utils.validation import require_text, optional_text, int_in_range, validate_status

# category -> counter it feeds in the day's stats
CATEGORY_STATS = {
    'TicketCreated': 'tickets_created',
    'TicketAssigned': 'tickets_updated',
    'TicketAcknowledged': 'tickets_updated',
    'TicketStarted': 'tickets_updated',
    'TicketUpdated': 'tickets_updated',
    'TicketEscalated': 'tickets_updated',
    'TicketVerified': 'tickets_updated',
    'TicketClosed': 'tickets_updated',
    'TicketReopened': 'tickets_updated',
    'TicketResolved': 'tickets_resolved',
    'RMACreated': 'rma_actions',
    'RMAStatusChanged': 'rma_actions',
    'RequisitionCreated': 'stock_movements',
    'RequisitionFulfilled': 'stock_movements',
    'StockTransferred': 'stock_movements',
}
STAT_KEYS = ('tickets_created', 'tickets_updated', 'tickets_resolved', 'rma_actions', 'stock_movements',
             'manual_entries')

MANUAL_CATEGORIES = ('SiteVisit', 'Documentation', 'Upgradation', 'AdminWork', 'Coordination', 'Training',
                     'Investigation', 'Other')

TICKET_ACTION_CATEGORIES = {
    'assign': 'TicketAssigned',
    'delegate_escalation': 'TicketAssigned',
    'acknowledge': 'TicketAcknowledged',
    'start': 'TicketStarted',
    'resolve': 'TicketResolved',
    'escalate': 'TicketEscalated',
    'verify': 'TicketVerified',
    'close': 'TicketClosed',
    'reopen': 'TicketReopened',
}


def parse_day(raw: Any, field_name: str) -> date:
    if not isinstance(raw, str):
        abort(400, description=f'{field_name} invalid')
    try:
        return date.fromisoformat(raw)
    except ValueError:
        abort(400, description=f'{field_name} must be YYYY-MM-DD')


def day_range(params) -> Tuple[Optional[date], Optional[date]]:
    start = parse_day(params['start_date'], 'start_date') if params.get('start_date') else None
    end = parse_day(params['end_date'], 'end_date') if params.get('end_date') else None
    if start and end and start > end:
        abort(400, description='start_date after end_date')
    return start, end


def day_log(session, user_id: int, day: date, create: bool = True) -> Optional[WorkLog]:
    log = session.execute(
        select(WorkLog).where(WorkLog.user_id == user_id, WorkLog.log_date == day)
    ).scalar_one_or_none()
    if log is None and create:
        log = WorkLog(user_id=user_id, log_date=day, updated_at=utcnow())
        session.add(log)
        session.flush()
    return log


def log_work(session, user_id: int, category: str, description: str, *, ticket_id: Optional[int] = None,
             site_id: Optional[int] = None, ref_type: Optional[str] = None, ref_id: Optional[int] = None,
             now: Optional[datetime] = None) -> WorkLogEntry:
    """Append an automatic entry to the user's log for today. The caller commits."""
    now = now or utcnow()
    log = day_log(session, user_id, now.date())
    entry = WorkLogEntry(work_log_id=log.id, entry_type=WorkLogEntry.TYPE_AUTO, category=category,
                         description=description[:1000], ticket_id=ticket_id, site_id=site_id,
                         ref_type=ref_type, ref_id=ref_id, created_at=now)
    session.add(entry)
    log.updated_at = now
    return entry


def day_stats(entries: List[WorkLogEntry]) -> Dict[str, int]:
    stats = dict.fromkeys(STAT_KEYS, 0)
    for e in entries:
        if e.entry_type == WorkLogEntry.TYPE_MANUAL:
            stats['manual_entries'] += 1
        elif e.category in CATEGORY_STATS:
            stats[CATEGORY_STATS[e.category]] += 1
    return stats


def add_manual_entry(session, user_id: int, data: Dict[str, Any], now: Optional[datetime] = None) -> WorkLogEntry:
    now = now or utcnow()
    category = validate_status(data.get('category'), MANUAL_CATEGORIES, 'category')
    description = require_text(data, 'description', max_len=1000)
    duration = None
    if data.get('duration_minutes') is not None:
        duration = int_in_range(data.get('duration_minutes'), 'duration_minutes', 0, 24 * 60)
    police_station = optional_text(data, 'police_station')
    if category == 'Investigation' and not police_station:
        abort(400, description='police_station required for Investigation entries')
    ticket_id = data.get('ticket_id')
    if ticket_id is not None and (isinstance(ticket_id, bool) or not isinstance(ticket_id, int)
                                  or not session.get(Ticket, ticket_id)):
        abort(400, description='ticket_id invalid')
    site_id = data.get('site_id')
    if site_id is not None and (isinstance(site_id, bool) or not isinstance(site_id, int)
                                or not session.get(Site, site_id)):
        abort(400, description='site_id invalid')
    log = day_log(session, user_id, now.date())
    entry = WorkLogEntry(work_log_id=log.id, entry_type=WorkLogEntry.TYPE_MANUAL, category=category,
                         description=description, duration_minutes=duration, ticket_id=ticket_id,
                         site_id=site_id, police_station=police_station if category == 'Investigation' else None,
                         created_at=now)
    session.add(entry)
    log.updated_at = now
    session.commit()
    return entry


def update_summary(session, user_id: int, data: Dict[str, Any], now: Optional[datetime] = None) -> WorkLog:
    now = now or utcnow()
    day = parse_day(data['date'], 'date') if data.get('date') else now.date()
    if day > now.date():
        abort(400, description='date cannot be in the future')
    summary = optional_text(data, 'summary')
    if summary and len(summary) > 2000:
        abort(400, description='summary too long')
    log = day_log(session, user_id, day)
    log.daily_summary = summary
    log.updated_at = now
    session.commit()
    return log


def delete_manual_entry(session, user_id: int, entry_id: int) -> None:
    entry = session.execute(
        select(WorkLogEntry).join(WorkLog, WorkLog.id == WorkLogEntry.work_log_id)
        .where(WorkLogEntry.id == entry_id, WorkLog.user_id == user_id)
    ).scalar_one_or_none()
    if entry is None:
        abort(404, description='Work log entry not found')
    if entry.entry_type != WorkLogEntry.TYPE_MANUAL:
        abort(400, description='Only manual entries can be deleted')
    session.delete(entry)
    session.commit()


def entries_for(session, log_ids: List[int]) -> Dict[int, List[WorkLogEntry]]:
    out: Dict[int, List[WorkLogEntry]] = {i: [] for i in log_ids}
    if not log_ids:
        return out
    rows = session.execute(
        select(WorkLogEntry).where(WorkLogEntry.work_log_id.in_(log_ids)).order_by(WorkLogEntry.id.asc())
    ).scalars()
    for e in rows:
        out[e.work_log_id].append(e)
    return out


def logs_query(session, user_id: Optional[int], start: Optional[date], end: Optional[date]):
    q = session.query(WorkLog)
    if user_id is not None:
        q = q.filter(WorkLog.user_id == user_id)
    if start:
        q = q.filter(WorkLog.log_date >= start)
    if end:
        q = q.filter(WorkLog.log_date <= end)
    return q.order_by(WorkLog.log_date.desc(), WorkLog.user_id.asc(), WorkLog.id.asc())
