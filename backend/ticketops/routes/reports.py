from __future__ import annotations
from flask import Blueprint, current_app
from sqlalchemy import func
from ticketops.decorators.auth import require_permissions
from ticketops.services.policy import current_actor
from ticketops.services import sla
from ticketops.constants.sla import SLA_BREACHED, SLA_AT_RISK
from ticketops.utils.timeutil import iso, utcnow
from ticketops import get_db
from ticketops.models.ticket import Ticket
from ticketops.models.asset import Asset
from ticketops.models.rma import RmaRequest

rpt_bp = Blueprint('reports', __name__)


def _scoped(q, column, site_ids):
    if site_ids:
        q = q.filter(column.in_(site_ids))
    return q


def _grouped(session, column, site_ids, exclude_terminal: bool = False):
    q = _scoped(session.query(column, func.count(Ticket.id)), Ticket.site_id, site_ids)
    if exclude_terminal:
        q = q.filter(Ticket.status.not_in(Ticket.TERMINAL_STATUSES))
    return {key or 'Uncategorized': int(count) for key, count in q.group_by(column).all()}


def sla_compliance_percent(closed_total: int, closed_breached: int) -> float:
    """Share of closed tickets that met the restore target; 100 when nothing is closed yet."""
    if closed_total <= 0:
        return 100.0
    return round((closed_total - closed_breached) / closed_total * 100, 1)


@rpt_bp.get('/dashboard')
@require_permissions('RPT.READ')
def dashboard():
    session = get_db()
    site_ids = list(current_actor().site_ids)
    now = utcnow()
    at_risk_minutes = int(current_app.config.get('SLA_AT_RISK_MINUTES', sla.DEFAULT_AT_RISK_MINUTES))

    def ticket_count(*criteria):
        return _scoped(session.query(func.count(Ticket.id)), Ticket.site_id, site_ids).filter(*criteria).scalar()

    live = Ticket.status.not_in(Ticket.TERMINAL_STATUSES)
    closed_total = ticket_count(Ticket.status == Ticket.STATUS_CLOSED)
    closed_breached = ticket_count(Ticket.status == Ticket.STATUS_CLOSED, Ticket.is_sla_restore_breached.is_(True))
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return {
        'generated_at': iso(now),
        'total_tickets': ticket_count(),
        'open_tickets': ticket_count(Ticket.status == Ticket.STATUS_OPEN),
        'in_progress_tickets': ticket_count(Ticket.status.in_((Ticket.STATUS_ASSIGNED, Ticket.STATUS_ACKNOWLEDGED,
                                                               Ticket.STATUS_IN_PROGRESS))),
        'resolved_today': ticket_count(Ticket.resolved_on >= today),
        'sla_breached': ticket_count(live, sla.sla_status_clause(SLA_BREACHED, now, at_risk_minutes)),
        'sla_at_risk': ticket_count(live, sla.sla_status_clause(SLA_AT_RISK, now, at_risk_minutes)),
        'sla_compliance_percent': sla_compliance_percent(closed_total, closed_breached),
        'by_status': _grouped(session, Ticket.status, site_ids),
        'by_priority': _grouped(session, Ticket.priority, site_ids, exclude_terminal=True),
        'by_category': _grouped(session, Ticket.category, site_ids, exclude_terminal=True),
        'assets_by_status': {
            status: int(count) for status, count in
            _scoped(session.query(Asset.status, func.count(Asset.id)), Asset.site_id, site_ids)
            .filter(Asset.is_active.is_(True)).group_by(Asset.status).all()
        },
        'active_rmas': _scoped(session.query(func.count(RmaRequest.id)), RmaRequest.site_id, site_ids)
        .filter(RmaRequest.status.not_in(RmaRequest.FINAL_STATUSES)).scalar(),
    }
