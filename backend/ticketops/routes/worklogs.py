from __future__ import annotations
from typing import List, Optional
from flask import Blueprint, request, abort
from ticketops.decorators.auth import require_permissions
from ticketops.utils.listing import apply_pagination, cached_list, latest_timestamp
from ticketops.utils.timeutil import iso, utcnow
from ticketops.services.policy import Actor, current_actor
from ticketops.services import worklog as svc
from ticketops import get_db
from ticketops.models.authz import User
from ticketops.models.worklog import WorkLog, WorkLogEntry

worklogs_bp = Blueprint('worklogs', __name__)


def _can_see_user(actor: Actor, user: User) -> bool:
    """Scoped supervisors only see people who share one of their sites."""
    if not actor.site_ids:
        return True
    return bool(set(user.site_ids()) & set(actor.site_ids))


def _logs_page(user_id: Optional[int]):
    session = get_db()
    start, end = svc.day_range(request.args)
    q = svc.logs_query(session, user_id, start, end)
    paged_q, total, limit, offset = apply_pagination(q)
    rows = paged_q.all()
    entries = svc.entries_for(session, [r.id for r in rows])
    return cached_list([log_json(r, entries[r.id]) for r in rows], total, limit, offset, latest_timestamp(rows),
                       head=request.method == 'HEAD')


@worklogs_bp.route('/my', methods=['GET', 'HEAD'])
@require_permissions('WLOG.SELF')
def my_logs():
    return _logs_page(current_actor().user_id)


@worklogs_bp.get('/my/today')
@require_permissions('WLOG.SELF')
def my_today():
    session = get_db()
    today = utcnow().date()
    log = svc.day_log(session, current_actor().user_id, today, create=False)
    if log is None:
        return {'id': None, 'user_id': current_actor().user_id, 'log_date': today.isoformat(),
                'daily_summary': None, 'entries': [], 'stats': svc.day_stats([]), 'updated_at': None}
    return log_json(log, svc.entries_for(session, [log.id])[log.id])


@worklogs_bp.post('/manual')
@require_permissions('WLOG.SELF')
def add_manual_entry():
    entry = svc.add_manual_entry(get_db(), current_actor().user_id, request.get_json(silent=True) or {})
    return entry_json(entry), 201


@worklogs_bp.put('/summary')
@require_permissions('WLOG.SELF')
def update_summary():
    session = get_db()
    log = svc.update_summary(session, current_actor().user_id, request.get_json(silent=True) or {})
    return log_json(log, svc.entries_for(session, [log.id])[log.id])


@worklogs_bp.delete('/manual/<int:entry_id>')
@require_permissions('WLOG.SELF')
def delete_manual_entry(entry_id: int):
    svc.delete_manual_entry(get_db(), current_actor().user_id, entry_id)
    return '', 204


@worklogs_bp.route('/user/<int:user_id>', methods=['GET', 'HEAD'])
@require_permissions('WLOG.TEAM.READ')
def user_logs(user_id: int):
    user = get_db().get(User, user_id)
    if not user:
        abort(404, description='User not found')
    if not _can_see_user(current_actor(), user):
        abort(403, description='Site access denied')
    return _logs_page(user.id)


@worklogs_bp.get('/team')
@require_permissions('WLOG.TEAM.READ')
def team_logs():
    """Everyone's log for one day (default today), with the day's totals."""
    session = get_db()
    actor = current_actor()
    day = svc.parse_day(request.args['date'], 'date') if request.args.get('date') else utcnow().date()
    rows = (
        session.query(WorkLog, User)
        .join(User, User.id == WorkLog.user_id)
        .filter(WorkLog.log_date == day)
        .order_by(User.full_name.asc(), User.id.asc())
        .all()
    )
    visible = [(log, user) for log, user in rows if _can_see_user(actor, user)]
    entries = svc.entries_for(session, [log.id for log, _ in visible])
    data: List[dict] = []
    totals = svc.day_stats([])
    for log, user in visible:
        body = log_json(log, entries[log.id])
        body['user'] = {'id': user.id, 'full_name': user.full_name, 'role': user.role}
        for k, v in body['stats'].items():
            totals[k] += v
        data.append(body)
    return {'date': day.isoformat(), 'data': data, 'totals': totals}


def entry_json(e: WorkLogEntry):
    return {
        'id': e.id,
        'entry_type': e.entry_type,
        'category': e.category,
        'description': e.description,
        'duration_minutes': e.duration_minutes,
        'ticket_id': e.ticket_id,
        'site_id': e.site_id,
        'police_station': e.police_station,
        'ref_type': e.ref_type,
        'ref_id': e.ref_id,
        'created_at': iso(e.created_at),
    }


def log_json(log: WorkLog, entries: List[WorkLogEntry]):
    return {
        'id': log.id,
        'user_id': log.user_id,
        'log_date': log.log_date.isoformat(),
        'daily_summary': log.daily_summary,
        'entries': [entry_json(e) for e in entries],
        'stats': svc.day_stats(entries),
        'updated_at': iso(log.updated_at),
    }
