from __future__ import annotations
from flask import Blueprint, request, abort
from ticketops.decorators.auth import require_permissions
from ticketops.decorators.audit import audit_log
from ticketops.utils.listing import apply_pagination, cached_list, cached_entity, latest_timestamp
from ticketops.utils.sorting import apply_multi_sort
from ticketops.utils.filters import apply_filters, csv_values
from ticketops.utils.timeutil import iso
from ticketops.services.policy import current_actor, assert_site_access, filter_query_by_sites
from ticketops.services.notifications import with_warnings
from ticketops.services import rma_workflow as rw
from ticketops.services.ticket_workflow import get_ticket_or_404
from ticketops import get_db
from ticketops.models.rma import RmaRequest, RmaEvent

rma_bp = Blueprint('rma', __name__)

SORT_FIELDS = {
    'id': RmaRequest.id,
    'rma_number': RmaRequest.rma_number,
    'status': RmaRequest.status,
    'created_on': RmaRequest.created_on,
    'updated_at': RmaRequest.updated_at,
}

FILTERS = {
    'status': {
        'coerce': csv_values,
        'validate': lambda vals: bool(vals) and all(v in RmaRequest.ALL_STATUSES for v in vals),
        'op': lambda q, vals: q.filter(RmaRequest.status.in_(vals)),
    },
    'rma_type': {
        'validate': lambda v: v in RmaRequest.ALL_TYPES,
        'op': lambda q, v: q.filter(RmaRequest.rma_type == v),
    },
    'ticket_id': {'coerce': int, 'op': lambda q, v: q.filter(RmaRequest.ticket_id == v)},
    'asset_id': {'coerce': int, 'op': lambda q, v: q.filter(RmaRequest.asset_id == v)},
    'site_id': {'coerce': int, 'op': lambda q, v: q.filter(RmaRequest.site_id == v)},
}


@rma_bp.get('')
@require_permissions('RMA.READ')
def list_rmas():
    session = get_db()
    q = filter_query_by_sites(session.query(RmaRequest), RmaRequest.site_id, current_actor())
    q = apply_filters(q, FILTERS, request.args)
    q = apply_multi_sort(q, request.args.get('sort'), SORT_FIELDS, RmaRequest.id, default=[RmaRequest.created_on.desc()])
    paged_q, total, limit, offset = apply_pagination(q)
    rows = paged_q.all()
    return cached_list([rma_json(r) for r in rows], total, limit, offset, latest_timestamp(rows))


@rma_bp.post('')
@require_permissions('RMA.REQUEST')
@audit_log('RMA.CREATE', entity='RmaRequest', entity_id_key='id', meta_keys=['rma_number', 'ticket_id', 'rma_type'])
def create_rma():
    session = get_db()
    rma, warnings = rw.create_rma(session, current_actor(), request.get_json(silent=True) or {})
    return with_warnings(rma_json(rma), warnings), 201


@rma_bp.route('/<int:rma_id>', methods=['GET', 'HEAD'])
@require_permissions('RMA.READ')
def get_rma(rma_id: int):
    session = get_db()
    rma = rw.get_rma_or_404(session, rma_id)
    assert_site_access(current_actor(), rma.site_id)
    body = rma_json(rma)
    body['events'] = [event_json(e) for e in rw.rma_events(session, rma.id)]
    return cached_entity(body, rma.updated_at)


@rma_bp.get('/ticket/<int:ticket_id>')
@require_permissions('RMA.READ')
def get_ticket_rma(ticket_id: int):
    session = get_db()
    ticket = get_ticket_or_404(session, ticket_id)
    assert_site_access(current_actor(), ticket.site_id)
    rma = rw.latest_rma_for_ticket(session, ticket.id)
    if not rma:
        abort(404, description='No RMA for this ticket')
    return rma_json(rma)


@rma_bp.post('/<int:rma_id>/<step>')
@require_permissions('RMA.READ')
@audit_log('RMA.STEP', entity='RmaRequest', entity_id_key='id',
           meta_builder=lambda data, rv, a, kw: {'step': kw.get('step'), 'status': data.get('status')})
def run_step(rma_id: int, step: str):
    action = step.replace('-', '_')
    if action not in rw.RMA_FSM.rules:
        abort(404, description=f'Unknown RMA step {step}')
    session = get_db()
    rma, warnings = rw.execute_step(session, current_actor(), rma_id, action, request.get_json(silent=True) or {})
    return with_warnings(rma_json(rma), warnings)


def rma_json(r: RmaRequest):
    return {
        'id': r.id,
        'rma_number': r.rma_number,
        'ticket_id': r.ticket_id,
        'asset_id': r.asset_id,
        'site_id': r.site_id,
        'rma_type': r.rma_type,
        'status': r.status,
        'is_active': r.is_active,
        'failure_description': r.failure_description,
        'requested_by': r.requested_by,
        'approved_by': r.approved_by,
        'rejection_reason': r.rejection_reason,
        'original_details': r.original_details or {},
        'replacement_details': r.replacement_details,
        'item_send_route': r.item_send_route,
        'repair_destination': r.repair_destination,
        'destination_site_id': r.destination_site_id,
        'stock_source': r.stock_source,
        'source_site_id': r.source_site_id,
        'requisition_id': r.requisition_id,
        'logistics': r.logistics,
        'created_on': iso(r.created_on),
        'installed_on': iso(r.installed_on),
        'updated_at': iso(r.updated_at),
    }


def event_json(e: RmaEvent):
    return {
        'id': e.id,
        'step': e.step,
        'from_status': e.from_status,
        'status': e.status,
        'actor_user_id': e.actor_user_id,
        'remarks': e.remarks,
        'logistics': e.logistics,
        'created_at': iso(e.created_at),
    }
