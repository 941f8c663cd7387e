from __future__ import annotations
from flask import Blueprint, request, abort
from sqlalchemy import or_
from ticketops.decorators.auth import require_permissions
from ticketops.decorators.audit import audit_log
from ticketops.utils.listing import apply_pagination, cached_list, cached_entity, latest_timestamp
from ticketops.utils.sorting import apply_multi_sort
from ticketops.utils.filters import apply_filters, csv_values
from ticketops.utils.timeutil import iso, parse_iso
from ticketops.services.policy import current_actor
from ticketops.services.notifications import with_warnings
from ticketops.services import stock as svc
from ticketops import get_db
from ticketops.models.requisition import Requisition
from ticketops.models.stock import StockTransfer, StockMovement

stock_bp = Blueprint('stock', __name__)

REQUISITION_SORT_FIELDS = {
    'id': Requisition.id,
    'requisition_number': Requisition.requisition_number,
    'status': Requisition.status,
    'created_on': Requisition.created_on,
    'updated_at': Requisition.updated_at,
}

REQUISITION_FILTERS = {
    'status': {
        'coerce': csv_values,
        'validate': lambda vals: bool(vals) and all(v in Requisition.ALL_STATUSES for v in vals),
        'op': lambda q, vals: q.filter(Requisition.status.in_(vals)),
    },
    'requisition_type': {
        'validate': lambda v: v in Requisition.ALL_TYPES,
        'op': lambda q, v: q.filter(Requisition.requisition_type == v),
    },
    'ticket_id': {'coerce': int, 'op': lambda q, v: q.filter(Requisition.ticket_id == v)},
    'site_id': {
        'coerce': int,
        'op': lambda q, v: q.filter(or_(Requisition.destination_site_id == v, Requisition.source_site_id == v)),
    },
}

TRANSFER_SORT_FIELDS = {
    'id': StockTransfer.id,
    'transfer_number': StockTransfer.transfer_number,
    'status': StockTransfer.status,
    'created_on': StockTransfer.created_on,
    'updated_at': StockTransfer.updated_at,
}

TRANSFER_FILTERS = {
    'status': {
        'coerce': csv_values,
        'validate': lambda vals: bool(vals) and all(v in StockTransfer.ALL_STATUSES for v in vals),
        'op': lambda q, vals: q.filter(StockTransfer.status.in_(vals)),
    },
    'source_site_id': {'coerce': int, 'op': lambda q, v: q.filter(StockTransfer.source_site_id == v)},
    'destination_site_id': {'coerce': int, 'op': lambda q, v: q.filter(StockTransfer.destination_site_id == v)},
}

MOVEMENT_FILTERS = {
    'site_id': {
        'coerce': int,
        'op': lambda q, v: q.filter(or_(StockMovement.from_site_id == v, StockMovement.to_site_id == v)),
    },
    'asset_id': {'coerce': int, 'op': lambda q, v: q.filter(StockMovement.asset_id == v)},
    'movement_type': {
        'validate': lambda v: v in StockMovement.ALL_TYPES,
        'op': lambda q, v: q.filter(StockMovement.movement_type == v),
    },
    'from_date': {'coerce': parse_iso, 'op': lambda q, v: q.filter(StockMovement.created_at >= v)},
    'to_date': {'coerce': parse_iso, 'op': lambda q, v: q.filter(StockMovement.created_at <= v)},
}


def _scoped(q, *site_columns):
    actor = current_actor()
    if actor.site_ids:
        q = q.filter(or_(*(col.in_(actor.site_ids) for col in site_columns)))
    return q


@stock_bp.get('/inventory')
@require_permissions('STK.READ')
def inventory():
    site_id = request.args.get('site_id')
    if site_id is not None:
        try:
            site_id = int(site_id)
        except ValueError:
            abort(400, description='site_id invalid')
    groups = svc.inventory(get_db(), current_actor(), site_id=site_id,
                           asset_type=request.args.get('asset_type') or None,
                           search=request.args.get('search') or None)
    return {'data': groups, 'total_spares': sum(g['count'] for g in groups)}


@stock_bp.get('/availability/<int:ticket_id>')
@require_permissions('STK.READ')
def availability(ticket_id: int):
    return svc.availability(get_db(), current_actor(), ticket_id)


@stock_bp.route('/requisitions', methods=['GET', 'HEAD'])
@require_permissions('STK.READ')
def list_requisitions():
    session = get_db()
    q = _scoped(session.query(Requisition), Requisition.destination_site_id, Requisition.source_site_id)
    q = apply_filters(q, REQUISITION_FILTERS, request.args)
    q = apply_multi_sort(q, request.args.get('sort'), REQUISITION_SORT_FIELDS, Requisition.id,
                         default=[Requisition.created_on.desc()])
    paged_q, total, limit, offset = apply_pagination(q)
    rows = paged_q.all()
    return cached_list([requisition_json(r) for r in rows], total, limit, offset, latest_timestamp(rows),
                       head=request.method == 'HEAD')


@stock_bp.post('/requisitions')
@require_permissions('STK.REQUEST')
@audit_log('STK.REQUISITION.CREATE', entity='Requisition', entity_id_key='id',
           meta_keys=['requisition_number', 'ticket_id', 'asset_type', 'quantity'])
def create_requisition():
    req, warnings = svc.create_requisition(get_db(), current_actor(), request.get_json(silent=True) or {})
    return with_warnings(requisition_json(req), warnings), 201


@stock_bp.route('/requisitions/<int:requisition_id>', methods=['GET', 'HEAD'])
@require_permissions('STK.READ')
def get_requisition(requisition_id: int):
    req = svc.get_requisition_or_404(get_db(), requisition_id)
    svc.assert_requisition_access(current_actor(), req)
    return cached_entity(requisition_json(req), req.updated_at)


@stock_bp.post('/requisitions/<int:requisition_id>/<step>')
@require_permissions('STK.READ')
@audit_log('STK.REQUISITION.STEP', entity='Requisition', entity_id_key='id',
           meta_builder=lambda data, rv, a, kw: {'step': kw.get('step'), 'status': data.get('status')})
def requisition_step(requisition_id: int, step: str):
    if step not in svc.REQUISITION_FSM.rules:
        abort(404, description=f'Unknown requisition step {step}')
    req, warnings = svc.execute_requisition_step(get_db(), current_actor(), requisition_id, step,
                                                 request.get_json(silent=True) or {})
    return with_warnings(requisition_json(req), warnings)


@stock_bp.route('/transfers', methods=['GET', 'HEAD'])
@require_permissions('STK.READ')
def list_transfers():
    session = get_db()
    q = _scoped(session.query(StockTransfer), StockTransfer.source_site_id, StockTransfer.destination_site_id)
    q = apply_filters(q, TRANSFER_FILTERS, request.args)
    q = apply_multi_sort(q, request.args.get('sort'), TRANSFER_SORT_FIELDS, StockTransfer.id,
                         default=[StockTransfer.created_on.desc()])
    paged_q, total, limit, offset = apply_pagination(q)
    rows = paged_q.all()
    return cached_list([transfer_json(t) for t in rows], total, limit, offset, latest_timestamp(rows),
                       head=request.method == 'HEAD')


@stock_bp.post('/transfers')
@require_permissions('STK.TRANSFER')
@audit_log('STK.TRANSFER.CREATE', entity='StockTransfer', entity_id_key='id',
           meta_keys=['transfer_number', 'source_site_id', 'destination_site_id', 'asset_ids'])
def create_transfer():
    tr = svc.create_transfer(get_db(), current_actor(), request.get_json(silent=True) or {})
    return transfer_json(tr), 201


@stock_bp.route('/transfers/<int:transfer_id>', methods=['GET', 'HEAD'])
@require_permissions('STK.READ')
def get_transfer(transfer_id: int):
    tr = svc.get_transfer_or_404(get_db(), transfer_id)
    svc.assert_transfer_access(current_actor(), tr)
    return cached_entity(transfer_json(tr), tr.updated_at)


@stock_bp.post('/transfers/<int:transfer_id>/<step>')
@require_permissions('STK.READ')
@audit_log('STK.TRANSFER.STEP', entity='StockTransfer', entity_id_key='id',
           meta_builder=lambda data, rv, a, kw: {'step': kw.get('step'), 'status': data.get('status')})
def transfer_step(transfer_id: int, step: str):
    if step not in svc.TRANSFER_FSM.rules:
        abort(404, description=f'Unknown transfer step {step}')
    tr = svc.execute_transfer_step(get_db(), current_actor(), transfer_id, step, request.get_json(silent=True) or {})
    return transfer_json(tr)


@stock_bp.get('/movements')
@require_permissions('STK.READ')
def list_movements():
    session = get_db()
    q = svc.movements_query(session, current_actor())
    q = apply_filters(q, MOVEMENT_FILTERS, request.args)
    counts = svc.type_counts(q)
    q = q.order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
    paged_q, total, limit, offset = apply_pagination(q)
    body = {
        'data': [movement_json(m) for m in paged_q.all()],
        'pagination': {'total': total, 'limit': limit, 'offset': offset},
        'type_counts': counts,
    }
    body['pagination']['returned'] = len(body['data'])
    return body


def requisition_json(r: Requisition):
    return {
        'id': r.id,
        'requisition_number': r.requisition_number,
        'requisition_type': r.requisition_type,
        'ticket_id': r.ticket_id,
        'rma_id': r.rma_id,
        'asset_type': r.asset_type,
        'quantity': r.quantity,
        'source_site_id': r.source_site_id,
        'destination_site_id': r.destination_site_id,
        'status': r.status,
        'requested_by': r.requested_by,
        'approved_by': r.approved_by,
        'approved_on': iso(r.approved_on),
        'fulfilled_asset_id': r.fulfilled_asset_id,
        'fulfilled_on': iso(r.fulfilled_on),
        'comments': r.comments,
        'rejection_reason': r.rejection_reason,
        'created_on': iso(r.created_on),
        'updated_at': iso(r.updated_at),
    }


def transfer_json(t: StockTransfer):
    return {
        'id': t.id,
        'transfer_number': t.transfer_number,
        'source_site_id': t.source_site_id,
        'destination_site_id': t.destination_site_id,
        'asset_ids': list(t.asset_ids or []),
        'status': t.status,
        'initiated_by': t.initiated_by,
        'dispatched_by': t.dispatched_by,
        'dispatched_on': iso(t.dispatched_on),
        'received_by': t.received_by,
        'received_on': iso(t.received_on),
        'logistics': t.logistics,
        'notes': t.notes,
        'created_on': iso(t.created_on),
        'updated_at': iso(t.updated_at),
    }


def movement_json(m: StockMovement):
    return {
        'id': m.id,
        'asset_id': m.asset_id,
        'movement_type': m.movement_type,
        'from_site_id': m.from_site_id,
        'to_site_id': m.to_site_id,
        'from_status': m.from_status,
        'to_status': m.to_status,
        'performed_by': m.performed_by,
        'ticket_id': m.ticket_id,
        'rma_id': m.rma_id,
        'requisition_id': m.requisition_id,
        'transfer_id': m.transfer_id,
        'asset': m.asset_snapshot or {},
        'notes': m.notes,
        'created_at': iso(m.created_at),
    }
