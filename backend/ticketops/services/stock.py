"""Spare stock: inventory views, ticket requisitions and site-to-site transfers.

Spare units are ordinary `Asset` rows in status Spare; a site's stock is
simply its spares grouped by asset type. Two flows move them:

* requisition (raised from a ticket): Pending -> Approved -> Fulfilled, or
  Rejected. Fulfilling hands one spare from the source site to the ticket's
  site as the ticket's new asset; the replaced unit is marked Faulty.
* transfer (admin): Pending -> InTransit -> Completed, or Cancelled while
  Pending. Units are Reserved at the source until dispatch, In Transit on
  the road and Spare at the destination once received.

RMA-backed requisitions (type RMATransfer) only change through their RMA.
Every unit that changes site is written to the stock movement log.
"""
from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from flask import abort, current_app
from sqlalchemy import select, update, func, or_

from ticketops.models.asset import Asset
from ticketops.models.requisition import Requisition
from ticketops.models.site import Site
from ticketops.models.stock import StockTransfer, StockMovement
from ticketops.models.ticket import Ticket, TicketActivity
from ticketops.services.notifications import notify_safely
from ticketops.services.policy import Actor, assert_site_access
from ticketops.services.rma_workflow import daily_number, parse_logistics, record_movement
from ticketops.services.ticket_workflow import get_ticket_or_404, record_activity
from ticketops.services.worklog import log_work
from ticketops.utils.fsm import Transition, TransitionTable
from ticketops.utils.timeutil import utcnow
from ticketops.utils.validation import optional_text, require_int, int_in_range

Q = Requisition
X = StockTransfer

REQUISITION_FSM = TransitionTable({
    'approve': Transition((Q.STATUS_PENDING,), Q.STATUS_APPROVED),
    'reject': Transition((Q.STATUS_PENDING, Q.STATUS_APPROVED), Q.STATUS_REJECTED, ('reason',)),
    'fulfill': Transition((Q.STATUS_APPROVED,), Q.STATUS_FULFILLED, ('asset_id',)),
}, field_name='requisition status')

REQUISITION_PERMISSIONS = {'approve': 'STK.MANAGE', 'reject': 'STK.MANAGE', 'fulfill': 'STK.REQUEST'}

TRANSFER_FSM = TransitionTable({
    'dispatch': Transition((X.STATUS_PENDING,), X.STATUS_IN_TRANSIT),
    'receive': Transition((X.STATUS_IN_TRANSIT,), X.STATUS_COMPLETED),
    'cancel': Transition((X.STATUS_PENDING,), X.STATUS_CANCELLED),
}, field_name='transfer status')

TRANSFER_PERMISSIONS = {'dispatch': 'STK.TRANSFER', 'receive': 'STK.REQUEST', 'cancel': 'STK.TRANSFER'}

MAX_QUANTITY = 100
MAX_TRANSFER_UNITS = 200


def spares_query(site_id: int, asset_type: Optional[str] = None):
    stmt = select(Asset).where(Asset.site_id == site_id, Asset.status == Asset.STATUS_SPARE,
                               Asset.is_active.is_(True))
    if asset_type:
        stmt = stmt.where(Asset.asset_type == asset_type)
    return stmt.order_by(Asset.asset_code.asc())


def count_spares(session, site_id: int, asset_type: Optional[str]) -> int:
    return session.execute(select(func.count()).select_from(spares_query(site_id, asset_type).subquery())).scalar_one()


def spare_json(a: Asset) -> Dict[str, Any]:
    return {'id': a.id, 'asset_code': a.asset_code, 'asset_type': a.asset_type, 'serial_number': a.serial_number,
            'make': a.make, 'model': a.model, 'stock_location': a.stock_location}


def _head_office(session) -> Optional[Site]:
    return session.execute(
        select(Site).where(Site.is_head_office.is_(True)).order_by(Site.id.asc())
    ).scalars().first()


def inventory(session, actor: Actor, site_id: Optional[int] = None, asset_type: Optional[str] = None,
              search: Optional[str] = None) -> List[Dict[str, Any]]:
    """Spare units grouped by (site, asset type); head office first, then by site name."""
    stmt = (
        select(Asset, Site)
        .join(Site, Site.id == Asset.site_id)
        .where(Asset.status == Asset.STATUS_SPARE, Asset.is_active.is_(True))
    )
    if actor.site_ids:
        stmt = stmt.where(Asset.site_id.in_(actor.site_ids))
    if site_id is not None:
        stmt = stmt.where(Asset.site_id == site_id)
    if asset_type:
        stmt = stmt.where(Asset.asset_type == asset_type)
    if search:
        stmt = stmt.where(Asset.asset_code.ilike(f'%{search}%') | Asset.serial_number.ilike(f'%{search}%'))
    groups: Dict[Tuple[int, str], Dict[str, Any]] = {}
    for asset, site in session.execute(stmt.order_by(Asset.asset_code.asc())).all():
        key = (site.id, asset.asset_type)
        group = groups.get(key)
        if group is None:
            group = groups[key] = {
                'site_id': site.id, 'site_code': site.site_code, 'site_name': site.site_name,
                'is_head_office': site.is_head_office, 'asset_type': asset.asset_type, 'count': 0, 'assets': [],
            }
        group['count'] += 1
        group['assets'].append(spare_json(asset))
    return sorted(groups.values(), key=lambda g: (not g['is_head_office'], g['site_name'], g['asset_type']))


def availability(session, actor: Actor, ticket_id: int) -> Dict[str, Any]:
    """Spares that could replace the ticket's asset: at its own site and at the head office."""
    ticket = get_ticket_or_404(session, ticket_id)
    assert_site_access(actor, ticket.site_id)
    asset = session.get(Asset, ticket.asset_id) if ticket.asset_id else None
    if asset is None:
        abort(400, description='Ticket has no asset')
    local = list(session.execute(spares_query(ticket.site_id, asset.asset_type)).scalars())
    ho = _head_office(session)
    remote: List[Asset] = []
    if ho is not None and ho.id != ticket.site_id:
        remote = list(session.execute(spares_query(ho.id, asset.asset_type)).scalars())
    return {
        'ticket_id': ticket.id,
        'site_id': ticket.site_id,
        'asset_type': asset.asset_type,
        'head_office_site_id': ho.id if ho else None,
        'local_stock': len(local),
        'ho_stock': len(remote),
        'total_available': len(local) + len(remote),
        'local_spares': [spare_json(a) for a in local],
        'ho_spares': [spare_json(a) for a in remote],
    }


def get_requisition_or_404(session, requisition_id: int) -> Requisition:
    req = session.get(Requisition, requisition_id)
    if not req:
        abort(404, description='Requisition not found')
    return req


def assert_requisition_access(actor: Actor, req: Requisition):
    if not (actor.can_see_site(req.destination_site_id) or actor.can_see_site(req.source_site_id)):
        abort(403, description='Site access denied')


def create_requisition(session, actor: Actor, data: Dict[str, Any],
                       now: Optional[datetime] = None) -> Tuple[Requisition, List[str]]:
    now = now or utcnow()
    ticket = get_ticket_or_404(session, require_int(data, 'ticket_id'))
    assert_site_access(actor, ticket.site_id)
    if ticket.status in Ticket.TERMINAL_STATUSES:
        abort(409, description=f'Ticket is {ticket.status}')
    source = session.get(Site, require_int(data, 'source_site_id'))
    if not source:
        abort(404, description='Source site not found')
    asset_type = optional_text(data, 'asset_type')
    if not asset_type and ticket.asset_id:
        asset_type = session.get(Asset, ticket.asset_id).asset_type
    if not asset_type:
        abort(400, description='asset_type required')
    quantity = int_in_range(data.get('quantity', 1), 'quantity', 1, MAX_QUANTITY)
    available = count_spares(session, source.id, asset_type)
    if available < quantity:
        abort(400, description=f'Insufficient {asset_type} stock at {source.site_code} (available {available})')

    req = Requisition(
        requisition_number=daily_number(session, Requisition.requisition_number,
                                        Requisition.NUMBER_PREFIXES[Requisition.TYPE_STOCK_REQUEST], now),
        requisition_type=Requisition.TYPE_STOCK_REQUEST,
        ticket_id=ticket.id,
        asset_type=asset_type,
        quantity=quantity,
        source_site_id=source.id,
        destination_site_id=ticket.site_id,
        status=Requisition.STATUS_PENDING,
        requested_by=actor.user_id,
        comments=optional_text(data, 'comments'),
        created_on=now,
        updated_at=now,
    )
    session.add(req)
    session.flush()
    record_activity(session, ticket.id, actor.user_id,
                    f"Requisition {req.requisition_number} raised: {quantity} x {asset_type} from {source.site_code}",
                    TicketActivity.TYPE_COMMENT, is_internal=True, now=now)
    log_work(session, actor.user_id, 'RequisitionCreated', f"Raised {req.requisition_number} for {ticket.ticket_number}",
             ticket_id=ticket.id, site_id=ticket.site_id, ref_type='Requisition', ref_id=req.id, now=now)
    session.commit()
    current_app.logger.info('requisition %s created for ticket %s by user %s', req.requisition_number,
                            ticket.ticket_number, actor.user_id)
    warnings: List[str] = []
    notify_safely('requisition.created', {'requisition_id': req.id, 'requisition_number': req.requisition_number,
                                          'ticket_id': ticket.id}, warnings)
    return req, warnings


def _fulfill(session, actor: Actor, req: Requisition, payload: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    spare = session.get(Asset, require_int(payload, 'asset_id'))
    if not spare:
        abort(404, description='Asset not found')
    if spare.status != Asset.STATUS_SPARE:
        abort(409, description=f'Asset is {spare.status}, not Spare')
    if spare.site_id != req.source_site_id:
        abort(400, description='Asset is not held at the requisition source site')
    if req.asset_type and spare.asset_type != req.asset_type:
        abort(400, description=f'Asset type {spare.asset_type} does not match {req.asset_type}')
    if req.ticket_id:
        ticket = session.get(Ticket, req.ticket_id)
        replaced = session.get(Asset, ticket.asset_id) if ticket.asset_id else None
        if replaced is not None and replaced.id != spare.id:
            replaced.status = Asset.STATUS_FAULTY
            replaced.updated_at = now
        ticket.asset_id = spare.id
        ticket.updated_at = now
    from_site_id, from_status = spare.site_id, spare.status
    spare.status = Asset.STATUS_OPERATIONAL
    spare.site_id = req.destination_site_id
    spare.stock_location = None
    spare.updated_at = now
    record_movement(session, actor, spare, StockMovement.TYPE_REQUISITION_FULFILLED, from_site_id, from_status, now,
                    ticket_id=req.ticket_id, requisition_id=req.id)
    return {'fulfilled_asset_id': spare.id, 'fulfilled_on': now}


def execute_requisition_step(session, actor: Actor, requisition_id: int, step: str,
                             payload: Optional[Dict[str, Any]] = None,
                             now: Optional[datetime] = None) -> Tuple[Requisition, List[str]]:
    payload = payload or {}
    now = now or utcnow()
    req = get_requisition_or_404(session, requisition_id)
    assert_requisition_access(actor, req)
    REQUISITION_FSM.get(step)
    if not actor.has(REQUISITION_PERMISSIONS[step]):
        abort(403, description='Missing permission')
    if req.requisition_type == Requisition.TYPE_RMA_TRANSFER:
        abort(409, description='RMA-backed requisitions follow their RMA')
    rule = REQUISITION_FSM.assert_can_apply(step, req.status)
    REQUISITION_FSM.assert_required(step, payload)

    prior = req.status
    values: Dict[str, Any] = {}
    if step == 'approve':
        values.update(approved_by=actor.user_id, approved_on=now)
    elif step == 'reject':
        values['rejection_reason'] = str(payload['reason']).strip()
    elif step == 'fulfill':
        values.update(_fulfill(session, actor, req, payload, now))
    values.update(status=rule.target, updated_at=now)
    result = session.execute(
        update(Requisition)
        .where(Requisition.id == req.id, Requisition.status == prior)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        session.rollback()
        abort(409, description='Requisition was modified concurrently; reload and retry')
    if req.ticket_id:
        record_activity(session, req.ticket_id, actor.user_id,
                        f"Requisition {req.requisition_number}: {step} ({prior} -> {rule.target})",
                        TicketActivity.TYPE_COMMENT, is_internal=True, now=now)
    if step == 'fulfill':
        log_work(session, actor.user_id, 'RequisitionFulfilled', f"Fulfilled {req.requisition_number}",
                 ticket_id=req.ticket_id, site_id=req.destination_site_id, ref_type='Requisition', ref_id=req.id,
                 now=now)
    session.commit()
    session.refresh(req)
    current_app.logger.info('requisition %s %s %s -> %s by user %s', req.requisition_number, step, prior,
                            req.status, actor.user_id)
    warnings: List[str] = []
    notify_safely(f'requisition.{step}', {'requisition_id': req.id, 'requisition_number': req.requisition_number,
                                          'status': req.status}, warnings)
    return req, warnings


def get_transfer_or_404(session, transfer_id: int) -> StockTransfer:
    tr = session.get(StockTransfer, transfer_id)
    if not tr:
        abort(404, description='Transfer not found')
    return tr


def assert_transfer_access(actor: Actor, tr: StockTransfer):
    if not (actor.can_see_site(tr.source_site_id) or actor.can_see_site(tr.destination_site_id)):
        abort(403, description='Site access denied')


def _transfer_assets(session, tr: StockTransfer) -> List[Asset]:
    return list(session.execute(select(Asset).where(Asset.id.in_(tr.asset_ids or [])).order_by(Asset.id)).scalars())


def _asset_ids(data: Dict[str, Any]) -> List[int]:
    raw = data.get('asset_ids')
    if not isinstance(raw, list) or not raw:
        abort(400, description='asset_ids required')
    if len(raw) > MAX_TRANSFER_UNITS:
        abort(400, description=f'At most {MAX_TRANSFER_UNITS} assets per transfer')
    if any(isinstance(v, bool) or not isinstance(v, int) for v in raw):
        abort(400, description='asset_ids invalid')
    if len(set(raw)) != len(raw):
        abort(400, description='asset_ids contains duplicates')
    return raw


def create_transfer(session, actor: Actor, data: Dict[str, Any], now: Optional[datetime] = None) -> StockTransfer:
    now = now or utcnow()
    source = session.get(Site, require_int(data, 'source_site_id'))
    destination = session.get(Site, require_int(data, 'destination_site_id'))
    if not source or not destination:
        abort(404, description='Site not found')
    if source.id == destination.id:
        abort(400, description='Source and destination must differ')
    ids = _asset_ids(data)
    assets = list(session.execute(select(Asset).where(Asset.id.in_(ids))).scalars())
    if len(assets) != len(ids):
        abort(404, description='Asset not found')
    for a in assets:
        if a.site_id != source.id:
            abort(400, description=f'{a.asset_code} is not held at {source.site_code}')
        if a.status != Asset.STATUS_SPARE:
            abort(409, description=f'{a.asset_code} is {a.status}, not Spare')

    tr = StockTransfer(
        transfer_number=daily_number(session, StockTransfer.transfer_number, 'STR', now),
        source_site_id=source.id,
        destination_site_id=destination.id,
        asset_ids=ids,
        status=StockTransfer.STATUS_PENDING,
        initiated_by=actor.user_id,
        notes=optional_text(data, 'notes'),
        created_on=now,
        updated_at=now,
    )
    session.add(tr)
    for a in assets:
        a.status = Asset.STATUS_RESERVED
        a.updated_at = now
    session.flush()
    log_work(session, actor.user_id, 'StockTransferred',
             f"Initiated {tr.transfer_number}: {len(ids)} unit(s) {source.site_code} -> {destination.site_code}",
             site_id=source.id, ref_type='StockTransfer', ref_id=tr.id, now=now)
    session.commit()
    current_app.logger.info('transfer %s created (%s units) by user %s', tr.transfer_number, len(ids), actor.user_id)
    return tr


def execute_transfer_step(session, actor: Actor, transfer_id: int, step: str, payload: Optional[Dict[str, Any]] = None,
                          now: Optional[datetime] = None) -> StockTransfer:
    payload = payload or {}
    now = now or utcnow()
    tr = get_transfer_or_404(session, transfer_id)
    assert_transfer_access(actor, tr)
    TRANSFER_FSM.get(step)
    if not actor.has(TRANSFER_PERMISSIONS[step]):
        abort(403, description='Missing permission')
    if step == 'receive':
        # only the receiving side signs for the units
        assert_site_access(actor, tr.destination_site_id)
    rule = TRANSFER_FSM.assert_can_apply(step, tr.status)

    prior = tr.status
    assets = _transfer_assets(session, tr)
    values: Dict[str, Any] = {}
    if step == 'dispatch':
        for a in assets:
            a.status = Asset.STATUS_IN_TRANSIT
        values.update(dispatched_by=actor.user_id, dispatched_on=now)
        logistics = parse_logistics(payload)
        if logistics:
            values['logistics'] = logistics
    elif step == 'receive':
        for a in assets:
            from_site_id, from_status = a.site_id, a.status
            a.status = Asset.STATUS_SPARE
            a.site_id = tr.destination_site_id
            a.stock_location = None
            record_movement(session, actor, a, StockMovement.TYPE_TRANSFER, from_site_id, from_status, now,
                            transfer_id=tr.id)
        values.update(received_by=actor.user_id, received_on=now)
    elif step == 'cancel':
        for a in assets:
            a.status = Asset.STATUS_SPARE
    for a in assets:
        a.updated_at = now
    values.update(status=rule.target, updated_at=now)
    result = session.execute(
        update(StockTransfer)
        .where(StockTransfer.id == tr.id, StockTransfer.status == prior)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        session.rollback()
        abort(409, description='Transfer was modified concurrently; reload and retry')
    if step in ('dispatch', 'receive'):
        log_work(session, actor.user_id, 'StockTransferred', f"{tr.transfer_number}: {step} ({rule.target})",
                 site_id=tr.destination_site_id if step == 'receive' else tr.source_site_id,
                 ref_type='StockTransfer', ref_id=tr.id, now=now)
    session.commit()
    session.refresh(tr)
    current_app.logger.info('transfer %s %s %s -> %s by user %s', tr.transfer_number, step, prior, tr.status,
                            actor.user_id)
    return tr


def movements_query(session, actor: Actor):
    q = session.query(StockMovement)
    if actor.site_ids:
        q = q.filter(or_(StockMovement.from_site_id.in_(actor.site_ids), StockMovement.to_site_id.in_(actor.site_ids)))
    return q


def type_counts(q) -> Dict[str, int]:
    rows = q.order_by(None).with_entities(StockMovement.movement_type, func.count(StockMovement.id)) \
        .group_by(StockMovement.movement_type).all()
    return {movement_type: n for movement_type, n in rows}
