"""RMA (repair / replacement) sub-workflow.

An RMA has a single status that branches once it is Approved:

* repair track: send-item -> (receive-at-ho -> send-for-repair) -> mark-repaired
  -> select-destination -> receive-at-site -> install
* replacement track (RepairAndReplace only): raise-requisition
  -> dispatch-replacement -> receive-replacement -> install

Choosing HOStock at select-destination ends the RMA on the spot with the unit
parked as a spare at the head office. Steps are admin work except the site-level
receive / install steps, which belong to the ticket's assignee.
"""
from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from flask import abort, current_app
from sqlalchemy import select, update, func

from ticketops.models.asset import Asset
from ticketops.models.requisition import Requisition
from ticketops.models.rma import RmaRequest, RmaEvent
from ticketops.models.site import Site
from ticketops.models.stock import StockMovement
from ticketops.models.ticket import Ticket, TicketActivity
from ticketops.services.notifications import notify_safely
from ticketops.services.policy import Actor, assert_site_access
from ticketops.services.ticket_workflow import get_ticket_or_404, record_activity
from ticketops.services.worklog import log_work
from ticketops.utils.fsm import Transition, TransitionTable
from ticketops.utils.timeutil import utcnow
from ticketops.utils.validation import optional_text, require_int, validate_status

R = RmaRequest

RMA_FSM = TransitionTable({
    'approve': Transition((R.STATUS_REQUESTED,), R.STATUS_APPROVED),
    'reject': Transition((R.STATUS_REQUESTED,), R.STATUS_REJECTED, ('reason',)),
    'send_item': Transition((R.STATUS_APPROVED,), None, ('route',)),
    'receive_at_ho': Transition((R.STATUS_SENT_TO_HO,), R.STATUS_RECEIVED_AT_HO),
    'send_for_repair': Transition((R.STATUS_RECEIVED_AT_HO,), R.STATUS_SENT_FOR_REPAIR_FROM_HO),
    'mark_repaired': Transition((R.STATUS_SENT_TO_SERVICE_CENTER, R.STATUS_SENT_FOR_REPAIR_FROM_HO), R.STATUS_ITEM_REPAIRED_AT_HO),
    'select_destination': Transition((R.STATUS_ITEM_REPAIRED_AT_HO,), None, ('destination',)),
    'receive_at_site': Transition((R.STATUS_RETURN_SHIPPED_TO_SITE,), R.STATUS_RECEIVED_AT_SITE),
    'raise_requisition': Transition((R.STATUS_APPROVED,), R.STATUS_REPLACEMENT_REQUISITION_RAISED, ('stock_source',)),
    'dispatch_replacement': Transition((R.STATUS_REPLACEMENT_REQUISITION_RAISED,), R.STATUS_REPLACEMENT_DISPATCHED),
    'receive_replacement': Transition((R.STATUS_REPLACEMENT_DISPATCHED,), R.STATUS_REPLACEMENT_RECEIVED_AT_SITE),
    'install': Transition((R.STATUS_RECEIVED_AT_SITE, R.STATUS_REPLACEMENT_RECEIVED_AT_SITE), R.STATUS_INSTALLED),
}, field_name='RMA status')

# Performed at the site by the ticket's assigned engineer
SITE_STEPS = ('receive_at_site', 'receive_replacement', 'install')

ROUTE_TARGETS = {
    R.ROUTE_TO_HO: R.STATUS_SENT_TO_HO,
    R.ROUTE_DIRECT_TO_SERVICE_CENTER: R.STATUS_SENT_TO_SERVICE_CENTER,
}

SNAPSHOT_FIELDS = ('serial_number', 'ip_address', 'mac', 'make', 'model', 'username')
INSTALL_FIELDS = ('serial_number', 'ip_address', 'mac', 'make', 'model')

HO_STOCK_LOCATION = 'HO Stock'


def get_rma_or_404(session, rma_id: int) -> RmaRequest:
    rma = session.execute(select(RmaRequest).where(RmaRequest.id == rma_id)).scalar_one_or_none()
    if not rma:
        abort(404, description='RMA not found')
    return rma


def active_rma_for_ticket(session, ticket_id: int) -> Optional[RmaRequest]:
    return session.execute(
        select(RmaRequest).where(RmaRequest.ticket_id == ticket_id, RmaRequest.status.not_in(RmaRequest.FINAL_STATUSES))
    ).scalars().first()


def latest_rma_for_ticket(session, ticket_id: int) -> Optional[RmaRequest]:
    return session.execute(
        select(RmaRequest).where(RmaRequest.ticket_id == ticket_id).order_by(RmaRequest.id.desc())
    ).scalars().first()


def asset_rma_history(session, asset_id: int) -> List[RmaRequest]:
    return list(session.execute(
        select(RmaRequest).where(RmaRequest.asset_id == asset_id).order_by(RmaRequest.id.desc())
    ).scalars())


def rma_events(session, rma_id: int) -> List[RmaEvent]:
    return list(session.execute(
        select(RmaEvent).where(RmaEvent.rma_id == rma_id).order_by(RmaEvent.id.asc())
    ).scalars())


def daily_number(session, column, prefix: str, now: datetime) -> str:
    head = f"{prefix}-{now:%Y%m%d}-"
    count = session.execute(select(func.count()).where(column.like(f'{head}%'))).scalar_one()
    return f"{head}{count + 1:04d}"


def head_office_site(session) -> Site:
    ho = session.execute(select(Site).where(Site.is_head_office.is_(True)).order_by(Site.id.asc())).scalars().first()
    if not ho:
        abort(400, description='No head-office site configured')
    return ho


def parse_logistics(payload: Dict[str, Any], required: bool = False) -> Optional[Dict[str, str]]:
    raw = payload.get('logistics')
    if raw is None:
        if required:
            abort(400, description='logistics required')
        return None
    if not isinstance(raw, dict):
        abort(400, description='logistics invalid')
    out = {k: str(raw.get(k)).strip() for k in ('carrier', 'tracking_number') if raw.get(k)}
    if required and not out.get('carrier'):
        abort(400, description='logistics.carrier required')
    return out or None


def asset_snapshot(asset: Asset) -> Dict[str, Any]:
    return {'asset_code': asset.asset_code, 'asset_type': asset.asset_type, 'serial_number': asset.serial_number}


def record_movement(session, actor: Actor, asset: Asset, movement_type: str, from_site_id: Optional[int],
                    from_status: Optional[str], now: datetime, **refs) -> StockMovement:
    """Log a unit that has just moved; `asset` already carries its new site and status."""
    mv = StockMovement(asset_id=asset.id, movement_type=movement_type, from_site_id=from_site_id,
                       to_site_id=asset.site_id, from_status=from_status, to_status=asset.status,
                       performed_by=actor.user_id, asset_snapshot=asset_snapshot(asset), created_at=now, **refs)
    session.add(mv)
    return mv


def _is_assignee(actor: Actor, ticket: Ticket) -> bool:
    return ticket.assigned_to is not None and ticket.assigned_to == actor.user_id


def assert_can_request(actor: Actor, ticket: Ticket):
    if not actor.has('RMA.REQUEST') or not (_is_assignee(actor, ticket) or actor.is_admin):
        abort(403, description='Only the assigned engineer or an admin can raise an RMA')


def assert_can_run_step(actor: Actor, step: str, ticket: Ticket):
    if step in SITE_STEPS:
        if not actor.has('RMA.RECEIVE') or not (_is_assignee(actor, ticket) or actor.is_admin):
            abort(403, description='Only the assigned engineer or an admin can perform this step')
        return
    if not actor.has('RMA.MANAGE'):
        abort(403, description='Admin permission required for this RMA step')


def create_rma(session, actor: Actor, data: Dict[str, Any], now: Optional[datetime] = None) -> Tuple[RmaRequest, List[str]]:
    now = now or utcnow()
    ticket = get_ticket_or_404(session, require_int(data, 'ticket_id'))
    assert_site_access(actor, ticket.site_id)
    rma_type = validate_status(data.get('rma_type') or RmaRequest.TYPE_REPAIR_ONLY, RmaRequest.ALL_TYPES, 'rma_type')
    assert_can_request(actor, ticket)
    if ticket.status in Ticket.TERMINAL_STATUSES:
        abort(409, description=f'Ticket is {ticket.status}')
    if ticket.asset_id is None:
        abort(400, description='Ticket has no asset')
    asset = session.get(Asset, ticket.asset_id)
    if not asset:
        abort(404, description='Asset not found')
    existing = active_rma_for_ticket(session, ticket.id)
    if existing:
        abort(409, description=f'Ticket already has an active RMA ({existing.rma_number})')

    rma = RmaRequest(
        rma_number=daily_number(session, RmaRequest.rma_number, 'RMA', now),
        ticket_id=ticket.id,
        asset_id=asset.id,
        site_id=ticket.site_id,
        rma_type=rma_type,
        status=RmaRequest.STATUS_REQUESTED,
        failure_description=optional_text(data, 'failure_description'),
        requested_by=actor.user_id,
        original_details={k: getattr(asset, k) for k in SNAPSHOT_FIELDS},
        created_on=now,
        updated_at=now,
    )
    session.add(rma)
    asset.status = Asset.STATUS_FAULTY
    asset.updated_at = now
    session.flush()
    session.add(RmaEvent(rma_id=rma.id, step='create', from_status=None, status=rma.status,
                         actor_user_id=actor.user_id, remarks=rma.failure_description, created_at=now))
    record_activity(session, ticket.id, actor.user_id, f"RMA {rma.rma_number} requested ({rma_type})",
                    TicketActivity.TYPE_RMA, now=now)
    log_work(session, actor.user_id, 'RMACreated', f"Raised {rma.rma_number} for {ticket.ticket_number}",
             ticket_id=ticket.id, site_id=ticket.site_id, ref_type='RmaRequest', ref_id=rma.id, now=now)
    session.commit()
    current_app.logger.info('rma %s created for ticket %s by user %s', rma.rma_number, ticket.ticket_number, actor.user_id)
    warnings: List[str] = []
    notify_safely('rma.created', {'rma_id': rma.id, 'rma_number': rma.rma_number, 'ticket_id': ticket.id}, warnings)
    return rma, warnings


def _target_for(step: str, rma: RmaRequest, payload: Dict[str, Any]) -> Optional[str]:
    rule = RMA_FSM.get(step)
    if step == 'send_item':
        route = payload.get('route')
        return ROUTE_TARGETS.get(route) if route in ROUTE_TARGETS else None
    if step == 'select_destination':
        dest = payload.get('destination')
        if dest == RmaRequest.DEST_HO_STOCK:
            return RmaRequest.STATUS_TRANSFERRED_TO_HO_STOCK
        if dest in RmaRequest.ALL_DESTINATIONS:
            return RmaRequest.STATUS_RETURN_SHIPPED_TO_SITE
        return None
    return rule.target


def _step_effects(session, actor: Actor, rma: RmaRequest, asset: Asset, step: str, payload: Dict[str, Any], now: datetime):
    """RMA column values for the step; mutates the asset / requisition in the session."""
    values: Dict[str, Any] = {}

    if step == 'approve':
        values['approved_by'] = actor.user_id
    elif step == 'reject':
        values['rejection_reason'] = str(payload['reason']).strip()
    elif step == 'send_item':
        values['item_send_route'] = validate_status(payload.get('route'), RmaRequest.ALL_ROUTES, 'route')
        asset.status = Asset.STATUS_IN_REPAIR
    elif step == 'mark_repaired':
        asset.status = Asset.STATUS_SPARE
    elif step == 'select_destination':
        dest = validate_status(payload.get('destination'), RmaRequest.ALL_DESTINATIONS, 'destination')
        values['repair_destination'] = dest
        if dest == RmaRequest.DEST_HO_STOCK:
            ho = head_office_site(session)
            values['destination_site_id'] = ho.id
            from_site_id, from_status = asset.site_id, asset.status
            asset.status = Asset.STATUS_SPARE
            asset.site_id = ho.id
            asset.stock_location = HO_STOCK_LOCATION
            record_movement(session, actor, asset, StockMovement.TYPE_REPAIRED_RETURN, from_site_id, from_status, now,
                            ticket_id=rma.ticket_id, rma_id=rma.id)
        else:
            if dest == RmaRequest.DEST_OTHER_SITE:
                site_id = require_int(payload, 'destination_site_id')
                if not session.get(Site, site_id):
                    abort(404, description='Destination site not found')
            else:
                site_id = rma.site_id
            values['destination_site_id'] = site_id
            parse_logistics(payload, required=True)
    elif step == 'receive_at_site':
        from_site_id, from_status = asset.site_id, asset.status
        asset.status = Asset.STATUS_SPARE
        asset.site_id = rma.destination_site_id or rma.site_id
        asset.stock_location = None
        record_movement(session, actor, asset, StockMovement.TYPE_REPAIRED_RETURN, from_site_id, from_status, now,
                        ticket_id=rma.ticket_id, rma_id=rma.id)
    elif step == 'raise_requisition':
        if rma.rma_type != RmaRequest.TYPE_REPAIR_AND_REPLACE:
            abort(409, description='Replacement is only available for RepairAndReplace RMAs')
        source = validate_status(payload.get('stock_source'), RmaRequest.ALL_STOCK_SOURCES, 'stock_source')
        values['stock_source'] = source
        source_site_id = None
        if source == RmaRequest.SOURCE_HO_STOCK:
            source_site_id = head_office_site(session).id
        elif source == RmaRequest.SOURCE_SITE_STOCK:
            source_site_id = require_int(payload, 'source_site_id')
            if not session.get(Site, source_site_id):
                abort(404, description='Source site not found')
        values['source_site_id'] = source_site_id
        if source_site_id is not None:
            req = Requisition(
                requisition_number=daily_number(session, Requisition.requisition_number,
                                                Requisition.NUMBER_PREFIXES[Requisition.TYPE_RMA_TRANSFER], now),
                requisition_type=Requisition.TYPE_RMA_TRANSFER,
                rma_id=rma.id,
                ticket_id=rma.ticket_id,
                asset_type=asset.asset_type,
                source_site_id=source_site_id,
                destination_site_id=rma.site_id,
                status=Requisition.STATUS_PENDING,
                requested_by=actor.user_id,
                created_on=now,
                updated_at=now,
            )
            session.add(req)
            session.flush()
            values['requisition_id'] = req.id
        asset.status = Asset.STATUS_IN_REPAIR
    elif step in ('dispatch_replacement', 'receive_replacement'):
        if rma.requisition_id:
            req = session.get(Requisition, rma.requisition_id)
            req.status = Requisition.STATUS_IN_TRANSIT if step == 'dispatch_replacement' else Requisition.STATUS_FULFILLED
            req.updated_at = now
    elif step == 'install':
        details = payload.get('replacement_details')
        if details is not None and not isinstance(details, dict):
            abort(400, description='replacement_details invalid')
        if rma.status == RmaRequest.STATUS_REPLACEMENT_RECEIVED_AT_SITE and not details:
            abort(400, description='replacement_details required')
        details = {k: str(details[k]).strip() for k in INSTALL_FIELDS if details and details.get(k)}
        for k, v in details.items():
            setattr(asset, k, v)
        asset.status = Asset.STATUS_OPERATIONAL
        asset.site_id = rma.destination_site_id or rma.site_id
        asset.stock_location = None
        values.update(installed_on=now, replacement_details=details or None)
    asset.updated_at = now
    return values


def execute_step(session, actor: Actor, rma_id: int, step: str, payload: Optional[Dict[str, Any]] = None,
                 now: Optional[datetime] = None) -> Tuple[RmaRequest, List[str]]:
    payload = payload or {}
    now = now or utcnow()
    rma = get_rma_or_404(session, rma_id)
    ticket = get_ticket_or_404(session, rma.ticket_id)
    assert_site_access(actor, rma.site_id)
    rule = RMA_FSM.get(step)
    assert_can_run_step(actor, step, ticket)
    RMA_FSM.assert_required(step, payload)
    target = _target_for(step, rma, payload)
    if rma.status not in rule.sources:
        # Re-submitted step (e.g. after a client timeout): already done
        if target is not None and rma.status == target:
            return rma, []
        RMA_FSM.assert_can_apply(step, rma.status)
    expected = payload.get('expected_status')
    if expected is not None and expected != rma.status:
        abort(409, description=f'RMA status is {rma.status}, expected {expected}')
    return apply_step(session, actor, rma, ticket, step, target, payload, now)


def apply_step(session, actor: Actor, rma: RmaRequest, ticket: Ticket, step: str, target: str,
               payload: Dict[str, Any], now: datetime) -> Tuple[RmaRequest, List[str]]:
    """Run an already-authorised step and commit it together with anything pending in the session."""
    prior = rma.status
    asset = session.get(Asset, rma.asset_id)
    values = _step_effects(session, actor, rma, asset, step, payload, now)
    logistics = parse_logistics(payload)
    if logistics:
        values['logistics'] = logistics
    values.update(status=target, updated_at=now)
    result = session.execute(
        update(RmaRequest)
        .where(RmaRequest.id == rma.id, RmaRequest.status == prior)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        session.rollback()
        abort(409, description='RMA was modified concurrently; reload and retry')
    remarks = optional_text(payload, 'remarks') or optional_text(payload, 'reason')
    session.add(RmaEvent(rma_id=rma.id, step=step, from_status=prior, status=target, actor_user_id=actor.user_id,
                         remarks=remarks, logistics=logistics, created_at=now))
    label = step.replace('_', ' ')
    record_activity(session, ticket.id, actor.user_id, f"RMA {rma.rma_number}: {label} ({prior} -> {target})",
                    TicketActivity.TYPE_RMA, now=now)
    log_work(session, actor.user_id, 'RMAStatusChanged', f"{rma.rma_number}: {label} ({target})",
             ticket_id=ticket.id, site_id=rma.site_id, ref_type='RmaRequest', ref_id=rma.id, now=now)
    session.commit()
    session.refresh(rma)
    current_app.logger.info('rma %s %s %s -> %s by user %s', rma.rma_number, step, prior, target, actor.user_id)
    warnings: List[str] = []
    notify_safely(f'rma.{step}', {'rma_id': rma.id, 'rma_number': rma.rma_number, 'status': target}, warnings)
    return rma, warnings
