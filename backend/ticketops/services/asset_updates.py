"""Device-detail updates for an RMA install, entered through a short-lived link.

The assigned engineer opens a request once the unit is back at site. The
request carries a random access token; whoever holds the link (typically
the engineer on a phone at the pole) submits serial, network and login
details without a session. An approver then signs off, which writes the
details to the asset and completes the RMA install in the same commit.
"""
from __future__ import annotations
import secrets
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple

from flask import abort, current_app
from sqlalchemy import select, update

from ticketops.models.asset import Asset
from ticketops.models.asset_update_request import AssetUpdateRequest
from ticketops.models.rma import RmaRequest
from ticketops.services import rma_workflow as rw
from ticketops.services.policy import Actor, assert_site_access
from ticketops.services.ticket_workflow import get_ticket_or_404
from ticketops.utils.security import encrypt_secret
from ticketops.utils.timeutil import utcnow, as_utc
from ticketops.utils.validation import optional_text, require_text

DEFAULT_WINDOW_MINUTES = 30

SUBMIT_FIELDS = ('serial_number', 'ip_address', 'mac', 'make', 'model', 'username', 'password')

U = AssetUpdateRequest


def _window() -> timedelta:
    return timedelta(minutes=int(current_app.config.get('ASSET_UPDATE_WINDOW_MINUTES', DEFAULT_WINDOW_MINUTES)))


def _install_sources():
    return rw.RMA_FSM.get('install').sources


def get_request_or_404(session, request_id: int) -> AssetUpdateRequest:
    req = session.get(AssetUpdateRequest, request_id)
    if not req:
        abort(404, description='Asset update request not found')
    return req


def pending_for_ticket(session, ticket_id: int) -> Optional[AssetUpdateRequest]:
    return session.execute(
        select(AssetUpdateRequest)
        .where(AssetUpdateRequest.ticket_id == ticket_id, AssetUpdateRequest.status == U.STATUS_PENDING)
        .order_by(AssetUpdateRequest.id.desc())
    ).scalars().first()


def initiate(session, actor: Actor, data: Dict[str, Any],
             now: Optional[datetime] = None) -> Tuple[AssetUpdateRequest, bool]:
    """Open a request for the RMA, or hand back its still-valid one. Returns (request, created)."""
    now = now or utcnow()
    rma_id = data.get('rma_id')
    if isinstance(rma_id, bool) or not isinstance(rma_id, int):
        abort(400, description='rma_id required')
    rma = rw.get_rma_or_404(session, rma_id)
    ticket = get_ticket_or_404(session, rma.ticket_id)
    assert_site_access(actor, rma.site_id)
    rw.assert_can_run_step(actor, 'install', ticket)
    if rma.status not in _install_sources():
        abort(409, description=f'RMA is {rma.status}; details are taken once the unit is back at site')
    open_requests = session.execute(
        select(AssetUpdateRequest)
        .where(AssetUpdateRequest.rma_id == rma.id, AssetUpdateRequest.status == U.STATUS_PENDING)
        .order_by(AssetUpdateRequest.id.desc())
    ).scalars().all()
    for existing in open_requests:
        if existing.submitted_at is not None:
            abort(409, description='Submitted details are awaiting approval')
        if as_utc(existing.access_expires_at) > now:
            return existing, False
        existing.status = U.STATUS_EXPIRED
        existing.updated_at = now

    asset = session.get(Asset, rma.asset_id)
    req = AssetUpdateRequest(
        rma_id=rma.id,
        ticket_id=ticket.id,
        asset_id=asset.id,
        requested_by=actor.user_id,
        status=U.STATUS_PENDING,
        original_values={k: getattr(asset, k) for k in rw.SNAPSHOT_FIELDS},
        access_token=secrets.token_hex(32),
        access_expires_at=now + _window(),
        created_on=now,
        updated_at=now,
    )
    session.add(req)
    session.commit()
    current_app.logger.info('asset update request %s opened for rma %s by user %s', req.id, rma.rma_number,
                            actor.user_id)
    return req, True


def open_by_token(session, token: str, now: Optional[datetime] = None) -> AssetUpdateRequest:
    """The request behind a link that can still take a submission."""
    now = now or utcnow()
    req = session.execute(
        select(AssetUpdateRequest).where(AssetUpdateRequest.access_token == token)
    ).scalar_one_or_none()
    if not req:
        abort(404, description='Link not found')
    if req.status != U.STATUS_PENDING:
        abort(409, description=f'Request is {req.status}')
    if req.submitted_at is not None:
        abort(409, description='Details already submitted')
    if as_utc(req.access_expires_at) <= now:
        req.status = U.STATUS_EXPIRED
        req.updated_at = now
        session.commit()
        abort(403, description='Link expired')
    return req


def submit(session, token: str, data: Dict[str, Any], now: Optional[datetime] = None) -> AssetUpdateRequest:
    now = now or utcnow()
    req = open_by_token(session, token, now)
    unknown = sorted(k for k in data if k not in SUBMIT_FIELDS)
    if unknown:
        abort(400, description=f"Field(s) not accepted: {', '.join(unknown)}")
    changes: Dict[str, Any] = {}
    for field in SUBMIT_FIELDS:
        val = optional_text(data, field)
        if not val:
            continue
        if field == 'password':
            changes['password_encrypted'] = encrypt_secret(val)
        else:
            changes[field] = val
    if not changes:
        abort(400, description='At least one field required')
    req.proposed_changes = changes
    req.submitted_at = now
    req.updated_at = now
    session.commit()
    current_app.logger.info('asset update request %s submitted (%s)', req.id,
                            ', '.join(sorted(k for k in changes if k != 'password_encrypted')))
    return req


def assert_visible(session, actor: Actor, req: AssetUpdateRequest) -> RmaRequest:
    rma = rw.get_rma_or_404(session, req.rma_id)
    assert_site_access(actor, rma.site_id)
    return rma


def _assert_reviewable(session, actor: Actor, req: AssetUpdateRequest):
    rma = assert_visible(session, actor, req)
    if req.status != U.STATUS_PENDING or req.submitted_at is None:
        abort(409, description='Only submitted, pending requests can be reviewed')
    return rma


def _close(session, req: AssetUpdateRequest, values: Dict[str, Any]):
    result = session.execute(
        update(AssetUpdateRequest)
        .where(AssetUpdateRequest.id == req.id, AssetUpdateRequest.status == U.STATUS_PENDING)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        session.rollback()
        abort(409, description='Request was modified concurrently; reload and retry')


def approve(session, actor: Actor, request_id: int, now: Optional[datetime] = None) -> AssetUpdateRequest:
    """Apply the details and install the RMA unit in one commit."""
    now = now or utcnow()
    req = get_request_or_404(session, request_id)
    rma = _assert_reviewable(session, actor, req)
    if rma.status not in _install_sources():
        abort(409, description=f'RMA is {rma.status}')
    changes = dict(req.proposed_changes or {})
    details = {k: v for k, v in changes.items() if k in rw.INSTALL_FIELDS}
    if rma.status == RmaRequest.STATUS_REPLACEMENT_RECEIVED_AT_SITE and not details:
        abort(400, description='A replacement unit needs its device details (serial_number, ip_address, ...)')
    ticket = get_ticket_or_404(session, rma.ticket_id)
    asset = session.get(Asset, rma.asset_id)
    if 'username' in changes:
        asset.username = changes['username']
    if 'password_encrypted' in changes:
        asset.password_encrypted = changes['password_encrypted']
    _close(session, req, {'status': U.STATUS_APPROVED, 'approved_by': actor.user_id, 'approved_at': now,
                          'updated_at': now})
    rw.apply_step(session, actor, rma, ticket, 'install', rw.RMA_FSM.get('install').target,
                  {'replacement_details': details, 'remarks': f'Details approved (request {req.id})'}, now)
    session.refresh(req)
    current_app.logger.info('asset update request %s approved by user %s', req.id, actor.user_id)
    return req


def reject(session, actor: Actor, request_id: int, data: Dict[str, Any],
           now: Optional[datetime] = None) -> AssetUpdateRequest:
    now = now or utcnow()
    req = get_request_or_404(session, request_id)
    _assert_reviewable(session, actor, req)
    reason = require_text(data, 'reason', max_len=1000)
    _close(session, req, {'status': U.STATUS_REJECTED, 'rejection_reason': reason, 'updated_at': now})
    session.commit()
    session.refresh(req)
    current_app.logger.info('asset update request %s rejected by user %s', req.id, actor.user_id)
    return req
