from __future__ import annotations
from flask import Blueprint, request, abort
from ticketops.decorators.auth import require_permissions
from ticketops.decorators.audit import audit_log
from ticketops.utils.timeutil import iso
from ticketops.services.policy import current_actor, assert_site_access
from ticketops.services import asset_updates as svc
from ticketops.services.ticket_workflow import get_ticket_or_404
from ticketops import get_db
from ticketops.models.asset_update_request import AssetUpdateRequest

asset_updates_bp = Blueprint('asset_updates', __name__)


@asset_updates_bp.post('')
@require_permissions('RMA.RECEIVE')
@audit_log('AST.UPDATE.REQUEST', entity='AssetUpdateRequest', entity_id_key='id', meta_keys=['rma_id', 'asset_id'])
def initiate():
    req, created = svc.initiate(get_db(), current_actor(), request.get_json(silent=True) or {})
    body = request_json(req)
    body['access_token'] = req.access_token
    return body, 201 if created else 200


@asset_updates_bp.get('/access/<token>')
def view_by_token(token: str):
    """Public: what the link holder sees before submitting."""
    req = svc.open_by_token(get_db(), token)
    return {
        'id': req.id,
        'asset_id': req.asset_id,
        'current_values': req.original_values or {},
        'fields': list(svc.SUBMIT_FIELDS),
        'expires_at': iso(req.access_expires_at),
    }


@asset_updates_bp.put('/access/<token>')
def submit_by_token(token: str):
    req = svc.submit(get_db(), token, request.get_json(silent=True) or {})
    return {'id': req.id, 'status': req.status, 'submitted_at': iso(req.submitted_at)}


@asset_updates_bp.get('/ticket/<int:ticket_id>')
@require_permissions('RMA.READ')
def pending_for_ticket(ticket_id: int):
    session = get_db()
    ticket = get_ticket_or_404(session, ticket_id)
    assert_site_access(current_actor(), ticket.site_id)
    req = svc.pending_for_ticket(session, ticket.id)
    if not req:
        abort(404, description='No pending asset update for this ticket')
    return request_json(req)


@asset_updates_bp.get('/<int:request_id>')
@require_permissions('RMA.READ')
def get_request(request_id: int):
    req = svc.get_request_or_404(get_db(), request_id)
    svc.assert_visible(get_db(), current_actor(), req)
    return request_json(req)


@asset_updates_bp.post('/<int:request_id>/approve')
@require_permissions('AST.UPDATE.APPROVE')
@audit_log('AST.UPDATE.APPROVE', entity='AssetUpdateRequest', entity_id_key='id', meta_keys=['rma_id', 'status'])
def approve(request_id: int):
    req = svc.approve(get_db(), current_actor(), request_id)
    return request_json(req)


@asset_updates_bp.post('/<int:request_id>/reject')
@require_permissions('AST.UPDATE.APPROVE')
@audit_log('AST.UPDATE.REJECT', entity='AssetUpdateRequest', entity_id_key='id', meta_keys=['rma_id', 'status'])
def reject(request_id: int):
    req = svc.reject(get_db(), current_actor(), request_id, request.get_json(silent=True) or {})
    return request_json(req)


def request_json(r: AssetUpdateRequest):
    proposed = dict(r.proposed_changes or {})
    # the ciphertext stays server-side
    has_password = proposed.pop('password_encrypted', None) is not None
    return {
        'id': r.id,
        'rma_id': r.rma_id,
        'ticket_id': r.ticket_id,
        'asset_id': r.asset_id,
        'requested_by': r.requested_by,
        'status': r.status,
        'proposed_changes': proposed,
        'password_changed': has_password,
        'original_values': r.original_values or {},
        'access_expires_at': iso(r.access_expires_at),
        'submitted_at': iso(r.submitted_at),
        'approved_by': r.approved_by,
        'approved_at': iso(r.approved_at),
        'rejection_reason': r.rejection_reason,
        'created_on': iso(r.created_on),
        'updated_at': iso(r.updated_at),
    }
