from flask import Flask
from tests.test_utils_seed import ensure_head_office
from tests.test_lifecycle_helpers import (
    World, jwt_headers, assert_transition, create_resource_and_assert, open_ticket,
)


def _asset_status(client, w: World):
    return client.get(f'/assets/{w.asset.id}', headers=jwt_headers(w.admin)).get_json()


def _request_rma(client, w: World, rma_type='RepairOnly'):
    tid = open_ticket(client, w, assign_to=w.engineer)['id']
    body = create_resource_and_assert(client, '/rma', {
        'ticket_id': tid, 'rma_type': rma_type, 'failure_description': 'No video, IR LEDs dead',
    }, jwt_headers(w.engineer), expected_initial_status='Requested')
    return tid, body


def test_request_snapshots_asset_and_marks_faulty(app_context: Flask):
    client = app_context.test_client()
    w = World()
    tid, rma = _request_rma(client, w)
    assert rma['rma_number'].startswith('RMA-')
    assert rma['original_details']['serial_number'] == 'SN-OLD'
    assert rma['original_details']['ip_address'] == '10.0.0.10'
    assert rma['is_active'] is True
    assert _asset_status(client, w)['status'] == 'Faulty'
    latest = client.get(f'/rma/ticket/{tid}', headers=jwt_headers(w.admin)).get_json()
    assert latest['id'] == rma['id']
    acts = client.get(f'/tickets/{tid}/activities', headers=jwt_headers(w.admin)).get_json()['data']
    assert any(a['activity_type'] == 'RMA' for a in acts)


def test_single_active_rma_per_ticket(app_context: Flask):
    client = app_context.test_client()
    w = World()
    tid, rma = _request_rma(client, w)
    resp = client.post('/rma', json={'ticket_id': tid}, headers=jwt_headers(w.engineer))
    assert resp.status_code == 409
    admin = jwt_headers(w.admin)
    assert_transition(client, f"/rma/{rma['id']}/reject", admin, 200, {'reason': 'Covered by warranty swap'},
                      expected_body_value='Rejected')
    # a final RMA frees the ticket for a new request
    resp = client.post('/rma', json={'ticket_id': tid}, headers=jwt_headers(w.engineer))
    assert resp.status_code == 201


def test_only_assignee_or_admin_can_request(app_context: Flask):
    client = app_context.test_client()
    w = World()
    tid = open_ticket(client, w, assign_to=w.engineer)['id']
    assert client.post('/rma', json={'ticket_id': tid}, headers=jwt_headers(w.l2)).status_code == 403
    assert client.post('/rma', json={'ticket_id': tid}, headers=jwt_headers(w.dispatcher)).status_code == 403
    assert client.post('/rma', json={'ticket_id': tid, 'rma_type': 'Swap'},
                       headers=jwt_headers(w.engineer)).status_code == 400


def test_ticket_without_asset_cannot_raise_rma(app_context: Flask):
    client = app_context.test_client()
    w = World()
    t = create_resource_and_assert(client, '/tickets', {
        'title': 'Door controller', 'category': 'Access', 'impact': 2, 'urgency': 2, 'site_id': w.site.id,
    }, jwt_headers(w.admin))
    assert client.post('/rma', json={'ticket_id': t['id']}, headers=jwt_headers(w.admin)).status_code == 400


def test_repair_via_ho_into_ho_stock(app_context: Flask):
    client = app_context.test_client()
    ho = ensure_head_office()
    w = World()
    _, rma = _request_rma(client, w)
    rid = rma['id']
    admin = jwt_headers(w.admin)
    # approval is HO work
    assert_transition(client, f'/rma/{rid}/approve', jwt_headers(w.supervisor), 403)
    assert_transition(client, f'/rma/{rid}/approve', admin, 200, expected_body_value='Approved')
    assert_transition(client, f'/rma/{rid}/send-item', admin, 400, {'route': 'ByPigeon'})
    resp = assert_transition(client, f'/rma/{rid}/send-item', admin, 200,
                             {'route': 'ToHO', 'logistics': {'carrier': 'Aramex', 'tracking_number': 'AX1'}},
                             expected_body_value='SentToHO')
    assert resp.get_json()['logistics'] == {'carrier': 'Aramex', 'tracking_number': 'AX1'}
    assert _asset_status(client, w)['status'] == 'In Repair'
    assert_transition(client, f'/rma/{rid}/receive-at-ho', admin, 200, expected_body_value='ReceivedAtHO')
    assert_transition(client, f'/rma/{rid}/send-for-repair', admin, 200, expected_body_value='SentForRepairFromHO')
    assert_transition(client, f'/rma/{rid}/mark-repaired', admin, 200, expected_body_value='ItemRepairedAtHO')
    assert _asset_status(client, w)['status'] == 'Spare'
    resp = assert_transition(client, f'/rma/{rid}/select-destination', admin, 200, {'destination': 'HOStock'},
                             expected_body_value='TransferredToHOStock')
    body = resp.get_json()
    assert body['is_active'] is False
    assert body['destination_site_id'] == ho.id
    asset = _asset_status(client, w)
    assert asset['status'] == 'Spare'
    assert asset['site_id'] == ho.id
    assert asset['stock_location'] == 'HO Stock'

    detail = client.get(f'/rma/{rid}', headers=admin).get_json()
    steps = [e['step'] for e in detail['events']]
    assert steps == ['create', 'approve', 'send_item', 'receive_at_ho', 'send_for_repair', 'mark_repaired',
                     'select_destination']


def test_direct_repair_back_to_site_and_install(app_context: Flask):
    client = app_context.test_client()
    w = World()
    _, rma = _request_rma(client, w)
    rid = rma['id']
    admin = jwt_headers(w.admin)
    eng = jwt_headers(w.engineer)
    assert_transition(client, f'/rma/{rid}/approve', admin, 200, expected_body_value='Approved')
    assert_transition(client, f'/rma/{rid}/send-item', admin, 200, {'route': 'DirectToServiceCenter'},
                      expected_body_value='SentToServiceCenter')
    assert_transition(client, f'/rma/{rid}/mark-repaired', admin, 200, expected_body_value='ItemRepairedAtHO')
    # shipping back needs a carrier
    assert_transition(client, f'/rma/{rid}/select-destination', admin, 400, {'destination': 'BackToSite'})
    assert_transition(client, f'/rma/{rid}/select-destination', admin, 200,
                      {'destination': 'BackToSite', 'logistics': {'carrier': 'DHL'}},
                      expected_body_value='ReturnShippedToSite')
    # site steps belong to the assignee
    assert_transition(client, f'/rma/{rid}/receive-at-site', jwt_headers(w.l2), 403)
    assert_transition(client, f'/rma/{rid}/receive-at-site', eng, 200, expected_body_value='ReceivedAtSite')
    resp = assert_transition(client, f'/rma/{rid}/install', eng, 200, expected_body_value='Installed')
    assert resp.get_json()['installed_on'] is not None
    asset = _asset_status(client, w)
    assert asset['status'] == 'Operational'
    assert asset['site_id'] == w.site.id
    assert asset['serial_number'] == 'SN-OLD'


def test_replacement_from_ho_stock(app_context: Flask):
    client = app_context.test_client()
    ensure_head_office()
    w = World()
    _, rma = _request_rma(client, w, rma_type='RepairAndReplace')
    rid = rma['id']
    admin = jwt_headers(w.admin)
    eng = jwt_headers(w.engineer)
    assert _asset_status(client, w)['status'] == 'Faulty'
    assert_transition(client, f'/rma/{rid}/approve', admin, 200, expected_body_value='Approved')
    assert_transition(client, f'/rma/{rid}/raise-requisition', admin, 400, {'stock_source': 'SiteStock'})
    resp = assert_transition(client, f'/rma/{rid}/raise-requisition', admin, 200, {'stock_source': 'HOStock'},
                             expected_body_value='ReplacementRequisitionRaised')
    assert resp.get_json()['requisition_id'] is not None
    assert _asset_status(client, w)['status'] == 'In Repair'
    assert_transition(client, f'/rma/{rid}/dispatch-replacement', admin, 200,
                      {'logistics': {'carrier': 'Aramex', 'tracking_number': 'AX9'}},
                      expected_body_value='ReplacementDispatched')
    assert_transition(client, f'/rma/{rid}/receive-replacement', eng, 200,
                      expected_body_value='ReplacementReceivedAtSite')
    assert_transition(client, f'/rma/{rid}/install', eng, 400, {})
    resp = assert_transition(client, f'/rma/{rid}/install', eng, 200, {
        'replacement_details': {'serial_number': 'SN-NEW', 'ip_address': '10.0.0.11'},
    }, expected_body_value='Installed')
    assert resp.get_json()['replacement_details'] == {'serial_number': 'SN-NEW', 'ip_address': '10.0.0.11'}
    asset = _asset_status(client, w)
    assert asset['status'] == 'Operational'
    assert asset['serial_number'] == 'SN-NEW'
    assert asset['ip_address'] == '10.0.0.11'

    from ticketops import get_db
    from ticketops.models.requisition import Requisition
    req = get_db().get(Requisition, resp.get_json()['requisition_id'])
    assert req.status == 'Fulfilled'
    assert req.requisition_number.startswith('RMT-')


def test_repair_only_cannot_raise_requisition(app_context: Flask):
    client = app_context.test_client()
    w = World()
    _, rma = _request_rma(client, w)
    admin = jwt_headers(w.admin)
    assert_transition(client, f"/rma/{rma['id']}/approve", admin, 200, expected_body_value='Approved')
    assert_transition(client, f"/rma/{rma['id']}/raise-requisition", admin, 409, {'stock_source': 'Market'})


def test_replayed_step_is_a_no_op(app_context: Flask):
    client = app_context.test_client()
    w = World()
    _, rma = _request_rma(client, w)
    rid = rma['id']
    admin = jwt_headers(w.admin)
    assert_transition(client, f'/rma/{rid}/approve', admin, 200, expected_body_value='Approved')
    assert_transition(client, f'/rma/{rid}/approve', admin, 200, expected_body_value='Approved')
    events = client.get(f'/rma/{rid}', headers=admin).get_json()['events']
    assert [e['step'] for e in events].count('approve') == 1
    # out-of-order steps still conflict
    assert_transition(client, f'/rma/{rid}/install', admin, 409)
    assert client.post(f'/rma/{rid}/teleport', headers=admin).status_code == 404


def test_asset_rma_history_and_list_filters(app_context: Flask):
    client = app_context.test_client()
    w = World()
    _, rma = _request_rma(client, w)
    admin = jwt_headers(w.admin)
    history = client.get(f'/assets/{w.asset.id}/rma-history', headers=admin).get_json()['data']
    assert [r['id'] for r in history] == [rma['id']]
    listed = client.get(f'/rma?asset_id={w.asset.id}&status=Requested', headers=admin).get_json()
    assert listed['pagination']['total'] == 1
    assert client.get('/rma?status=Lost', headers=admin).status_code == 400


def test_lost_race_on_rma_step_conflicts(app_context: Flask, monkeypatch):
    from sqlalchemy import func, select, update
    from ticketops import get_db
    from ticketops.models.rma import RmaRequest, RmaEvent
    from ticketops.services import rma_workflow as rw

    client = app_context.test_client()
    w = World()
    _, rma = _request_rma(client, w)
    session = get_db()

    def event_count():
        return session.execute(select(func.count(RmaEvent.id)).where(RmaEvent.rma_id == rma['id'])).scalar_one()

    before = event_count()
    real_effects = rw._step_effects

    def racing_effects(sess, actor, r, asset, step, payload, now):
        sess.execute(update(RmaRequest).where(RmaRequest.id == r.id).values(status=RmaRequest.STATUS_REJECTED,
                                                                            rejection_reason='Duplicate'))
        sess.commit()
        return real_effects(sess, actor, r, asset, step, payload, now)

    monkeypatch.setattr(rw, '_step_effects', racing_effects)
    resp = assert_transition(client, f"/rma/{rma['id']}/approve", jwt_headers(w.admin), 409)
    assert 'concurrently' in resp.get_json()['error']['detail']
    monkeypatch.undo()

    assert event_count() == before
    body = client.get(f"/rma/{rma['id']}", headers=jwt_headers(w.admin)).get_json()
    assert body['status'] == 'Rejected'
    assert body['approved_by'] is None
