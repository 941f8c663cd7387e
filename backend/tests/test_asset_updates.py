from flask import Flask
from tests.test_lifecycle_helpers import World, jwt_headers, assert_transition, create_resource_and_assert, open_ticket


def _rma_back_at_site(client, w: World):
    """A repair-only RMA whose unit has come back and been received at the site."""
    tid = open_ticket(client, w, assign_to=w.engineer)['id']
    rma = create_resource_and_assert(client, '/rma', {'ticket_id': tid, 'rma_type': 'RepairOnly'},
                                     jwt_headers(w.engineer), expected_initial_status='Requested')
    rid = rma['id']
    admin = jwt_headers(w.admin)
    assert_transition(client, f'/rma/{rid}/approve', admin, 200)
    assert_transition(client, f'/rma/{rid}/send-item', admin, 200, {'route': 'DirectToServiceCenter'})
    assert_transition(client, f'/rma/{rid}/mark-repaired', admin, 200)
    assert_transition(client, f'/rma/{rid}/select-destination', admin, 200,
                      {'destination': 'BackToSite', 'logistics': {'carrier': 'DHL'}})
    return tid, rid


def _initiate(client, w: World, rid: int, expected: int = 201):
    resp = client.post('/asset-update-requests', json={'rma_id': rid}, headers=jwt_headers(w.engineer))
    assert resp.status_code == expected, resp.get_json()
    return resp.get_json()


def test_link_opens_only_once_unit_is_back_at_site(app_context: Flask):
    client = app_context.test_client()
    w = World()
    tid, rid = _rma_back_at_site(client, w)
    _initiate(client, w, rid, expected=409)
    assert client.post('/asset-update-requests', json={'rma_id': 'x'},
                       headers=jwt_headers(w.engineer)).status_code == 400
    # site steps belong to the assignee
    assert client.post('/asset-update-requests', json={'rma_id': rid},
                       headers=jwt_headers(w.l2)).status_code == 403

    assert_transition(client, f'/rma/{rid}/receive-at-site', jwt_headers(w.engineer), 200,
                      expected_body_value='ReceivedAtSite')
    first = _initiate(client, w, rid)
    assert first['status'] == 'Pending'
    assert len(first['access_token']) == 64
    assert first['original_values']['serial_number'] == 'SN-OLD'
    again = _initiate(client, w, rid, expected=200)
    assert (again['id'], again['access_token']) == (first['id'], first['access_token'])

    pending = client.get(f'/asset-update-requests/ticket/{tid}', headers=jwt_headers(w.admin)).get_json()
    assert pending['id'] == first['id']
    assert 'access_token' not in pending


def test_link_holder_submits_and_approver_installs(app_context: Flask):
    from ticketops import get_db
    from ticketops.models.asset import Asset
    from ticketops.utils.security import decrypt_secret

    client = app_context.test_client()
    w = World()
    tid, rid = _rma_back_at_site(client, w)
    assert_transition(client, f'/rma/{rid}/receive-at-site', jwt_headers(w.engineer), 200)
    req = _initiate(client, w, rid)
    token = req['access_token']

    # no session on the public link
    view = client.get(f'/asset-update-requests/access/{token}')
    assert view.status_code == 200
    assert view.get_json()['current_values']['ip_address'] == '10.0.0.10'
    assert 'password' in view.get_json()['fields']
    assert client.get('/asset-update-requests/access/not-a-token').status_code == 404

    assert client.put(f'/asset-update-requests/access/{token}', json={'site_id': 3}).status_code == 400
    assert client.put(f'/asset-update-requests/access/{token}', json={'serial_number': '  '}).status_code == 400
    resp = client.put(f'/asset-update-requests/access/{token}', json={
        'serial_number': 'SN-REPAIRED', 'ip_address': '10.0.0.12', 'username': 'svc', 'password': 'hunter2',
    })
    assert resp.status_code == 200
    assert resp.get_json()['submitted_at'] is not None
    assert client.put(f'/asset-update-requests/access/{token}', json={'mac': 'aa'}).status_code == 409
    # a second request waits on the submitted one
    _initiate(client, w, rid, expected=409)

    detail = client.get(f"/asset-update-requests/{req['id']}", headers=jwt_headers(w.admin)).get_json()
    assert detail['password_changed'] is True
    assert 'password_encrypted' not in detail['proposed_changes']
    assert detail['proposed_changes']['serial_number'] == 'SN-REPAIRED'

    assert_transition(client, f"/asset-update-requests/{req['id']}/approve", jwt_headers(w.engineer), 403)
    resp = assert_transition(client, f"/asset-update-requests/{req['id']}/approve", jwt_headers(w.supervisor), 200,
                             expected_body_value='Approved')
    assert resp.get_json()['approved_by'] == w.supervisor.id

    rma = client.get(f'/rma/{rid}', headers=jwt_headers(w.admin)).get_json()
    assert rma['status'] == 'Installed'
    assert rma['events'][-1]['step'] == 'install'
    asset = get_db().get(Asset, w.asset.id)
    assert (asset.status, asset.serial_number, asset.ip_address) == ('Operational', 'SN-REPAIRED', '10.0.0.12')
    assert asset.username == 'svc'
    assert asset.password_encrypted != 'hunter2'
    assert decrypt_secret(asset.password_encrypted) == 'hunter2'

    assert_transition(client, f"/asset-update-requests/{req['id']}/approve", jwt_headers(w.supervisor), 409)
    assert client.get(f'/asset-update-requests/ticket/{tid}', headers=jwt_headers(w.admin)).status_code == 404


def test_reject_needs_reason_and_leaves_rma_waiting(app_context: Flask):
    client = app_context.test_client()
    w = World()
    _, rid = _rma_back_at_site(client, w)
    assert_transition(client, f'/rma/{rid}/receive-at-site', jwt_headers(w.engineer), 200)
    req = _initiate(client, w, rid)
    sup = jwt_headers(w.supervisor)
    # nothing submitted yet
    assert_transition(client, f"/asset-update-requests/{req['id']}/reject", sup, 409, {'reason': 'Early'})
    client.put(f"/asset-update-requests/access/{req['access_token']}", json={'serial_number': 'SN-TYPO'})

    assert_transition(client, f"/asset-update-requests/{req['id']}/reject", sup, 400)
    resp = assert_transition(client, f"/asset-update-requests/{req['id']}/reject", sup, 200,
                             {'reason': 'Serial does not match the label'}, expected_body_value='Rejected')
    assert resp.get_json()['rejection_reason'] == 'Serial does not match the label'
    rma = client.get(f'/rma/{rid}', headers=jwt_headers(w.admin)).get_json()
    assert rma['status'] == 'ReceivedAtSite'
    # a fresh link can be opened after a rejection
    assert _initiate(client, w, rid)['id'] != req['id']


def test_expired_link_is_refused(app_context: Flask, monkeypatch):
    client = app_context.test_client()
    w = World()
    _, rid = _rma_back_at_site(client, w)
    assert_transition(client, f'/rma/{rid}/receive-at-site', jwt_headers(w.engineer), 200)
    monkeypatch.setitem(app_context.config, 'ASSET_UPDATE_WINDOW_MINUTES', 0)
    stale = _initiate(client, w, rid)

    resp = client.put(f"/asset-update-requests/access/{stale['access_token']}", json={'serial_number': 'SN-LATE'})
    assert resp.status_code == 403
    detail = client.get(f"/asset-update-requests/{stale['id']}", headers=jwt_headers(w.admin)).get_json()
    assert detail['status'] == 'Expired'
    assert client.get(f"/asset-update-requests/access/{stale['access_token']}").status_code == 409

    monkeypatch.setitem(app_context.config, 'ASSET_UPDATE_WINDOW_MINUTES', 30)
    fresh = _initiate(client, w, rid)
    assert fresh['id'] != stale['id']
    assert client.get(f"/asset-update-requests/access/{fresh['access_token']}").status_code == 200
