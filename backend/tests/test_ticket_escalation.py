from flask import Flask
from tests.test_lifecycle_helpers import World, jwt_headers, assert_transition, open_ticket, work_ticket_to_in_progress


def test_escalate_accept_and_owner_override(app_context: Flask):
    client = app_context.test_client()
    w = World()
    tid = open_ticket(client, w, assign_to=w.engineer)['id']
    work_ticket_to_in_progress(client, w, tid)
    eng = jwt_headers(w.engineer)
    resp = assert_transition(client, f'/tickets/{tid}/escalate', eng, 200, {'reason': 'Needs NVR firmware work'},
                             expected_body_value='Escalated')
    body = resp.get_json()
    assert body['escalation_level'] == 1
    assert body['escalation_reason'] == 'Needs NVR firmware work'

    # the escalation pool is visible to engineers who can take from it
    l2 = jwt_headers(w.l2)
    pool = {t['id'] for t in client.get('/tickets?status=Escalated&limit=200', headers=l2).get_json()['data']}
    assert tid in pool

    resp = assert_transition(client, f'/tickets/{tid}/accept-escalation', l2, 200, expected_body_value='InProgress')
    body = resp.get_json()
    assert body['assigned_to'] == w.l2.id
    assert body['escalation_accepted_by'] == w.l2.id

    # once accepted only the new owner (or an admin) may finish the ticket
    sup = jwt_headers(w.supervisor)
    payload = {'root_cause': 'Firmware bug', 'resolution_summary': 'Upgraded firmware'}
    assert_transition(client, f'/tickets/{tid}/resolve', sup, 403, payload)
    assert_transition(client, f'/tickets/{tid}/resolve', l2, 200, payload, expected_body_value='Resolved')
    assert_transition(client, f'/tickets/{tid}/close', sup, 403)
    assert_transition(client, f'/tickets/{tid}/close', l2, 200, expected_body_value='Closed')


def test_escalation_cap(app_context: Flask):
    client = app_context.test_client()
    w = World()
    tid = open_ticket(client, w)['id']
    admin = jwt_headers(w.admin)
    for level in (1, 2, 3):
        resp = assert_transition(client, f'/tickets/{tid}/escalate', admin, 200, {'reason': f'level {level}'},
                                 expected_body_value='Escalated')
        assert resp.get_json()['escalation_level'] == level
        assert_transition(client, f'/tickets/{tid}/accept-escalation', admin, 200, expected_body_value='InProgress')
    actions = client.get(f'/tickets/{tid}/actions', headers=admin).get_json()['actions']
    assert 'escalate' not in actions
    assert_transition(client, f'/tickets/{tid}/escalate', admin, 409, {'reason': 'one more'})
    # the cap wins over a missing reason
    resp = assert_transition(client, f'/tickets/{tid}/escalate', admin, 409)
    assert 'maximum' in resp.get_json()['error']['detail']
    body = client.get(f'/tickets/{tid}', headers=admin).get_json()
    assert body['escalation_level'] == 3
    assert body['status'] == 'InProgress'


def test_escalating_resolved_ticket_clears_resolution(app_context: Flask):
    client = app_context.test_client()
    w = World()
    tid = open_ticket(client, w, assign_to=w.engineer)['id']
    work_ticket_to_in_progress(client, w, tid)
    eng = jwt_headers(w.engineer)
    assert_transition(client, f'/tickets/{tid}/resolve', eng, 200,
                      {'root_cause': 'Unknown', 'resolution_summary': 'Rebooted'}, expected_body_value='Resolved')
    disp = jwt_headers(w.dispatcher)
    resp = assert_transition(client, f'/tickets/{tid}/escalate', disp, 200, {'reason': 'Keeps recurring'},
                             expected_body_value='Escalated')
    body = resp.get_json()
    assert body['resolved_on'] is None
    assert body['verified_on'] is None
    assert body['root_cause'] is None
    assert body['resolution_summary'] is None


def test_delegate_escalation_requires_capable_delegate(app_context: Flask):
    client = app_context.test_client()
    w = World()
    tid = open_ticket(client, w)['id']
    disp = jwt_headers(w.dispatcher)
    assert_transition(client, f'/tickets/{tid}/escalate', disp, 200, {'reason': 'Site-wide outage'},
                      expected_body_value='Escalated')
    # dispatchers may escalate but not delegate
    assert_transition(client, f'/tickets/{tid}/delegate-escalation', disp, 403, {'assignee_id': w.l2.id})
    sup = jwt_headers(w.supervisor)
    # L1 engineers cannot take escalations
    assert_transition(client, f'/tickets/{tid}/delegate-escalation', sup, 400, {'assignee_id': w.engineer.id})
    resp = assert_transition(client, f'/tickets/{tid}/delegate-escalation', sup, 200, {'assignee_id': w.l2.id},
                             expected_body_value='InProgress')
    body = resp.get_json()
    assert body['assigned_to'] == w.l2.id
    assert body['escalation_accepted_by'] == w.l2.id


def test_l1_engineer_cannot_accept_escalation(app_context: Flask):
    client = app_context.test_client()
    w = World()
    tid = open_ticket(client, w)['id']
    assert_transition(client, f'/tickets/{tid}/escalate', jwt_headers(w.admin), 200, {'reason': 'x'},
                      expected_body_value='Escalated')
    assert_transition(client, f'/tickets/{tid}/accept-escalation', jwt_headers(w.engineer), 403)
