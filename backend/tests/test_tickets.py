from datetime import datetime, timedelta
from flask import Flask
from tests.test_utils_seed import unique, ensure_site, ensure_asset, ensure_sla_policies
from tests.test_lifecycle_helpers import (
    World, jwt_headers, assert_transition, create_resource_and_assert, open_ticket, work_ticket_to_in_progress,
)


def _ts(raw: str) -> datetime:
    return datetime.fromisoformat(raw.replace('Z', '+00:00'))


def test_create_ticket_derives_priority_and_sla(app_context: Flask):
    client = app_context.test_client()
    ensure_sla_policies()
    w = World(criticality=3)
    body = open_ticket(client, w, impact=5, urgency=5)
    assert body['priority_score'] == 75
    assert body['priority'] == 'P1'
    assert body['site_id'] == w.site.id
    assert body['ticket_number'].startswith('TKT-')
    created = _ts(body['created_on'])
    assert _ts(body['sla_response_due']) - created == timedelta(minutes=15)
    assert _ts(body['sla_restore_due']) - created == timedelta(minutes=60)
    assert body['sla_status'] == 'OnTrack'
    assert body['is_sla_response_breached'] is False


def test_create_ticket_without_asset_uses_default_criticality(app_context: Flask):
    client = app_context.test_client()
    w = World()
    body = create_resource_and_assert(client, '/tickets', {
        'title': 'NVR disk warning', 'category': 'NVR', 'impact': 4, 'urgency': 3, 'site_id': w.site.id,
    }, jwt_headers(w.dispatcher), expected_initial_status='Open')
    assert body['asset_id'] is None
    assert body['priority_score'] == 24
    assert body['priority'] == 'P3'


def test_create_ticket_rejects_site_mismatch_and_bad_ranges(app_context: Flask):
    client = app_context.test_client()
    w = World()
    other = ensure_site(unique('SITE'))
    headers = jwt_headers(w.admin)
    base = {'title': 'x', 'category': 'CCTV', 'impact': 3, 'urgency': 3, 'asset_id': w.asset.id}
    assert client.post('/tickets', json={**base, 'site_id': other.id}, headers=headers).status_code == 400
    assert client.post('/tickets', json={**base, 'impact': 6}, headers=headers).status_code == 400
    assert client.post('/tickets', json={**base, 'title': '  '}, headers=headers).status_code == 400
    assert client.post('/tickets', json={**base, 'asset_id': 999999}, headers=headers).status_code == 404


def test_ticket_numbers_are_sequential_per_day(app_context: Flask):
    client = app_context.test_client()
    w = World()
    first = open_ticket(client, w)['ticket_number']
    second = open_ticket(client, w)['ticket_number']
    assert first[:13] == second[:13]
    assert int(second[-4:]) == int(first[-4:]) + 1


def test_full_lifecycle_to_closed_and_reopen(app_context: Flask):
    client = app_context.test_client()
    w = World()
    t = open_ticket(client, w)
    tid = t['id']
    disp = jwt_headers(w.dispatcher)
    assert_transition(client, f'/tickets/{tid}/assign', disp, 200, {'assignee_id': w.engineer.id},
                      expected_body_value='Assigned')
    work_ticket_to_in_progress(client, w, tid)
    eng = jwt_headers(w.engineer)
    assert_transition(client, f'/tickets/{tid}/hold', eng, 200, {'reason': 'Waiting for lift access'},
                      expected_body_value='OnHold')
    assert_transition(client, f'/tickets/{tid}/resume', eng, 200, expected_body_value='InProgress')
    resp = assert_transition(client, f'/tickets/{tid}/resolve', eng, 200,
                             {'root_cause': 'PoE switch port failure', 'resolution_summary': 'Moved to spare port'},
                             expected_body_value='Resolved')
    assert resp.get_json()['resolved_on'] is not None
    resp = assert_transition(client, f'/tickets/{tid}/verify', disp, 200, expected_body_value='Verified')
    assert resp.get_json()['verified_by'] == w.dispatcher.id
    assert_transition(client, f'/tickets/{tid}/close', disp, 200, expected_body_value='Closed')
    resp = assert_transition(client, f'/tickets/{tid}/reopen', disp, 200, {'reason': 'Camera offline again'},
                             expected_body_value='Open')
    body = resp.get_json()
    assert body['assigned_to'] is None
    assert body['resolved_on'] is None and body['closed_on'] is None
    assert body['reopened_on'] is not None

    acts = client.get(f'/tickets/{tid}/activities', headers=disp).get_json()['data']
    changes = [(a['old_status'], a['new_status']) for a in acts if a['old_status']]
    assert ('Open', 'Assigned') in changes
    assert ('Closed', 'Open') in changes
    assert all(a['user_id'] for a in acts)


def test_resolution_rejection_loop(app_context: Flask):
    client = app_context.test_client()
    w = World()
    tid = open_ticket(client, w, assign_to=w.engineer)['id']
    work_ticket_to_in_progress(client, w, tid)
    eng = jwt_headers(w.engineer)
    sup = jwt_headers(w.supervisor)
    assert_transition(client, f'/tickets/{tid}/resolve', eng, 200,
                      {'root_cause': 'Loose BNC', 'resolution_summary': 'Re-crimped'}, expected_body_value='Resolved')
    resp = assert_transition(client, f'/tickets/{tid}/reject-resolution', sup, 200, {'reason': 'still noisy'},
                             expected_body_value='ResolutionRejected')
    body = resp.get_json()
    assert body['rejection_reason'] == 'still noisy'
    assert body['resolved_on'] is None
    assert_transition(client, f'/tickets/{tid}/acknowledge-rejection', eng, 200, expected_body_value='InProgress')
    resp = assert_transition(client, f'/tickets/{tid}/resolve', eng, 200,
                             {'root_cause': 'Bad cable run', 'resolution_summary': 'Replaced cable'},
                             expected_body_value='Resolved')
    assert resp.get_json()['rejection_reason'] is None
    # close straight from Resolved is allowed
    assert_transition(client, f'/tickets/{tid}/close', sup, 200, expected_body_value='Closed')


def test_cancel_open_ticket_and_terminal_edits_conflict(app_context: Flask):
    client = app_context.test_client()
    w = World()
    tid = open_ticket(client, w)['id']
    disp = jwt_headers(w.dispatcher)
    assert_transition(client, f'/tickets/{tid}/cancel', disp, 200, {'reason': 'Duplicate'},
                      expected_body_value='Cancelled')
    resp = client.patch(f'/tickets/{tid}', json={'title': 'new title'}, headers=disp)
    assert resp.status_code == 409
    actions = client.get(f'/tickets/{tid}/actions', headers=disp).get_json()
    assert actions['actions'] == []


def test_update_recomputes_priority_but_keeps_due_dates(app_context: Flask):
    client = app_context.test_client()
    w = World(criticality=2)
    t = open_ticket(client, w, impact=1, urgency=1)
    assert t['priority'] == 'P4'
    disp = jwt_headers(w.dispatcher)
    resp = client.patch(f"/tickets/{t['id']}", json={'impact': 5, 'urgency': 5}, headers=disp)
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['priority'] == 'P1'
    assert body['sla_restore_due'] == t['sla_restore_due']
    resp = client.patch(f"/tickets/{t['id']}", json={'status': 'Closed'}, headers=disp)
    assert resp.status_code == 400


def test_allowed_actions_follow_role(app_context: Flask):
    client = app_context.test_client()
    w = World()
    tid = open_ticket(client, w, assign_to=w.engineer)['id']
    eng_actions = client.get(f'/tickets/{tid}/actions', headers=jwt_headers(w.engineer)).get_json()['actions']
    assert 'acknowledge' in eng_actions
    assert 'assign' not in eng_actions
    disp_actions = client.get(f'/tickets/{tid}/actions', headers=jwt_headers(w.dispatcher)).get_json()['actions']
    assert 'assign' in disp_actions
    assert 'acknowledge' not in disp_actions


def test_list_filters_and_engineer_queue(app_context: Flask):
    client = app_context.test_client()
    w = World()
    mine = open_ticket(client, w, assign_to=w.engineer, category='Access')['id']
    other = open_ticket(client, w, category='Access')['id']
    eng = jwt_headers(w.engineer)
    ids = {t['id'] for t in client.get('/tickets?limit=200', headers=eng).get_json()['data']}
    assert mine in ids and other not in ids

    admin = jwt_headers(w.admin)
    resp = client.get(f'/tickets?site_id={w.site.id}&status=Open,Assigned&sort=-priority_score', headers=admin)
    assert resp.status_code == 200
    ids = {t['id'] for t in resp.get_json()['data']}
    assert {mine, other} <= ids
    assert client.get('/tickets?status=Bogus', headers=admin).status_code == 400
    assert client.get('/tickets?sla_status=Sideways', headers=admin).status_code == 400
    assert client.get('/tickets?sort=nope', headers=admin).status_code == 400
    on_track = client.get(f'/tickets?site_id={w.site.id}&sla_status=OnTrack', headers=admin).get_json()
    assert on_track['pagination']['total'] == 2


def test_engineer_sees_tickets_they_raised(app_context: Flask):
    client = app_context.test_client()
    w = World()
    eng = jwt_headers(w.engineer)
    raised = open_ticket(client, w, headers=eng)['id']
    ids = {t['id'] for t in client.get('/tickets?limit=200', headers=eng).get_json()['data']}
    assert raised in ids
    assert client.get(f'/tickets/{raised}', headers=eng).status_code == 200
    # another engineer neither lists nor opens it
    other = jwt_headers(w.l2)
    ids = {t['id'] for t in client.get('/tickets?limit=200', headers=other).get_json()['data']}
    assert raised not in ids
    assert client.get(f'/tickets/{raised}', headers=other).status_code == 403


def test_sla_endpoint_and_comments(app_context: Flask):
    client = app_context.test_client()
    w = World()
    tid = open_ticket(client, w)['id']
    admin = jwt_headers(w.admin)
    view = client.get(f'/tickets/{tid}/sla', headers=admin).get_json()
    assert view['status'] == 'OnTrack'
    assert view['minutes_remaining'] > 0

    resp = client.post(f'/tickets/{tid}/activities', json={'content': 'Internal note', 'is_internal': True},
                       headers=admin)
    assert resp.status_code == 201
    assert resp.get_json()['activity_type'] == 'Comment'
    assert client.post(f'/tickets/{tid}/activities', json={'content': ' '}, headers=admin).status_code == 400


def test_ticket_etag_round_trip(app_context: Flask):
    client = app_context.test_client()
    w = World()
    tid = open_ticket(client, w)['id']
    admin = jwt_headers(w.admin)
    first = client.get(f'/tickets/{tid}', headers=admin)
    etag = first.headers.get('ETag')
    assert etag
    second = client.get(f'/tickets/{tid}', headers={**admin, 'If-None-Match': etag})
    assert second.status_code == 304
    head = client.head(f'/tickets/{tid}', headers=admin)
    assert head.status_code == 200
    assert head.headers.get('ETag') == etag
