from flask import Flask
from tests.test_utils_seed import unique, ensure_user, ensure_site
from tests.test_lifecycle_helpers import jwt_headers, claims_headers
from ticketops.constants.permissions import (
    ROLE_ADMIN, ROLE_DISPATCHER, ROLE_L1_ENGINEER, ROLE_SUPERVISOR, ALL_PERMISSION_CODES,
)


def test_login_by_username_or_email(app_context: Flask):
    client = app_context.test_client()
    user = ensure_user(unique('disp'), ROLE_DISPATCHER, password='hunter2')
    for field, value in (('username', user.username), ('email', user.email)):
        resp = client.post('/iam/auth/login', json={field: value, 'password': 'hunter2'})
        assert resp.status_code == 200
        token = resp.get_json()['access_token']
        me = client.get('/iam/auth/me', headers={'Authorization': f'Bearer {token}'}).get_json()
        assert me['id'] == user.id
        assert me['role'] == ROLE_DISPATCHER
        assert 'TKT.ASSIGN' in me['perms']
    assert client.post('/iam/auth/login', json={'username': user.username, 'password': 'nope'}).status_code == 401
    assert client.post('/iam/auth/login', json={'username': user.username}).status_code == 400
    assert client.post('/iam/auth/login', json={'username': 'ghost', 'password': 'x'}).status_code == 401


def test_disabled_account_cannot_log_in(app_context: Flask):
    client = app_context.test_client()
    admin = jwt_headers(ensure_user(unique('admin'), ROLE_ADMIN))
    user = ensure_user(unique('l1'), ROLE_L1_ENGINEER, password='pw')
    resp = client.patch(f'/iam/users/{user.id}', json={'is_active': False}, headers=admin)
    assert resp.status_code == 200
    assert client.post('/iam/auth/login', json={'username': user.username, 'password': 'pw'}).status_code == 403


def test_admin_creates_and_updates_users(app_context: Flask):
    client = app_context.test_client()
    admin = jwt_headers(ensure_user(unique('admin'), ROLE_ADMIN))
    site = ensure_site(unique('SITE'))
    username = unique('tech')
    resp = client.post('/iam/users', json={'username': username, 'email': f'{username}@example.com',
                                           'password': 'pw', 'role': ROLE_L1_ENGINEER, 'site_ids': [site.id]},
                       headers=admin)
    assert resp.status_code == 201
    user = resp.get_json()
    assert user['site_ids'] == [site.id]
    dup = client.post('/iam/users', json={'username': username, 'email': 'other@example.com', 'password': 'pw',
                                          'role': ROLE_L1_ENGINEER}, headers=admin)
    assert dup.status_code == 409
    bad = client.post('/iam/users', json={'username': unique('x'), 'email': 'x@example.com', 'password': 'pw',
                                          'role': 'Overlord'}, headers=admin)
    assert bad.status_code == 400

    resp = client.patch(f"/iam/users/{user['id']}", json={'role': ROLE_SUPERVISOR, 'site_ids': []}, headers=admin)
    assert resp.get_json()['role'] == ROLE_SUPERVISOR
    assert resp.get_json()['site_ids'] == []

    logs = client.get(f"/iam/audit-logs?action=USER.UPDATE&entity_id={user['id']}", headers=admin).get_json()['data']
    assert logs[0]['meta']['changes']['role'] == {'before': ROLE_L1_ENGINEER, 'after': ROLE_SUPERVISOR}


def test_rights_are_additive_and_validated(app_context: Flask):
    client = app_context.test_client()
    admin = jwt_headers(ensure_user(unique('admin'), ROLE_ADMIN))
    user = ensure_user(unique('disp'), ROLE_DISPATCHER)
    before = client.get(f'/iam/users/{user.id}/rights', headers=admin).get_json()
    assert before['rights'] == []
    assert 'RMA.MANAGE' not in before['effective_permissions']

    resp = client.put(f'/iam/users/{user.id}/rights', json={'rights': ['RMA.MANAGE', 'AST.MANAGE']}, headers=admin)
    assert resp.status_code == 200
    after = resp.get_json()
    assert after['rights'] == ['AST.MANAGE', 'RMA.MANAGE']
    assert {'RMA.MANAGE', 'AST.MANAGE', 'TKT.ASSIGN'} <= set(after['effective_permissions'])

    resp = client.put(f'/iam/users/{user.id}/rights', json={'rights': ['TKT.TELEPORT']}, headers=admin)
    assert resp.status_code == 400
    assert 'TKT.TELEPORT' in resp.get_json()['error']['detail']
    assert client.put(f'/iam/users/{user.id}/rights', json={'rights': 'RMA.MANAGE'}, headers=admin).status_code == 400
    assert client.put('/iam/users/999999/rights', json={'rights': []}, headers=admin).status_code == 404

    logs = client.get(f'/iam/audit-logs?action=USER.RIGHTS.REPLACE&entity_id={user.id}', headers=admin).get_json()
    assert logs['pagination']['total'] == 1
    assert logs['data'][0]['meta']['rights'] == ['AST.MANAGE', 'RMA.MANAGE']


def test_admin_endpoints_need_admin_permissions(app_context: Flask):
    client = app_context.test_client()
    sup = jwt_headers(ensure_user(unique('sup'), ROLE_SUPERVISOR))
    assert client.get('/iam/users', headers=sup).status_code == 403
    assert client.get('/iam/audit-logs', headers=sup).status_code == 403
    # every code granted through the token, regardless of role, opens the door
    everything = claims_headers(1, ROLE_DISPATCHER, ALL_PERMISSION_CODES)
    assert client.get('/iam/users?role=Admin', headers=everything).status_code == 200
    assert client.get('/iam/users?role=Overlord', headers=everything).status_code == 400


def test_tampered_token_is_rejected(app_context: Flask):
    client = app_context.test_client()
    headers = jwt_headers(ensure_user(unique('admin'), ROLE_ADMIN))
    headers['Authorization'] = headers['Authorization'][:-2] + 'xx'
    assert client.get('/iam/auth/me', headers=headers).status_code in (401, 422)
