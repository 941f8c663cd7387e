from flask import Flask
from tests.test_utils_seed import unique, ensure_site, ensure_user
from tests.test_lifecycle_helpers import World, jwt_headers, create_resource_and_assert
from ticketops import get_db
from ticketops.models.asset import Asset
from ticketops.constants.permissions import ROLE_ADMIN, ROLE_DISPATCHER, ROLE_L1_ENGINEER


def test_asset_password_is_encrypted_and_never_listed(app_context: Flask):
    client = app_context.test_client()
    w = World()
    admin = jwt_headers(w.admin)
    code = unique('NVR')
    body = create_resource_and_assert(client, '/assets', {
        'asset_code': code, 'asset_type': 'NVR', 'site_id': w.site.id, 'criticality': 3,
        'ip_address': '10.1.1.5', 'username': 'admin', 'password': 'S3cret!',
    }, admin, expected_initial_status='Operational')
    assert body['has_password'] is True
    assert 'password' not in body and 'password_encrypted' not in body

    stored = get_db().get(Asset, body['id'])
    assert stored.password_encrypted and 'S3cret!' not in stored.password_encrypted

    listed = client.get(f'/assets?search={code}', headers=admin).get_json()['data']
    assert [a['asset_code'] for a in listed] == [code]
    assert all('password' not in a for a in listed)

    creds = client.get(f"/assets/{body['id']}/credentials", headers=admin).get_json()
    assert creds == {'asset_id': body['id'], 'username': 'admin', 'password': 'S3cret!'}


def test_credentials_need_manage_permission(app_context: Flask):
    client = app_context.test_client()
    w = World()
    resp = client.get(f'/assets/{w.asset.id}/credentials', headers=jwt_headers(w.dispatcher))
    assert resp.status_code == 403
    assert client.get(f'/assets/{w.asset.id}', headers=jwt_headers(w.dispatcher)).status_code == 200


def test_duplicate_code_and_validation(app_context: Flask):
    client = app_context.test_client()
    w = World()
    admin = jwt_headers(w.admin)
    payload = {'asset_code': w.asset.asset_code, 'asset_type': 'Camera', 'site_id': w.site.id}
    assert client.post('/assets', json=payload, headers=admin).status_code == 409
    assert client.post('/assets', json={**payload, 'asset_code': unique('CAM'), 'criticality': 4},
                       headers=admin).status_code == 400
    assert client.post('/assets', json={**payload, 'asset_code': unique('CAM'), 'status': 'Melted'},
                       headers=admin).status_code == 400
    assert client.post('/assets', json={**payload, 'asset_code': unique('CAM'), 'site_id': 999999},
                       headers=admin).status_code == 404
    assert client.post('/assets', json={'asset_type': 'Camera', 'site_id': w.site.id},
                       headers=admin).status_code == 400
    assert client.post('/assets', json={**payload, 'asset_code': unique('CAM')},
                       headers=jwt_headers(w.engineer)).status_code == 403


def test_update_asset_and_clear_password(app_context: Flask):
    client = app_context.test_client()
    w = World()
    admin = jwt_headers(w.admin)
    resp = client.patch(f'/assets/{w.asset.id}', json={'status': 'Under Maintenance', 'password': 'pw1'},
                        headers=admin)
    assert resp.status_code == 200
    assert resp.get_json()['status'] == 'Under Maintenance'
    assert resp.get_json()['has_password'] is True
    resp = client.patch(f'/assets/{w.asset.id}', json={'password': ''}, headers=admin)
    assert resp.get_json()['has_password'] is False

    logs = client.get(f'/iam/audit-logs?action=AST.UPDATE&entity_id={w.asset.id}', headers=admin).get_json()['data']
    changed = [entry['meta'].get('changes', {}) for entry in logs]
    assert {'status': {'before': 'Operational', 'after': 'Under Maintenance'}} in changed


def test_asset_list_respects_site_scope(app_context: Flask):
    client = app_context.test_client()
    w = World()
    other = ensure_site(unique('SITE'))
    scoped = ensure_user(unique('disp'), ROLE_DISPATCHER, site_ids=[other.id])
    ids = {a['id'] for a in client.get('/assets?limit=200', headers=jwt_headers(scoped)).get_json()['data']}
    assert w.asset.id not in ids
    assert client.get(f'/assets/{w.asset.id}', headers=jwt_headers(scoped)).status_code == 403
    assert client.get('/assets?criticality=9', headers=jwt_headers(w.admin)).status_code == 400


def test_scoped_admin_cannot_create_asset_elsewhere(app_context: Flask):
    client = app_context.test_client()
    w = World()
    home = ensure_site(unique('SITE'))
    scoped_admin = ensure_user(unique('admin'), ROLE_ADMIN, site_ids=[home.id])
    resp = client.post('/assets', json={'asset_code': unique('CAM'), 'asset_type': 'Camera', 'site_id': w.site.id},
                       headers=jwt_headers(scoped_admin))
    assert resp.status_code == 403
    viewer = ensure_user(unique('l1'), ROLE_L1_ENGINEER)
    assert client.get('/assets', headers=jwt_headers(viewer)).status_code == 200
