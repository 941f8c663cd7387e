import logging
from flask import Flask
from tests.test_utils_seed import unique, ensure_user
from tests.test_lifecycle_helpers import jwt_headers
from ticketops.constants.permissions import ROLE_ADMIN, ROLE_SUPERVISOR


def _register(client, email=None, **extra):
    payload = {'full_name': 'Hotel Security Desk', 'email': email or f"{unique('client')}@example.org",
               'organization': 'Grand Hotel'}
    payload.update(extra)
    return client.post('/clients/registrations', json=payload)


def test_registration_approval_creates_client_viewer(app_context: Flask):
    client = app_context.test_client()
    admin = jwt_headers(ensure_user(unique('admin'), ROLE_ADMIN))
    resp = _register(client)
    assert resp.status_code == 201
    reg = resp.get_json()
    assert reg['status'] == 'Pending'
    assert reg['user_id'] is None

    pending = client.get('/clients/registrations?status=Pending&limit=200', headers=admin).get_json()['data']
    assert reg['id'] in {r['id'] for r in pending}

    resp = client.post(f"/clients/registrations/{reg['id']}/approve", headers=admin)
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['status'] == 'Approved'
    assert body['user_id']
    assert 'warnings' not in body

    login = client.post('/iam/auth/login', json={'email': reg['email'], 'password': body['temporary_password']})
    assert login.status_code == 200
    token = login.get_json()['access_token']
    me = client.get('/iam/auth/me', headers={'Authorization': f'Bearer {token}'}).get_json()
    assert me['role'] == 'ClientViewer'
    assert 'TKT.CREATE' not in me['perms']
    # read-only: client viewers never create tickets
    resp = client.post('/tickets', json={'title': 'x', 'category': 'CCTV', 'impact': 1, 'urgency': 1},
                       headers={'Authorization': f'Bearer {token}'})
    assert resp.status_code == 403

    again = client.post(f"/clients/registrations/{reg['id']}/approve", headers=admin)
    assert again.status_code == 409


def test_notification_failure_becomes_warning(app_context: Flask):
    client = app_context.test_client()
    admin = jwt_headers(ensure_user(unique('admin'), ROLE_ADMIN))
    reg = _register(client).get_json()

    def broken_mailer(event, payload):
        raise ConnectionError('smtp down')

    app_context.config['NOTIFIER'] = broken_mailer
    try:
        resp = client.post(f"/clients/registrations/{reg['id']}/approve", headers=admin)
    finally:
        app_context.config['NOTIFIER'] = None
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['status'] == 'Approved'
    assert body['warnings'] == ['Notification client.approved could not be delivered']


def test_notifier_receives_events(app_context: Flask):
    client = app_context.test_client()
    admin = jwt_headers(ensure_user(unique('admin'), ROLE_ADMIN))
    reg = _register(client).get_json()
    sent = []
    app_context.config['NOTIFIER'] = lambda event, payload: sent.append((event, payload))
    try:
        resp = client.post(f"/clients/registrations/{reg['id']}/reject", json={'reason': 'Unknown organisation'},
                           headers=admin)
    finally:
        app_context.config['NOTIFIER'] = None
    assert resp.status_code == 200
    assert sent == [('client.rejected', {'email': reg['email'], 'reason': 'Unknown organisation'})]


def test_reject_requires_reason_and_duplicates_conflict(app_context: Flask):
    client = app_context.test_client()
    admin = jwt_headers(ensure_user(unique('admin'), ROLE_ADMIN))
    email = f"{unique('client')}@example.org"
    reg = _register(client, email=email).get_json()
    assert _register(client, email=email).status_code == 409
    assert client.post(f"/clients/registrations/{reg['id']}/reject", json={'reason': ' '},
                       headers=admin).status_code == 400
    resp = client.post(f"/clients/registrations/{reg['id']}/reject", json={'reason': 'Not a customer'},
                       headers=admin)
    assert resp.get_json()['status'] == 'Rejected'
    assert resp.get_json()['rejection_reason'] == 'Not a customer'
    # a rejected email may apply again
    assert _register(client, email=email).status_code == 201


def test_registration_validation_and_permissions(app_context: Flask):
    client = app_context.test_client()
    assert _register(client, email='not-an-email').status_code == 400
    assert _register(client, full_name='').status_code == 400
    assert _register(client, site_id=999999).status_code == 400
    sup = jwt_headers(ensure_user(unique('sup'), ROLE_SUPERVISOR))
    assert client.get('/clients/registrations', headers=sup).status_code == 403
    assert client.get('/clients/registrations').status_code == 401
    admin = jwt_headers(ensure_user(unique('admin'), ROLE_ADMIN))
    assert client.post('/clients/registrations/999999/approve', headers=admin).status_code == 404


def test_logged_notification_masks_temporary_password(app_context: Flask, caplog):
    client = app_context.test_client()
    admin = jwt_headers(ensure_user(unique('admin'), ROLE_ADMIN))
    reg = _register(client).get_json()
    with caplog.at_level(logging.INFO, logger=app_context.logger.name):
        resp = client.post(f"/clients/registrations/{reg['id']}/approve", headers=admin)
    assert resp.status_code == 200
    secret = resp.get_json()['temporary_password']
    lines = [r.getMessage() for r in caplog.records if 'client.approved' in r.getMessage()]
    assert lines
    assert all(secret not in line for line in lines)
    assert "'temporary_password': '***'" in lines[0]
    assert reg['email'] in lines[0]
