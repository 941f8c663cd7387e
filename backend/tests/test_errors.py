from flask import Flask
from tests.test_utils_seed import unique, ensure_user
from tests.test_lifecycle_helpers import jwt_headers
from ticketops.constants.permissions import ROLE_ADMIN
import ticketops.routes.reports as reports


def test_not_found_uses_error_envelope(app_context: Flask):
    client = app_context.test_client()
    resp = client.get('/no/such/route')
    assert resp.status_code == 404
    err = resp.get_json()['error']
    assert err['status'] == 404
    assert err['title'] == 'Not Found'
    assert 'detail' in err


def test_abort_description_becomes_detail(app_context: Flask):
    client = app_context.test_client()
    admin = jwt_headers(ensure_user(unique('admin'), ROLE_ADMIN))
    resp = client.get('/tickets/987654321', headers=admin)
    assert resp.status_code == 404
    assert resp.get_json() == {'error': {'status': 404, 'title': 'Not Found', 'detail': 'Ticket not found'}}


def test_unexpected_error_is_masked(app_context: Flask, monkeypatch):
    client = app_context.test_client()
    admin = jwt_headers(ensure_user(unique('admin'), ROLE_ADMIN))

    def boom(*_a, **_kw):
        raise RuntimeError('database exploded')

    monkeypatch.setattr(reports, 'sla_compliance_percent', boom)
    resp = client.get('/reports/dashboard', headers=admin)
    assert resp.status_code == 500
    body = resp.get_json()
    assert body['error']['detail'] == 'Unexpected error'
    assert 'exploded' not in resp.get_data(as_text=True)
    # the shared session is usable after the failure
    assert client.get('/healthz').get_json() == {'status': 'ok'}
    assert client.get('/tickets?limit=1', headers=admin).status_code == 200


def test_method_not_allowed(app_context: Flask):
    client = app_context.test_client()
    resp = client.delete('/healthz')
    assert resp.status_code == 405
    assert resp.get_json()['error']['status'] == 405
