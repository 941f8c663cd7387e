from flask import Flask
from tests.test_utils_seed import unique, ensure_user, ensure_site
from tests.test_lifecycle_helpers import jwt_headers
from ticketops import get_db
from ticketops.models.site import Site
from ticketops.constants.permissions import ROLE_ADMIN, ROLE_SUPERVISOR, ROLE_DISPATCHER


def _head_offices():
    return get_db().query(Site).filter(Site.is_head_office.is_(True)).all()


def test_only_one_head_office(app_context: Flask):
    client = app_context.test_client()
    admin = jwt_headers(ensure_user(unique('admin'), ROLE_ADMIN))
    first = client.post('/sites', json={'site_code': unique('HO'), 'site_name': 'Head Office A',
                                        'is_head_office': True}, headers=admin)
    assert first.status_code == 201
    second = client.post('/sites', json={'site_code': unique('HO'), 'site_name': 'Head Office B',
                                         'is_head_office': True}, headers=admin)
    assert second.status_code == 201
    assert [s.id for s in _head_offices()] == [second.get_json()['id']]

    # moving the flag back through an update also clears the other site
    resp = client.patch(f"/sites/{first.get_json()['id']}", json={'is_head_office': True}, headers=admin)
    assert resp.get_json()['is_head_office'] is True
    assert [s.id for s in _head_offices()] == [first.get_json()['id']]
    logs = client.get(f"/iam/audit-logs?action=SITE.UPDATE&entity_id={first.get_json()['id']}",
                      headers=admin).get_json()['data']
    assert logs[0]['meta']['changes']['is_head_office'] == {'before': False, 'after': True}


def test_site_create_validation_and_permissions(app_context: Flask):
    client = app_context.test_client()
    admin = jwt_headers(ensure_user(unique('admin'), ROLE_ADMIN))
    code = unique('SITE')
    assert client.post('/sites', json={'site_code': code, 'site_name': 'Mall'}, headers=admin).status_code == 201
    assert client.post('/sites', json={'site_code': code, 'site_name': 'Mall 2'}, headers=admin).status_code == 409
    assert client.post('/sites', json={'site_code': unique('SITE')}, headers=admin).status_code == 400
    sup = jwt_headers(ensure_user(unique('sup'), ROLE_SUPERVISOR))
    assert client.post('/sites', json={'site_code': unique('SITE'), 'site_name': 'x'}, headers=sup).status_code == 403


def test_site_list_follows_scope(app_context: Flask):
    client = app_context.test_client()
    mine = ensure_site(unique('SITE'))
    other = ensure_site(unique('SITE'))
    scoped = jwt_headers(ensure_user(unique('disp'), ROLE_DISPATCHER, site_ids=[mine.id]))
    body = client.get('/sites?limit=200', headers=scoped).get_json()
    assert [s['id'] for s in body['data']] == [mine.id]
    assert client.get(f'/sites/{other.id}', headers=scoped).status_code == 403
    assert client.get(f'/sites/{mine.id}', headers=scoped).status_code == 200
