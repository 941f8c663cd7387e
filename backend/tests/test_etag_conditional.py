from flask import Flask
from tests.test_lifecycle_helpers import World, jwt_headers, open_ticket


def test_etag_conditional_assets(app_context: Flask):
    client = app_context.test_client()
    w = World()
    headers = jwt_headers(w.admin)
    url = f'/assets?site_id={w.site.id}&limit=5'
    first = client.get(url, headers=headers)
    assert first.status_code == 200
    etag = first.headers.get('ETag')
    assert etag
    assert first.headers.get('X-Last-Modified-ISO', '').endswith('Z')
    second = client.get(url, headers={**headers, 'If-None-Match': etag})
    assert second.status_code == 304
    assert second.headers.get('ETag') == etag
    lm = first.headers.get('Last-Modified')
    third = client.get(url, headers={**headers, 'If-Modified-Since': lm})
    assert third.status_code == 304


def test_head_list_matches_get(app_context: Flask):
    client = app_context.test_client()
    w = World()
    open_ticket(client, w)
    headers = jwt_headers(w.admin)
    url = f'/tickets?site_id={w.site.id}'
    get_resp = client.get(url, headers=headers)
    head_resp = client.head(url, headers=headers)
    assert head_resp.status_code == 200
    assert head_resp.data == b''
    assert head_resp.headers.get('ETag') == get_resp.headers.get('ETag')


def test_pagination_is_clamped_and_validated(app_context: Flask):
    client = app_context.test_client()
    w = World()
    headers = jwt_headers(w.admin)
    body = client.get('/sites?limit=5000&offset=-3', headers=headers).get_json()
    assert body['pagination']['limit'] == 200
    assert body['pagination']['offset'] == 0
    assert client.get('/sites?limit=abc', headers=headers).status_code == 400
