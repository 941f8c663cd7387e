from datetime import timedelta
import pytest
from flask import Flask
from tests.test_utils_seed import unique, ensure_user
from tests.test_lifecycle_helpers import World, jwt_headers, assert_transition, open_ticket, work_ticket_to_in_progress
from ticketops import get_db
from ticketops.models.ticket import Ticket
from ticketops.routes.reports import sla_compliance_percent
from ticketops.constants.permissions import ROLE_DISPATCHER, ROLE_L1_ENGINEER
from ticketops.utils.timeutil import utcnow


@pytest.mark.parametrize('closed,breached,expected', [
    (0, 0, 100.0),
    (4, 0, 100.0),
    (4, 1, 75.0),
    (3, 1, 66.7),
    (2, 2, 0.0),
])
def test_sla_compliance_percent(closed, breached, expected):
    assert sla_compliance_percent(closed, breached) == expected


def test_dashboard_counts_for_site(app_context: Flask):
    client = app_context.test_client()
    w = World()
    open_ticket(client, w)
    late = open_ticket(client, w)['id']
    done = open_ticket(client, w, assign_to=w.engineer)['id']
    work_ticket_to_in_progress(client, w, done)
    assert_transition(client, f'/tickets/{done}/resolve', jwt_headers(w.engineer), 200,
                      {'root_cause': 'Power', 'resolution_summary': 'Reset breaker'}, expected_body_value='Resolved')
    assert_transition(client, f'/tickets/{done}/close', jwt_headers(w.supervisor), 200, expected_body_value='Closed')

    session = get_db()
    t = session.get(Ticket, late)
    t.sla_restore_due = utcnow() - timedelta(hours=1)
    session.commit()

    viewer = ensure_user(unique('disp'), ROLE_DISPATCHER, site_ids=[w.site.id])
    body = client.get('/reports/dashboard', headers=jwt_headers(viewer)).get_json()
    assert body['total_tickets'] == 3
    assert body['open_tickets'] == 2
    assert body['in_progress_tickets'] == 0
    assert body['resolved_today'] == 1
    assert body['sla_breached'] == 1
    assert body['sla_compliance_percent'] == 100.0
    assert body['by_status'] == {'Open': 2, 'Closed': 1}
    assert sum(body['by_priority'].values()) == 2
    assert body['by_category'] == {'CCTV': 2}
    assert body['assets_by_status'] == {'Operational': 1}
    assert body['active_rmas'] == 0
    assert body['generated_at']


def test_dashboard_requires_report_permission(app_context: Flask):
    client = app_context.test_client()
    engineer = ensure_user(unique('l1'), ROLE_L1_ENGINEER)
    assert client.get('/reports/dashboard', headers=jwt_headers(engineer)).status_code == 403
