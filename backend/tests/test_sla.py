from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
import pytest
from ticketops.services import sla
from ticketops.constants.sla import SLA_ON_TRACK, SLA_AT_RISK, SLA_BREACHED, SLA_NOT_APPLICABLE
from tests.test_utils_seed import ensure_sla_policies

T0 = datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc)


def _ticket(**kw):
    base = dict(sla_response_due=T0 + timedelta(minutes=15), sla_restore_due=T0 + timedelta(minutes=60),
                acknowledged_on=None, resolved_on=None, closed_on=None, cancelled_on=None,
                is_sla_response_breached=False, is_sla_restore_breached=False)
    base.update(kw)
    return SimpleNamespace(**base)


@pytest.mark.parametrize('impact,urgency,criticality,score,priority', [
    (5, 5, 3, 75, 'P1'),
    (5, 5, 2, 50, 'P1'),
    (4, 3, 2, 24, 'P3'),
    (5, 5, 1, 25, 'P2'),
    (3, 3, 1, 9, 'P4'),
    (1, 1, 1, 1, 'P4'),
])
def test_priority_thresholds(impact, urgency, criticality, score, priority):
    assert sla.priority_score(impact, urgency, criticality) == score
    assert sla.priority_for_score(score) == priority


def test_builtin_targets_and_due_dates():
    policy = sla.builtin_targets('P2')
    response_due, restore_due = sla.compute_due_dates(T0, policy)
    assert response_due == T0 + timedelta(minutes=30)
    assert restore_due == T0 + timedelta(hours=4)


def test_naive_start_is_treated_as_utc():
    policy = sla.builtin_targets('P4')
    response_due, _ = sla.compute_due_dates(T0.replace(tzinfo=None), policy)
    assert response_due == T0 + timedelta(minutes=120)


def test_resolve_policy_prefers_active_rows(app_context):
    from ticketops import get_db
    ensure_sla_policies()
    policy = sla.resolve_policy(get_db(), 'P1')
    assert policy.policy_id is not None
    assert (policy.response_minutes, policy.restore_minutes) == (15, 60)


def test_status_on_track_then_at_risk_then_breached():
    t = _ticket()
    assert sla.sla_status(t, T0 + timedelta(minutes=5), at_risk_minutes=30) == SLA_ON_TRACK
    # acknowledged in time, restore due in 20 minutes
    t = _ticket(acknowledged_on=T0 + timedelta(minutes=10))
    assert sla.sla_status(t, T0 + timedelta(minutes=40), at_risk_minutes=30) == SLA_AT_RISK
    assert sla.sla_status(t, T0 + timedelta(minutes=61), at_risk_minutes=30) == SLA_BREACHED


def test_missed_response_breaches_even_when_restore_is_fine():
    t = _ticket()
    assert sla.breach_flags(t, T0 + timedelta(minutes=16)) == (True, False)
    assert sla.sla_status(t, T0 + timedelta(minutes=16)) == SLA_BREACHED


def test_resolution_time_freezes_evaluation():
    t = _ticket(acknowledged_on=T0 + timedelta(minutes=5), resolved_on=T0 + timedelta(minutes=50))
    # Hours later the ticket still met its target
    assert sla.breach_flags(t, T0 + timedelta(hours=5)) == (False, False)
    assert sla.sla_status(t, T0 + timedelta(hours=5)) == SLA_ON_TRACK
    assert sla.minutes_remaining(t, T0 + timedelta(hours=5)) is None


def test_persisted_flags_are_sticky():
    t = _ticket(acknowledged_on=T0 + timedelta(minutes=5), is_sla_restore_breached=True)
    assert sla.breach_flags(t, T0 + timedelta(minutes=10)) == (False, True)


def test_no_due_date_is_not_applicable():
    t = _ticket(sla_response_due=None, sla_restore_due=None)
    assert sla.sla_status(t, T0) == SLA_NOT_APPLICABLE


def test_sla_view_reports_minutes_remaining():
    t = _ticket(id=7, priority='P1')
    view = sla.sla_view(t, T0 + timedelta(minutes=10), at_risk_minutes=30)
    assert view['minutes_remaining'] == 50
    assert view['restore_due'] == '2025-03-01T09:00:00Z'
    assert view['status'] == SLA_ON_TRACK
