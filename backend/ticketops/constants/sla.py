"""Built-in SLA targets per priority, used to seed `sla_policies` and as the
fallback when no active policy row exists for a priority."""
from __future__ import annotations
from typing import Dict, List

PRIORITY_P1 = 'P1'
PRIORITY_P2 = 'P2'
PRIORITY_P3 = 'P3'
PRIORITY_P4 = 'P4'
ALL_PRIORITIES = (PRIORITY_P1, PRIORITY_P2, PRIORITY_P3, PRIORITY_P4)

# (minimum score, priority), checked in order
PRIORITY_THRESHOLDS = (
    (50, PRIORITY_P1),
    (25, PRIORITY_P2),
    (10, PRIORITY_P3),
)

DEFAULT_ASSET_CRITICALITY = 2

SLA_ON_TRACK = 'OnTrack'
SLA_AT_RISK = 'AtRisk'
SLA_BREACHED = 'Breached'
SLA_NOT_APPLICABLE = 'N/A'
ALL_SLA_STATUSES = (SLA_ON_TRACK, SLA_AT_RISK, SLA_BREACHED, SLA_NOT_APPLICABLE)

DEFAULT_SLA_POLICIES: List[Dict] = [
    {'policy_name': 'P1 - Critical Priority', 'priority': PRIORITY_P1, 'response_minutes': 15,
     'restore_minutes': 60, 'escalation_level1_minutes': 30, 'escalation_level2_minutes': 45},
    {'policy_name': 'P2 - High Priority', 'priority': PRIORITY_P2, 'response_minutes': 30,
     'restore_minutes': 240, 'escalation_level1_minutes': 120, 'escalation_level2_minutes': 180},
    {'policy_name': 'P3 - Medium Priority', 'priority': PRIORITY_P3, 'response_minutes': 60,
     'restore_minutes': 480, 'escalation_level1_minutes': 240, 'escalation_level2_minutes': 360},
    {'policy_name': 'P4 - Low Priority', 'priority': PRIORITY_P4, 'response_minutes': 120,
     'restore_minutes': 1440, 'escalation_level1_minutes': 720, 'escalation_level2_minutes': 1080},
]
