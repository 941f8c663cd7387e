"""Central enum-like definitions for roles and permission codes.
Extend cautiously; never rename codes silently since they are embedded in issued tokens.
"""
from __future__ import annotations
from typing import List, Dict, Iterable, Set

SERVICES = ['TKT', 'AST', 'SITE', 'RMA', 'STK', 'WLOG', 'RPT', 'ADMIN']

SERVICE_ACTIONS = {
    'TKT': ['READ', 'CREATE', 'EDIT', 'ASSIGN', 'VERIFY', 'ESCALATE', 'ESCALATION.ACCEPT',
            'ESCALATION.DELEGATE', 'REOPEN', 'CANCEL', 'COMMENT'],
    'AST': ['READ', 'MANAGE', 'UPDATE.APPROVE'],
    'SITE': ['READ', 'MANAGE'],
    'RMA': ['READ', 'REQUEST', 'MANAGE', 'RECEIVE'],
    'STK': ['READ', 'REQUEST', 'MANAGE', 'TRANSFER'],
    'WLOG': ['SELF', 'TEAM.READ'],
    'RPT': ['READ'],
    'ADMIN': ['USER.MANAGE', 'RIGHTS.MANAGE', 'CLIENT.MANAGE', 'AUDIT.READ'],
}

ROLE_ADMIN = 'Admin'
ROLE_SUPERVISOR = 'Supervisor'
ROLE_DISPATCHER = 'Dispatcher'
ROLE_L1_ENGINEER = 'L1Engineer'
ROLE_L2_ENGINEER = 'L2Engineer'
ROLE_CLIENT_VIEWER = 'ClientViewer'
ALL_ROLES = (ROLE_DISPATCHER, ROLE_L1_ENGINEER, ROLE_L2_ENGINEER, ROLE_SUPERVISOR, ROLE_ADMIN, ROLE_CLIENT_VIEWER)

ENGINEER_ROLES = (ROLE_L1_ENGINEER, ROLE_L2_ENGINEER)
# Roles allowed to move tickets around on behalf of engineers
DISPATCHING_ROLES = (ROLE_ADMIN, ROLE_SUPERVISOR, ROLE_DISPATCHER)


def build_all_permission_codes() -> List[str]:
    codes: List[str] = []
    for svc, actions in SERVICE_ACTIONS.items():
        for act in actions:
            codes.append(f"{svc}.{act}")
    return codes

ALL_PERMISSION_CODES = build_all_permission_codes()

ROLE_PRESETS: Dict[str, List[str]] = {
    ROLE_ADMIN: ['*'],
    ROLE_SUPERVISOR: [
        'TKT.READ', 'TKT.CREATE', 'TKT.EDIT', 'TKT.ASSIGN', 'TKT.VERIFY', 'TKT.ESCALATE',
        'TKT.ESCALATION.ACCEPT', 'TKT.ESCALATION.DELEGATE', 'TKT.REOPEN', 'TKT.CANCEL', 'TKT.COMMENT',
        'AST.READ', 'AST.MANAGE', 'AST.UPDATE.APPROVE',
        'SITE.READ',
        'RMA.READ', 'RMA.REQUEST', 'RMA.RECEIVE',
        'STK.READ', 'STK.REQUEST', 'STK.MANAGE',
        'WLOG.SELF', 'WLOG.TEAM.READ',
        'RPT.READ',
    ],
    ROLE_DISPATCHER: [
        'TKT.READ', 'TKT.CREATE', 'TKT.EDIT', 'TKT.ASSIGN', 'TKT.VERIFY', 'TKT.ESCALATE',
        'TKT.REOPEN', 'TKT.CANCEL', 'TKT.COMMENT',
        'AST.READ', 'SITE.READ', 'RMA.READ', 'RPT.READ',
        'STK.READ', 'STK.REQUEST', 'WLOG.SELF',
    ],
    ROLE_L1_ENGINEER: [
        'TKT.READ', 'TKT.CREATE', 'TKT.ESCALATE', 'TKT.COMMENT',
        'AST.READ', 'SITE.READ',
        'RMA.READ', 'RMA.REQUEST', 'RMA.RECEIVE',
        'STK.READ', 'STK.REQUEST', 'WLOG.SELF',
    ],
    ROLE_L2_ENGINEER: [
        'TKT.READ', 'TKT.CREATE', 'TKT.ESCALATE', 'TKT.ESCALATION.ACCEPT', 'TKT.COMMENT',
        'AST.READ', 'SITE.READ',
        'RMA.READ', 'RMA.REQUEST', 'RMA.RECEIVE',
        'STK.READ', 'STK.REQUEST', 'WLOG.SELF',
    ],
    ROLE_CLIENT_VIEWER: ['TKT.READ', 'AST.READ', 'SITE.READ'],
}


def expand_role_permissions(role: str, rights: Iterable[str] = ()) -> Set[str]:
    """Role preset plus per-user rights. Rights only ever add codes."""
    preset = ROLE_PRESETS.get(role, [])
    if '*' in preset:
        codes = set(ALL_PERMISSION_CODES)
    else:
        codes = set(preset)
    codes.update(r for r in rights if r in ALL_PERMISSION_CODES)
    return codes
