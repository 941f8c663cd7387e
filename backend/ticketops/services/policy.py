from __future__ import annotations
from dataclasses import dataclass
from typing import FrozenSet, Tuple, Optional
from flask import abort, current_app
from flask_jwt_extended import get_jwt, get_jwt_identity
from ticketops.models.authz import User
from ticketops.constants.permissions import (
    expand_role_permissions, ROLE_ADMIN, ROLE_SUPERVISOR, DISPATCHING_ROLES,
)

# Feature flag name (must align with create_app config)
FLAG_SITE_SCOPE = 'AUTHZ_ENFORCE_SITE_SCOPE'


@dataclass(frozen=True)
class Actor:
    """Explicit request context built from the access token claims."""
    user_id: int
    role: str
    perms: FrozenSet[str]
    site_ids: Tuple[int, ...] = ()

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def has(self, *codes: str) -> bool:
        return all(c in self.perms for c in codes)

    def can_see_site(self, site_id: Optional[int]) -> bool:
        return not self.site_ids or site_id in self.site_ids


def current_actor() -> Actor:
    claims = get_jwt()
    site_ids = tuple(claims.get('site_ids') or ())
    if not current_app.config.get(FLAG_SITE_SCOPE, True):
        site_ids = ()
    return Actor(
        user_id=int(get_jwt_identity()),
        role=claims.get('role') or '',
        perms=frozenset(claims.get('perms', [])),
        site_ids=site_ids,
    )


def current_permissions():
    return set(get_jwt().get('perms', []))


def has_permissions(*codes: str) -> bool:
    perms = current_permissions()
    return all(c in perms for c in codes)


def compute_effective_permissions(user: User):
    rights = user.rights.rights if user.rights else []
    return {
        'role': user.role,
        'perms': sorted(expand_role_permissions(user.role, rights or [])),
        'site_ids': user.site_ids(),
    }


def assert_site_access(actor: Actor, site_id: Optional[int]):
    if not actor.can_see_site(site_id):
        abort(403, description='Site access denied')


def filter_query_by_sites(query, model_site_column, actor: Actor):
    """Return query filtered by the actor's sites if scoped."""
    if actor.site_ids:
        return query.filter(model_site_column.in_(actor.site_ids))
    return query


# Actions the assignee drives on their own ticket
_ASSIGNEE_ACTIONS = {'acknowledge', 'start', 'hold', 'resume', 'acknowledge_rejection'}


def can_perform(actor: Actor, action: str, ticket) -> bool:
    """Single decision point for ticket actions.

    Used by the transition executor and by the actions listing, so the UI and
    the API never disagree about who may do what.
    """
    if not actor.can_see_site(ticket.site_id):
        return False
    is_assignee = ticket.assigned_to is not None and ticket.assigned_to == actor.user_id
    # Once an escalation is accepted only the new owner (or an Admin) may finish the ticket
    accepted_override = ticket.escalation_accepted_by is not None
    if action == 'assign':
        return actor.has('TKT.ASSIGN')
    if action in _ASSIGNEE_ACTIONS:
        return is_assignee or actor.is_admin
    if action == 'resolve':
        if accepted_override:
            return is_assignee or actor.is_admin
        return is_assignee or actor.is_admin or actor.role == ROLE_SUPERVISOR
    if action in ('verify', 'reject_resolution'):
        return actor.has('TKT.VERIFY')
    if action == 'close':
        if accepted_override:
            return is_assignee or actor.is_admin
        return actor.has('TKT.VERIFY')
    if action == 'escalate':
        return actor.has('TKT.ESCALATE') and (is_assignee or actor.role in DISPATCHING_ROLES)
    if action == 'accept_escalation':
        return actor.has('TKT.ESCALATION.ACCEPT')
    if action == 'delegate_escalation':
        return actor.has('TKT.ESCALATION.DELEGATE')
    if action == 'reopen':
        return actor.has('TKT.REOPEN')
    if action == 'cancel':
        return actor.has('TKT.CANCEL')
    if action == 'update':
        return actor.has('TKT.EDIT')
    if action == 'comment':
        return actor.has('TKT.COMMENT')
    return False


def assert_can_perform(actor: Actor, action: str, ticket):
    if not can_perform(actor, action, ticket):
        abort(403, description=f'Not permitted to {action} this ticket')
