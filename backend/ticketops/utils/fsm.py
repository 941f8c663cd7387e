"""Action-keyed finite state machine for lifecycle models (Ticket, RmaRequest).

Each action names the statuses it may start from, the status it lands in and
the payload fields that must be non-blank. Usage:

    from ticketops.utils.fsm import Transition, TransitionTable
    TICKET_FSM = TransitionTable({
        'acknowledge': Transition(('Assigned',), 'Acknowledged'),
        'hold': Transition(('InProgress',), 'OnHold', required=('reason',)),
    })
    rule = TICKET_FSM.assert_can_apply('hold', ticket.status)
    TICKET_FSM.assert_required('hold', payload)

Illegal transitions abort with 409 (the stored status moved on or never allowed
the action); missing fields abort with 400.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Tuple
from flask import abort


@dataclass(frozen=True)
class Transition:
    sources: Tuple[str, ...]
    target: Optional[str]
    required: Tuple[str, ...] = ()


class TransitionTable:
    def __init__(self, rules: Dict[str, Transition], field_name: str = 'status'):
        self.rules = rules
        self.field_name = field_name

    def get(self, action: str) -> Transition:
        rule = self.rules.get(action)
        if rule is None:
            abort(400, description=f"Unknown action {action}")
        return rule

    def can_apply(self, action: str, current: str) -> bool:
        rule = self.rules.get(action)
        return bool(rule) and current in rule.sources

    def assert_can_apply(self, action: str, current: str) -> Transition:
        rule = self.get(action)
        if current not in rule.sources:
            target = rule.target or '?'
            abort(409, description=f"Invalid {self.field_name} transition {current} -> {target} ({action})")
        return rule

    def assert_required(self, action: str, payload: Mapping) -> None:
        rule = self.get(action)
        for name in rule.required:
            val = payload.get(name)
            if val is None or (isinstance(val, str) and not val.strip()):
                abort(400, description=f"{name} required")

    def actions_from(self, current: str) -> List[str]:
        return [a for a, rule in self.rules.items() if current in rule.sources]

    def statuses(self) -> Iterable[str]:
        seen = []
        for rule in self.rules.values():
            for s in rule.sources + ((rule.target,) if rule.target else ()):
                if s not in seen:
                    seen.append(s)
        return seen

    def as_graph(self) -> Dict[str, List[str]]:
        """Status -> sorted reachable statuses, used for documentation."""
        graph: Dict[str, set] = {}
        for rule in self.rules.values():
            for src in rule.sources:
                graph.setdefault(src, set())
                if rule.target:
                    graph[src].add(rule.target)
        return {k: sorted(v) for k, v in graph.items()}

__all__ = ['Transition', 'TransitionTable']
