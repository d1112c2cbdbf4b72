from __future__ import annotations
"""Role aware finite state machine utility for enforcing allowed status transitions.

The graph maps each state to the states reachable from it. A target may map to
a set of actor roles permitted to request it, or to ``None`` when any role may.

Usage:
    from app.utils.fsm import TransitionValidator
    FSM = TransitionValidator({
        'draft': {'submitted': {'customer'}},
        'submitted': {'approved': {'admin'}, 'draft': None},
        'approved': {},
    })
    FSM.assert_can_transition(current_status, target_status, role)

Raises InvalidTransition (400) if the edge or role is not allowed.
"""
from typing import Dict, Iterable, List, Optional, Set
from app.errors import InvalidTransition

Graph = Dict[str, Dict[str, Optional[Set[str]]]]


class TransitionValidator:
    def __init__(self, graph: Graph, field_name: str = 'status'):
        self.graph = graph
        self.field_name = field_name

    @property
    def states(self) -> List[str]:
        return list(self.graph.keys())

    def can_transition(self, current: str, target: str, role: Optional[str] = None) -> bool:
        edges = self.graph.get(current, {})
        if target not in edges:
            return False
        roles = edges[target]
        if roles is None or role is None:
            return True
        return role in roles

    def assert_can_transition(self, current: str, target: str, role: Optional[str] = None):
        if not self.can_transition(current, target, role):
            raise InvalidTransition(current, target, role, self.field_name)
        return True

    def allowed_targets(self, current: str, role: Optional[str] = None) -> List[str]:
        return [t for t in self.graph.get(current, {}) if self.can_transition(current, t, role)]

    def is_terminal(self, state: str) -> bool:
        return not self.graph.get(state)

    def terminal_states(self) -> List[str]:
        return [s for s in self.graph if self.is_terminal(s)]

    def describe(self) -> Dict[str, Dict[str, List[str]]]:
        """JSON friendly view: {from: {to: [roles]}} with '*' for unrestricted edges."""
        out: Dict[str, Dict[str, List[str]]] = {}
        for src, edges in self.graph.items():
            out[src] = {dst: sorted(roles) if roles is not None else ['*'] for dst, roles in edges.items()}
        return out


def build_graph(states: Iterable[str]) -> Graph:
    return {s: {} for s in states}


def allow(graph: Graph, src: str, dst: str, *roles: str):
    """Add an edge to a graph under construction, merging roles into existing edges."""
    edges = graph.setdefault(src, {})
    if not roles:
        edges[dst] = None
        return
    current = edges.get(dst, set())
    if current is None:
        return
    edges[dst] = set(current) | set(roles)

__all__ = ['TransitionValidator', 'build_graph', 'allow']
