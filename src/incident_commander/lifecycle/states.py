"""
Incident lifecycle state machine.
"""

from typing import Dict, FrozenSet, Iterable

from ..exceptions import InvalidTransitionError
from ..models import IncidentState

S = IncidentState

TRANSITIONS: Dict[IncidentState, FrozenSet[IncidentState]] = {
    S.DETECTED: frozenset({S.PLANNING, S.FAILED}),
    S.PLANNING: frozenset({S.AWAITING_APPROVAL, S.REJECTED, S.FAILED}),
    S.AWAITING_APPROVAL: frozenset({S.EXECUTING, S.REJECTED, S.FAILED}),
    S.EXECUTING: frozenset({S.VERIFYING, S.FAILED}),
    S.VERIFYING: frozenset({S.RESOLVED, S.SELF_CORRECTING, S.FAILED}),
    S.SELF_CORRECTING: frozenset({S.RESOLVED, S.FAILED}),
    S.RESOLVED: frozenset(),
    S.FAILED: frozenset(),
    S.REJECTED: frozenset(),
}


def can_transition(current: IncidentState, new: IncidentState) -> bool:
    return new in TRANSITIONS[current]


def check_transition(current: IncidentState, new: IncidentState) -> None:
    """
    Raises:
        InvalidTransitionError: If ``current -> new`` is not an edge of the machine
    """
    if not can_transition(current, new):
        raise InvalidTransitionError(f"Invalid transition {current.value} -> {new.value}")


def is_valid_path(states: Iterable[IncidentState]) -> bool:
    """True if ``states`` starts at DETECTED and only follows allowed edges."""
    states = list(states)
    if not states or states[0] != S.DETECTED:
        return False
    return all(can_transition(a, b) for a, b in zip(states, states[1:]))
