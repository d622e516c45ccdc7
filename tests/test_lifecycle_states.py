"""
Tests for the lifecycle state machine.
"""
import pytest

from incident_commander.exceptions import InvalidTransitionError
from incident_commander.lifecycle import TRANSITIONS, can_transition, check_transition, is_valid_path
from incident_commander.models import IncidentState

S = IncidentState


def test_every_state_has_an_entry():
    assert set(TRANSITIONS) == set(IncidentState)


@pytest.mark.parametrize("state", [S.RESOLVED, S.FAILED, S.REJECTED])
def test_terminal_states_have_no_exits(state):
    assert TRANSITIONS[state] == frozenset()


@pytest.mark.parametrize("state", [s for s in IncidentState if not s.is_terminal])
def test_every_active_state_can_fail(state):
    assert can_transition(state, S.FAILED)


@pytest.mark.parametrize("current,new", [
    (S.DETECTED, S.EXECUTING),
    (S.PLANNING, S.EXECUTING),
    (S.EXECUTING, S.RESOLVED),
    (S.EXECUTING, S.REJECTED),
    (S.SELF_CORRECTING, S.SELF_CORRECTING),
    (S.RESOLVED, S.PLANNING),
])
def test_forbidden_transitions(current, new):
    assert not can_transition(current, new)
    with pytest.raises(InvalidTransitionError, match=f"{current.value} -> {new.value}"):
        check_transition(current, new)


@pytest.mark.parametrize("path", [
    [S.DETECTED, S.PLANNING, S.AWAITING_APPROVAL, S.EXECUTING, S.VERIFYING, S.RESOLVED],
    [S.DETECTED, S.PLANNING, S.AWAITING_APPROVAL, S.EXECUTING, S.VERIFYING, S.SELF_CORRECTING, S.FAILED],
    [S.DETECTED, S.PLANNING, S.REJECTED],
    [S.DETECTED, S.PLANNING, S.AWAITING_APPROVAL, S.REJECTED],
    [S.DETECTED],
])
def test_valid_paths(path):
    assert is_valid_path(path)


@pytest.mark.parametrize("path", [
    [],
    [S.PLANNING, S.AWAITING_APPROVAL],
    [S.DETECTED, S.PLANNING, S.AWAITING_APPROVAL, S.VERIFYING],
    [S.DETECTED, S.PLANNING, S.REJECTED, S.PLANNING],
])
def test_invalid_paths(path):
    assert not is_valid_path(path)
