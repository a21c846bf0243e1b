"""Unit tests for campaign state-machine guardrails."""

import pytest

from welfarehub.common.errors import InvalidTransition
from welfarehub.common.state_machine import ALLOWED_TRANSITIONS, TERMINAL_STATES, can_transition, validate_transition


def test_valid_transition():
    """Sanity check: a legal transition should pass."""

    validate_transition("draft", "running")
    validate_transition("paused", "running")


def test_invalid_transition():
    """Illegal transition must raise and name both states."""

    with pytest.raises(ValueError) as excinfo:
        validate_transition("completed", "running")
    assert isinstance(excinfo.value, InvalidTransition)
    assert "completed" in str(excinfo.value) and "running" in str(excinfo.value)


def test_terminal_states_have_no_exits():
    assert TERMINAL_STATES == {"completed", "failed", "cancelled"}
    for state in TERMINAL_STATES:
        for target in ALLOWED_TRANSITIONS:
            assert not can_transition(state, target)


def test_pause_only_from_running():
    assert can_transition("running", "paused")
    assert not can_transition("draft", "paused")
    assert not can_transition("scheduled", "paused")


def test_unknown_state_is_rejected():
    assert not can_transition("archived", "running")
    with pytest.raises(InvalidTransition):
        validate_transition("archived", "running")
