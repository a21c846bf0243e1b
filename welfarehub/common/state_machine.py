"""Notification campaign state machine enforced by the campaign service."""

from welfarehub.common.errors import InvalidTransition

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    "draft": {"scheduled", "running"},
    "scheduled": {"running", "cancelled"},
    "running": {"paused", "completed", "failed"},
    "paused": {"running"},
    "completed": set(),
    "failed": set(),
    "cancelled": set(),
}

TERMINAL_STATES = frozenset(state for state, targets in ALLOWED_TRANSITIONS.items() if not targets)


def can_transition(current: str, new: str) -> bool:
    """Return whether `current -> new` appears in the transition table."""

    return new in ALLOWED_TRANSITIONS.get(current, set())


def validate_transition(current: str, new: str) -> None:
    """Raise when a transition is not allowed by the state machine."""

    if not can_transition(current, new):
        raise InvalidTransition(current, new)
