"""Notification task state machine enforced by the dispatcher."""

PENDING = "pending"
SENT = "sent"
NO_TOKENS = "no-tokens"
ERROR = "error"

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    PENDING: {SENT, NO_TOKENS, ERROR},
    SENT: set(),
    NO_TOKENS: set(),
    ERROR: set(),
}

TERMINAL_STATES = frozenset(state for state, targets in ALLOWED_TRANSITIONS.items() if not targets)


def validate_transition(current: str, new: str) -> None:
    """Raise when a transition is not allowed by the state machine."""

    if new not in ALLOWED_TRANSITIONS.get(current, set()):
        raise ValueError(f"Invalid transition: {current} -> {new}")
