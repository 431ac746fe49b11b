from __future__ import annotations

from .errors import InvalidTransitionError

NOT_STARTED = "NOT_STARTED"
STARTED = "STARTED"
REVIEWED = "REVIEWED"
ERROR = "ERROR"

PERFORMANCE = "performance"
SENTIMENT = "sentiment"
BOTH = "both"

REVIEW_TYPES = (PERFORMANCE, SENTIMENT, BOTH)
PERFORMANCE_TYPES = (PERFORMANCE, BOTH)
SENTIMENT_TYPES = (SENTIMENT, BOTH)
SENTIMENT_LABELS = ("negative", "neutral", "positive")

# Reviews holding a slot in the billing-period allowance.
QUOTA_STATUSES = (NOT_STARTED, STARTED, REVIEWED)

_TRANSITIONS: dict[str, frozenset[str]] = {
    NOT_STARTED: frozenset({STARTED, ERROR}),
    STARTED: frozenset({REVIEWED, ERROR}),
    ERROR: frozenset({NOT_STARTED}),
    REVIEWED: frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    return target in _TRANSITIONS.get(current, frozenset())


def ensure_transition(current: str, target: str) -> None:
    if not can_transition(current, target):
        raise InvalidTransitionError(current, target)


def is_terminal(status: str) -> bool:
    return status in {REVIEWED, ERROR}
