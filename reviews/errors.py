from __future__ import annotations


class ReviewError(Exception):
    code = "review_error"


class NotFoundError(ReviewError):
    code = "not_found"


class QuotaExceededError(ReviewError):
    code = "review_quota_exceeded"

    def __init__(self, used: int, allowed: int) -> None:
        super().__init__(f"Review quota exceeded: {used}/{allowed} used in current period")
        self.used = used
        self.allowed = allowed


class NoActiveSubscriptionError(ReviewError):
    code = "no_active_subscription"


class InactiveConfigError(ReviewError):
    code = "review_config_inactive"


class MissingCriteriaError(ReviewError):
    code = "criteria_missing"


class InvalidTransitionError(ReviewError):
    code = "invalid_review_transition"

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Cannot move review from {current} to {target}")
        self.current = current
        self.target = target
