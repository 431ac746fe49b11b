from .errors import (
    InactiveConfigError,
    InvalidTransitionError,
    MissingCriteriaError,
    NoActiveSubscriptionError,
    NotFoundError,
    QuotaExceededError,
    ReviewError,
)
from .events import ReviewEvent, ReviewEventBus, ReviewSnapshot
from .processor import ReviewProcessor
from .quota import QuotaGate
from .service import ReviewService

__all__ = [
    "ReviewService",
    "ReviewProcessor",
    "QuotaGate",
    "ReviewEvent",
    "ReviewEventBus",
    "ReviewSnapshot",
    "ReviewError",
    "NotFoundError",
    "QuotaExceededError",
    "NoActiveSubscriptionError",
    "InactiveConfigError",
    "InvalidTransitionError",
    "MissingCriteriaError",
]
