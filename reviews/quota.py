from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from db.models import Review

from .contracts import SubscriptionInfo
from .errors import QuotaExceededError
from .states import QUOTA_STATUSES


def count_reviews_in_period(
    session: Session,
    company_id: UUID,
    period_start: datetime,
    period_end: datetime,
) -> int:
    stmt = select(func.count(Review.id)).where(
        Review.company_id == company_id,
        Review.status.in_(QUOTA_STATUSES),
        Review.created_at >= period_start,
        Review.created_at <= period_end,
    )
    return int(session.execute(stmt).scalar_one())


class QuotaGate:
    """Admission check for review creation and retry.

    The count and the write that follows it are not in one transaction, so two
    concurrent callers can both be admitted for the last slot.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def used(self, company_id: UUID, subscription: SubscriptionInfo) -> int:
        return count_reviews_in_period(
            self._session,
            company_id,
            subscription.current_period_start,
            subscription.current_period_end,
        )

    def is_review_quota_available(self, company_id: UUID, subscription: SubscriptionInfo) -> bool:
        return self.used(company_id, subscription) < subscription.allowed_reviews

    def ensure_available(self, company_id: UUID, subscription: SubscriptionInfo) -> None:
        used = self.used(company_id, subscription)
        if used >= subscription.allowed_reviews:
            raise QuotaExceededError(used, subscription.allowed_reviews)
