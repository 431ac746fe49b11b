from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import UTC, datetime
import logging
import os
from typing import Callable
from uuid import UUID

from sqlalchemy import delete, distinct, func, select
from sqlalchemy.orm import Session, sessionmaker

from db.models import (
    Company,
    DashboardCriterionMetric,
    DashboardMetric,
    Review,
    ReviewCriterionScore,
)
from reviews.contracts import SubscriptionProvider
from reviews.quota import count_reviews_in_period
from reviews.states import PERFORMANCE_TYPES, REVIEWED, SENTIMENT_TYPES

from .upsert import upsert

logger = logging.getLogger(__name__)


def _dashboard_concurrency() -> int:
    return int(os.getenv("DASHBOARD_CONCURRENCY", "5"))


def _live_reviewed(company_id: UUID) -> list:
    return [
        Review.company_id == company_id,
        Review.status == REVIEWED,
        Review.deleted_at.is_(None),
    ]


class DashboardSnapshotJob:
    """Recomputes every active tenant's all-time dashboard totals.

    Reads raw reviews only, never the day rollups. Tenants run in parallel
    up to ``concurrency`` at a time, each in its own session.
    """

    def __init__(
        self,
        session_factory: sessionmaker | Callable[[], Session],
        concurrency: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._concurrency = max(1, concurrency or _dashboard_concurrency())

    def active_companies(self) -> list[UUID]:
        session = self._session_factory()
        try:
            return list(
                session.execute(
                    select(Company.id).where(Company.is_active.is_(True)).order_by(Company.created_at)
                ).scalars()
            )
        finally:
            session.close()

    def refresh_all(self) -> dict:
        companies = self.active_companies()
        refreshed: list[UUID] = []
        failed: list[UUID] = []
        with ThreadPoolExecutor(max_workers=self._concurrency) as pool:
            futures = {pool.submit(self.refresh_company, company_id): company_id for company_id in companies}
            for future in as_completed(futures):
                company_id = futures[future]
                try:
                    future.result()
                    refreshed.append(company_id)
                except Exception:
                    logger.exception("dashboard refresh failed company_id=%s", company_id)
                    failed.append(company_id)
        logger.info("dashboard refresh done refreshed=%s failed=%s", len(refreshed), len(failed))
        return {"refreshed": refreshed, "failed": failed}

    def refresh_company(self, company_id: UUID) -> None:
        session = self._session_factory()
        try:
            compute_snapshot(session, company_id)
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


def compute_snapshot(session: Session, company_id: UUID) -> None:
    """Overwrite the tenant's DashboardMetric row and criterion rows."""
    live = _live_reviewed(company_id)
    refreshed_at = datetime.now(UTC)
    avg_overall, performance_count = session.execute(
        select(func.avg(Review.overall_score), func.count(Review.id)).where(
            *live, Review.type.in_(PERFORMANCE_TYPES)
        )
    ).one()
    avg_sentiment, sentiment_count = session.execute(
        select(func.avg(Review.sentiment_score), func.count(Review.id)).where(
            *live, Review.type.in_(SENTIMENT_TYPES)
        )
    ).one()
    criteria = session.execute(
        select(
            ReviewCriterionScore.criterion_name,
            func.avg(ReviewCriterionScore.score),
            func.count(distinct(Review.id)),
        )
        .join(Review, Review.id == ReviewCriterionScore.review_id)
        .where(*live, Review.type.in_(PERFORMANCE_TYPES))
        .group_by(ReviewCriterionScore.criterion_name)
        .order_by(ReviewCriterionScore.criterion_name)
    ).all()
    total = session.execute(select(func.count(Review.id)).where(*live)).scalar_one()

    upsert(
        session,
        DashboardMetric,
        {"company_id": company_id},
        {
            "avg_overall": avg_overall,
            "avg_sentiment": avg_sentiment,
            "performance_review_count": int(performance_count),
            "sentiment_review_count": int(sentiment_count),
            "total_review_count": int(total),
            "updated_at": refreshed_at,
        },
    )
    session.execute(
        delete(DashboardCriterionMetric).where(DashboardCriterionMetric.company_id == company_id)
    )
    for name, avg_score, count in criteria:
        session.add(
            DashboardCriterionMetric(
                company_id=company_id,
                criterion_name=name,
                avg_score=avg_score,
                review_count=int(count),
                updated_at=refreshed_at,
            )
        )
    session.flush()


def dashboard_overview(
    session: Session,
    company_id: UUID,
    subscriptions: SubscriptionProvider | None = None,
) -> dict:
    metric = session.execute(
        select(DashboardMetric).where(DashboardMetric.company_id == company_id)
    ).scalar_one_or_none()
    criteria = (
        session.execute(
            select(DashboardCriterionMetric)
            .where(DashboardCriterionMetric.company_id == company_id)
            .order_by(DashboardCriterionMetric.criterion_name)
        )
        .scalars()
        .all()
    )
    overview = {
        "company_id": str(company_id),
        "avg_overall": metric.avg_overall if metric else None,
        "avg_sentiment": metric.avg_sentiment if metric else None,
        "performance_review_count": metric.performance_review_count if metric else 0,
        "sentiment_review_count": metric.sentiment_review_count if metric else 0,
        "total_review_count": metric.total_review_count if metric else 0,
        "updated_at": metric.updated_at.isoformat() if metric and metric.updated_at else None,
        "criteria": [
            {"criterion_name": row.criterion_name, "avg_score": row.avg_score, "review_count": row.review_count}
            for row in criteria
        ],
        "reviews_used": None,
        "reviews_allowed": None,
    }
    subscription = subscriptions.current(company_id) if subscriptions else None
    if subscription is not None:
        overview["reviews_used"] = count_reviews_in_period(
            session,
            company_id,
            subscription.current_period_start,
            subscription.current_period_end,
        )
        overview["reviews_allowed"] = subscription.allowed_reviews
    return overview
