from __future__ import annotations

from datetime import date
import logging
from uuid import UUID

from sqlalchemy import case, delete, distinct, func, select
from sqlalchemy.orm import Session

from db.models import (
    DailyCriterionMetric,
    DailyReviewMetric,
    DailySentimentLabelMetric,
    DailyTeamMetric,
    Review,
    ReviewCriterionScore,
)
from reviews.states import PERFORMANCE_TYPES, REVIEWED, SENTIMENT_LABELS, SENTIMENT_TYPES

from .days import day_window
from .scopes import CONTACT, EXTERNAL_COMPANY, TEAM, Scope
from .upsert import upsert

logger = logging.getLogger(__name__)


def _avg_overall():
    return func.avg(case((Review.type.in_(PERFORMANCE_TYPES), Review.overall_score)))


def _avg_sentiment():
    return func.avg(case((Review.type.in_(SENTIMENT_TYPES), Review.sentiment_score)))


def reviewed_filters(scope: Scope, start, end, *, end_inclusive: bool = False) -> list:
    """Filters selecting live REVIEWED reviews for ``scope`` in a time window.

    The window is ``[start, end)`` unless ``end_inclusive``.
    """
    created_end = Review.created_at <= end if end_inclusive else Review.created_at < end
    return [
        Review.status == REVIEWED,
        Review.deleted_at.is_(None),
        Review.created_at >= start,
        created_end,
        *scope.review_filters(),
    ]


class AggregationWriter:
    """Rebuilds the day rollups for one day and scope from raw reviews.

    Every write is a full replace of the bucket from a fresh query, so the
    writer can be re-run any number of times and in any order. Buckets with
    no matching reviews are deleted rather than stored as zeros. Criterion,
    team and sentiment-label rollups exist at company level only; a narrower
    scope still refreshes them for its company.

    The caller owns the transaction.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def recompute(self, day: date, scope: Scope) -> None:
        self.recompute_overall(day, scope)
        company = scope.as_company()
        self.recompute_criteria(day, company)
        self.recompute_teams(day, company)
        self.recompute_sentiment_labels(day, company)

    def _filters(self, day: date, scope: Scope) -> list:
        start, end = day_window(day)
        return reviewed_filters(scope, start, end)

    def recompute_overall(self, day: date, scope: Scope) -> None:
        avg_overall, avg_sentiment, count = self._session.execute(
            select(_avg_overall(), _avg_sentiment(), func.count(Review.id)).where(
                *self._filters(day, scope)
            )
        ).one()
        keys = {
            "company_id": scope.company_id,
            "scope_type": scope.scope_type,
            "scope_id": scope.scope_id,
            "day": day,
        }
        if not count:
            self._session.execute(delete(DailyReviewMetric).filter_by(**keys))
            return
        upsert(
            self._session,
            DailyReviewMetric,
            keys,
            {
                "avg_overall": avg_overall,
                "avg_sentiment": avg_sentiment,
                "review_count": int(count),
            },
        )

    def recompute_criteria(self, day: date, scope: Scope) -> None:
        rows = self._session.execute(
            select(
                ReviewCriterionScore.criterion_name,
                func.avg(ReviewCriterionScore.score),
                func.count(distinct(Review.id)),
            )
            .join(Review, Review.id == ReviewCriterionScore.review_id)
            .where(*self._filters(day, scope), Review.type.in_(PERFORMANCE_TYPES))
            .group_by(ReviewCriterionScore.criterion_name)
        ).all()

        stale = delete(DailyCriterionMetric).where(
            DailyCriterionMetric.company_id == scope.company_id,
            DailyCriterionMetric.day == day,
        )
        names = [name for name, _avg, _count in rows]
        if names:
            stale = stale.where(DailyCriterionMetric.criterion_name.not_in(names))
        self._session.execute(stale)

        for name, avg_score, count in rows:
            upsert(
                self._session,
                DailyCriterionMetric,
                {"company_id": scope.company_id, "day": day, "criterion_name": name},
                {"avg_score": avg_score, "review_count": int(count)},
            )

    def recompute_teams(self, day: date, scope: Scope) -> None:
        rows = self._session.execute(
            select(Review.team_id, _avg_overall(), _avg_sentiment(), func.count(Review.id))
            .where(*self._filters(day, scope), Review.team_id.is_not(None))
            .group_by(Review.team_id)
        ).all()

        stale = delete(DailyTeamMetric).where(
            DailyTeamMetric.company_id == scope.company_id,
            DailyTeamMetric.day == day,
        )
        team_ids = [team_id for team_id, *_rest in rows]
        if team_ids:
            stale = stale.where(DailyTeamMetric.team_id.not_in(team_ids))
        self._session.execute(stale)

        for team_id, avg_overall, avg_sentiment, count in rows:
            upsert(
                self._session,
                DailyTeamMetric,
                {"company_id": scope.company_id, "day": day, "team_id": team_id},
                {
                    "avg_overall": avg_overall,
                    "avg_sentiment": avg_sentiment,
                    "review_count": int(count),
                },
            )

    def recompute_sentiment_labels(self, day: date, scope: Scope) -> None:
        rows = self._session.execute(
            select(Review.sentiment_label, func.count(Review.id))
            .where(
                *self._filters(day, scope),
                Review.type.in_(SENTIMENT_TYPES),
                Review.sentiment_label.is_not(None),
            )
            .group_by(Review.sentiment_label)
        ).all()
        counts = {label: 0 for label in SENTIMENT_LABELS}
        for label, count in rows:
            if label in counts:
                counts[label] = int(count)
        total = sum(counts.values())

        keys = {"company_id": scope.company_id, "day": day}
        if total == 0:
            self._session.execute(delete(DailySentimentLabelMetric).filter_by(**keys))
            return
        upsert(self._session, DailySentimentLabelMetric, keys, {**counts, "total": total})


def scopes_touching_day(session: Session, day: date, company_id: UUID | None = None) -> list[Scope]:
    """Every scope with reviews or an existing rollup on ``day``."""
    start, end = day_window(day)
    review_stmt = select(
        Review.company_id,
        Review.team_id,
        Review.contact_id,
        Review.external_company_id,
    ).where(Review.created_at >= start, Review.created_at < end)
    metric_stmt = select(
        DailyReviewMetric.company_id,
        DailyReviewMetric.scope_type,
        DailyReviewMetric.scope_id,
    ).where(DailyReviewMetric.day == day)
    if company_id is not None:
        review_stmt = review_stmt.where(Review.company_id == company_id)
        metric_stmt = metric_stmt.where(DailyReviewMetric.company_id == company_id)

    scopes: set[Scope] = set()
    for company, team_id, contact_id, external_id in session.execute(review_stmt.distinct()):
        scopes.add(Scope(company))
        if team_id is not None:
            scopes.add(Scope(company, TEAM, team_id))
        if contact_id is not None:
            scopes.add(Scope(company, CONTACT, contact_id))
        if external_id is not None:
            scopes.add(Scope(company, EXTERNAL_COMPANY, external_id))
    for company, scope_type, scope_id in session.execute(metric_stmt):
        if scope_type == "company":
            scopes.add(Scope(company))
        else:
            scopes.add(Scope(company, scope_type, scope_id))

    for table in (DailyCriterionMetric, DailyTeamMetric, DailySentimentLabelMetric):
        stmt = select(table.company_id).where(table.day == day)
        if company_id is not None:
            stmt = stmt.where(table.company_id == company_id)
        for (company,) in session.execute(stmt.distinct()):
            scopes.add(Scope(company))
    return sorted(scopes, key=lambda s: (str(s.company_id), s.scope_type, str(s.scope_id)))


def backfill_day(session: Session, day: date, company_id: UUID | None = None) -> int:
    """Recompute every rollup bucket for ``day``. Returns the number of scopes."""
    writer = AggregationWriter(session)
    scopes = scopes_touching_day(session, day, company_id)
    for scope in scopes:
        writer.recompute(day, scope)
    logger.info("backfilled day=%s scopes=%s", day, len(scopes))
    return len(scopes)
