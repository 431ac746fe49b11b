from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from typing import Callable
from uuid import UUID

from sqlalchemy import distinct, func, select
from sqlalchemy.orm import Session

from db.models import (
    DailyCriterionMetric,
    DailyReviewMetric,
    DailySentimentLabelMetric,
    DailyTeamMetric,
    DashboardCriterionMetric,
    Review,
    ReviewCriterionScore,
)

from .days import INTERVALS, as_utc, bucket_start, months_back, start_of_day, yesterday_start
from .scopes import Scope
from .writer import _avg_overall, _avg_sentiment, reviewed_filters

OVERALL = "overall"
PERIODS = ("day", "week", "month", "year")


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class OverallPoint:
    day: date
    avg_overall: float | None
    avg_sentiment: float | None
    review_count: int
    realtime: bool = False


@dataclass(frozen=True)
class CriterionPoint:
    day: date
    criterion_name: str
    avg_score: float | None
    review_count: int
    realtime: bool = False


def _last_day(end: datetime) -> date:
    # A range ending exactly at midnight does not include that day.
    return (end - timedelta(microseconds=1)).date()


def resolve_period(name: str, now: datetime) -> tuple[datetime, datetime]:
    today = start_of_day(now)
    if name == "day":
        start = today
    elif name == "week":
        start = today - timedelta(weeks=1)
    elif name == "month":
        start = months_back(today, 1)
    elif name == "year":
        start = months_back(today, 12)
    else:
        raise ValueError(f"Invalid period filter: {name}")
    return start, as_utc(now)


class SeriesService:
    """Time series over the day rollups, topped up with live data.

    Ranges that end before yesterday's midnight are served from the rollup
    tables alone. Anything later is stitched together: rollup rows up to and
    including yesterday, plus one bucket aggregated live from raw reviews
    created after yesterday's midnight, dated yesterday. That live bucket is
    the authoritative value for its date when a rollup row for yesterday is
    also present.
    """

    def __init__(self, session: Session, now: Callable[[], datetime] = _utc_now) -> None:
        self._session = session
        self._now = now

    def get_series(
        self,
        scope: Scope,
        filter_name: str,
        start: datetime,
        end: datetime,
    ) -> list[OverallPoint] | list[CriterionPoint]:
        if filter_name == OVERALL:
            return self.overall_series(scope, start, end)
        if not scope.is_company:
            raise ValueError("Criterion series are only kept at company scope")
        return self.criterion_series(scope.company_id, filter_name, start, end)

    def _cutover(self) -> datetime:
        # Recomputed per call so overall and criterion reads agree.
        return yesterday_start(self._now())

    def overall_series(self, scope: Scope, start: datetime, end: datetime) -> list[OverallPoint]:
        start, end = as_utc(start), as_utc(end)
        yesterday = self._cutover()
        if end <= yesterday:
            return self._stored_overall(scope, start.date(), _last_day(end))

        points = self._stored_overall(scope, start.date(), yesterday.date())
        avg_overall, avg_sentiment, count = self._session.execute(
            select(_avg_overall(), _avg_sentiment(), func.count(Review.id)).where(
                *reviewed_filters(scope, yesterday, end, end_inclusive=True),
                Review.created_at > yesterday,
            )
        ).one()
        if count:
            points.append(
                OverallPoint(
                    day=yesterday.date(),
                    avg_overall=avg_overall,
                    avg_sentiment=avg_sentiment,
                    review_count=int(count),
                    realtime=True,
                )
            )
        points.sort(key=lambda point: point.day)
        return points

    def criterion_series(
        self,
        company_id: UUID,
        criterion_name: str,
        start: datetime,
        end: datetime,
    ) -> list[CriterionPoint]:
        start, end = as_utc(start), as_utc(end)
        yesterday = self._cutover()
        if end <= yesterday:
            return self._stored_criterion(company_id, criterion_name, start.date(), _last_day(end))

        points = self._stored_criterion(company_id, criterion_name, start.date(), yesterday.date())
        avg_score, count = self._session.execute(
            select(func.avg(ReviewCriterionScore.score), func.count(distinct(Review.id)))
            .join(Review, Review.id == ReviewCriterionScore.review_id)
            .where(
                *reviewed_filters(Scope(company_id), yesterday, end, end_inclusive=True),
                Review.created_at > yesterday,
                ReviewCriterionScore.criterion_name == criterion_name,
            )
        ).one()
        if count:
            points.append(
                CriterionPoint(
                    day=yesterday.date(),
                    criterion_name=criterion_name,
                    avg_score=avg_score,
                    review_count=int(count),
                    realtime=True,
                )
            )
        points.sort(key=lambda point: point.day)
        return points

    def _stored_overall(self, scope: Scope, first: date, last: date) -> list[OverallPoint]:
        rows = (
            self._session.execute(
                select(DailyReviewMetric)
                .where(
                    DailyReviewMetric.company_id == scope.company_id,
                    DailyReviewMetric.scope_type == scope.scope_type,
                    DailyReviewMetric.scope_id == scope.scope_id,
                    DailyReviewMetric.day >= first,
                    DailyReviewMetric.day <= last,
                )
                .order_by(DailyReviewMetric.day)
            )
            .scalars()
            .all()
        )
        return [
            OverallPoint(
                day=row.day,
                avg_overall=row.avg_overall,
                avg_sentiment=row.avg_sentiment,
                review_count=row.review_count,
            )
            for row in rows
        ]

    def _stored_criterion(
        self,
        company_id: UUID,
        criterion_name: str,
        first: date,
        last: date,
    ) -> list[CriterionPoint]:
        rows = (
            self._session.execute(
                select(DailyCriterionMetric)
                .where(
                    DailyCriterionMetric.company_id == company_id,
                    DailyCriterionMetric.criterion_name == criterion_name,
                    DailyCriterionMetric.day >= first,
                    DailyCriterionMetric.day <= last,
                )
                .order_by(DailyCriterionMetric.day)
            )
            .scalars()
            .all()
        )
        return [
            CriterionPoint(
                day=row.day,
                criterion_name=row.criterion_name,
                avg_score=row.avg_score,
                review_count=row.review_count,
            )
            for row in rows
        ]

    def criteria_summary(self, company_id: UUID, start: datetime, end: datetime) -> list[dict]:
        snapshots = (
            self._session.execute(
                select(DashboardCriterionMetric)
                .where(DashboardCriterionMetric.company_id == company_id)
                .order_by(DashboardCriterionMetric.criterion_name)
            )
            .scalars()
            .all()
        )
        trend_rows = (
            self._session.execute(
                select(DailyCriterionMetric)
                .where(
                    DailyCriterionMetric.company_id == company_id,
                    DailyCriterionMetric.day >= as_utc(start).date(),
                    DailyCriterionMetric.day <= as_utc(end).date(),
                )
                .order_by(DailyCriterionMetric.day, DailyCriterionMetric.criterion_name)
            )
            .scalars()
            .all()
        )
        trends: dict[str, list[dict]] = {}
        for row in trend_rows:
            trends.setdefault(row.criterion_name, []).append(
                {"day": row.day, "score": row.avg_score, "review_count": row.review_count}
            )
        return [
            {
                "criterion_name": snap.criterion_name,
                "avg_score": snap.avg_score or 0,
                "review_count": snap.review_count,
                "trend": trends.get(snap.criterion_name, []),
            }
            for snap in snapshots
        ]

    def sentiment_trends(self, company_id: UUID, days: int = 30) -> list[dict]:
        first = (start_of_day(self._now()) - timedelta(days=days)).date()
        rows = (
            self._session.execute(
                select(DailySentimentLabelMetric)
                .where(
                    DailySentimentLabelMetric.company_id == company_id,
                    DailySentimentLabelMetric.day >= first,
                )
                .order_by(DailySentimentLabelMetric.day)
            )
            .scalars()
            .all()
        )
        result = []
        for row in rows:
            total = row.total or 0
            result.append(
                {
                    "day": row.day,
                    "negative": row.negative,
                    "neutral": row.neutral,
                    "positive": row.positive,
                    "total": total,
                    "negative_pct": round(row.negative / total * 100, 1) if total else 0.0,
                    "neutral_pct": round(row.neutral / total * 100, 1) if total else 0.0,
                    "positive_pct": round(row.positive / total * 100, 1) if total else 0.0,
                }
            )
        return result

    def sentiment_distribution(
        self,
        company_id: UUID,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> dict:
        """Label counts summed over the sentiment rollups, all time by default."""
        stmt = select(
            func.coalesce(func.sum(DailySentimentLabelMetric.negative), 0),
            func.coalesce(func.sum(DailySentimentLabelMetric.neutral), 0),
            func.coalesce(func.sum(DailySentimentLabelMetric.positive), 0),
        ).where(DailySentimentLabelMetric.company_id == company_id)
        if start is not None:
            stmt = stmt.where(DailySentimentLabelMetric.day >= as_utc(start).date())
        if end is not None:
            stmt = stmt.where(DailySentimentLabelMetric.day <= as_utc(end).date())
        negative, neutral, positive = (int(value) for value in self._session.execute(stmt).one())
        total = negative + neutral + positive
        return {
            "negative": negative,
            "neutral": neutral,
            "positive": positive,
            "total": total,
            "negative_pct": round(negative / total * 100, 1) if total else 0.0,
            "neutral_pct": round(neutral / total * 100, 1) if total else 0.0,
            "positive_pct": round(positive / total * 100, 1) if total else 0.0,
        }

    def team_series(
        self,
        company_id: UUID,
        team_id: UUID,
        start: datetime,
        end: datetime,
        interval: str = "day",
    ) -> list[dict]:
        """Team rollups between the start and end days (both inclusive), grouped by ``interval``."""
        return self._team_buckets(company_id, team_id, as_utc(start).date(), as_utc(end).date(), interval)

    def team_history(self, company_id: UUID, team_id: UUID, months: int = 6) -> list[dict]:
        """Monthly team averages for the last ``months`` complete months."""
        if months < 1:
            raise ValueError("months must be at least 1")
        month_start = start_of_day(self._now()).replace(day=1)
        first = months_back(month_start, months).date()
        last = (month_start - timedelta(days=1)).date()
        return [
            {
                "period": bucket["period_start"].strftime("%Y-%m"),
                "avg_overall": bucket["avg_overall"],
                "avg_sentiment": bucket["avg_sentiment"],
                "review_count": bucket["review_count"],
            }
            for bucket in self._team_buckets(company_id, team_id, first, last, "month")
        ]

    def _team_buckets(
        self,
        company_id: UUID,
        team_id: UUID,
        first: date,
        last: date,
        interval: str,
    ) -> list[dict]:
        if interval not in INTERVALS:
            raise ValueError(f"Invalid interval: {interval}")
        rows = (
            self._session.execute(
                select(DailyTeamMetric)
                .where(
                    DailyTeamMetric.company_id == company_id,
                    DailyTeamMetric.team_id == team_id,
                    DailyTeamMetric.day >= first,
                    DailyTeamMetric.day <= last,
                    DailyTeamMetric.review_count > 0,
                )
                .order_by(DailyTeamMetric.day)
            )
            .scalars()
            .all()
        )
        # Day averages are weighted by their review counts.
        buckets: dict[date, dict[str, float]] = {}
        for row in rows:
            acc = buckets.setdefault(
                bucket_start(row.day, interval),
                {"overall": 0.0, "overall_n": 0, "sentiment": 0.0, "sentiment_n": 0, "count": 0},
            )
            acc["count"] += row.review_count
            if row.avg_overall is not None:
                acc["overall"] += row.avg_overall * row.review_count
                acc["overall_n"] += row.review_count
            if row.avg_sentiment is not None:
                acc["sentiment"] += row.avg_sentiment * row.review_count
                acc["sentiment_n"] += row.review_count
        return [
            {
                "period_start": period_start,
                "avg_overall": round(acc["overall"] / acc["overall_n"], 2) if acc["overall_n"] else None,
                "avg_sentiment": round(acc["sentiment"] / acc["sentiment_n"], 2) if acc["sentiment_n"] else None,
                "review_count": int(acc["count"]),
            }
            for period_start, acc in sorted(buckets.items())
        ]
