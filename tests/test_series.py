from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from uuid import uuid4

import pytest

from conftest import NOW, add_review, new_company
from db.models import (
    DailyCriterionMetric,
    DailyReviewMetric,
    DailySentimentLabelMetric,
    DailyTeamMetric,
    DashboardCriterionMetric,
)
from metrics.scopes import TEAM, Scope
from metrics.series import OVERALL, SeriesService, resolve_period


def _service(session) -> SeriesService:  # type: ignore[no-untyped-def]
    return SeriesService(session, now=lambda: NOW)


def _stored(session, company_id, day: date, avg: float, count: int, scope: Scope | None = None) -> None:  # type: ignore[no-untyped-def]
    scope = scope or Scope(company_id)
    session.add(
        DailyReviewMetric(
            company_id=company_id,
            scope_type=scope.scope_type,
            scope_id=scope.scope_id,
            day=day,
            avg_overall=avg,
            avg_sentiment=None,
            review_count=count,
        )
    )
    session.commit()


def test_hybrid_read_appends_live_bucket_dated_yesterday(session) -> None:
    company_id = new_company(session)
    _stored(session, company_id, date(2026, 3, 10), 5.0, 2)
    for hours, score in ((1, 6.0), (2, 7.0), (3, 8.0)):
        add_review(session, company_id, created_at=NOW - timedelta(hours=hours), overall_score=score)

    points = _service(session).get_series(Scope(company_id), OVERALL, NOW - timedelta(days=10), NOW)

    assert [p.day for p in points] == [date(2026, 3, 10), date(2026, 3, 14)]
    last = points[-1]
    assert (last.avg_overall, last.review_count, last.realtime) == (7.0, 3, True)
    assert points[0].realtime is False


def test_hybrid_read_omits_empty_live_bucket(session) -> None:
    company_id = new_company(session)
    _stored(session, company_id, date(2026, 3, 12), 6.0, 1)

    points = _service(session).overall_series(Scope(company_id), NOW - timedelta(days=7), NOW)

    assert [(p.day, p.review_count) for p in points] == [(date(2026, 3, 12), 1)]


def test_live_bucket_ignores_reviews_after_range_end(session) -> None:
    company_id = new_company(session)
    add_review(session, company_id, created_at=NOW - timedelta(hours=2), overall_score=4.0)
    add_review(session, company_id, created_at=NOW - timedelta(minutes=10), overall_score=10.0)

    points = _service(session).overall_series(
        Scope(company_id), NOW - timedelta(days=3), NOW - timedelta(hours=1)
    )

    assert [(p.avg_overall, p.review_count) for p in points] == [(4.0, 1)]


def test_historical_range_reads_rollups_only(session) -> None:
    company_id = new_company(session)
    _stored(session, company_id, date(2026, 3, 1), 6.0, 3)
    _stored(session, company_id, date(2026, 3, 11), 9.0, 1)
    _stored(session, company_id, date(2026, 3, 14), 2.0, 1)
    add_review(session, company_id, created_at=datetime(2026, 3, 12, 9, tzinfo=UTC), overall_score=1.0)

    points = _service(session).overall_series(
        Scope(company_id), datetime(2026, 3, 2, tzinfo=UTC), datetime(2026, 3, 13, 12, tzinfo=UTC)
    )

    assert [(p.day, p.avg_overall, p.realtime) for p in points] == [(date(2026, 3, 11), 9.0, False)]


def test_narrow_scope_series_reads_its_own_buckets(session) -> None:
    company_id = new_company(session)
    team_id = uuid4()
    team = Scope(company_id, TEAM, team_id)
    _stored(session, company_id, date(2026, 3, 11), 3.0, 1, scope=team)
    _stored(session, company_id, date(2026, 3, 11), 8.0, 4)
    add_review(session, company_id, created_at=NOW - timedelta(hours=1), overall_score=9.0, team_id=team_id)
    add_review(session, company_id, created_at=NOW - timedelta(hours=1), overall_score=1.0)

    points = _service(session).get_series(team, OVERALL, NOW - timedelta(days=7), NOW)

    assert [(p.avg_overall, p.review_count) for p in points] == [(3.0, 1), (9.0, 1)]


def test_criterion_series_is_hybrid_too(session) -> None:
    company_id = new_company(session)
    session.add(
        DailyCriterionMetric(
            company_id=company_id, day=date(2026, 3, 9), criterion_name="Empathy", avg_score=6.0, review_count=2
        )
    )
    session.commit()
    add_review(session, company_id, created_at=NOW - timedelta(hours=1), overall_score=8.0, criteria=(("Empathy", 9.0),))
    add_review(session, company_id, created_at=NOW - timedelta(hours=1), overall_score=8.0, criteria=(("Clarity", 2.0),))

    points = _service(session).get_series(Scope(company_id), "Empathy", NOW - timedelta(days=10), NOW)

    assert [(p.day, p.avg_score, p.review_count, p.realtime) for p in points] == [
        (date(2026, 3, 9), 6.0, 2, False),
        (date(2026, 3, 14), 9.0, 1, True),
    ]


def test_criterion_filter_requires_company_scope(session) -> None:
    company_id = new_company(session)
    with pytest.raises(ValueError):
        _service(session).get_series(Scope(company_id, TEAM, uuid4()), "Empathy", NOW - timedelta(days=1), NOW)


def test_resolve_period() -> None:
    today = datetime(2026, 3, 15, tzinfo=UTC)
    assert resolve_period("day", NOW) == (today, NOW)
    assert resolve_period("week", NOW)[0] == datetime(2026, 3, 8, tzinfo=UTC)
    assert resolve_period("month", NOW)[0] == datetime(2026, 2, 15, tzinfo=UTC)
    assert resolve_period("year", NOW)[0] == datetime(2025, 3, 15, tzinfo=UTC)
    assert resolve_period("month", datetime(2026, 3, 31, 8, tzinfo=UTC))[0] == datetime(2026, 2, 28, tzinfo=UTC)
    with pytest.raises(ValueError):
        resolve_period("decade", NOW)


def test_criteria_summary_joins_snapshot_and_trend(session) -> None:
    company_id = new_company(session)
    session.add_all(
        [
            DashboardCriterionMetric(company_id=company_id, criterion_name="Clarity", avg_score=7.5, review_count=4),
            DashboardCriterionMetric(company_id=company_id, criterion_name="Empathy", avg_score=None, review_count=0),
            DailyCriterionMetric(
                company_id=company_id, day=date(2026, 3, 2), criterion_name="Clarity", avg_score=7.0, review_count=2
            ),
            DailyCriterionMetric(
                company_id=company_id, day=date(2026, 1, 2), criterion_name="Clarity", avg_score=1.0, review_count=1
            ),
        ]
    )
    session.commit()

    start, end = resolve_period("month", NOW)
    summary = _service(session).criteria_summary(company_id, start, end)

    assert [row["criterion_name"] for row in summary] == ["Clarity", "Empathy"]
    assert summary[0]["trend"] == [{"day": date(2026, 3, 2), "score": 7.0, "review_count": 2}]
    assert summary[1]["avg_score"] == 0
    assert summary[1]["trend"] == []


def test_sentiment_trends_include_percentages(session) -> None:
    company_id = new_company(session)
    session.add_all(
        [
            DailySentimentLabelMetric(
                company_id=company_id, day=date(2026, 3, 13), negative=1, neutral=1, positive=2, total=4
            ),
            DailySentimentLabelMetric(
                company_id=company_id, day=date(2025, 12, 1), negative=5, neutral=0, positive=0, total=5
            ),
        ]
    )
    session.commit()

    [row] = _service(session).sentiment_trends(company_id, days=30)

    assert row["day"] == date(2026, 3, 13)
    assert (row["negative_pct"], row["neutral_pct"], row["positive_pct"]) == (25.0, 25.0, 50.0)


def test_historical_range_ending_at_midnight_excludes_that_day(session) -> None:
    company_id = new_company(session)
    _stored(session, company_id, date(2026, 3, 13), 6.0, 1)
    _stored(session, company_id, date(2026, 3, 14), 2.0, 1)

    points = _service(session).overall_series(
        Scope(company_id), datetime(2026, 3, 10, tzinfo=UTC), datetime(2026, 3, 14, tzinfo=UTC)
    )

    assert [p.day for p in points] == [date(2026, 3, 13)]


def _team_rows(session, company_id, team_id) -> None:  # type: ignore[no-untyped-def]
    rows = [
        (team_id, date(2026, 1, 20), 9.0, 8.0, 2),
        (team_id, date(2026, 3, 2), 6.0, 5.0, 1),
        (team_id, date(2026, 3, 10), 8.0, None, 3),
        (team_id, date(2026, 3, 12), 4.0, 7.0, 1),
        (uuid4(), date(2026, 3, 10), 1.0, 1.0, 5),
    ]
    session.add_all(
        [
            DailyTeamMetric(
                company_id=company_id,
                team_id=team,
                day=day,
                avg_overall=overall,
                avg_sentiment=sentiment,
                review_count=count,
            )
            for team, day, overall, sentiment, count in rows
        ]
    )
    session.commit()


def test_team_series_by_day(session) -> None:
    company_id = new_company(session)
    team_id = uuid4()
    _team_rows(session, company_id, team_id)

    points = _service(session).team_series(
        company_id, team_id, datetime(2026, 3, 1, tzinfo=UTC), NOW, interval="day"
    )

    assert [(p["period_start"], p["avg_overall"], p["review_count"]) for p in points] == [
        (date(2026, 3, 2), 6.0, 1),
        (date(2026, 3, 10), 8.0, 3),
        (date(2026, 3, 12), 4.0, 1),
    ]


def test_team_series_groups_weeks_and_months(session) -> None:
    company_id = new_company(session)
    team_id = uuid4()
    _team_rows(session, company_id, team_id)
    service = _service(session)

    weeks = service.team_series(company_id, team_id, datetime(2026, 3, 1, tzinfo=UTC), NOW, interval="week")
    months = service.team_series(company_id, team_id, datetime(2026, 1, 1, tzinfo=UTC), NOW, interval="month")

    assert weeks == [
        {"period_start": date(2026, 3, 2), "avg_overall": 6.0, "avg_sentiment": 5.0, "review_count": 1},
        {"period_start": date(2026, 3, 9), "avg_overall": 7.0, "avg_sentiment": 7.0, "review_count": 4},
    ]
    assert months == [
        {"period_start": date(2026, 1, 1), "avg_overall": 9.0, "avg_sentiment": 8.0, "review_count": 2},
        {"period_start": date(2026, 3, 1), "avg_overall": 6.8, "avg_sentiment": 6.0, "review_count": 5},
    ]
    with pytest.raises(ValueError):
        service.team_series(company_id, team_id, datetime(2026, 3, 1, tzinfo=UTC), NOW, interval="hour")


def test_team_history_covers_complete_months(session) -> None:
    company_id = new_company(session)
    team_id = uuid4()
    _team_rows(session, company_id, team_id)

    history = _service(session).team_history(company_id, team_id, months=3)

    assert history == [{"period": "2026-01", "avg_overall": 9.0, "avg_sentiment": 8.0, "review_count": 2}]


def test_sentiment_distribution_sums_rollups(session) -> None:
    company_id = new_company(session)
    session.add_all(
        [
            DailySentimentLabelMetric(
                company_id=company_id, day=date(2026, 3, 13), negative=1, neutral=1, positive=2, total=4
            ),
            DailySentimentLabelMetric(
                company_id=company_id, day=date(2025, 12, 1), negative=5, neutral=0, positive=0, total=5
            ),
        ]
    )
    session.commit()
    service = _service(session)

    overall = service.sentiment_distribution(company_id)
    recent = service.sentiment_distribution(company_id, start=datetime(2026, 1, 1, tzinfo=UTC))

    assert (overall["negative"], overall["neutral"], overall["positive"], overall["total"]) == (6, 1, 2, 9)
    assert overall["negative_pct"] == 66.7
    assert (recent["negative_pct"], recent["neutral_pct"], recent["positive_pct"]) == (25.0, 25.0, 50.0)
    assert service.sentiment_distribution(new_company(session))["total"] == 0
