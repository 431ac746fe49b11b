from __future__ import annotations

from datetime import timedelta
from uuid import UUID

from conftest import NOW, add_review, new_company, seed_tenant
from db.models import DashboardCriterionMetric, DashboardMetric
from metrics.dashboard import DashboardSnapshotJob, compute_snapshot, dashboard_overview
from reviews.states import BOTH, ERROR, NOT_STARTED, SENTIMENT
from reviews.stores import SqlSubscriptionProvider


def _seed_reviews(session, company_id: UUID) -> None:  # type: ignore[no-untyped-def]
    add_review(session, company_id, created_at=NOW, overall_score=6.0, criteria=(("Empathy", 6.0), ("Clarity", 8.0)))
    add_review(
        session,
        company_id,
        created_at=NOW - timedelta(days=40),
        review_type=BOTH,
        overall_score=8.0,
        sentiment_score=9.0,
        sentiment_label="positive",
        criteria=(("Empathy", 10.0),),
    )
    add_review(session, company_id, created_at=NOW, review_type=SENTIMENT, sentiment_score=3.0, sentiment_label="negative")
    add_review(session, company_id, created_at=NOW, overall_score=1.0, status=ERROR)
    add_review(session, company_id, created_at=NOW, overall_score=1.0, deleted_at=NOW)


def test_compute_snapshot_totals_all_time_reviews(session) -> None:
    company_id = new_company(session)
    _seed_reviews(session, company_id)

    compute_snapshot(session, company_id)
    session.commit()

    metric = session.query(DashboardMetric).filter_by(company_id=company_id).one()
    assert metric.avg_overall == 7.0
    assert metric.avg_sentiment == 6.0
    assert (metric.performance_review_count, metric.sentiment_review_count, metric.total_review_count) == (2, 2, 3)
    criteria = {
        row.criterion_name: (row.avg_score, row.review_count)
        for row in session.query(DashboardCriterionMetric).filter_by(company_id=company_id)
    }
    assert criteria == {"Empathy": (8.0, 2), "Clarity": (8.0, 1)}


def test_compute_snapshot_overwrites_previous_rows(session) -> None:
    company_id = new_company(session)
    review = add_review(session, company_id, created_at=NOW, overall_score=5.0, criteria=(("Clarity", 5.0),))
    compute_snapshot(session, company_id)
    session.commit()

    review.deleted_at = NOW
    session.commit()
    compute_snapshot(session, company_id)
    session.commit()
    session.expire_all()

    metric = session.query(DashboardMetric).filter_by(company_id=company_id).one()
    assert metric.avg_overall is None
    assert metric.total_review_count == 0
    assert session.query(DashboardCriterionMetric).filter_by(company_id=company_id).count() == 0


def test_refresh_all_covers_active_companies_only(session, session_factory) -> None:
    active_ids = [new_company(session) for _ in range(3)]
    inactive_id = new_company(session, is_active=False)
    for company_id in active_ids + [inactive_id]:
        add_review(session, company_id, created_at=NOW, overall_score=7.0)

    result = DashboardSnapshotJob(session_factory, concurrency=1).refresh_all()

    assert sorted(result["refreshed"]) == sorted(active_ids)
    assert result["failed"] == []
    session.expire_all()
    assert session.query(DashboardMetric).count() == 3
    assert session.query(DashboardMetric).filter_by(company_id=inactive_id).count() == 0


def test_refresh_all_isolates_tenant_failures(session, session_factory) -> None:
    good_id = new_company(session)
    bad_id = new_company(session)
    add_review(session, good_id, created_at=NOW, overall_score=9.0)

    class _Job(DashboardSnapshotJob):
        def refresh_company(self, company_id: UUID) -> None:
            if company_id == bad_id:
                raise RuntimeError("tenant query timed out")
            super().refresh_company(company_id)

    result = _Job(session_factory, concurrency=1).refresh_all()

    assert result == {"refreshed": [good_id], "failed": [bad_id]}
    session.expire_all()
    assert session.query(DashboardMetric).filter_by(company_id=good_id).one().avg_overall == 9.0


def test_concurrency_defaults_from_env(monkeypatch, session_factory) -> None:
    monkeypatch.setenv("DASHBOARD_CONCURRENCY", "3")
    assert DashboardSnapshotJob(session_factory)._concurrency == 3
    assert DashboardSnapshotJob(session_factory, concurrency=8)._concurrency == 8


def test_dashboard_overview_reports_quota_usage(session) -> None:
    tenant = seed_tenant(session, allowed_reviews=25)
    add_review(session, tenant.company_id, created_at=NOW, overall_score=6.0, criteria=(("Empathy", 6.0),))
    add_review(session, tenant.company_id, created_at=NOW, status=NOT_STARTED)
    add_review(session, tenant.company_id, created_at=NOW, status=ERROR)
    compute_snapshot(session, tenant.company_id)
    session.commit()

    overview = dashboard_overview(session, tenant.company_id, SqlSubscriptionProvider(session))

    assert overview["avg_overall"] == 6.0
    assert overview["total_review_count"] == 1
    assert overview["criteria"] == [{"criterion_name": "Empathy", "avg_score": 6.0, "review_count": 1}]
    assert (overview["reviews_used"], overview["reviews_allowed"]) == (2, 25)


def test_dashboard_overview_without_snapshot(session) -> None:
    company_id = new_company(session)

    overview = dashboard_overview(session, company_id)

    assert overview["avg_overall"] is None
    assert overview["total_review_count"] == 0
    assert overview["criteria"] == []
    assert overview["reviews_used"] is None
