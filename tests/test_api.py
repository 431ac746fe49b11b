from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from uuid import UUID, uuid4

from fastapi import HTTPException
import pytest

import api.main as api_main
from conftest import NOW, FakeQueue, add_review, new_company, seed_tenant
from db.models import DailyReviewMetric, DailyTeamMetric, ReviewConfig
from reviews.events import ReviewEventBus
from reviews.states import ERROR, NOT_STARTED, REVIEWED, SENTIMENT


@pytest.fixture()
def queue(monkeypatch, session_factory) -> FakeQueue:
    fake = FakeQueue()
    monkeypatch.setattr(api_main, "SessionLocal", session_factory)
    monkeypatch.setattr(api_main, "_review_queue", lambda: fake)
    monkeypatch.setattr(api_main, "_event_bus", ReviewEventBus)
    return fake


def _create(company_id, transcript_id, review_type="performance", config_id=None) -> dict:  # type: ignore[no-untyped-def]
    request = api_main.ReviewCreateRequest(
        transcript_id=transcript_id,
        type=review_type,
        review_config_id=config_id,
    )
    return api_main.create_review(company_id, request)


def test_create_and_fetch_review(queue, session) -> None:
    tenant = seed_tenant(session, now=datetime.now(UTC))

    created = _create(tenant.company_id, tenant.transcript_id, config_id=tenant.config_id)

    assert created["status"] == NOT_STARTED
    assert created["employee_id"] == str(tenant.employee_id)
    assert [str(review_id) for review_id in queue.submitted] == [created["id"]]
    fetched = api_main.get_review(tenant.company_id, UUID(created["id"]))
    assert fetched["id"] == created["id"]


def test_create_review_over_quota_returns_402(queue, session) -> None:
    tenant = seed_tenant(session, allowed_reviews=1, now=datetime.now(UTC))
    _create(tenant.company_id, tenant.transcript_id, config_id=tenant.config_id)

    with pytest.raises(HTTPException) as excinfo:
        _create(tenant.company_id, tenant.transcript_id, config_id=tenant.config_id)

    assert excinfo.value.status_code == 402
    assert excinfo.value.detail == "review_quota_exceeded"
    assert len(queue.submitted) == 1


def test_create_review_error_mapping(queue, session) -> None:
    tenant = seed_tenant(session, now=datetime.now(UTC))

    with pytest.raises(HTTPException) as missing_config:
        _create(tenant.company_id, tenant.transcript_id)
    assert missing_config.value.status_code == 400

    with pytest.raises(HTTPException) as unknown_transcript:
        _create(tenant.company_id, uuid4(), config_id=tenant.config_id)
    assert (unknown_transcript.value.status_code, unknown_transcript.value.detail) == (404, "not_found")

    session.get(ReviewConfig, tenant.config_id).is_active = False
    session.commit()
    with pytest.raises(HTTPException) as inactive:
        _create(tenant.company_id, tenant.transcript_id, config_id=tenant.config_id)
    assert (inactive.value.status_code, inactive.value.detail) == (403, "review_config_inactive")

    session.delete(tenant.subscription)
    session.commit()
    with pytest.raises(HTTPException) as no_subscription:
        _create(tenant.company_id, tenant.transcript_id, review_type="sentiment")
    assert (no_subscription.value.status_code, no_subscription.value.detail) == (402, "no_active_subscription")


def test_retry_requires_error_state(queue, session) -> None:
    tenant = seed_tenant(session, now=datetime.now(UTC))
    review = add_review(session, tenant.company_id, created_at=datetime.now(UTC), status=REVIEWED, overall_score=7.0)

    with pytest.raises(HTTPException) as excinfo:
        api_main.retry_review(tenant.company_id, review.id)
    assert (excinfo.value.status_code, excinfo.value.detail) == (409, "invalid_review_transition")

    review.status = ERROR
    session.commit()
    retried = api_main.retry_review(tenant.company_id, review.id)
    assert retried["status"] == NOT_STARTED
    assert retried["attempt"] == 2


def test_correct_and_delete_review(queue, session) -> None:
    company_id = new_company(session)
    review = add_review(session, company_id, created_at=NOW, overall_score=5.0, criteria=(("Empathy", 5.0),))

    corrected = api_main.correct_review(
        company_id,
        review.id,
        api_main.ReviewCorrectRequest(
            overall_score=9.0,
            criteria_scores=[api_main.CriterionScoreInput(criterion_name="Empathy", score=9)],
        ),
    )
    assert corrected["overall_score"] == 9.0
    assert corrected["criteria_scores"][0]["score"] == 9.0

    assert api_main.delete_review(company_id, review.id) == {"id": str(review.id), "deleted": True}
    with pytest.raises(HTTPException) as excinfo:
        api_main.get_review(company_id, review.id)
    assert excinfo.value.status_code == 404


def test_list_reviews_paginates(queue, session) -> None:
    company_id = new_company(session)
    for hours in range(3):
        add_review(session, company_id, created_at=NOW - timedelta(hours=hours), overall_score=6.0)

    page = api_main.list_reviews(
        company_id,
        transcript_id=None,
        type=None,
        employee_id=None,
        external_company_id=None,
        contact_id=None,
        created_from=None,
        created_to=None,
        page=1,
        limit=2,
    )

    assert page["total"] == 3
    assert len(page["items"]) == 2


def test_metrics_series_reads_rollups(queue, session) -> None:
    company_id = new_company(session)
    session.add(
        DailyReviewMetric(
            company_id=company_id,
            scope_type="company",
            scope_id=company_id,
            day=date(2026, 3, 10),
            avg_overall=6.5,
            avg_sentiment=None,
            review_count=2,
        )
    )
    session.commit()

    body = api_main.metrics_series(
        company_id,
        filter="overall",
        period="month",
        scope_type="company",
        scope_id=None,
        date_from=NOW - timedelta(days=10),
        date_to=NOW,
    )

    assert body["points"] == [
        {"day": "2026-03-10", "avg_overall": 6.5, "avg_sentiment": None, "review_count": 2, "realtime": False}
    ]


def test_metrics_series_rejects_bad_scopes(queue, session) -> None:
    company_id = new_company(session)

    with pytest.raises(HTTPException) as bad_type:
        api_main.metrics_series(
            company_id, filter="overall", period="month", scope_type="planet",
            scope_id=None, date_from=None, date_to=None,
        )
    assert (bad_type.value.status_code, bad_type.value.detail) == (400, "invalid_scope_type")

    with pytest.raises(HTTPException) as criterion_on_team:
        api_main.metrics_series(
            company_id, filter="Empathy", period="month", scope_type="team",
            scope_id=uuid4(), date_from=None, date_to=None,
        )
    assert criterion_on_team.value.status_code == 400


def test_dashboard_endpoint_and_refresh(queue, monkeypatch, session) -> None:
    monkeypatch.setenv("DASHBOARD_CONCURRENCY", "1")
    company_id = new_company(session)
    add_review(session, company_id, created_at=NOW, overall_score=8.0)

    result = api_main.ops_dashboard_refresh(api_main.DashboardRefreshRequest(company_id=company_id))
    assert result == {"refreshed": [str(company_id)], "failed": []}

    overview = api_main.company_dashboard(company_id)
    assert overview["avg_overall"] == 8.0
    assert overview["total_review_count"] == 1


def test_operator_guard(monkeypatch) -> None:
    monkeypatch.setenv("OPERATOR_TOKEN", "secret")
    api_main._require_operator("secret")
    with pytest.raises(HTTPException) as wrong:
        api_main._require_operator("nope")
    assert wrong.value.status_code == 401

    monkeypatch.setenv("OPERATOR_TOKEN", "")
    monkeypatch.setenv("ALLOW_OPS_WITHOUT_TOKEN", "0")
    with pytest.raises(HTTPException) as unset:
        api_main._require_operator(None)
    assert unset.value.status_code == 503


def test_correct_review_rejects_performance_fields_on_sentiment_review(queue, session) -> None:
    company_id = new_company(session)
    review = add_review(
        session, company_id, created_at=NOW, review_type=SENTIMENT, sentiment_score=6.0, sentiment_label="neutral"
    )

    with pytest.raises(HTTPException) as excinfo:
        api_main.correct_review(
            company_id, review.id, api_main.ReviewCorrectRequest(overall_score=9.0)
        )

    assert excinfo.value.status_code == 400
    assert "overall_score" in excinfo.value.detail


def test_team_metrics_endpoints(queue, session) -> None:
    company_id = new_company(session)
    team_id = uuid4()
    session.add_all(
        [
            DailyTeamMetric(
                company_id=company_id, team_id=team_id, day=date(2026, 3, 10),
                avg_overall=7.0, avg_sentiment=None, review_count=2,
            ),
            DailyTeamMetric(
                company_id=company_id, team_id=team_id, day=date(2026, 3, 11),
                avg_overall=4.0, avg_sentiment=6.0, review_count=1,
            ),
        ]
    )
    session.commit()

    body = api_main.metrics_team(
        company_id,
        team_id,
        period="month",
        interval="week",
        date_from=datetime(2026, 3, 1, tzinfo=UTC),
        date_to=NOW,
    )
    assert body["team_id"] == str(team_id)
    assert body["points"] == [
        {"period_start": "2026-03-09", "avg_overall": 6.0, "avg_sentiment": 6.0, "review_count": 3}
    ]

    with pytest.raises(HTTPException) as excinfo:
        api_main.metrics_team(
            company_id, team_id, period="month", interval="hour", date_from=None, date_to=None
        )
    assert excinfo.value.status_code == 400

    assert api_main.metrics_team_history(company_id, uuid4(), months=2) == []


def test_sentiment_distribution_endpoint(queue, session) -> None:
    company_id = new_company(session)

    body = api_main.metrics_sentiment_distribution(company_id, date_from=None, date_to=None)

    assert (body["total"], body["positive_pct"]) == (0, 0.0)
