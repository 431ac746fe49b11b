from __future__ import annotations

from datetime import UTC, datetime, timedelta
import os
from types import SimpleNamespace
from uuid import UUID, uuid4

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite:///./.pytest-reviewops.db")

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from db import models  # noqa: E402
from db.base import Base  # noqa: E402
from reviews.contracts import CriterionScore, ScoreResult  # noqa: E402
from reviews.states import PERFORMANCE, REVIEWED  # noqa: E402

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=UTC)


class FakeScorer:
    def __init__(self, result: ScoreResult | None = None, exc: Exception | None = None) -> None:
        self.result = result or ScoreResult(
            subject="Billing question",
            overall_score=8.0,
            overall_feedback="Solid call",
            criteria_scores=(CriterionScore("Empathy", 8.0, "warm", "I understand", "keep it up"),),
            sentiment_score=7.0,
            sentiment_label="positive",
            sentiment_analysis="Customer left happy",
        )
        self.exc = exc
        self.calls: list[dict] = []

    def score(self, config, transcript, criteria, review_type):  # type: ignore[no-untyped-def]
        self.calls.append(
            {
                "config": config,
                "transcript": transcript,
                "criteria": list(criteria),
                "review_type": review_type,
            }
        )
        if self.exc is not None:
            raise self.exc
        return self.result


class FakeQueue:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.submitted: list[UUID] = []

    def submit(self, review_id: UUID) -> str:
        if self.fail:
            raise ConnectionError("redis unavailable")
        self.submitted.append(review_id)
        return f"rq-{len(self.submitted)}"


@pytest.fixture()
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'reviewops.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture()
def session(session_factory):
    session = session_factory()
    yield session
    session.close()


def seed_tenant(
    session,
    *,
    allowed_reviews: int = 10,
    now: datetime = NOW,
    criteria: tuple[str, ...] = ("Empathy", "Clarity"),
    team_id: UUID | None = None,
    contact_id: UUID | None = None,
    content: str = "Agent: Hello, how can I help? Customer: My invoice is wrong, please fix it.",
) -> SimpleNamespace:
    company = models.Company(name="Acme", is_active=True, created_at=now - timedelta(days=90))
    session.add(company)
    session.flush()

    subscription = models.Subscription(
        company_id=company.id,
        status="active",
        current_period_start=now - timedelta(days=1),
        current_period_end=now + timedelta(days=29),
        allowed_reviews=allowed_reviews,
    )
    session.add(subscription)

    rows = [models.Criterion(company_id=company.id, title=title, description=f"{title} rubric") for title in criteria]
    session.add_all(rows)
    session.flush()

    config = models.ReviewConfig(
        company_id=company.id,
        name="Support QA",
        model_settings={"model": "gpt-4o-mini", "temperature": 0.2},
        is_active=True,
    )
    config.criteria = [
        models.ReviewConfigCriterion(criterion_id=row.id, weight=1.0 + idx, position=idx)
        for idx, row in enumerate(rows)
    ]
    session.add(config)

    transcript = models.Transcript(
        company_id=company.id,
        employee_id=uuid4(),
        team_id=team_id,
        contact_id=contact_id,
        external_company_id=None,
        content=content,
    )
    session.add(transcript)
    session.commit()
    return SimpleNamespace(
        company_id=company.id,
        subscription=subscription,
        criteria=rows,
        config_id=config.id,
        transcript_id=transcript.id,
        employee_id=transcript.employee_id,
    )


def add_review(
    session,
    company_id: UUID,
    *,
    created_at: datetime,
    review_type: str = PERFORMANCE,
    status: str = REVIEWED,
    overall_score: float | None = None,
    sentiment_score: float | None = None,
    sentiment_label: str | None = None,
    criteria: tuple[tuple[str, float], ...] = (),
    team_id: UUID | None = None,
    contact_id: UUID | None = None,
    transcript_id: UUID | None = None,
    deleted_at: datetime | None = None,
) -> models.Review:
    if transcript_id is None:
        transcript = models.Transcript(company_id=company_id, content="x")
        session.add(transcript)
        session.flush()
        transcript_id = transcript.id
    review = models.Review(
        company_id=company_id,
        transcript_id=transcript_id,
        type=review_type,
        status=status,
        overall_score=overall_score,
        sentiment_score=sentiment_score,
        sentiment_label=sentiment_label,
        team_id=team_id,
        contact_id=contact_id,
        created_at=created_at,
        deleted_at=deleted_at,
    )
    review.criteria_scores = [
        models.ReviewCriterionScore(position=idx, criterion_name=name, score=score)
        for idx, (name, score) in enumerate(criteria)
    ]
    session.add(review)
    session.commit()
    return review


def new_company(session, *, is_active: bool = True) -> UUID:
    company = models.Company(name=f"company-{uuid4().hex[:6]}", is_active=is_active, created_at=NOW)
    session.add(company)
    session.commit()
    return company.id
