from __future__ import annotations

from datetime import UTC, date, datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Company(Base):
    __tablename__ = "company"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class Subscription(Base):
    """Billing-period allowance mirrored from the billing provider."""

    __tablename__ = "subscription"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("company.id", ondelete="CASCADE"),
        index=True,
    )
    status: Mapped[str] = mapped_column(Text, default="active")
    current_period_start: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    current_period_end: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    allowed_reviews: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )


class Team(Base):
    __tablename__ = "team"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("company.id", ondelete="CASCADE"),
        index=True,
    )
    name: Mapped[str] = mapped_column(Text)


class Criterion(Base):
    __tablename__ = "criterion"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("company.id", ondelete="CASCADE"),
        index=True,
    )
    title: Mapped[str] = mapped_column(Text)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class ReviewConfig(Base):
    __tablename__ = "review_config"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("company.id", ondelete="CASCADE"),
        index=True,
    )
    name: Mapped[str] = mapped_column(Text)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    model_settings: Mapped[dict] = mapped_column(JSONType, default=dict)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    criteria: Mapped[list["ReviewConfigCriterion"]] = relationship(
        back_populates="review_config",
        cascade="all, delete-orphan",
        order_by="ReviewConfigCriterion.position",
    )


class ReviewConfigCriterion(Base):
    __tablename__ = "review_config_criterion"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    review_config_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("review_config.id", ondelete="CASCADE"),
    )
    criterion_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("criterion.id", ondelete="CASCADE"),
    )
    weight: Mapped[float] = mapped_column(Float, default=1.0)
    position: Mapped[int] = mapped_column(Integer, default=0)

    review_config: Mapped["ReviewConfig"] = relationship(back_populates="criteria")

    __table_args__ = (
        UniqueConstraint("review_config_id", "criterion_id", name="uq_review_config_criterion"),
    )


class Transcript(Base):
    __tablename__ = "transcript"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("company.id", ondelete="CASCADE"),
        index=True,
    )
    employee_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    team_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    contact_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    external_company_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    content: Mapped[str] = mapped_column(Text, default="")
    review_status: Mapped[str] = mapped_column(Text, default="NOT_STARTED")
    is_reviewed: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )


class Review(Base):
    __tablename__ = "review"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("company.id", ondelete="CASCADE"),
    )
    transcript_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("transcript.id", ondelete="CASCADE"),
        index=True,
    )
    type: Mapped[str] = mapped_column(Text)
    status: Mapped[str] = mapped_column(Text, default="NOT_STARTED")
    review_config: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    subject: Mapped[str | None] = mapped_column(Text, nullable=True)
    overall_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    overall_feedback: Mapped[str | None] = mapped_column(Text, nullable=True)
    sentiment_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    sentiment_label: Mapped[str | None] = mapped_column(Text, nullable=True)
    sentiment_analysis: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    employee_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    team_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    contact_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    external_company_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    attempt: Mapped[int] = mapped_column(Integer, default=1)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    criteria_scores: Mapped[list["ReviewCriterionScore"]] = relationship(
        back_populates="review",
        cascade="all, delete-orphan",
        order_by="ReviewCriterionScore.position",
    )

    __table_args__ = (
        CheckConstraint("type in ('performance', 'sentiment', 'both')", name="ck_review_type"),
        CheckConstraint(
            "status in ('NOT_STARTED', 'STARTED', 'REVIEWED', 'ERROR')",
            name="ck_review_status",
        ),
        CheckConstraint(
            "sentiment_label is null or sentiment_label in ('negative', 'neutral', 'positive')",
            name="ck_review_sentiment_label",
        ),
        Index("ix_review_company_status_created", "company_id", "status", "created_at"),
    )


class ReviewCriterionScore(Base):
    __tablename__ = "review_criterion_score"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    review_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("review.id", ondelete="CASCADE"),
        index=True,
    )
    position: Mapped[int] = mapped_column(Integer, default=0)
    criterion_name: Mapped[str] = mapped_column(Text)
    score: Mapped[float] = mapped_column(Float)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    quote: Mapped[str | None] = mapped_column(Text, nullable=True)
    feedback: Mapped[str | None] = mapped_column(Text, nullable=True)

    review: Mapped["Review"] = relationship(back_populates="criteria_scores")

    __table_args__ = (
        CheckConstraint("score >= 1 and score <= 10", name="ck_review_criterion_score_range"),
    )


class DailyReviewMetric(Base):
    __tablename__ = "daily_review_metric"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(Uuid)
    scope_type: Mapped[str] = mapped_column(Text, default="company")
    scope_id: Mapped[UUID] = mapped_column(Uuid)
    day: Mapped[date] = mapped_column(Date)
    avg_overall: Mapped[float | None] = mapped_column(Float, nullable=True)
    avg_sentiment: Mapped[float | None] = mapped_column(Float, nullable=True)
    review_count: Mapped[int] = mapped_column(Integer, default=0)

    __table_args__ = (
        CheckConstraint(
            "scope_type in ('company', 'employee', 'team', 'contact', 'external_company')",
            name="ck_daily_review_metric_scope_type",
        ),
        UniqueConstraint(
            "company_id", "scope_type", "scope_id", "day", name="uq_daily_review_metric_scope_day"
        ),
    )


class DailyCriterionMetric(Base):
    __tablename__ = "daily_criterion_metric"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(Uuid)
    day: Mapped[date] = mapped_column(Date)
    criterion_name: Mapped[str] = mapped_column(Text)
    avg_score: Mapped[float] = mapped_column(Float)
    review_count: Mapped[int] = mapped_column(Integer, default=0)

    __table_args__ = (
        UniqueConstraint(
            "company_id", "day", "criterion_name", name="uq_daily_criterion_metric_day_name"
        ),
    )


class DailyTeamMetric(Base):
    __tablename__ = "daily_team_metric"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(Uuid)
    team_id: Mapped[UUID] = mapped_column(Uuid)
    day: Mapped[date] = mapped_column(Date)
    avg_overall: Mapped[float | None] = mapped_column(Float, nullable=True)
    avg_sentiment: Mapped[float | None] = mapped_column(Float, nullable=True)
    review_count: Mapped[int] = mapped_column(Integer, default=0)

    __table_args__ = (
        UniqueConstraint("company_id", "day", "team_id", name="uq_daily_team_metric_day_team"),
    )


class DailySentimentLabelMetric(Base):
    __tablename__ = "daily_sentiment_label_metric"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(Uuid)
    day: Mapped[date] = mapped_column(Date)
    negative: Mapped[int] = mapped_column(Integer, default=0)
    neutral: Mapped[int] = mapped_column(Integer, default=0)
    positive: Mapped[int] = mapped_column(Integer, default=0)
    total: Mapped[int] = mapped_column(Integer, default=0)

    __table_args__ = (
        UniqueConstraint("company_id", "day", name="uq_daily_sentiment_label_metric_day"),
    )


class DashboardMetric(Base):
    __tablename__ = "dashboard_metric"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(Uuid, unique=True)
    avg_overall: Mapped[float | None] = mapped_column(Float, nullable=True)
    avg_sentiment: Mapped[float | None] = mapped_column(Float, nullable=True)
    performance_review_count: Mapped[int] = mapped_column(Integer, default=0)
    sentiment_review_count: Mapped[int] = mapped_column(Integer, default=0)
    total_review_count: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )


class DashboardCriterionMetric(Base):
    __tablename__ = "dashboard_criterion_metric"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(Uuid)
    criterion_name: Mapped[str] = mapped_column(Text)
    avg_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    review_count: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        UniqueConstraint(
            "company_id", "criterion_name", name="uq_dashboard_criterion_metric_name"
        ),
    )
