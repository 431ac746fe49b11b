"""create review and metrics schema

Revision ID: 3c1e7a9b2d40
Revises:
Create Date: 2026-10-19 09:00:00

Purpose:
- tenant tables read by the review engine (company, subscription, team, criterion,
  review_config, review_config_criterion, transcript)
- review and review_criterion_score
- day rollups (daily_review_metric, daily_criterion_metric, daily_team_metric,
  daily_sentiment_label_metric) and dashboard snapshots

Operational notes:
- every rollup table carries a unique key over its bucket; the writer upserts on it
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "3c1e7a9b2d40"
down_revision = None
branch_labels = None
depends_on = None


def _uuid() -> sa.types.TypeEngine:
    return sa.Uuid()


def _ts(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


JSONB = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "company",
        sa.Column("id", _uuid(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _ts("created_at"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "subscription",
        sa.Column("id", _uuid(), nullable=False),
        sa.Column("company_id", _uuid(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default="active"),
        _ts("current_period_start"),
        _ts("current_period_end"),
        sa.Column("allowed_reviews", sa.Integer(), nullable=False, server_default="0"),
        _ts("created_at"),
        _ts("updated_at"),
        sa.ForeignKeyConstraint(["company_id"], ["company.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_subscription_company_id", "subscription", ["company_id"])

    op.create_table(
        "team",
        sa.Column("id", _uuid(), nullable=False),
        sa.Column("company_id", _uuid(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.ForeignKeyConstraint(["company_id"], ["company.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_team_company_id", "team", ["company_id"])

    op.create_table(
        "criterion",
        sa.Column("id", _uuid(), nullable=False),
        sa.Column("company_id", _uuid(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.ForeignKeyConstraint(["company_id"], ["company.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_criterion_company_id", "criterion", ["company_id"])

    op.create_table(
        "review_config",
        sa.Column("id", _uuid(), nullable=False),
        sa.Column("company_id", _uuid(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("model_settings", JSONB, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _ts("created_at"),
        _ts("updated_at"),
        sa.ForeignKeyConstraint(["company_id"], ["company.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_review_config_company_id", "review_config", ["company_id"])

    op.create_table(
        "review_config_criterion",
        sa.Column("id", _uuid(), nullable=False),
        sa.Column("review_config_id", _uuid(), nullable=False),
        sa.Column("criterion_id", _uuid(), nullable=False),
        sa.Column("weight", sa.Float(), nullable=False, server_default="1"),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.ForeignKeyConstraint(["review_config_id"], ["review_config.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["criterion_id"], ["criterion.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("review_config_id", "criterion_id", name="uq_review_config_criterion"),
    )

    op.create_table(
        "transcript",
        sa.Column("id", _uuid(), nullable=False),
        sa.Column("company_id", _uuid(), nullable=False),
        sa.Column("employee_id", _uuid(), nullable=True),
        sa.Column("team_id", _uuid(), nullable=True),
        sa.Column("contact_id", _uuid(), nullable=True),
        sa.Column("external_company_id", _uuid(), nullable=True),
        sa.Column("content", sa.Text(), nullable=False, server_default=""),
        sa.Column("review_status", sa.Text(), nullable=False, server_default="NOT_STARTED"),
        sa.Column("is_reviewed", sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts("created_at"),
        _ts("updated_at"),
        sa.ForeignKeyConstraint(["company_id"], ["company.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_transcript_company_id", "transcript", ["company_id"])

    op.create_table(
        "review",
        sa.Column("id", _uuid(), nullable=False),
        sa.Column("company_id", _uuid(), nullable=False),
        sa.Column("transcript_id", _uuid(), nullable=False),
        sa.Column("type", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default="NOT_STARTED"),
        sa.Column("review_config", JSONB, nullable=True),
        sa.Column("subject", sa.Text(), nullable=True),
        sa.Column("overall_score", sa.Float(), nullable=True),
        sa.Column("overall_feedback", sa.Text(), nullable=True),
        sa.Column("sentiment_score", sa.Float(), nullable=True),
        sa.Column("sentiment_label", sa.Text(), nullable=True),
        sa.Column("sentiment_analysis", sa.Text(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("employee_id", _uuid(), nullable=True),
        sa.Column("team_id", _uuid(), nullable=True),
        sa.Column("contact_id", _uuid(), nullable=True),
        sa.Column("external_company_id", _uuid(), nullable=True),
        sa.Column("attempt", sa.Integer(), nullable=False, server_default="1"),
        _ts("started_at", nullable=True),
        _ts("finished_at", nullable=True),
        _ts("deleted_at", nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
        sa.CheckConstraint("type in ('performance', 'sentiment', 'both')", name="ck_review_type"),
        sa.CheckConstraint(
            "status in ('NOT_STARTED', 'STARTED', 'REVIEWED', 'ERROR')",
            name="ck_review_status",
        ),
        sa.CheckConstraint(
            "sentiment_label is null or sentiment_label in ('negative', 'neutral', 'positive')",
            name="ck_review_sentiment_label",
        ),
        sa.ForeignKeyConstraint(["company_id"], ["company.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["transcript_id"], ["transcript.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_review_transcript_id", "review", ["transcript_id"])
    op.create_index("ix_review_company_status_created", "review", ["company_id", "status", "created_at"])

    op.create_table(
        "review_criterion_score",
        sa.Column("id", _uuid(), nullable=False),
        sa.Column("review_id", _uuid(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("criterion_name", sa.Text(), nullable=False),
        sa.Column("score", sa.Float(), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("quote", sa.Text(), nullable=True),
        sa.Column("feedback", sa.Text(), nullable=True),
        sa.CheckConstraint("score >= 1 and score <= 10", name="ck_review_criterion_score_range"),
        sa.ForeignKeyConstraint(["review_id"], ["review.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_review_criterion_score_review_id", "review_criterion_score", ["review_id"])

    op.create_table(
        "daily_review_metric",
        sa.Column("id", _uuid(), nullable=False),
        sa.Column("company_id", _uuid(), nullable=False),
        sa.Column("scope_type", sa.Text(), nullable=False, server_default="company"),
        sa.Column("scope_id", _uuid(), nullable=False),
        sa.Column("day", sa.Date(), nullable=False),
        sa.Column("avg_overall", sa.Float(), nullable=True),
        sa.Column("avg_sentiment", sa.Float(), nullable=True),
        sa.Column("review_count", sa.Integer(), nullable=False, server_default="0"),
        sa.CheckConstraint(
            "scope_type in ('company', 'employee', 'team', 'contact', 'external_company')",
            name="ck_daily_review_metric_scope_type",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "company_id", "scope_type", "scope_id", "day", name="uq_daily_review_metric_scope_day"
        ),
    )

    op.create_table(
        "daily_criterion_metric",
        sa.Column("id", _uuid(), nullable=False),
        sa.Column("company_id", _uuid(), nullable=False),
        sa.Column("day", sa.Date(), nullable=False),
        sa.Column("criterion_name", sa.Text(), nullable=False),
        sa.Column("avg_score", sa.Float(), nullable=False),
        sa.Column("review_count", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "company_id", "day", "criterion_name", name="uq_daily_criterion_metric_day_name"
        ),
    )

    op.create_table(
        "daily_team_metric",
        sa.Column("id", _uuid(), nullable=False),
        sa.Column("company_id", _uuid(), nullable=False),
        sa.Column("team_id", _uuid(), nullable=False),
        sa.Column("day", sa.Date(), nullable=False),
        sa.Column("avg_overall", sa.Float(), nullable=True),
        sa.Column("avg_sentiment", sa.Float(), nullable=True),
        sa.Column("review_count", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("company_id", "day", "team_id", name="uq_daily_team_metric_day_team"),
    )

    op.create_table(
        "daily_sentiment_label_metric",
        sa.Column("id", _uuid(), nullable=False),
        sa.Column("company_id", _uuid(), nullable=False),
        sa.Column("day", sa.Date(), nullable=False),
        sa.Column("negative", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("neutral", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("positive", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("company_id", "day", name="uq_daily_sentiment_label_metric_day"),
    )

    op.create_table(
        "dashboard_metric",
        sa.Column("id", _uuid(), nullable=False),
        sa.Column("company_id", _uuid(), nullable=False),
        sa.Column("avg_overall", sa.Float(), nullable=True),
        sa.Column("avg_sentiment", sa.Float(), nullable=True),
        sa.Column("performance_review_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("sentiment_review_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_review_count", sa.Integer(), nullable=False, server_default="0"),
        _ts("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("company_id", name="uq_dashboard_metric_company_id"),
    )

    op.create_table(
        "dashboard_criterion_metric",
        sa.Column("id", _uuid(), nullable=False),
        sa.Column("company_id", _uuid(), nullable=False),
        sa.Column("criterion_name", sa.Text(), nullable=False),
        sa.Column("avg_score", sa.Float(), nullable=True),
        sa.Column("review_count", sa.Integer(), nullable=False, server_default="0"),
        _ts("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "company_id", "criterion_name", name="uq_dashboard_criterion_metric_name"
        ),
    )


def downgrade() -> None:
    op.drop_table("dashboard_criterion_metric")
    op.drop_table("dashboard_metric")
    op.drop_table("daily_sentiment_label_metric")
    op.drop_table("daily_team_metric")
    op.drop_table("daily_criterion_metric")
    op.drop_table("daily_review_metric")
    op.drop_index("ix_review_criterion_score_review_id", table_name="review_criterion_score")
    op.drop_table("review_criterion_score")
    op.drop_index("ix_review_company_status_created", table_name="review")
    op.drop_index("ix_review_transcript_id", table_name="review")
    op.drop_table("review")
    op.drop_index("ix_transcript_company_id", table_name="transcript")
    op.drop_table("transcript")
    op.drop_table("review_config_criterion")
    op.drop_index("ix_review_config_company_id", table_name="review_config")
    op.drop_table("review_config")
    op.drop_index("ix_criterion_company_id", table_name="criterion")
    op.drop_table("criterion")
    op.drop_index("ix_team_company_id", table_name="team")
    op.drop_table("team")
    op.drop_index("ix_subscription_company_id", table_name="subscription")
    op.drop_table("subscription")
    op.drop_table("company")
