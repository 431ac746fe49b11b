from __future__ import annotations

from datetime import UTC, datetime
import logging
from typing import Callable, Iterable
from uuid import UUID

from sqlalchemy import desc, func, select
from sqlalchemy.orm import Session

from db.models import Criterion, Review, ReviewConfig, ReviewCriterionScore

from .contracts import (
    CriterionScore,
    ReviewQueue,
    SubscriptionProvider,
    TranscriptStore,
)
from .errors import (
    InactiveConfigError,
    InvalidTransitionError,
    MissingCriteriaError,
    NoActiveSubscriptionError,
    NotFoundError,
)
from .events import CREATED, DELETED, UPDATED, ReviewEvent, ReviewEventBus, ReviewSnapshot
from .quota import QuotaGate
from .states import (
    ERROR,
    NOT_STARTED,
    PERFORMANCE_TYPES,
    REVIEW_TYPES,
    REVIEWED,
    SENTIMENT_LABELS,
    SENTIMENT_TYPES,
    ensure_transition,
)
from .stores import SqlSubscriptionProvider, SqlTranscriptStore

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(UTC)


def criterion_rows(scores: Iterable[CriterionScore]) -> list[ReviewCriterionScore]:
    return [
        ReviewCriterionScore(
            position=idx,
            criterion_name=item.criterion_name,
            score=item.score,
            comment=item.comment,
            quote=item.quote,
            feedback=item.feedback,
        )
        for idx, item in enumerate(scores)
    ]


def _check_score(name: str, value: float | None, low: float, high: float) -> None:
    if value is not None and not (low <= value <= high):
        raise ValueError(f"{name} must be between {low:g} and {high:g}")


class ReviewService:
    """Entry points for creating, retrying and correcting reviews.

    Every mutating call commits before returning and publishes a ReviewEvent
    describing the persisted change. Scoring itself never happens here: new
    and retried reviews are handed to the queue in NOT_STARTED and the caller
    re-reads the review to observe progress.
    """

    def __init__(
        self,
        session: Session,
        *,
        queue: ReviewQueue,
        events: ReviewEventBus | None = None,
        subscriptions: SubscriptionProvider | None = None,
        transcripts: TranscriptStore | None = None,
        now: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._session = session
        self._queue = queue
        self._events = events or ReviewEventBus()
        self._subscriptions = subscriptions or SqlSubscriptionProvider(session)
        self._transcripts = transcripts or SqlTranscriptStore(session)
        self._quota = QuotaGate(session)
        self._now = now

    def get_review(self, company_id: UUID, review_id: UUID) -> Review:
        review = self._session.execute(
            select(Review).where(
                Review.id == review_id,
                Review.company_id == company_id,
                Review.deleted_at.is_(None),
            )
        ).scalar_one_or_none()
        if review is None:
            raise NotFoundError(f"Review not found: {review_id}")
        return review

    def list_reviews(
        self,
        company_id: UUID,
        *,
        transcript_id: UUID | None = None,
        review_type: str | None = None,
        employee_id: UUID | None = None,
        external_company_id: UUID | None = None,
        contact_id: UUID | None = None,
        created_from: datetime | None = None,
        created_to: datetime | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[Review], int]:
        page = max(1, page)
        limit = max(1, min(limit, 200))
        filters = [Review.company_id == company_id, Review.deleted_at.is_(None)]
        if transcript_id:
            filters.append(Review.transcript_id == transcript_id)
        if review_type:
            filters.append(Review.type == review_type)
        if employee_id:
            filters.append(Review.employee_id == employee_id)
        if external_company_id:
            filters.append(Review.external_company_id == external_company_id)
        if contact_id:
            filters.append(Review.contact_id == contact_id)
        if created_from:
            filters.append(Review.created_at >= created_from)
        if created_to:
            filters.append(Review.created_at <= created_to)

        total = self._session.execute(
            select(func.count(Review.id)).where(*filters)
        ).scalar_one()
        rows = (
            self._session.execute(
                select(Review)
                .where(*filters)
                .order_by(desc(Review.created_at))
                .limit(limit)
                .offset((page - 1) * limit)
            )
            .scalars()
            .all()
        )
        return list(rows), int(total)

    def create_review(
        self,
        company_id: UUID,
        transcript_id: UUID,
        review_type: str,
        *,
        review_config_id: UUID | None = None,
        criteria_weights: dict[str, float] | None = None,
    ) -> Review:
        if review_type not in REVIEW_TYPES:
            raise ValueError(f"Unsupported review type: {review_type}")

        transcript = self._transcripts.get(company_id, transcript_id)
        if transcript is None:
            raise NotFoundError(f"Transcript not found: {transcript_id}")

        config_snapshot = None
        if review_config_id is not None or review_type in PERFORMANCE_TYPES:
            if review_config_id is None:
                raise ValueError("review_config_id is required for performance reviews")
            config_snapshot = self._snapshot_config(company_id, review_config_id, criteria_weights)

        self._admit(company_id)

        review = Review(
            company_id=company_id,
            transcript_id=transcript.id,
            type=review_type,
            status=NOT_STARTED,
            review_config=config_snapshot,
            employee_id=transcript.employee_id,
            team_id=transcript.team_id,
            contact_id=transcript.contact_id,
            external_company_id=transcript.external_company_id,
            created_at=self._now(),
        )
        self._session.add(review)
        self._session.commit()
        self._session.refresh(review)
        logger.info(
            "review created review_id=%s company_id=%s type=%s",
            review.id,
            company_id,
            review_type,
        )
        self._events.publish(ReviewEvent(CREATED, None, ReviewSnapshot.of(review)))
        self._submit(review)
        return review

    def retry_review(self, company_id: UUID, review_id: UUID) -> Review:
        review = self.get_review(company_id, review_id)
        if review.status != ERROR:
            raise InvalidTransitionError(review.status, NOT_STARTED)

        self._admit(company_id)

        before = ReviewSnapshot.of(review)
        ensure_transition(review.status, NOT_STARTED)
        review.status = NOT_STARTED
        review.error_message = None
        review.subject = None
        review.overall_score = None
        review.overall_feedback = None
        review.sentiment_score = None
        review.sentiment_label = None
        review.sentiment_analysis = None
        review.criteria_scores = []
        review.started_at = None
        review.finished_at = None
        review.attempt = (review.attempt or 1) + 1
        self._session.add(review)
        self._session.commit()
        self._session.refresh(review)
        logger.info("review retry queued review_id=%s attempt=%s", review.id, review.attempt)
        self._events.publish(ReviewEvent(UPDATED, before, ReviewSnapshot.of(review)))
        self._submit(review)
        return review

    def correct_review(
        self,
        company_id: UUID,
        review_id: UUID,
        *,
        overall_score: float | None = None,
        overall_feedback: str | None = None,
        sentiment_score: float | None = None,
        sentiment_label: str | None = None,
        criteria_scores: list[CriterionScore] | None = None,
    ) -> Review:
        review = self.get_review(company_id, review_id)
        if review.status != REVIEWED:
            raise InvalidTransitionError(review.status, REVIEWED)
        _check_score("overall_score", overall_score, 0, 10)
        _check_score("sentiment_score", sentiment_score, 0, 10)
        if sentiment_label is not None and sentiment_label not in SENTIMENT_LABELS:
            raise ValueError(f"Unsupported sentiment label: {sentiment_label}")
        for item in criteria_scores or []:
            _check_score(f"score for {item.criterion_name}", item.score, 1, 10)
        performance_fields = [
            name
            for name, value in (
                ("overall_score", overall_score),
                ("overall_feedback", overall_feedback),
                ("criteria_scores", criteria_scores),
            )
            if value is not None
        ]
        if performance_fields and review.type not in PERFORMANCE_TYPES:
            raise ValueError(f"{review.type} reviews do not take {', '.join(performance_fields)}")
        sentiment_fields = [
            name
            for name, value in (("sentiment_score", sentiment_score), ("sentiment_label", sentiment_label))
            if value is not None
        ]
        if sentiment_fields and review.type not in SENTIMENT_TYPES:
            raise ValueError(f"{review.type} reviews do not take {', '.join(sentiment_fields)}")

        before = ReviewSnapshot.of(review)
        if overall_score is not None:
            review.overall_score = overall_score
        if overall_feedback is not None:
            review.overall_feedback = overall_feedback
        if sentiment_score is not None:
            review.sentiment_score = sentiment_score
        if sentiment_label is not None:
            review.sentiment_label = sentiment_label
        if criteria_scores is not None:
            review.criteria_scores = criterion_rows(criteria_scores)
        self._session.add(review)
        self._session.commit()
        self._session.refresh(review)
        self._events.publish(ReviewEvent(UPDATED, before, ReviewSnapshot.of(review)))
        return review

    def delete_review(self, company_id: UUID, review_id: UUID) -> Review:
        review = self.get_review(company_id, review_id)
        before = ReviewSnapshot.of(review)
        review.deleted_at = self._now()
        self._session.add(review)
        self._session.commit()
        self._session.refresh(review)
        logger.info("review deleted review_id=%s status=%s", review.id, review.status)
        self._events.publish(ReviewEvent(DELETED, before, ReviewSnapshot.of(review)))
        return review

    def _admit(self, company_id: UUID) -> None:
        subscription = self._subscriptions.current(company_id)
        if subscription is None:
            raise NoActiveSubscriptionError(f"No active subscription for company {company_id}")
        self._quota.ensure_available(company_id, subscription)

    def _snapshot_config(
        self,
        company_id: UUID,
        review_config_id: UUID,
        criteria_weights: dict[str, float] | None,
    ) -> dict:
        config = self._session.execute(
            select(ReviewConfig).where(
                ReviewConfig.id == review_config_id,
                ReviewConfig.company_id == company_id,
            )
        ).scalar_one_or_none()
        if config is None:
            raise NotFoundError(f"Review configuration not found: {review_config_id}")
        if not config.is_active:
            raise InactiveConfigError("Review configuration is not active")

        links = list(config.criteria)
        wanted = [link.criterion_id for link in links]
        found = {
            row.id: row
            for row in self._session.execute(
                select(Criterion).where(Criterion.id.in_(wanted))
            ).scalars()
        }
        missing = [str(cid) for cid in wanted if cid not in found]
        if missing:
            raise MissingCriteriaError(f"Missing criteria with IDs: {', '.join(missing)}")

        overrides = {str(key): float(value) for key, value in (criteria_weights or {}).items()}
        criteria = []
        for link in links:
            criterion = found[link.criterion_id]
            criteria.append(
                {
                    "criterion_id": str(criterion.id),
                    "title": criterion.title,
                    "description": criterion.description or "",
                    "weight": overrides.get(str(criterion.id), link.weight),
                }
            )
        return {
            "id": str(config.id),
            "name": config.name,
            "description": config.description or "",
            "model_settings": dict(config.model_settings or {}),
            "criteria": criteria,
        }

    def _submit(self, review: Review) -> None:
        try:
            self._queue.submit(review.id)
        except Exception as exc:
            logger.exception("review hand-off failed review_id=%s", review.id)
            before = ReviewSnapshot.of(review)
            ensure_transition(review.status, ERROR)
            review.status = ERROR
            review.error_message = f"Could not queue review for processing: {exc}"[:500]
            review.finished_at = self._now()
            self._session.add(review)
            self._session.commit()
            self._session.refresh(review)
            self._events.publish(ReviewEvent(UPDATED, before, ReviewSnapshot.of(review)))
