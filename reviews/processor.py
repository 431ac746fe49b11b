from __future__ import annotations

from datetime import UTC, datetime, timedelta
import logging
from typing import Callable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from db.models import Review

from .contracts import CriterionSpec, Scorer, ScoreResult, ScoringConfig, TranscriptStore
from .events import UPDATED, ReviewEvent, ReviewEventBus, ReviewSnapshot
from .service import criterion_rows
from .states import (
    ERROR,
    NOT_STARTED,
    PERFORMANCE_TYPES,
    REVIEWED,
    SENTIMENT_TYPES,
    STARTED,
    can_transition,
    ensure_transition,
)
from .stores import SqlTranscriptStore

logger = logging.getLogger(__name__)

_MAX_ERROR_CHARS = 500


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _error_text(exc: BaseException) -> str:
    text = str(exc).strip() or exc.__class__.__name__
    return text[:_MAX_ERROR_CHARS]


class ReviewProcessor:
    """Drives one queued review from NOT_STARTED to REVIEWED or ERROR.

    Runs inside the queue worker. Each call opens its own session, so
    processing for different reviews shares no state. Nothing raised while
    processing escapes ``process``: the review is forced into ERROR and the
    failure is recorded on the row.
    """

    def __init__(
        self,
        session_factory: sessionmaker | Callable[[], Session],
        scorer: Scorer | None = None,
        *,
        events: ReviewEventBus | None = None,
        transcript_store: Callable[[Session], TranscriptStore] = SqlTranscriptStore,
        now: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._scorer = scorer
        self._events = events or ReviewEventBus()
        self._transcript_store = transcript_store
        self._now = now

    def process(self, review_id: UUID) -> str | None:
        session = self._session_factory()
        try:
            return self._process(session, review_id)
        except Exception as exc:
            logger.exception("review processing failed review_id=%s", review_id)
            session.rollback()
            return self._force_error(session, review_id, _error_text(exc))
        finally:
            session.close()

    def fail(self, review_id: UUID, message: str) -> str | None:
        """Record an out-of-band failure, e.g. the worker killed the job."""
        session = self._session_factory()
        try:
            return self._force_error(session, review_id, message[:_MAX_ERROR_CHARS])
        finally:
            session.close()

    def _process(self, session: Session, review_id: UUID) -> str | None:
        review = session.get(Review, review_id)
        if review is None:
            raise RuntimeError(f"Review not found: {review_id}")
        if review.status != NOT_STARTED or review.deleted_at is not None:
            logger.info(
                "review skipped review_id=%s status=%s deleted=%s",
                review.id,
                review.status,
                review.deleted_at is not None,
            )
            return review.status

        self._transition(session, review, STARTED, started_at=self._now())

        transcripts = self._transcript_store(session)
        transcript = transcripts.get(review.company_id, review.transcript_id)
        if transcript is None:
            raise RuntimeError(f"Transcript not found: {review.transcript_id}")

        stored = review.review_config or {}
        config = ScoringConfig(
            name=str(stored.get("name") or "default"),
            model_settings=dict(stored.get("model_settings") or {}),
        )
        criteria = [CriterionSpec.from_dict(item) for item in stored.get("criteria") or []]

        if self._scorer is None:
            raise RuntimeError("No scorer configured for review processing")
        result = self._scorer.score(config, transcript.content, criteria, review.type)
        if result.error:
            logger.warning("review content error review_id=%s error=%s", review.id, result.error)
            self._transition(
                session,
                review,
                ERROR,
                error_message=result.error[:_MAX_ERROR_CHARS],
                finished_at=self._now(),
            )
            return ERROR

        self._apply_result(review, result)
        self._transition(session, review, REVIEWED, finished_at=self._now())
        logger.info("review completed review_id=%s type=%s", review.id, review.type)

        try:
            transcripts.mark_reviewed(review.transcript_id)
            session.commit()
        except Exception:
            session.rollback()
            logger.exception("transcript mark_reviewed failed transcript_id=%s", review.transcript_id)
        return REVIEWED

    def _apply_result(self, review: Review, result: ScoreResult) -> None:
        review.subject = result.subject or ""
        if review.type in PERFORMANCE_TYPES:
            review.overall_score = result.overall_score
            review.overall_feedback = result.overall_feedback or ""
            review.criteria_scores = criterion_rows(result.criteria_scores)
        if review.type in SENTIMENT_TYPES:
            review.sentiment_score = result.sentiment_score
            review.sentiment_label = result.sentiment_label
            review.sentiment_analysis = result.sentiment_analysis

    def _transition(self, session: Session, review: Review, target: str, **fields) -> None:
        before = ReviewSnapshot.of(review)
        ensure_transition(review.status, target)
        review.status = target
        for key, value in fields.items():
            setattr(review, key, value)
        session.add(review)
        session.commit()
        session.refresh(review)
        self._events.publish(ReviewEvent(UPDATED, before, ReviewSnapshot.of(review)))

    def _force_error(self, session: Session, review_id: UUID, message: str) -> str | None:
        try:
            review = session.get(Review, review_id)
            if review is None:
                return None
            if not can_transition(review.status, ERROR):
                return review.status
            self._transition(
                session,
                review,
                ERROR,
                error_message=message,
                finished_at=self._now(),
            )
            return ERROR
        except Exception:
            session.rollback()
            logger.exception("could not record review failure review_id=%s", review_id)
            return None

    def cleanup_stale(self, older_than: timedelta) -> list[UUID]:
        """Force reviews stuck in STARTED longer than ``older_than`` into ERROR."""
        cutoff = self._now() - older_than
        session = self._session_factory()
        try:
            stale = (
                session.execute(
                    select(Review).where(
                        Review.status == STARTED,
                        Review.started_at < cutoff,
                    )
                )
                .scalars()
                .all()
            )
            minutes = int(older_than.total_seconds() // 60)
            cleaned: list[UUID] = []
            for review in stale:
                self._transition(
                    session,
                    review,
                    ERROR,
                    error_message=f"auto-cleanup: started > {minutes} min",
                    finished_at=self._now(),
                )
                cleaned.append(review.id)
            return cleaned
        finally:
            session.close()
