from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Callable
from uuid import UUID

from db.models import Review

logger = logging.getLogger(__name__)

CREATED = "created"
UPDATED = "updated"
DELETED = "deleted"


@dataclass(frozen=True)
class ReviewSnapshot:
    id: UUID
    company_id: UUID
    type: str
    status: str
    created_at: datetime
    employee_id: UUID | None = None
    team_id: UUID | None = None
    contact_id: UUID | None = None
    external_company_id: UUID | None = None
    overall_score: float | None = None
    sentiment_score: float | None = None
    sentiment_label: str | None = None
    criteria_scores: tuple[tuple[str, float], ...] = ()
    deleted: bool = False

    @classmethod
    def of(cls, review: Review) -> "ReviewSnapshot":
        return cls(
            id=review.id,
            company_id=review.company_id,
            type=review.type,
            status=review.status,
            created_at=review.created_at,
            employee_id=review.employee_id,
            team_id=review.team_id,
            contact_id=review.contact_id,
            external_company_id=review.external_company_id,
            overall_score=review.overall_score,
            sentiment_score=review.sentiment_score,
            sentiment_label=review.sentiment_label,
            criteria_scores=tuple(
                (item.criterion_name, item.score) for item in review.criteria_scores
            ),
            deleted=review.deleted_at is not None,
        )

    def score_fields(self) -> tuple:
        return (
            self.overall_score,
            self.sentiment_score,
            self.sentiment_label,
            self.criteria_scores,
        )


@dataclass(frozen=True)
class ReviewEvent:
    """A persisted change to one review, emitted after commit."""

    kind: str
    before: ReviewSnapshot | None
    after: ReviewSnapshot | None

    @property
    def review(self) -> ReviewSnapshot:
        snapshot = self.after or self.before
        assert snapshot is not None
        return snapshot


Listener = Callable[[ReviewEvent], None]


class ReviewEventBus:
    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def publish(self, event: ReviewEvent) -> None:
        for listener in self._listeners:
            try:
                listener(event)
            except Exception:
                logger.exception(
                    "review event listener failed kind=%s review_id=%s",
                    event.kind,
                    event.review.id,
                )
