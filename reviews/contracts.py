"""Narrow contracts for the collaborators the review engine talks to.

The scorer, transcript store, subscription provider and work queue are all
passed in at construction time so tests can swap in fakes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol
from uuid import UUID


@dataclass(frozen=True)
class CriterionSpec:
    criterion_id: str | None
    title: str
    description: str
    weight: float = 1.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "criterion_id": self.criterion_id,
            "title": self.title,
            "description": self.description,
            "weight": self.weight,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CriterionSpec":
        return cls(
            criterion_id=data.get("criterion_id"),
            title=str(data.get("title", "")),
            description=str(data.get("description") or ""),
            weight=float(data.get("weight", 1.0) or 1.0),
        )


@dataclass(frozen=True)
class ScoringConfig:
    name: str
    model_settings: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CriterionScore:
    criterion_name: str
    score: float
    comment: str | None = None
    quote: str | None = None
    feedback: str | None = None


@dataclass(frozen=True)
class ScoreResult:
    subject: str = ""
    overall_score: float | None = None
    overall_feedback: str | None = None
    criteria_scores: tuple[CriterionScore, ...] = ()
    sentiment_score: float | None = None
    sentiment_label: str | None = None
    sentiment_analysis: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class TranscriptInfo:
    id: UUID
    company_id: UUID
    employee_id: UUID | None
    team_id: UUID | None
    contact_id: UUID | None
    external_company_id: UUID | None
    content: str


@dataclass(frozen=True)
class SubscriptionInfo:
    current_period_start: datetime
    current_period_end: datetime
    allowed_reviews: int


class Scorer(Protocol):
    def score(
        self,
        config: ScoringConfig,
        transcript: str,
        criteria: list[CriterionSpec],
        review_type: str,
    ) -> ScoreResult: ...


class TranscriptStore(Protocol):
    def get(self, company_id: UUID, transcript_id: UUID) -> TranscriptInfo | None: ...

    def mark_reviewed(self, transcript_id: UUID) -> None: ...


class SubscriptionProvider(Protocol):
    def current(self, company_id: UUID) -> SubscriptionInfo | None: ...


class ReviewQueue(Protocol):
    def submit(self, review_id: UUID) -> str | None: ...
