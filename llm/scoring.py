from __future__ import annotations

import logging
import os
from typing import Any

from reviews.contracts import CriterionScore, CriterionSpec, ScoreResult, ScoringConfig
from reviews.states import PERFORMANCE_TYPES, SENTIMENT_LABELS, SENTIMENT_TYPES

from .mediator import LLMMediator, get_mediator
from .prompting import build_review_prompt, build_system_prompt, review_schema

logger = logging.getLogger(__name__)

TASK_TYPE = "review_score"


def _min_transcript_chars() -> int:
    return int(os.getenv("REVIEW_MIN_TRANSCRIPT_CHARS", "40"))


def _clamp(value: Any, low: float, high: float) -> float | None:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return max(low, min(high, number))


def _text(value: Any) -> str:
    return str(value).strip() if value is not None else ""


class OpenAIReviewScorer:
    """Scores transcripts through the LLM mediator's ``review_score`` route.

    Too-short transcripts come back as a content error without calling the
    model. Transport and parse failures raise ``LLMError``.
    """

    def __init__(self, mediator: LLMMediator | None = None, min_chars: int | None = None) -> None:
        self._mediator = mediator or get_mediator()
        self._min_chars = _min_transcript_chars() if min_chars is None else min_chars

    def score(
        self,
        config: ScoringConfig,
        transcript: str,
        criteria: list[CriterionSpec],
        review_type: str,
    ) -> ScoreResult:
        content = (transcript or "").strip()
        if len(content) < self._min_chars:
            return ScoreResult(
                error=f"Transcript content is too short to review ({len(content)} < {self._min_chars} chars)"
            )
        if review_type in PERFORMANCE_TYPES and not criteria:
            return ScoreResult(error="No criteria configured for a performance review")

        settings = config.model_settings or {}
        data, meta = self._mediator.generate_json(
            task_type=TASK_TYPE,
            system_prompt=build_system_prompt(config.name),
            user_prompt=build_review_prompt(content, criteria, review_type),
            json_schema=review_schema(review_type),
            max_tokens=int(settings.get("max_tokens") or 1200),
            temperature=float(settings.get("temperature", 0.2)),
            model=settings.get("model") or None,
        )
        logger.info("review scored provider=%s model=%s", meta.get("provider"), meta.get("model"))
        return parse_review_output(data, criteria, review_type)


def parse_review_output(
    data: dict[str, Any],
    criteria: list[CriterionSpec],
    review_type: str,
) -> ScoreResult:
    if not isinstance(data, dict):
        return ScoreResult(error="Model output is not a JSON object")

    fields: dict[str, Any] = {"subject": _text(data.get("subject"))}
    if review_type in PERFORMANCE_TYPES:
        allowed = {c.title for c in criteria}
        scores: list[CriterionScore] = []
        for item in data.get("results") or []:
            if not isinstance(item, dict):
                continue
            name = _text(item.get("criterion"))
            score = _clamp(item.get("score"), 1, 10)
            if not name or score is None or (allowed and name not in allowed):
                logger.warning("dropping criterion result name=%r score=%r", name, item.get("score"))
                continue
            scores.append(
                CriterionScore(
                    criterion_name=name,
                    score=score,
                    comment=_text(item.get("comment")) or None,
                    quote=_text(item.get("quote")) or None,
                    feedback=_text(item.get("feedback")) or None,
                )
            )
        overall = _clamp(data.get("overall_score"), 0, 10)
        if overall is None:
            return ScoreResult(error="Model output is missing overall_score")
        fields.update(
            overall_score=overall,
            overall_feedback=_text(data.get("overall_feedback")),
            criteria_scores=tuple(scores),
        )
    if review_type in SENTIMENT_TYPES:
        sentiment = _clamp(data.get("sentiment_score"), 0, 10)
        if sentiment is None:
            return ScoreResult(error="Model output is missing sentiment_score")
        label = _text(data.get("sentiment_label")).lower()
        fields.update(
            sentiment_score=sentiment,
            sentiment_label=label if label in SENTIMENT_LABELS else None,
            sentiment_analysis=_text(data.get("sentiment_analysis")),
        )
    return ScoreResult(**fields)
