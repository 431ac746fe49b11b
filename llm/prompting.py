from __future__ import annotations

import json
from typing import Any

from reviews.contracts import CriterionSpec
from reviews.states import PERFORMANCE_TYPES, SENTIMENT_LABELS, SENTIMENT_TYPES

_CRITERION_RESULT = {
    "type": "object",
    "properties": {
        "criterion": {"type": "string"},
        "score": {"type": "number"},
        "comment": {"type": "string"},
        "quote": {"type": "string"},
        "feedback": {"type": "string"},
    },
    "required": ["criterion", "score", "comment", "quote", "feedback"],
    "additionalProperties": False,
}


def review_schema(review_type: str) -> dict[str, Any]:
    properties: dict[str, Any] = {"subject": {"type": "string"}}
    if review_type in PERFORMANCE_TYPES:
        properties["results"] = {"type": "array", "items": _CRITERION_RESULT}
        properties["overall_score"] = {"type": "number"}
        properties["overall_feedback"] = {"type": "string"}
    if review_type in SENTIMENT_TYPES:
        properties["sentiment_score"] = {"type": "number"}
        properties["sentiment_label"] = {"type": "string", "enum": list(SENTIMENT_LABELS)}
        properties["sentiment_analysis"] = {"type": "string"}
    return {
        "type": "object",
        "properties": properties,
        "required": list(properties),
        "additionalProperties": False,
    }


def build_system_prompt(config_name: str) -> str:
    return (
        "You review customer conversation transcripts for a quality team. "
        f"Review configuration: {config_name}. "
        "Return JSON that matches the provided schema exactly."
    )


def build_review_prompt(transcript: str, criteria: list[CriterionSpec], review_type: str) -> str:
    lines = [
        "Transcript:",
        transcript.strip(),
        "",
        'Give a short "subject" line describing what the conversation is about.',
    ]
    if review_type in PERFORMANCE_TYPES:
        details = json.dumps(
            [
                {"criterion": c.title, "description": c.description, "weight": c.weight}
                for c in criteria
            ],
            ensure_ascii=False,
        )
        lines += [
            "",
            f"CRITERIA: {', '.join(c.title for c in criteria)}",
            f"Criteria details: {details}",
            "Score each criterion from 1 to 10 with a comment, a supporting quote from the "
            "transcript and concrete feedback. Higher-weighted criteria are graded more strictly.",
            '"overall_score" is the weighted average of the criterion scores (0-10).',
            '"overall_feedback" summarizes strengths and specific areas for improvement.',
            "Use only the criteria listed. Do not add or rename criteria.",
        ]
    if review_type in SENTIMENT_TYPES:
        lines += [
            "",
            "Assess the customer's sentiment over the conversation.",
            '"sentiment_score" runs from 0 (very negative) to 10 (very positive).',
            f'"sentiment_label" is one of: {", ".join(SENTIMENT_LABELS)}.',
            '"sentiment_analysis" explains the assessment in a few sentences.',
        ]
    return "\n".join(lines).strip()
