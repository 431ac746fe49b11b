from __future__ import annotations

from datetime import datetime, timedelta, timezone
from os import getenv
from typing import List, Literal, Optional
from uuid import UUID

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from db.models import Review
from db.session import SessionLocal
from llm import get_mediator
from metrics.dashboard import DashboardSnapshotJob, dashboard_overview
from metrics.scopes import COMPANY, SCOPE_TYPES, Scope
from metrics.series import OVERALL, SeriesService, resolve_period
from reviews.contracts import CriterionScore
from reviews.errors import (
    InactiveConfigError,
    InvalidTransitionError,
    MissingCriteriaError,
    NoActiveSubscriptionError,
    NotFoundError,
    QuotaExceededError,
    ReviewError,
)
from reviews.events import ReviewEventBus
from reviews.processor import ReviewProcessor
from reviews.service import ReviewService
from reviews.stores import SqlSubscriptionProvider

app = FastAPI(title="ReviewOps API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o for o in getenv("CORS_ORIGINS", "http://localhost:5173").split(",") if o],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _require_operator(x_operator_token: str | None = Header(default=None)) -> None:
    expected = getenv("OPERATOR_TOKEN", "")
    if not expected:
        if getenv("ALLOW_OPS_WITHOUT_TOKEN", "0") == "1":
            return
        raise HTTPException(status_code=503, detail="operator_token_missing")
    if x_operator_token != expected:
        raise HTTPException(status_code=401, detail="operator_token_required")


def _review_queue():
    from pipeline.queue import RQReviewQueue

    return RQReviewQueue()


def _event_bus() -> ReviewEventBus:
    from pipeline.jobs import build_event_bus

    return build_event_bus()


def _review_service(session) -> ReviewService:
    return ReviewService(session, queue=_review_queue(), events=_event_bus())


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=exc.code)
    if isinstance(exc, (QuotaExceededError, NoActiveSubscriptionError)):
        return HTTPException(status_code=402, detail=exc.code)
    if isinstance(exc, InactiveConfigError):
        return HTTPException(status_code=403, detail=exc.code)
    if isinstance(exc, InvalidTransitionError):
        return HTTPException(status_code=409, detail=exc.code)
    if isinstance(exc, MissingCriteriaError):
        return HTTPException(status_code=400, detail=exc.code)
    if isinstance(exc, ReviewError):
        return HTTPException(status_code=400, detail=exc.code)
    return HTTPException(status_code=400, detail=str(exc))


def _review_row(review: Review) -> dict:
    return jsonable_encoder(
        {
            "id": review.id,
            "company_id": review.company_id,
            "transcript_id": review.transcript_id,
            "type": review.type,
            "status": review.status,
            "subject": review.subject,
            "overall_score": review.overall_score,
            "overall_feedback": review.overall_feedback,
            "sentiment_score": review.sentiment_score,
            "sentiment_label": review.sentiment_label,
            "sentiment_analysis": review.sentiment_analysis,
            "criteria_scores": [
                {
                    "criterion_name": item.criterion_name,
                    "score": item.score,
                    "comment": item.comment,
                    "quote": item.quote,
                    "feedback": item.feedback,
                }
                for item in review.criteria_scores
            ],
            "error_message": review.error_message,
            "employee_id": review.employee_id,
            "team_id": review.team_id,
            "contact_id": review.contact_id,
            "external_company_id": review.external_company_id,
            "attempt": review.attempt,
            "created_at": review.created_at,
            "started_at": review.started_at,
            "finished_at": review.finished_at,
        }
    )


class ReviewCreateRequest(BaseModel):
    transcript_id: UUID
    type: Literal["performance", "sentiment", "both"]
    review_config_id: UUID | None = None
    criteria_weights: dict[str, float] | None = None


class CriterionScoreInput(BaseModel):
    criterion_name: str
    score: float = Field(ge=1, le=10)
    comment: str | None = None
    quote: str | None = None
    feedback: str | None = None


class ReviewCorrectRequest(BaseModel):
    overall_score: float | None = Field(default=None, ge=0, le=10)
    overall_feedback: str | None = None
    sentiment_score: float | None = Field(default=None, ge=0, le=10)
    sentiment_label: Literal["negative", "neutral", "positive"] | None = None
    criteria_scores: List[CriterionScoreInput] | None = None


class CleanupRequest(BaseModel):
    older_min: int = Field(default=30, ge=1, le=1440)


class DashboardRefreshRequest(BaseModel):
    company_id: UUID | None = None


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.post("/companies/{company_id}/reviews", status_code=201)
def create_review(company_id: UUID, request: ReviewCreateRequest) -> dict:
    session = SessionLocal()
    try:
        review = _review_service(session).create_review(
            company_id,
            request.transcript_id,
            request.type,
            review_config_id=request.review_config_id,
            criteria_weights=request.criteria_weights,
        )
        return _review_row(review)
    except (ReviewError, ValueError) as exc:
        raise _http_error(exc) from exc
    finally:
        session.close()


@app.get("/companies/{company_id}/reviews")
def list_reviews(
    company_id: UUID,
    transcript_id: Optional[UUID] = None,
    type: Optional[Literal["performance", "sentiment", "both"]] = None,
    employee_id: Optional[UUID] = None,
    external_company_id: Optional[UUID] = None,
    contact_id: Optional[UUID] = None,
    created_from: Optional[datetime] = None,
    created_to: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
) -> dict:
    session = SessionLocal()
    try:
        rows, total = _review_service(session).list_reviews(
            company_id,
            transcript_id=transcript_id,
            review_type=type,
            employee_id=employee_id,
            external_company_id=external_company_id,
            contact_id=contact_id,
            created_from=created_from,
            created_to=created_to,
            page=page,
            limit=limit,
        )
        return {
            "items": [_review_row(row) for row in rows],
            "total": total,
            "page": page,
            "limit": limit,
        }
    finally:
        session.close()


@app.get("/companies/{company_id}/reviews/{review_id}")
def get_review(company_id: UUID, review_id: UUID) -> dict:
    session = SessionLocal()
    try:
        return _review_row(_review_service(session).get_review(company_id, review_id))
    except ReviewError as exc:
        raise _http_error(exc) from exc
    finally:
        session.close()


@app.post("/companies/{company_id}/reviews/{review_id}/retry")
def retry_review(company_id: UUID, review_id: UUID) -> dict:
    session = SessionLocal()
    try:
        return _review_row(_review_service(session).retry_review(company_id, review_id))
    except ReviewError as exc:
        raise _http_error(exc) from exc
    finally:
        session.close()


@app.patch("/companies/{company_id}/reviews/{review_id}")
def correct_review(company_id: UUID, review_id: UUID, request: ReviewCorrectRequest) -> dict:
    session = SessionLocal()
    try:
        criteria = None
        if request.criteria_scores is not None:
            criteria = [CriterionScore(**item.model_dump()) for item in request.criteria_scores]
        review = _review_service(session).correct_review(
            company_id,
            review_id,
            overall_score=request.overall_score,
            overall_feedback=request.overall_feedback,
            sentiment_score=request.sentiment_score,
            sentiment_label=request.sentiment_label,
            criteria_scores=criteria,
        )
        return _review_row(review)
    except (ReviewError, ValueError) as exc:
        raise _http_error(exc) from exc
    finally:
        session.close()


@app.delete("/companies/{company_id}/reviews/{review_id}")
def delete_review(company_id: UUID, review_id: UUID) -> dict:
    session = SessionLocal()
    try:
        review = _review_service(session).delete_review(company_id, review_id)
        return {"id": str(review.id), "deleted": True}
    except ReviewError as exc:
        raise _http_error(exc) from exc
    finally:
        session.close()


@app.get("/companies/{company_id}/metrics/series")
def metrics_series(
    company_id: UUID,
    filter: str = Query(OVERALL),
    period: Literal["day", "week", "month", "year"] = Query("month"),
    scope_type: str = Query(COMPANY),
    scope_id: Optional[UUID] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
) -> dict:
    if scope_type not in SCOPE_TYPES:
        raise HTTPException(status_code=400, detail="invalid_scope_type")
    now = datetime.now(timezone.utc)
    start, end = resolve_period(period, now)
    start = date_from or start
    end = date_to or end
    session = SessionLocal()
    try:
        scope = Scope(company_id, scope_type, scope_id)
        points = SeriesService(session).get_series(scope, filter, start, end)
        return jsonable_encoder(
            {
                "filter": filter,
                "scope_type": scope_type,
                "scope_id": scope_id,
                "from": start,
                "to": end,
                "points": points,
            }
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    finally:
        session.close()


@app.get("/companies/{company_id}/metrics/criteria")
def metrics_criteria(
    company_id: UUID,
    period: Literal["day", "week", "month", "year"] = Query("month"),
) -> List[dict]:
    start, end = resolve_period(period, datetime.now(timezone.utc))
    session = SessionLocal()
    try:
        return jsonable_encoder(SeriesService(session).criteria_summary(company_id, start, end))
    finally:
        session.close()


@app.get("/companies/{company_id}/metrics/sentiment")
def metrics_sentiment(company_id: UUID, days: int = Query(30, ge=1, le=366)) -> List[dict]:
    session = SessionLocal()
    try:
        return jsonable_encoder(SeriesService(session).sentiment_trends(company_id, days))
    finally:
        session.close()


@app.get("/companies/{company_id}/metrics/sentiment/distribution")
def metrics_sentiment_distribution(
    company_id: UUID,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
) -> dict:
    session = SessionLocal()
    try:
        return SeriesService(session).sentiment_distribution(company_id, date_from, date_to)
    finally:
        session.close()


@app.get("/companies/{company_id}/metrics/teams/{team_id}")
def metrics_team(
    company_id: UUID,
    team_id: UUID,
    period: Literal["day", "week", "month", "year"] = Query("month"),
    interval: Literal["day", "week", "month", "year"] = Query("day"),
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
) -> dict:
    start, end = resolve_period(period, datetime.now(timezone.utc))
    start = date_from or start
    end = date_to or end
    session = SessionLocal()
    try:
        points = SeriesService(session).team_series(company_id, team_id, start, end, interval)
        return jsonable_encoder(
            {"team_id": team_id, "interval": interval, "from": start, "to": end, "points": points}
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    finally:
        session.close()


@app.get("/companies/{company_id}/metrics/teams/{team_id}/history")
def metrics_team_history(
    company_id: UUID,
    team_id: UUID,
    months: int = Query(6, ge=1, le=36),
) -> List[dict]:
    session = SessionLocal()
    try:
        return jsonable_encoder(SeriesService(session).team_history(company_id, team_id, months))
    finally:
        session.close()


@app.get("/companies/{company_id}/dashboard")
def company_dashboard(company_id: UUID) -> dict:
    session = SessionLocal()
    try:
        return dashboard_overview(session, company_id, SqlSubscriptionProvider(session))
    finally:
        session.close()


@app.get("/llm/metrics")
def llm_metrics(_guard: None = Depends(_require_operator)) -> dict:
    return jsonable_encoder(get_mediator().get_metrics_snapshot())


@app.post("/ops/dashboard/refresh")
def ops_dashboard_refresh(
    request: DashboardRefreshRequest,
    _guard: None = Depends(_require_operator),
) -> dict:
    job = DashboardSnapshotJob(SessionLocal)
    if request.company_id is not None:
        job.refresh_company(request.company_id)
        return {"refreshed": [str(request.company_id)], "failed": []}
    result = job.refresh_all()
    return {
        "refreshed": [str(company_id) for company_id in result["refreshed"]],
        "failed": [str(company_id) for company_id in result["failed"]],
    }


@app.post("/ops/cleanup-reviews")
def ops_cleanup_reviews(request: CleanupRequest, _guard: None = Depends(_require_operator)) -> dict:
    processor = ReviewProcessor(SessionLocal, events=_event_bus())
    cleaned = processor.cleanup_stale(timedelta(minutes=request.older_min))
    return {"marked_failed": len(cleaned), "review_ids": [str(review_id) for review_id in cleaned]}
