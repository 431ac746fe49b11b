from __future__ import annotations

from datetime import timedelta
import logging
from uuid import UUID

from rq.job import Job as RQJob

from db.session import SessionLocal
from llm.scoring import OpenAIReviewScorer
from metrics.dashboard import DashboardSnapshotJob
from metrics.trigger import AggregationTrigger
from reviews.events import ReviewEventBus
from reviews.processor import ReviewProcessor

logger = logging.getLogger(__name__)


def build_event_bus() -> ReviewEventBus:
    bus = ReviewEventBus()
    bus.subscribe(AggregationTrigger(SessionLocal))
    return bus


def build_processor(scorer=None) -> ReviewProcessor:
    return ReviewProcessor(
        SessionLocal,
        scorer or OpenAIReviewScorer(),
        events=build_event_bus(),
    )


def process_review_job(review_id: str) -> dict:
    status = build_processor().process(UUID(str(review_id)))
    logger.info("review job finished review_id=%s status=%s", review_id, status)
    return {"review_id": str(review_id), "status": status}


def refresh_dashboard_job() -> dict:
    result = DashboardSnapshotJob(SessionLocal).refresh_all()
    return {
        "refreshed": [str(company_id) for company_id in result["refreshed"]],
        "failed": [str(company_id) for company_id in result["failed"]],
    }


def cleanup_stale_reviews_job(minutes: int = 30) -> dict:
    processor = ReviewProcessor(SessionLocal, events=build_event_bus())
    cleaned = processor.cleanup_stale(timedelta(minutes=minutes))
    return {"cleaned": [str(review_id) for review_id in cleaned]}


def rq_on_failure(job: RQJob, connection, exc_type, exc_value, traceback) -> None:  # type: ignore[no-untyped-def]
    review_id = job.args[0] if job.args else None
    logger.error("rq job failed job_id=%s func=%s error=%s", job.id, job.func_name, exc_value)
    if review_id is None or job.func_name != f"{__name__}.process_review_job":
        return
    processor = ReviewProcessor(SessionLocal, events=build_event_bus())
    processor.fail(UUID(str(review_id)), f"Worker failure: {exc_value}")
