import logging
import os
from uuid import UUID

from redis import Redis
from rq import Queue

from pipeline.jobs import process_review_job, refresh_dashboard_job, rq_on_failure

logger = logging.getLogger(__name__)


def _redis_url() -> str:
    return os.getenv("REDIS_URL", "redis://localhost:6379/0")


def _queue_name() -> str:
    return os.getenv("REVIEW_QUEUE_NAME", "reviews")


def _timeout_seconds(kind: str) -> int:
    if kind == "dashboard":
        return int(os.getenv("RQ_DASHBOARD_TIMEOUT", "900"))
    return int(os.getenv("RQ_REVIEW_TIMEOUT", "300"))


def get_redis() -> Redis:
    return Redis.from_url(_redis_url())


def get_queue(name: str | None = None) -> Queue:
    return Queue(name or _queue_name(), connection=get_redis())


class RQReviewQueue:
    """Hands reviews to the RQ worker. Raises if Redis refuses the job."""

    def __init__(self, queue: Queue | None = None) -> None:
        self._queue = queue

    def _get_queue(self) -> Queue:
        if self._queue is None:
            self._queue = get_queue()
        return self._queue

    def submit(self, review_id: UUID) -> str:
        job = self._get_queue().enqueue(
            process_review_job,
            str(review_id),
            job_timeout=_timeout_seconds("review"),
            on_failure=rq_on_failure,
        )
        logger.info("review queued review_id=%s rq_id=%s", review_id, job.id)
        return job.id


def enqueue_dashboard_refresh() -> str:
    job = get_queue().enqueue(
        refresh_dashboard_job,
        job_timeout=_timeout_seconds("dashboard"),
        on_failure=rq_on_failure,
    )
    return job.id
