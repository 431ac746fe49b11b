#!/usr/bin/env python3
from __future__ import annotations

from argparse import ArgumentParser
from uuid import UUID

from db.session import SessionLocal
from pipeline.jobs import build_event_bus
from pipeline.queue import RQReviewQueue
from reviews.errors import ReviewError
from reviews.service import ReviewService


def main() -> None:
    parser = ArgumentParser(description="Retry a review that ended in ERROR")
    parser.add_argument("--company-id", type=UUID, required=True)
    parser.add_argument("--review-id", type=UUID, required=True)
    args = parser.parse_args()

    session = SessionLocal()
    try:
        service = ReviewService(session, queue=RQReviewQueue(), events=build_event_bus())
        try:
            review = service.retry_review(args.company_id, args.review_id)
        except ReviewError as exc:
            raise SystemExit(f"[retry] {exc.code}: {exc}") from exc
        print(f"[retry] review_id={review.id} status={review.status} attempt={review.attempt}")
    finally:
        session.close()


if __name__ == "__main__":
    main()
