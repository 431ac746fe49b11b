#!/usr/bin/env python3
from __future__ import annotations

from argparse import ArgumentParser
from datetime import timedelta

from db.session import SessionLocal
from pipeline.jobs import build_event_bus
from reviews.processor import ReviewProcessor


def main() -> None:
    parser = ArgumentParser(description="Mark reviews stuck in STARTED as ERROR")
    parser.add_argument("--older-min", type=int, default=30)
    args = parser.parse_args()

    processor = ReviewProcessor(SessionLocal, events=build_event_bus())
    cleaned = processor.cleanup_stale(timedelta(minutes=args.older_min))
    for review_id in cleaned:
        print(f"[cleanup] review_id={review_id}")
    print(f"[cleanup] marked {len(cleaned)} review(s) as ERROR")


if __name__ == "__main__":
    main()
