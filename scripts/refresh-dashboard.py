#!/usr/bin/env python3
from __future__ import annotations

from argparse import ArgumentParser
from uuid import UUID

from db.session import SessionLocal
from metrics.dashboard import DashboardSnapshotJob


def main() -> None:
    parser = ArgumentParser(description="Recompute dashboard totals for active companies")
    parser.add_argument("--company-id", type=UUID, default=None, help="Refresh one company only")
    parser.add_argument("--concurrency", type=int, default=None)
    parser.add_argument("--enqueue", action="store_true", help="Run on the RQ worker instead")
    args = parser.parse_args()

    if args.enqueue:
        from pipeline.queue import enqueue_dashboard_refresh

        print(f"[dashboard] rq_id={enqueue_dashboard_refresh()}")
        return

    job = DashboardSnapshotJob(SessionLocal, concurrency=args.concurrency)
    if args.company_id is not None:
        job.refresh_company(args.company_id)
        print(f"[dashboard] refreshed company_id={args.company_id}")
        return

    result = job.refresh_all()
    for company_id in result["failed"]:
        print(f"[dashboard] failed company_id={company_id}")
    print(f"[dashboard] refreshed={len(result['refreshed'])} failed={len(result['failed'])}")
    if result["failed"]:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
