#!/usr/bin/env python3
from __future__ import annotations

from argparse import ArgumentParser
from datetime import date, datetime, timedelta, timezone
from uuid import UUID

from db.session import SessionLocal
from metrics.writer import backfill_day


def _days(start: date, end: date) -> list[date]:
    if end < start:
        raise SystemExit("--to must not be before --from")
    return [start + timedelta(days=offset) for offset in range((end - start).days + 1)]


def main() -> None:
    parser = ArgumentParser(description="Rebuild day rollups from raw reviews")
    parser.add_argument("--from", dest="date_from", default=None, help="First day, YYYY-MM-DD (default: yesterday)")
    parser.add_argument("--to", dest="date_to", default=None, help="Last day, YYYY-MM-DD (default: --from)")
    parser.add_argument("--company-id", type=UUID, default=None)
    args = parser.parse_args()

    yesterday = datetime.now(timezone.utc).date() - timedelta(days=1)
    start = date.fromisoformat(args.date_from) if args.date_from else yesterday
    end = date.fromisoformat(args.date_to) if args.date_to else start

    total = 0
    for day in _days(start, end):
        session = SessionLocal()
        try:
            scopes = backfill_day(session, day, args.company_id)
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
        total += scopes
        print(f"[metrics] day={day} scopes={scopes}")
    print(f"[metrics] done days={len(_days(start, end))} scopes={total}")


if __name__ == "__main__":
    main()
