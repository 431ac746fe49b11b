from __future__ import annotations

from uuid import UUID

from sqlalchemy import desc, select
from sqlalchemy.orm import Session

from db.models import Subscription, Transcript

from .contracts import SubscriptionInfo, TranscriptInfo
from .states import REVIEWED


class SqlTranscriptStore:
    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, company_id: UUID, transcript_id: UUID) -> TranscriptInfo | None:
        row = self._session.execute(
            select(Transcript).where(
                Transcript.id == transcript_id,
                Transcript.company_id == company_id,
            )
        ).scalar_one_or_none()
        if row is None:
            return None
        return TranscriptInfo(
            id=row.id,
            company_id=row.company_id,
            employee_id=row.employee_id,
            team_id=row.team_id,
            contact_id=row.contact_id,
            external_company_id=row.external_company_id,
            content=row.content or "",
        )

    def mark_reviewed(self, transcript_id: UUID) -> None:
        row = self._session.get(Transcript, transcript_id)
        if row is None:
            raise RuntimeError(f"Transcript not found: {transcript_id}")
        row.is_reviewed = True
        row.review_status = REVIEWED
        self._session.add(row)


class SqlSubscriptionProvider:
    def __init__(self, session: Session) -> None:
        self._session = session

    def current(self, company_id: UUID) -> SubscriptionInfo | None:
        row = (
            self._session.execute(
                select(Subscription)
                .where(
                    Subscription.company_id == company_id,
                    Subscription.status == "active",
                )
                .order_by(desc(Subscription.current_period_start))
                .limit(1)
            )
            .scalars()
            .first()
        )
        if row is None:
            return None
        return SubscriptionInfo(
            current_period_start=row.current_period_start,
            current_period_end=row.current_period_end,
            allowed_reviews=row.allowed_reviews,
        )
