from __future__ import annotations

import logging
from typing import Callable

from sqlalchemy.orm import Session, sessionmaker

from reviews.events import ReviewEvent, ReviewSnapshot
from reviews.states import REVIEWED

from .days import day_of
from .scopes import Scope, scopes_for_review
from .writer import AggregationWriter

logger = logging.getLogger(__name__)


def _counts(snapshot: ReviewSnapshot | None) -> bool:
    return snapshot is not None and snapshot.status == REVIEWED and not snapshot.deleted


def should_recompute(event: ReviewEvent) -> bool:
    """True when the event can change a day rollup.

    That is: the review entered or left the live REVIEWED set, or stayed in
    it with different scores.
    """
    was_counted = _counts(event.before)
    is_counted = _counts(event.after)
    if was_counted != is_counted:
        return True
    if was_counted and is_counted:
        return event.before.score_fields() != event.after.score_fields()
    return False


class AggregationTrigger:
    """Event-bus subscriber that refreshes the day buckets a review touches.

    Each scope is recomputed in its own session and transaction; a failure on
    one scope is logged and does not stop the others.
    """

    def __init__(
        self,
        session_factory: sessionmaker | Callable[[], Session],
        writer_factory: Callable[[Session], AggregationWriter] = AggregationWriter,
    ) -> None:
        self._session_factory = session_factory
        self._writer_factory = writer_factory

    def __call__(self, event: ReviewEvent) -> None:
        self.handle(event)

    def handle(self, event: ReviewEvent) -> list[Scope]:
        if not should_recompute(event):
            return []
        review = event.review
        day = day_of(review.created_at)
        done: list[Scope] = []
        for scope in scopes_for_review(review):
            session = self._session_factory()
            try:
                self._writer_factory(session).recompute(day, scope)
                session.commit()
                done.append(scope)
            except Exception:
                session.rollback()
                logger.exception(
                    "metrics recompute failed review_id=%s day=%s scope=%s:%s",
                    review.id,
                    day,
                    scope.scope_type,
                    scope.scope_id,
                )
            finally:
                session.close()
        return done
