from .dashboard import DashboardSnapshotJob, dashboard_overview
from .scopes import Scope, scopes_for_review
from .series import SeriesService, resolve_period
from .trigger import AggregationTrigger, should_recompute
from .writer import AggregationWriter, backfill_day

__all__ = [
    "AggregationTrigger",
    "AggregationWriter",
    "DashboardSnapshotJob",
    "Scope",
    "SeriesService",
    "backfill_day",
    "dashboard_overview",
    "resolve_period",
    "scopes_for_review",
    "should_recompute",
]
