"""Reporting pass: move raw sessions into the permanent aggregates.

Raw sessions are clustered by day and merged into the day aggregates that
are already stored. The week, month and year buckets touched by those days
are then rebuilt from the day aggregates, so the permanent store only ever
holds one record per bucket.
"""

from typing import Dict, List, Optional

from harvest.aggregation.aggregate import aggregate_day, aggregate_higher, merge_aggregates
from harvest.aggregation.models import AggregatedSession, Period
from harvest.aggregation.truncate import next_bucket, truncate
from harvest.storage.disk import DiskStore
from harvest.storage.interface import AggregateStore
from harvest.utils.logging import get_logger

logger = get_logger(__name__)

HIGHER_PERIODS = (Period.WEEK, Period.MONTH, Period.YEAR)


def merge_days(store: AggregateStore, days: List[AggregatedSession]) -> List[AggregatedSession]:
    """Merge new day aggregates with the stored ones and write them back."""
    merged = []
    for day in days:
        existing = store.get_aggregates(Period.DAY, day.date, next_bucket(Period.DAY, day.date))
        if existing:
            day = merge_aggregates(existing[0], day)
        store.upsert_aggregate(day)
        merged.append(day)
    return merged


def rebuild_higher(store: AggregateStore, days: List[AggregatedSession]) -> Dict[Period, List[AggregatedSession]]:
    """Rebuild every week, month and year bucket that contains one of `days`."""
    rebuilt: Dict[Period, List[AggregatedSession]] = {}
    for period in HIGHER_PERIODS:
        rebuilt[period] = []
        for bucket in sorted({truncate(period, day.date) for day in days}):
            day_aggregates = store.get_aggregates(Period.DAY, bucket, next_bucket(period, bucket))
            for aggregate in aggregate_higher(period, day_aggregates):
                store.upsert_aggregate(aggregate)
                rebuilt[period].append(aggregate)
    return rebuilt


def flush(staging: Optional[DiskStore], store: AggregateStore) -> int:
    """Aggregate the staged sessions and the sessions saved straight to `store`.

    Every aggregate is written in one transaction, and the staged files are
    only removed once it has committed. A flush that fails midway leaves the
    stored aggregates untouched, so rerunning it never counts a session twice.

    Returns:
        The number of sessions that were flushed
    """
    staged = staging.read_all() if staging is not None else []
    paths = [path for path, _ in staged]

    with store.transaction():
        sessions = [session for _, session in staged] + store.drain_sessions()
        if not sessions:
            logger.info("No staged sessions to flush")
            return 0

        days = aggregate_day(sessions)
        merged_days = merge_days(store, days)
        rebuild_higher(store, merged_days)

    if paths:
        staging.remove(paths)
    logger.info(f"Flushed {len(sessions)} sessions into {len(days)} days")
    return len(sessions)
