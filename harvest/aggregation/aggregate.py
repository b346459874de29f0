"""Reduce raw coding sessions into day, week, month and year summaries.

Raw sessions are first reduced into day buckets. The coarser periods are
derived from the day buckets rather than from the raw sessions, which gives
the same totals because every step is a plain sum. A session is attributed
in full to the day it started, even when it runs past midnight.
"""

from collections import defaultdict
from typing import Dict, Iterable, List

from harvest.aggregation.models import AggregatedSession, Period
from harvest.aggregation.truncate import date_string, truncate
from harvest.session.models import Session
from harvest.utils.logging import get_logger

logger = get_logger(__name__)


def group_by_day(sessions: Iterable[Session]) -> Dict[int, List[Session]]:
    buckets: Dict[int, List[Session]] = defaultdict(list)
    for session in sessions:
        buckets[truncate(Period.DAY, session.started_at)].append(session)
    return buckets


def session_repositories(sessions: Iterable[Session]) -> Dict[str, int]:
    """Sum the time spent per repository across the files of all sessions."""
    repositories: Dict[str, int] = defaultdict(int)
    for session in sessions:
        for f in session.files.values():
            repositories[f.repository] += f.duration_ms
    return dict(repositories)


def merge_repositories(*maps: Dict[str, int]) -> Dict[str, int]:
    merged: Dict[str, int] = defaultdict(int)
    for repositories in maps:
        for repository, time_ms in repositories.items():
            merged[repository] += time_ms
    return dict(merged)


def merge_aggregates(a: AggregatedSession, b: AggregatedSession) -> AggregatedSession:
    """Sum two aggregates that belong to the same bucket."""
    if a.period != b.period or a.date != b.date:
        raise ValueError(
            f"Can't merge {a.period.value} {a.date_string} with {b.period.value} {b.date_string}"
        )
    return AggregatedSession(
        period=a.period,
        date=a.date,
        date_string=a.date_string,
        total_time_ms=a.total_time_ms + b.total_time_ms,
        repositories=merge_repositories(a.repositories, b.repositories),
    )


def aggregate_day(sessions: Iterable[Session]) -> List[AggregatedSession]:
    """Aggregate raw sessions by the UTC day they started."""
    aggregated = []
    for date, day_sessions in group_by_day(sessions).items():
        aggregated.append(AggregatedSession(
            period=Period.DAY,
            date=date,
            date_string=date_string(date),
            total_time_ms=sum(s.duration_ms for s in day_sessions),
            repositories=session_repositories(day_sessions),
        ))
    aggregated.sort(key=lambda a: a.date)
    return aggregated


def aggregate_higher(period: Period, day_aggregates: Iterable[AggregatedSession]) -> List[AggregatedSession]:
    """Re-reduce day aggregates into week, month or year buckets."""
    if period == Period.DAY:
        raise ValueError("Day aggregates are built from raw sessions, use aggregate_day")

    buckets: Dict[int, AggregatedSession] = {}
    for day in day_aggregates:
        if day.period != Period.DAY:
            raise ValueError(f"Expected a day aggregate, got {day.period.value}")
        date = truncate(period, day.date)
        rebucketed = AggregatedSession(
            period=period,
            date=date,
            date_string=date_string(date),
            total_time_ms=day.total_time_ms,
            repositories=dict(day.repositories),
        )
        existing = buckets.get(date)
        buckets[date] = rebucketed if existing is None else merge_aggregates(existing, rebucketed)

    logger.debug(f"Aggregated {len(buckets)} {period.value} buckets")
    return [buckets[date] for date in sorted(buckets)]
