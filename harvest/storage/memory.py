"""In-process store, for tests and for running without any persistence."""

import threading
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from harvest.aggregation.models import AggregatedSession, Period
from harvest.session.models import Session
from harvest.storage.interface import AggregateStore


class MemoryStore(AggregateStore):
    def __init__(self):
        self.sessions: List[Session] = []
        self.aggregates: Dict[Tuple[Period, int], AggregatedSession] = {}
        self.connected = False
        self._lock = threading.Lock()
        # Sessions drained by the open transaction, put back on rollback
        self._drained: Optional[List[Session]] = None

    def connect(self) -> Callable[[], None]:
        self.connected = True

        def disconnect():
            self.connected = False

        return disconnect

    def save(self, session: Session) -> None:
        with self._lock:
            self.sessions.append(session)

    def drain_sessions(self) -> List[Session]:
        with self._lock:
            drained, self.sessions = self.sessions, []
            if self._drained is not None:
                self._drained.extend(drained)
        return drained

    def get_aggregates(self, period: Period, start: int, end: int) -> List[AggregatedSession]:
        with self._lock:
            matches = [
                a for (p, date), a in self.aggregates.items()
                if p == period and start <= date < end
            ]
        return sorted(matches, key=lambda a: a.date)

    def upsert_aggregate(self, aggregate: AggregatedSession) -> None:
        with self._lock:
            self.aggregates[(aggregate.period, aggregate.date)] = aggregate

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            snapshot = dict(self.aggregates)
            self._drained = []
        try:
            yield
        except BaseException:
            with self._lock:
                self.aggregates = snapshot
                self.sessions = self._drained + self.sessions
            raise
        finally:
            with self._lock:
                self._drained = None
