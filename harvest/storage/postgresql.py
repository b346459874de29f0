"""PostgreSQL implementation of the permanent session store."""

import json
import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional

import psycopg2
from psycopg2 import pool

from harvest.aggregation.models import AggregatedSession, Period
from harvest.session.models import Session
from harvest.storage.interface import AggregateStore
from harvest.utils.exceptions import StorageError
from harvest.utils.logging import get_logger

logger = get_logger(__name__)

CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS sessions (
    id BIGSERIAL PRIMARY KEY,
    started_at BIGINT NOT NULL,
    data JSONB NOT NULL,
    created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS sessions_started_at_idx ON sessions (started_at);
CREATE TABLE IF NOT EXISTS aggregated_sessions (
    period TEXT NOT NULL,
    date BIGINT NOT NULL,
    data JSONB NOT NULL,
    updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (period, date)
);
"""


class PostgresStore(AggregateStore):
    """Stores raw sessions and their aggregates as JSONB rows."""

    def __init__(self, config: Dict[str, Any]):
        """Initialize basic configuration.

        Args:
            config: Database configuration with host, database, user and password
        """
        self.config = config
        self.connection_pool: Optional[pool.ThreadedConnectionPool] = None
        # The connection of the transaction open on the current thread
        self._local = threading.local()

    def connect(self) -> Callable[[], None]:
        try:
            self.connection_pool = pool.ThreadedConnectionPool(
                1,  # Minimum connections
                5,  # Maximum connections
                host=self.config.get("host"),
                database=self.config.get("database"),
                user=self.config.get("user"),
                password=self.config.get("password")
            )
        except Exception as e:
            raise StorageError(f"Error setting up database pool: {e}") from e

        self._execute_query(CREATE_TABLES)
        logger.info(f"Connected to database {self.config.get('database')}")
        return self.close

    def close(self) -> None:
        """Close all connections."""
        if self.connection_pool is not None:
            self.connection_pool.closeall()
            self.connection_pool = None
            logger.debug("Closed the database pool")

    def _fetch(self, conn, query: str, params: Optional[tuple]) -> List[Dict[str, Any]]:
        try:
            with conn.cursor() as cur:
                cur.execute(query, params)
                if cur.description:
                    cols = [col.name for col in cur.description]
                    return [dict(zip(cols, row)) for row in cur.fetchall()]
                return []
        except Exception as e:
            raise StorageError(f"Query execution failed: {e}") from e

    def _execute_query(self, query: str, params: Optional[tuple] = None) -> List[Dict[str, Any]]:
        """Execute a query and return the results.

        Inside `transaction()` the query runs on the transaction's connection,
        otherwise it is committed on its own.
        """
        if self.connection_pool is None:
            raise StorageError("Not connected to the database")
        active = getattr(self._local, "conn", None)
        if active is not None:
            return self._fetch(active, query, params)

        conn = None
        try:
            conn = self.connection_pool.getconn()
            with conn:
                return self._fetch(conn, query, params)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Query execution failed: {e}") from e
        finally:
            if conn:
                self.connection_pool.putconn(conn)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if self.connection_pool is None:
            raise StorageError("Not connected to the database")
        if getattr(self._local, "conn", None) is not None:
            raise StorageError("A transaction is already open on this thread")
        try:
            conn = self.connection_pool.getconn()
        except Exception as e:
            raise StorageError(f"Error getting a connection: {e}") from e

        self._local.conn = conn
        try:
            # Commits when the block succeeds, rolls back when it raises
            with conn:
                yield
        except psycopg2.Error as e:
            raise StorageError(f"Transaction failed: {e}") from e
        finally:
            self._local.conn = None
            self.connection_pool.putconn(conn)

    def save(self, session: Session) -> None:
        query = "INSERT INTO sessions (started_at, data) VALUES (%s, %s::jsonb)"
        self._execute_query(query, (session.started_at, json.dumps(session.to_dict())))

    def drain_sessions(self) -> List[Session]:
        rows = self._execute_query("DELETE FROM sessions RETURNING data")
        return sorted((Session.from_dict(row["data"]) for row in rows), key=lambda s: s.started_at)

    def get_aggregates(self, period: Period, start: int, end: int) -> List[AggregatedSession]:
        query = """
        SELECT data FROM aggregated_sessions
        WHERE period = %s AND date >= %s AND date < %s
        ORDER BY date
        """
        rows = self._execute_query(query, (period.value, start, end))
        return [AggregatedSession.from_dict(row["data"]) for row in rows]

    def upsert_aggregate(self, aggregate: AggregatedSession) -> None:
        query = """
        INSERT INTO aggregated_sessions (period, date, data)
        VALUES (%s, %s, %s::jsonb)
        ON CONFLICT (period, date) DO UPDATE
        SET data = EXCLUDED.data,
            updated_at = CURRENT_TIMESTAMP
        """
        self._execute_query(
            query,
            (aggregate.period.value, aggregate.date, json.dumps(aggregate.to_dict()))
        )
