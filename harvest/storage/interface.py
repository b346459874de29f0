"""Interface definition for session storage.

The engine only ever needs two things from a store: a connection that is
acquired once when the server starts, and a way of saving a finished
session. Stores that also serve the reporting pass implement
`AggregateStore` on top of that.
"""

from abc import ABC, abstractmethod
from typing import Callable, ContextManager, List

from harvest.aggregation.models import AggregatedSession, Period
from harvest.session.models import Session


class SessionStore(ABC):
    """Interface for the sink of finished coding sessions."""

    @abstractmethod
    def connect(self) -> Callable[[], None]:
        """Acquire the resources the store needs.

        Returns:
            Callable[[], None]: A function that releases the resources again

        Raises:
            StorageError: If the connection can't be established
        """
        pass

    @abstractmethod
    def save(self, session: Session) -> None:
        """Persist a finished session.

        Args:
            session: A session whose files have been merged

        Raises:
            StorageError: If the session couldn't be saved
        """
        pass


class AggregateStore(SessionStore):
    """A durable store that also keeps the aggregated sessions."""

    @abstractmethod
    def get_aggregates(self, period: Period, start: int, end: int) -> List[AggregatedSession]:
        """Get the aggregates of a period whose bucket starts within [start, end).

        Args:
            period: The period of the aggregates
            start: Inclusive lower bound in milliseconds
            end: Exclusive upper bound in milliseconds

        Returns:
            List[AggregatedSession]: Matching aggregates ordered by date
        """
        pass

    @abstractmethod
    def upsert_aggregate(self, aggregate: AggregatedSession) -> None:
        """Insert an aggregate, replacing any existing one for the same bucket.

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    def drain_sessions(self) -> List[Session]:
        """Remove and return the raw sessions saved to this store.

        Call it inside `transaction()`, so the sessions come back if the
        aggregates they were folded into can't be written.

        Returns:
            List[Session]: The sessions that were saved since the last drain
        """
        pass

    @abstractmethod
    def transaction(self) -> ContextManager[None]:
        """Apply every write made inside the block, or none of them.

        Raises:
            StorageError: If the transaction can't be started or committed
        """
        pass
