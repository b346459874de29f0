"""Session lifecycle engine.

The engine owns the single in-flight coding session. Editor events and the
heartbeat monitor mutate it concurrently, so every public operation holds
`self._lock` for its whole duration.

The duration of a coding session should not grow with the number of editor
instances that are open. Only the most recently focused instance, the
active client, is tracked at a time.
"""

import copy
import threading
from dataclasses import dataclass
from typing import Optional

from harvest.metadata.resolver import MetadataResolver
from harvest.session.models import Event, File, Session
from harvest.storage.interface import SessionStore
from harvest.utils.clock import Clock
from harvest.utils.exceptions import ConfigError, MetadataError, SessionOrderError, StorageError
from harvest.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_HEARTBEAT_TTL_MS = 10 * 60 * 1000


@dataclass
class EngineConfig:
    """Collaborators and settings for a SessionEngine."""
    clock: Clock
    resolver: MetadataResolver
    store: SessionStore
    heartbeat_ttl_ms: int = DEFAULT_HEARTBEAT_TTL_MS

    def validate(self) -> None:
        """Raises ConfigError if a collaborator is missing or the TTL is invalid."""
        for name in ("clock", "resolver", "store"):
            if getattr(self, name) is None:
                raise ConfigError(f"{name} is required")
        if self.heartbeat_ttl_ms <= 0:
            raise ConfigError(f"heartbeat_ttl_ms must be positive, got {self.heartbeat_ttl_ms}")


class SessionEngine:
    def __init__(self, config: EngineConfig):
        config.validate()
        self.clock = config.clock
        self.resolver = config.resolver
        self.store = config.store
        self.heartbeat_ttl_ms = config.heartbeat_ttl_ms

        self._lock = threading.Lock()
        self._active_client_id = ""
        self._last_heartbeat = 0
        self._session: Optional[Session] = None

    @property
    def active_client_id(self) -> str:
        return self._active_client_id

    @property
    def last_heartbeat(self) -> int:
        return self._last_heartbeat

    @property
    def session(self) -> Optional[Session]:
        """A copy of the in-flight session, safe to inspect outside the lock."""
        with self._lock:
            return copy.deepcopy(self._session)

    @property
    def has_session(self) -> bool:
        return self._session is not None

    def focus_gained(self, event: Event) -> str:
        """Called when an editor instance gains focus."""
        with self._lock:
            self._last_heartbeat = self.clock.now_ms()

            # Jumping between a terminal split and the editor fires a lot of
            # focus events. Only a different editor instance starts a new session.
            if self._active_client_id == event.client_id:
                logger.debug(f"Jumped back to the same editor instance {event.client_id}")
                return "Jumped back to the same client."

            if self._session is not None:
                self._close_session()

            self._create_session(event)

            # The instance may already have a buffer open, in which case no
            # open file event will follow.
            self._update_current_file(event.path)
            return "Successfully updated the client being focused."

    def open_file(self, event: Event) -> str:
        """Called when a buffer is entered."""
        logger.debug(f"Received open file event for {event.path}")
        with self._lock:
            self._last_heartbeat = self.clock.now_ms()

            # No session if the previous one went stale, or if this is the
            # first instance and it never sent a focus event.
            if self._session is None:
                self._create_session(event)

            self._update_current_file(event.path)
            return "Successfully updated the current file."

    def send_heartbeat(self, event: Event) -> str:
        """Called to signal that the session is still alive, e.g. on buffer writes."""
        with self._lock:
            if self._session is None:
                logger.debug(
                    f"The session was ended by a previous heartbeat check. "
                    f"Creating a new one for {event.client_id}"
                )
                self._create_session(event)
                self._update_current_file(event.path)

            self._last_heartbeat = self.clock.now_ms()
            return "Successfully sent heartbeat."

    def end_session(self, event: Event) -> str:
        """Called when an editor instance exits.

        Raises:
            SessionOrderError: If the event comes from a client other than the active one
        """
        with self._lock:
            if self._active_client_id and self._active_client_id != event.client_id:
                raise SessionOrderError(
                    f"End session was called by {event.client_id}, "
                    f"which isn't the active client {self._active_client_id}",
                    active_client_id=self._active_client_id,
                    client_id=event.client_id,
                )

            if not self._active_client_id and self._session is None:
                logger.debug("The session was already ended, or never started")
                return "The session was already ended."

            self._close_session()
            return "The session was ended successfully."

    def check_heartbeat(self) -> bool:
        """Close the session if no heartbeat arrived within the TTL.

        Returns:
            True if a stale session was closed
        """
        with self._lock:
            if self._session is None:
                return False
            if self.clock.now_ms() - self._last_heartbeat <= self.heartbeat_ttl_ms:
                return False

            logger.info(f"Session for {self._active_client_id} went stale, closing it")
            self._close_session()
            return True

    def shutdown(self) -> None:
        """Close and save the in-flight session, if any."""
        with self._lock:
            if self._session is not None:
                logger.info("Saving the active session before shutting down")
                self._close_session()

    def _create_session(self, event: Event) -> None:
        self._active_client_id = event.client_id
        self._session = Session(
            started_at=self.clock.now_ms(),
            os=event.os,
            editor=event.editor,
        )
        logger.debug(f"Created a new session for {event.client_id}")

    def _update_current_file(self, path: str) -> None:
        opened_at = self.clock.now_ms()

        try:
            metadata = self.resolver.resolve(path)
        except MetadataError as e:
            logger.debug(f"Could not extract metadata for {path!r}: {e}")
            return

        self._session.archive_current_file(opened_at)
        self._session.current_file = File(
            name=metadata.name,
            repository=metadata.repository,
            filetype=metadata.filetype,
            path=path,
            opened_at=opened_at,
        )
        logger.debug(f"Successfully updated the current file to {path}")

    def _close_session(self) -> None:
        session = self._session
        client_id = self._active_client_id

        # Whatever happens below, the engine goes back to idle.
        self._session = None
        self._active_client_id = ""

        if session is None:
            logger.debug("There was no session to save")
            return

        session.end(self.clock.now_ms())

        if not session.files:
            logger.debug(f"The session for {client_id} had no files, dropping it")
            return

        try:
            self.store.save(session)
            logger.info(
                f"Saved session for {client_id}: {len(session.files)} files, "
                f"{session.duration_ms} ms"
            )
        except StorageError as e:
            logger.error(f"Failed to save the session for {client_id}: {e}")
