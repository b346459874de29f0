"""Periodic check that force-closes sessions abandoned without an end event."""

import threading
from typing import Optional

from harvest.session.engine import SessionEngine
from harvest.utils.logging import get_logger

logger = get_logger(__name__)


class HeartbeatMonitor:
    def __init__(self, engine: SessionEngine, interval_seconds: float = 10.0):
        self.engine = engine
        self.interval_seconds = interval_seconds
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start checking the heartbeat on a background thread."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="heartbeat-monitor", daemon=True
        )
        self._thread.start()
        logger.info(f"Heartbeat monitor started, checking every {self.interval_seconds}s")

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop the monitor.

        Waits at most `timeout` seconds (one interval by default) for an
        in-progress check to finish. The thread is a daemon, so it can't keep
        the process alive if the engine's lock is held for longer.
        """
        if self._thread is None:
            return
        self._stop_event.set()
        self._thread.join(self.interval_seconds if timeout is None else timeout)
        if self._thread.is_alive():
            logger.warning("Heartbeat monitor did not stop in time")
        else:
            logger.info("Heartbeat monitor stopped")
        self._thread = None

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval_seconds):
            try:
                self.engine.check_heartbeat()
            except Exception as e:
                logger.error(f"Heartbeat check failed: {e}", exc_info=True)
