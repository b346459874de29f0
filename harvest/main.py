"""Main entry point for the code harvest server."""
import argparse
import signal
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from uvicorn import Config, Server

from harvest.api.server import create_app
from harvest.metadata.resolver import GitMetadataResolver
from harvest.reporting import flush
from harvest.session.engine import EngineConfig, SessionEngine
from harvest.session.heartbeat import HeartbeatMonitor
from harvest.storage.disk import DiskStore
from harvest.storage.interface import SessionStore
from harvest.storage.memory import MemoryStore
from harvest.storage.postgresql import PostgresStore
from harvest.utils.clock import SystemClock
from harvest.utils.config import DEFAULT_CONFIG_PATH, get_config, load_or_create_config
from harvest.utils.exceptions import ConfigError, StorageError
from harvest.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)


def create_store(config: Dict[str, Any]) -> SessionStore:
    """Create the store the engine saves finished sessions to."""
    backend = get_config(config, "storage.backend", "disk")
    if backend == "disk":
        return DiskStore(Path(get_config(config, "storage.staging_dir")))
    if backend == "postgres":
        return PostgresStore(config["database"])
    if backend == "memory":
        return MemoryStore()
    raise ConfigError(f"Unknown storage backend: {backend}")


HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class TransportServer(Server):
    """uvicorn server that leaves the exit signals to `HarvestServer`.

    uvicorn re-raises a captured SIGTERM once it has stopped, which would kill
    the process before the active session is flushed.
    """

    @contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


class HarvestServer:
    """Wires the engine, heartbeat monitor and HTTP transport together."""

    def __init__(self, config: Dict[str, Any], store: Optional[SessionStore] = None):
        self.config = config
        self.store = store or create_store(config)
        self.engine = SessionEngine(EngineConfig(
            clock=SystemClock(),
            resolver=GitMetadataResolver(),
            store=self.store,
            heartbeat_ttl_ms=int(get_config(config, "heartbeat.ttl_seconds", 600) * 1000),
        ))
        self.monitor = HeartbeatMonitor(
            self.engine,
            interval_seconds=get_config(config, "heartbeat.interval_seconds", 10),
        )
        self.app = create_app(self.engine, on_fatal=self._on_fatal)
        self.server = TransportServer(Config(
            self.app,
            host=get_config(config, "server.host", "127.0.0.1"),
            port=get_config(config, "server.port", 8765),
            log_level="info" if config.get("development") else "warning",
        ))
        self.fatal_error: Optional[Exception] = None

    def _on_fatal(self, error: Exception) -> None:
        logger.critical("Shutting down, the session state can no longer be trusted")
        self.fatal_error = error
        self.server.should_exit = True

    def _handle_exit(self, signum, frame) -> None:
        logger.info(f"Received {signal.Signals(signum).name}, stopping the server")
        if self.server.should_exit and signum == signal.SIGINT:
            self.server.force_exit = True
        self.server.should_exit = True

    def run(self) -> int:
        """Serve until SIGINT/SIGTERM, or until a fatal error.

        The monitor is stopped before the engine flushes the active session,
        and the store is disconnected last.

        Returns:
            The exit code of the process
        """
        logger.info("Starting up...")
        disconnect = self.store.connect()
        previous = {sig: signal.signal(sig, self._handle_exit) for sig in HANDLED_SIGNALS}
        try:
            self.monitor.start()
            self.server.run()
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler)
            logger.info("Shutting down...")
            self.monitor.stop()
            if self.fatal_error is None:
                self.engine.shutdown()
            disconnect()

        return 1 if self.fatal_error is not None else 0


def run_flush(config: Dict[str, Any]) -> int:
    """Move the staged sessions into the permanent database."""
    staging = DiskStore(Path(get_config(config, "storage.staging_dir")))
    database = PostgresStore(config["database"])
    disconnect = database.connect()
    try:
        count = flush(staging, database)
        print(f"Flushed {count} sessions")
        return 0
    finally:
        disconnect()


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="code-harvest", description="Track coding sessions from editor events")
    parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="Path to config.json")
    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("serve", help="Run the event server (default)")
    subparsers.add_parser("flush", help="Aggregate staged sessions into the database")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    config = load_or_create_config(args.config)
    log_file = config.get("log_file")
    configure_logging(
        development=config.get("development", True),
        log_file=Path(log_file) if log_file else None,
    )

    try:
        if args.command == "flush":
            return run_flush(config)
        return HarvestServer(config).run()
    except (ConfigError, StorageError) as e:
        logger.error(f"Fatal error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
