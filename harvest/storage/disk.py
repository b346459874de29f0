"""Temporary on-disk staging of finished sessions.

Every session is written to its own JSON file. The reporting pass later
reads the staged files, merges them into the permanent store and removes
them.
"""

import json
import os
import uuid
from pathlib import Path
from typing import Callable, Iterable, List, Tuple

from harvest.session.models import Session
from harvest.storage.interface import SessionStore
from harvest.utils.exceptions import StorageError
from harvest.utils.logging import get_logger

logger = get_logger(__name__)


class DiskStore(SessionStore):
    def __init__(self, staging_dir: Path):
        self.staging_dir = Path(staging_dir).expanduser()

    def connect(self) -> Callable[[], None]:
        try:
            self.staging_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create staging directory {self.staging_dir}: {e}") from e
        logger.info(f"Staging sessions in {self.staging_dir}")

        def disconnect():
            logger.debug("Disconnected from disk storage")

        return disconnect

    def save(self, session: Session) -> None:
        filename = f"{session.started_at}-{uuid.uuid4().hex[:8]}.json"
        path = self.staging_dir / filename
        tmp_path = path.with_suffix(".tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(session.to_dict(), f)
            # Only complete files ever carry the .json suffix
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as e:
            tmp_path.unlink(missing_ok=True)
            raise StorageError(f"Failed to write session to {path}: {e}") from e

    def read_all(self) -> List[Tuple[Path, Session]]:
        """Read every staged session, skipping files that can't be parsed."""
        staged = []
        for path in sorted(self.staging_dir.glob("*.json")):
            try:
                with open(path, "r", encoding="utf-8") as f:
                    staged.append((path, Session.from_dict(json.load(f))))
            except (OSError, ValueError, KeyError) as e:
                logger.error(f"Skipping unreadable staged session {path}: {e}")
        return staged

    def remove(self, paths: Iterable[Path]) -> None:
        for path in paths:
            try:
                Path(path).unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                raise StorageError(f"Failed to remove staged session {path}: {e}") from e
