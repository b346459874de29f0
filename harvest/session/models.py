"""Coding session data model.

A `Session` is one continuous interval of coding activity for a single
editor instance. Every time a buffer is entered a new `File` record is
started, so the same path can appear many times in `open_files`. The
records are merged by path into `files` right before the session is saved.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any


@dataclass
class Event:
    """A remote event sent by an editor instance."""
    client_id: str
    os: str = ""
    editor: str = ""
    path: str = ""


@dataclass
class FileMetadata:
    name: str
    repository: str
    filetype: str


@dataclass
class File:
    name: str
    repository: str
    filetype: str
    path: str
    opened_at: int
    closed_at: int = 0  # 0 while the file is still open
    duration_ms: int = 0

    def interval_ms(self) -> int:
        """Length of this open interval. Only meaningful once closed."""
        return self.closed_at - self.opened_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "repository": self.repository,
            "filetype": self.filetype,
            "path": self.path,
            "openedAt": self.opened_at,
            "closedAt": self.closed_at,
            "durationMs": self.duration_ms,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "File":
        return cls(
            name=data["name"],
            repository=data["repository"],
            filetype=data["filetype"],
            path=data["path"],
            opened_at=data["openedAt"],
            closed_at=data.get("closedAt", 0),
            duration_ms=data.get("durationMs", 0),
        )


@dataclass
class Session:
    started_at: int
    os: str
    editor: str
    ended_at: int = 0
    duration_ms: int = 0
    current_file: Optional[File] = None
    open_files: List[File] = field(default_factory=list)
    files: Dict[str, File] = field(default_factory=dict)

    def archive_current_file(self, closed_at: int) -> None:
        """Close the current file and move it to the list of open intervals."""
        if self.current_file is not None:
            self.current_file.closed_at = closed_at
            self.open_files.append(self.current_file)
            self.current_file = None

    def merge_files(self) -> None:
        """Merge the open intervals into `files`, summing durations per path."""
        for f in self.open_files:
            merged = self.files.get(f.path)
            if merged is None:
                f.duration_ms = f.interval_ms()
                self.files[f.path] = f
            else:
                merged.duration_ms += f.interval_ms()

    def end(self, ended_at: int) -> None:
        """Archive the current file, set the duration and merge the files."""
        self.archive_current_file(ended_at)
        self.ended_at = ended_at
        self.duration_ms = self.ended_at - self.started_at
        self.merge_files()

    def to_dict(self) -> Dict[str, Any]:
        """Convert the session to the dictionary format used for storage.

        Only the merged files are stored, the individual open intervals
        have served their purpose once the session has ended.
        """
        return {
            "startedAt": self.started_at,
            "endedAt": self.ended_at,
            "durationMs": self.duration_ms,
            "os": self.os,
            "editor": self.editor,
            "files": {path: f.to_dict() for path, f in self.files.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        return cls(
            started_at=data["startedAt"],
            ended_at=data.get("endedAt", 0),
            duration_ms=data.get("durationMs", 0),
            os=data.get("os", ""),
            editor=data.get("editor", ""),
            files={
                path: File.from_dict(f)
                for path, f in data.get("files", {}).items()
            },
        )
