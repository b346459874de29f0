import abc
import os
import subprocess
from pathlib import Path

from harvest.session.models import FileMetadata
from harvest.utils.exceptions import MetadataError
from harvest.utils.logging import get_logger

logger = get_logger(__name__)


class MetadataResolver(abc.ABC):
    """Abstract base class for file metadata lookups."""

    @abc.abstractmethod
    def resolve(self, path: str) -> FileMetadata:
        """Get the name, repository and filetype of a file.

        Args:
            path: Absolute path of the file

        Returns:
            The metadata of the file

        Raises:
            MetadataError: If the metadata can't be resolved
        """
        raise NotImplementedError


class GitMetadataResolver(MetadataResolver):
    """Resolves the repository of a file by asking git for its top level directory."""

    def __init__(self, git_binary: str = "git", timeout: float = 2.0):
        self.git_binary = git_binary
        self.timeout = timeout

    def resolve(self, path: str) -> FileMetadata:
        if not path:
            raise MetadataError("Empty path", path=path)

        file_path = Path(path)
        if not file_path.is_file():
            raise MetadataError(f"{path} is not a file", path=path)

        repository_root = self._repository_root(file_path.parent)
        return FileMetadata(
            name=file_path.name,
            repository=os.path.basename(repository_root),
            filetype=filetype(file_path),
        )

    def _repository_root(self, directory: Path) -> str:
        try:
            result = subprocess.run(
                [self.git_binary, "-C", str(directory), "rev-parse", "--show-toplevel"],
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise MetadataError(f"Failed to run git: {e}", path=str(directory)) from e

        if result.returncode != 0:
            raise MetadataError(
                f"{directory} is not inside a git repository",
                path=str(directory),
            )
        return result.stdout.strip()


def filetype(file_path: Path) -> str:
    """Get the filetype from the extension, e.g. `go` for main.go.

    Files without an extension, such as Makefile, use their name.
    """
    suffix = file_path.suffix
    if suffix:
        return suffix[1:]
    return file_path.name
