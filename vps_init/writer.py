"""
ConfigWriter - idempotent "write file with backup" primitive.

Every step that produces a configuration file goes through ConfigWriter:

1. READ     - load the current content of the target, if any
2. COMPARE  - identical bytes mean nothing to do (no write, no backup)
3. BACKUP   - copy the existing file to <path>.bak.<timestamp>
4. REPLACE  - write a temporary sibling, fsync, and atomically rename it

Readers of the target therefore never observe partial content.
"""

import datetime
import logging
import os
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Union

from .errors import WriteError
from .results import Status

logger = logging.getLogger("vps_init.writer")


def read_current(path: Path) -> Optional[bytes]:
    """
    Current bytes at path, or None if no file exists there.

    Raises:
        WriteError: If the file exists but cannot be read
    """
    if not path.is_file():
        return None
    try:
        return path.read_bytes()
    except OSError as e:
        raise WriteError(str(path), f"cannot read current content: {e}") from e


@dataclass(frozen=True)
class ConfigArtifact:
    """A single managed configuration file and its desired content."""

    path: Path
    content: bytes
    # snapshot taken when the artifact was built; apply() re-reads the file
    previous_content: Optional[bytes] = None

    @classmethod
    def load(cls, path: Union[str, Path], content: Union[str, bytes]) -> "ConfigArtifact":
        """Build an artifact, capturing whatever is currently at path."""
        path = Path(path)
        if isinstance(content, str):
            content = content.encode("utf-8")
        return cls(path=path, content=content, previous_content=read_current(path))

    @property
    def changed(self) -> bool:
        return self.previous_content != self.content


@dataclass
class WriteResult:
    """Result of a ConfigWriter operation."""

    status: Status
    path: Path
    backup_path: Optional[Path] = None


def _timestamp() -> str:
    return datetime.datetime.now().strftime("%Y%m%d%H%M%S%f")


class ConfigWriter:
    """
    Applies ConfigArtifacts with backup-before-overwrite and atomic replace.

    Args:
        dry_run: Log intended changes without touching the filesystem
        clock: Timestamp source for backup suffixes (must sort chronologically)
    """

    DEFAULT_MODE = 0o644

    def __init__(self, dry_run: bool = False, clock: Callable[[], str] = _timestamp):
        self.dry_run = dry_run
        self.clock = clock

    def write(self, path: Union[str, Path], content: Union[str, bytes]) -> WriteResult:
        """Shortcut for apply(ConfigArtifact.load(path, content))."""
        return self.apply(ConfigArtifact.load(path, content))

    def apply(self, artifact: ConfigArtifact) -> WriteResult:
        """
        Bring artifact.path to the desired content.

        Args:
            artifact: The file to manage

        Returns:
            WriteResult with APPLIED or UNCHANGED

        Raises:
            WriteError: If the current file cannot be read, or the backup or the
                write fails
        """
        path = Path(artifact.path)
        current = read_current(path)

        if current == artifact.content:
            logger.debug(f"{path} already up to date")
            return WriteResult(Status.UNCHANGED, path)

        if self.dry_run:
            logger.info(f"[dry-run] would write {path} ({len(artifact.content)} bytes)")
            return WriteResult(Status.APPLIED, path)

        backup = None
        if current is not None:
            backup = self._backup(path)

        self._atomic_write(path, artifact.content)
        logger.info(f"Wrote {path}")
        return WriteResult(Status.APPLIED, path, backup)

    def remove(self, path: Union[str, Path]) -> WriteResult:
        """
        Delete a managed file if present.

        Raises:
            WriteError: If the file exists but cannot be removed
        """
        path = Path(path)
        if not path.exists() and not path.is_symlink():
            return WriteResult(Status.UNCHANGED, path)

        if self.dry_run:
            logger.info(f"[dry-run] would remove {path}")
            return WriteResult(Status.REMOVED, path)

        try:
            path.unlink()
        except OSError as e:
            raise WriteError(str(path), f"cannot remove: {e}") from e
        logger.info(f"Removed {path}")
        return WriteResult(Status.REMOVED, path)

    def backup_path_for(self, path: Path) -> Path:
        """A backup name for path that does not exist yet."""
        base = f"{path}.bak.{self.clock()}"
        candidate = Path(base)
        counter = 1
        while candidate.exists():
            candidate = Path(f"{base}-{counter}")
            counter += 1
        return candidate

    def _backup(self, path: Path) -> Path:
        backup = self.backup_path_for(path)
        try:
            shutil.copy2(path, backup)
        except OSError as e:
            raise WriteError(str(path), f"backup to {backup} failed: {e}") from e
        logger.info(f"Backed up {path} to {backup}")
        return backup

    def _atomic_write(self, path: Path, content: bytes) -> None:
        try:
            mode = path.stat().st_mode & 0o7777 if path.exists() else self.DEFAULT_MODE
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.")
        except OSError as e:
            raise WriteError(str(path), str(e)) from e

        try:
            try:
                f = os.fdopen(fd, "wb")
            except BaseException:
                os.close(fd)
                raise
            with f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_path, mode)
            os.replace(tmp_path, path)
        except OSError as e:
            raise WriteError(str(path), str(e)) from e
        finally:
            if os.path.exists(tmp_path):
                try:
                    os.remove(tmp_path)
                except OSError:
                    logger.debug(f"Failed to remove temp file {tmp_path}")
