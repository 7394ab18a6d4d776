"""Backup store: pre-patch file contents keyed by working-tree path."""

from __future__ import annotations

import hashlib
import logging
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

_SUFFIX = ".txt"


def backup_key(rel_path: str) -> str:
    """Deterministic storage key for a normalized repository-relative path."""
    return hashlib.md5(rel_path.encode("utf-8"), usedforsecurity=False).hexdigest()


@runtime_checkable
class BackupStore(Protocol):
    """Map from working-tree path to the bytes it held before a patch.

    The presence of an entry means the path is owned by an applied patch.
    """

    def has(self, rel_path: str) -> bool: ...

    def load(self, rel_path: str) -> bytes: ...

    def save(self, rel_path: str, data: bytes) -> None: ...

    def delete(self, rel_path: str) -> bool: ...

    def keys(self) -> list[str]: ...

    def clear(self) -> int: ...


class FileBackupStore:
    """One blob per path under ``backups_dir``, named by the path's hash."""

    def __init__(self, backups_dir: Path) -> None:
        self.backups_dir = backups_dir

    def ensure_dir(self) -> None:
        """Create the backups directory if missing."""
        if self.backups_dir.exists() and not self.backups_dir.is_dir():
            msg = f"Backups path exists but is not a directory: {self.backups_dir}"
            raise NotADirectoryError(msg)
        if not self.backups_dir.exists():
            self.backups_dir.mkdir(parents=True)
            logger.info("Created backups directory at %s", self.backups_dir)

    def _blob(self, rel_path: str) -> Path:
        return self.backups_dir / f"{backup_key(rel_path)}{_SUFFIX}"

    def has(self, rel_path: str) -> bool:
        return self._blob(rel_path).is_file()

    def load(self, rel_path: str) -> bytes:
        """Return the saved bytes. Raises FileNotFoundError if there is no entry."""
        return self._blob(rel_path).read_bytes()

    def save(self, rel_path: str, data: bytes) -> None:
        self.ensure_dir()
        self._blob(rel_path).write_bytes(data)

    def delete(self, rel_path: str) -> bool:
        """Remove an entry. Returns True if it existed."""
        blob = self._blob(rel_path)
        if blob.exists():
            blob.unlink()
            return True
        return False

    def keys(self) -> list[str]:
        """Storage keys of every entry (paths are not recoverable from keys)."""
        if not self.backups_dir.is_dir():
            return []
        return sorted(p.stem for p in self.backups_dir.glob(f"*{_SUFFIX}"))

    def clear(self) -> int:
        """Delete every entry. Returns the number removed."""
        removed = 0
        for key in self.keys():
            (self.backups_dir / f"{key}{_SUFFIX}").unlink(missing_ok=True)
            removed += 1
        return removed
