"""Working tree access: the checkout patches are applied to."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)


@runtime_checkable
class FileSystem(Protocol):
    """Byte-level access to repository-relative paths.

    Mutating methods raise ``OSError`` on failure and ``ValueError`` for
    paths that escape the tree.
    """

    def exists(self, rel_path: str) -> bool: ...

    def read_bytes(self, rel_path: str) -> bytes: ...

    def write_bytes(self, rel_path: str, data: bytes) -> None: ...

    def delete(self, rel_path: str) -> bool: ...

    def is_development_checkout(self) -> bool: ...


@dataclass
class WorkingTree:
    """Files under ``root``, addressed by repository-relative POSIX paths."""

    root: Path
    dev_marker: str = "installation/index.php"

    def _validate_path(self, rel_path: str) -> Path:
        """Resolve a relative path, rejecting anything outside the tree."""
        full_path = (self.root / rel_path.lstrip("/")).resolve()
        if not full_path.is_relative_to(self.root.resolve()):
            raise ValueError(f"Path traversal detected: {rel_path}")
        return full_path

    def exists(self, rel_path: str) -> bool:
        return self._validate_path(rel_path).is_file()

    def read_bytes(self, rel_path: str) -> bytes:
        return self._validate_path(rel_path).read_bytes()

    def write_bytes(self, rel_path: str, data: bytes) -> None:
        """Write a file, creating missing parent directories."""
        full_path = self._validate_path(rel_path)
        full_path.parent.mkdir(parents=True, exist_ok=True)
        full_path.write_bytes(data)

    def delete(self, rel_path: str) -> bool:
        """Delete a file. Returns True if it existed."""
        full_path = self._validate_path(rel_path)
        if full_path.exists():
            full_path.unlink()
            return True
        return False

    def is_development_checkout(self) -> bool:
        """A development checkout still ships the installer, a release does not."""
        return (self.root / self.dev_marker).is_file()
