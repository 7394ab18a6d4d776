"""Asset cache version marker bumped whenever patched files change."""

from __future__ import annotations

import logging
import secrets
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)


@runtime_checkable
class AssetVersion(Protocol):
    """Token clients append to asset URLs so they reload patched files."""

    def current(self) -> str: ...

    def refresh(self) -> str: ...


class MediaVersionFile:
    """Media version stored as a hex token in a small text file."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def current(self) -> str:
        """Return the stored token, creating one on first use."""
        if self.path.is_file():
            token = self.path.read_text(encoding="utf-8").strip()
            if token:
                return token
        return self.refresh()

    def refresh(self) -> str:
        """Replace the token with a fresh random one."""
        token = secrets.token_hex(16)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(token + "\n", encoding="utf-8")
        logger.debug("Media version refreshed to %s", token)
        return token
