"""Pull request file lists: normalization, filtering and serialization."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterable

    from patchtester.github.models import ChangedFile


class FileAction(StrEnum):
    """GitHub file status values the patch engine knows how to apply."""

    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"


@dataclass
class FileChange:
    """One file touched by a pull request, mapped onto the working tree."""

    action: str
    filename: str
    repo_filename: str
    file_url: str
    original_filename: str | None = None
    # Downloaded content, only held between the fetch and the write.
    body: bytes | None = field(default=None, repr=False, compare=False)

    @property
    def backup_path(self) -> str:
        """Path whose pre-patch content is saved before this change is written."""
        if self.action == FileAction.RENAMED and self.original_filename:
            return self.original_filename
        return self.filename

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "filename": self.filename,
            "repo_filename": self.repo_filename,
            "file_url": self.file_url,
            "original_filename": self.original_filename,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FileChange:
        return cls(
            action=data["action"],
            filename=data["filename"],
            repo_filename=data.get("repo_filename", data["filename"]),
            file_url=data.get("file_url", ""),
            original_filename=data.get("original_filename"),
        )


def strip_source_prefix(path: str, prefix: str) -> str:
    """Map a repository path onto the installed layout.

    The repository keeps shippable code under ``src/`` while the working tree
    has it at the top level.
    """
    if not prefix:
        return path
    head, sep, rest = path.partition("/")
    if sep and head == prefix:
        return rest
    return path


def is_non_production(path: str, folders: Iterable[str], files: Iterable[str]) -> bool:
    """True when the top-level segment of ``path`` is never shipped."""
    top = path.split("/", 1)[0]
    return top in set(folders) or top in set(files)


def parse_file_list(
    files: list[ChangedFile],
    *,
    source_prefix: str,
    non_production_folders: Iterable[str],
    non_production_files: Iterable[str],
    is_dev: bool,
) -> list[FileChange]:
    """Turn GitHub's file listing into working-tree file changes.

    Outside a development checkout, build tooling, tests, docs and other
    files that are not part of a release are dropped.
    """
    folders = list(non_production_folders)
    names = list(non_production_files)
    parsed: list[FileChange] = []
    for changed in files:
        if not is_dev and is_non_production(changed.filename, folders, names):
            continue

        original = changed.previous_filename
        parsed.append(
            FileChange(
                action=changed.status,
                filename=strip_source_prefix(changed.filename, source_prefix),
                repo_filename=changed.filename,
                file_url=changed.contents_url,
                original_filename=(
                    strip_source_prefix(original, source_prefix) if original else None
                ),
            )
        )
    return parsed


def serialize_changes(changes: list[FileChange]) -> str:
    """JSON form stored on the applied test. File bodies are never included."""
    return json.dumps([change.to_dict() for change in changes])


def deserialize_changes(data: str) -> list[FileChange]:
    """Inverse of ``serialize_changes``.

    Raises ValueError when the stored data is not a list of file changes.
    """
    raw = json.loads(data)
    if not isinstance(raw, list):
        raise ValueError("Stored file list is not a list")
    try:
        return [FileChange.from_dict(item) for item in raw]
    except (KeyError, TypeError) as exc:
        raise ValueError(f"Stored file list entry is malformed: {exc}") from exc
