"""Patch, fetch and pull list schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ErrorInfo(BaseModel):
    """A core operation failure as returned to clients."""

    detail: str
    kind: str
    safe_to_retry: bool


class FetchResponse(BaseModel):
    """Progress of a pull list refresh."""

    complete: bool
    next_page: int | None = None
    last_page: int | None = None
    inserted: int = Field(default=0, ge=0)


class FileChangeResponse(BaseModel):
    action: str
    filename: str
    repo_filename: str
    original_filename: str | None = None


class ApplyResponse(BaseModel):
    """Result of applying a pull request."""

    patched: bool
    test_id: int | None = None
    files: list[FileChangeResponse] = Field(default_factory=list)
    message: str


class RevertResponse(BaseModel):
    """Result of reverting an applied test."""

    reverted: bool
    restored_files: bool
    message: str


class ResetResponse(BaseModel):
    """Result of reverting every applied test and clearing all data."""

    reverted: list[int] = Field(default_factory=list)
    removed_backups: int = Field(default=0, ge=0)
    errors: list[ErrorInfo] = Field(default_factory=list)


class PullResponse(BaseModel):
    """Pull request row, with the id of its applied test if any."""

    pull_id: int
    title: str
    description: str
    pull_url: str
    is_rtc: bool
    branch: str
    sha: str
    applied: int | None = None


class PullListResponse(BaseModel):
    items: list[PullResponse]
    total: int = Field(ge=0)
    start: int = Field(ge=0)
    limit: int = Field(ge=1)


class BranchesResponse(BaseModel):
    branches: list[str]


class AppliedTestResponse(BaseModel):
    """Applied test with its stored file list."""

    id: int
    pull_id: int
    patched_by: int
    applied_version: str
    files: list[FileChangeResponse] = Field(default_factory=list)
