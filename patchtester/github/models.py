"""Typed views of the GitHub payloads the patch tester consumes."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class RateLimit:
    """Core API quota from ``GET /rate_limit``."""

    limit: int
    remaining: int
    reset: int  # epoch seconds

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> RateLimit:
        core = data["resources"]["core"]
        return cls(
            limit=int(core.get("limit", 0)),
            remaining=int(core["remaining"]),
            reset=int(core["reset"]),
        )


@dataclass
class Issue:
    """Entry of the open issues listing; pull requests carry ``pull_request_url``."""

    number: int
    title: str
    body: str
    labels: list[str] = field(default_factory=list)
    pull_request_url: str | None = None

    @property
    def is_pull_request(self) -> bool:
        return self.pull_request_url is not None

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> Issue:
        pull_request = data.get("pull_request")
        return cls(
            number=int(data["number"]),
            title=data.get("title") or "",
            body=data.get("body") or "",
            labels=[label["name"] for label in data.get("labels") or []],
            pull_request_url=pull_request.get("html_url") if pull_request else None,
        )


@dataclass
class IssuePage:
    """One page of open issues plus the raw ``Link`` pagination header."""

    issues: list[Issue]
    link_header: str | None = None


@dataclass
class PullRequestInfo:
    """Metadata of a single pull request needed to fetch its files."""

    number: int
    head_sha: str
    head_ref: str
    head_owner: str
    head_repo: str | None  # None when the source fork has been deleted

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> PullRequestInfo:
        head = data["head"]
        repo = head.get("repo")
        return cls(
            number=int(data["number"]),
            head_sha=head["sha"],
            head_ref=head["ref"],
            head_owner=(head.get("user") or {}).get("login", ""),
            head_repo=repo["name"] if repo else None,
        )


@dataclass
class ChangedFile:
    """Entry of ``GET /pulls/{n}/files``."""

    status: str
    filename: str
    contents_url: str
    previous_filename: str | None = None

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> ChangedFile:
        return cls(
            status=data["status"],
            filename=data["filename"],
            contents_url=data.get("contents_url", ""),
            previous_filename=data.get("previous_filename"),
        )


@dataclass
class FileContents:
    """Raw ``GET /contents/{path}`` payload."""

    encoding: str
    content: str

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> FileContents:
        return cls(encoding=data.get("encoding") or "", content=data.get("content") or "")
