"""Protocol for the remote API the synchronizer and patch engine consume."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from patchtester.github.models import (
        ChangedFile,
        FileContents,
        IssuePage,
        PullRequestInfo,
        RateLimit,
    )


@runtime_checkable
class RemoteClient(Protocol):
    """Read-only access to a GitHub-compatible REST API.

    Every method raises ``UnexpectedResponse`` on transport failures and
    non-success responses.
    """

    async def get_rate_limit(self) -> RateLimit:
        """Return the current core API quota."""
        ...

    async def get_open_issues(
        self, owner: str, repo: str, page: int, per_page: int
    ) -> IssuePage:
        """Return one page of open issues (pull requests included)."""
        ...

    async def get_pull_request(self, owner: str, repo: str, number: int) -> PullRequestInfo:
        """Return metadata of one pull request."""
        ...

    async def get_files_for_pull_request(
        self, owner: str, repo: str, number: int
    ) -> list[ChangedFile]:
        """Return every file changed by a pull request."""
        ...

    async def get_file_contents(
        self, owner: str, repo: str, path: str, ref: str
    ) -> FileContents:
        """Return the encoded content of a file at a ref."""
        ...
