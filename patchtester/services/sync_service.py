"""Pull list synchronizer: mirrors open GitHub pull requests into the pulls table.

A full refresh is driven by the caller one page at a time: ``sync(1)``
truncates the table and stores the first batch, and every result that is not
``complete`` names the next page to request.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from patchtester.exceptions import (
    AppliedPatchesExist,
    DatabaseIO,
    PatchTesterError,
    RateLimitExceeded,
    RemoteUnavailable,
)
from patchtester.github.exceptions import UnexpectedResponse
from patchtester.models import Pull

if TYPE_CHECKING:
    from patchtester.github.base import RemoteClient
    from patchtester.github.models import Issue
    from patchtester.services.repositories import PullRepository, TestRepository

logger = logging.getLogger(__name__)

BATCH_SIZE = 100
MIN_SYNC_REMAINING = 10
TITLE_MAX_LENGTH = 150
DESCRIPTION_MAX_LENGTH = 100


@dataclass
class SyncResult:
    """Outcome of one page of a pull list refresh."""

    complete: bool
    next_page: int | None = None
    last_page: int | None = None
    inserted: int = 0
    error: PatchTesterError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def truncate_text(text: str, max_length: int) -> str:
    """Shorten text to at most ``max_length`` characters, breaking on a word.

    Truncated text ends with ``...``; the ellipsis counts toward the limit.
    """
    text = text.strip()
    if len(text) <= max_length:
        return text
    if max_length <= 3:
        return text[:max_length]
    cut = text[: max_length - 3]
    if " " in cut:
        cut = cut.rsplit(" ", maxsplit=1)[0]
    return cut.rstrip() + "..."


def parse_last_page(link_header: str | None, batch_size: int = BATCH_SIZE) -> int:
    """Read the last page number from a GitHub ``Link`` header.

    A missing header, or one without a ``rel="last"`` link for this batch
    size, means there is only one page.
    """
    if not link_header:
        return 1
    pattern = re.compile(rf'[?&]page=([0-9]{{1,3}})&per_page={batch_size}>; rel="last"')
    match = pattern.search(link_header)
    if match is None:
        return 1
    return int(match.group(1))


def classify_labels(
    labels: list[str], rtc_label: str, branch_prefix: str
) -> tuple[bool, str]:
    """Return (is_rtc, branch) derived from an issue's labels."""
    is_rtc = False
    branch = ""
    for name in labels:
        if name == rtc_label:
            is_rtc = True
        elif branch_prefix and name.startswith(branch_prefix):
            branch = name[len(branch_prefix) :]
    return is_rtc, branch


class PullSynchronizer:
    """Refreshes the pulls table from the open issues of one repository."""

    def __init__(
        self,
        remote: RemoteClient,
        pulls: PullRepository,
        tests: TestRepository,
        *,
        owner: str,
        repo: str,
        rtc_label: str = "RTC",
        branch_label_prefix: str = "PR-",
        batch_size: int = BATCH_SIZE,
    ) -> None:
        self.remote = remote
        self.pulls = pulls
        self.tests = tests
        self.owner = owner
        self.repo = repo
        self.rtc_label = rtc_label
        self.branch_label_prefix = branch_label_prefix
        self.batch_size = batch_size

    async def _check_rate_limit(self) -> None:
        try:
            rate = await self.remote.get_rate_limit()
        except UnexpectedResponse as exc:
            raise RemoteUnavailable(f"Could not connect to GitHub: {exc}") from exc
        if rate.remaining < MIN_SYNC_REMAINING:
            raise RateLimitExceeded(reset_at=rate.reset, remaining=rate.remaining)

    async def _check_no_applied_tests(self) -> None:
        try:
            count = await self.tests.count()
        except SQLAlchemyError as exc:
            raise DatabaseIO(f"Could not read applied tests: {exc}", safe_to_retry=True) from exc
        if count:
            raise AppliedPatchesExist(count)

    async def start(self) -> SyncResult:
        """Preflight for a refresh. Returns the first page to request."""
        try:
            await self._check_rate_limit()
            await self._check_no_applied_tests()
        except PatchTesterError as exc:
            logger.warning("Pull list refresh refused: %s", exc)
            return SyncResult(complete=False, error=exc)
        return SyncResult(complete=False, next_page=1)

    async def sync(self, page: int) -> SyncResult:
        """Fetch and store one page of open pull requests."""
        try:
            return await self._sync_page(page)
        except PatchTesterError as exc:
            if exc.safe_to_retry:
                logger.warning("Pull list page %d failed: %s", page, exc)
            else:
                logger.error("Pull list page %d failed: %s", page, exc)
            return SyncResult(complete=False, error=exc)

    async def _sync_page(self, page: int) -> SyncResult:
        if page < 1:
            raise ValueError(f"Page numbers start at 1, got {page}")

        await self._check_rate_limit()

        if page == 1:
            await self._check_no_applied_tests()
            try:
                await self.pulls.truncate()
            except SQLAlchemyError as exc:
                raise DatabaseIO(f"Could not clear the pulls table: {exc}") from exc

        try:
            batch = await self.remote.get_open_issues(
                self.owner, self.repo, page, self.batch_size
            )
        except UnexpectedResponse as exc:
            raise RemoteUnavailable(f"Error fetching pull requests from GitHub: {exc}") from exc

        last_page = parse_last_page(batch.link_header, self.batch_size) if page == 1 else None

        rows = [self._build_row(issue) for issue in batch.issues if issue.is_pull_request]
        if not rows:
            logger.info("Pull list refresh complete at page %d", page)
            return SyncResult(complete=True)

        try:
            await self.pulls.insert_many(rows)
        except SQLAlchemyError as exc:
            raise DatabaseIO(f"Error inserting pull requests into the database: {exc}") from exc

        logger.info("Stored %d pull requests from page %d", len(rows), page)
        return SyncResult(
            complete=False,
            next_page=page + 1,
            last_page=last_page,
            inserted=len(rows),
        )

    def _build_row(self, issue: Issue) -> Pull:
        is_rtc, branch = classify_labels(issue.labels, self.rtc_label, self.branch_label_prefix)
        return Pull(
            pull_id=issue.number,
            title=truncate_text(issue.title, TITLE_MAX_LENGTH),
            description=truncate_text(issue.body, DESCRIPTION_MAX_LENGTH),
            pull_url=issue.pull_request_url or "",
            is_rtc=is_rtc,
            branch=branch,
            sha="",
        )
