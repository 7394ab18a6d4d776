"""Tests for the pull list synchronizer."""

from __future__ import annotations

import pytest

from patchtester.exceptions import ErrorKind
from patchtester.github.models import IssuePage
from patchtester.models import Pull
from patchtester.services.sync_service import (
    PullSynchronizer,
    classify_labels,
    parse_last_page,
    truncate_text,
)
from tests.test_services._fakes import (
    FakeRemote,
    InMemoryPullRepository,
    InMemoryTestRepository,
    issue,
)

LINK_HEADER = (
    '<https://api.github.com/repositories/1/issues?state=open&page=2&per_page=100>; rel="next", '
    '<https://api.github.com/repositories/1/issues?state=open&page=7&per_page=100>; rel="last"'
)


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def pulls() -> InMemoryPullRepository:
    return InMemoryPullRepository()


@pytest.fixture
def tests_repo() -> InMemoryTestRepository:
    return InMemoryTestRepository()


@pytest.fixture
def synchronizer(
    remote: FakeRemote, pulls: InMemoryPullRepository, tests_repo: InMemoryTestRepository
) -> PullSynchronizer:
    return PullSynchronizer(remote, pulls, tests_repo, owner="joomla", repo="joomla-cms")


class TestTruncateText:
    def test_short_text_is_unchanged(self) -> None:
        assert truncate_text("Fix the loader", 150) == "Fix the loader"

    def test_breaks_on_word_boundary(self) -> None:
        assert truncate_text("alpha beta gamma delta", 15) == "alpha beta..."

    def test_single_long_word_is_cut(self) -> None:
        assert truncate_text("abcdefghijklmnop", 10) == "abcdefg..."

    def test_strips_whitespace(self) -> None:
        assert truncate_text("  padded  ", 100) == "padded"


class TestParseLastPage:
    def test_reads_last_link(self) -> None:
        assert parse_last_page(LINK_HEADER) == 7

    def test_missing_header_means_one_page(self) -> None:
        assert parse_last_page(None) == 1
        assert parse_last_page("") == 1

    def test_other_batch_size_is_ignored(self) -> None:
        assert parse_last_page(LINK_HEADER, batch_size=30) == 1


class TestClassifyLabels:
    def test_rtc_and_branch(self) -> None:
        assert classify_labels(["RTC", "PR-4.1-dev", "bug"], "RTC", "PR-") == (True, "4.1-dev")

    def test_no_matching_labels(self) -> None:
        assert classify_labels(["bug"], "RTC", "PR-") == (False, "")


class TestStart:
    async def test_returns_first_page(self, synchronizer: PullSynchronizer) -> None:
        result = await synchronizer.start()

        assert result.ok
        assert result.next_page == 1

    async def test_refuses_while_tests_are_applied(
        self, synchronizer: PullSynchronizer, tests_repo: InMemoryTestRepository
    ) -> None:
        await tests_repo.add(pull_id=1, data="[]", patched_by=1, applied_version="4.0.0")

        result = await synchronizer.start()

        assert result.error is not None
        assert result.error.kind == ErrorKind.APPLIED_PATCHES_EXIST

    async def test_refuses_when_quota_is_low(
        self, synchronizer: PullSynchronizer, remote: FakeRemote
    ) -> None:
        remote.remaining = 9

        result = await synchronizer.start()

        assert result.error is not None
        assert result.error.kind == ErrorKind.RATE_LIMIT_EXCEEDED


class TestSync:
    async def test_first_page_replaces_table(
        self,
        synchronizer: PullSynchronizer,
        remote: FakeRemote,
        pulls: InMemoryPullRepository,
    ) -> None:
        pulls.rows[999] = Pull(pull_id=999, title="Stale", pull_url="", sha="")
        remote.issue_pages[1] = IssuePage(
            issues=[issue(10, labels=["RTC"]), issue(11, labels=["PR-4.1-dev"])],
            link_header=LINK_HEADER,
        )

        result = await synchronizer.sync(1)

        assert result.ok
        assert not result.complete
        assert result.next_page == 2
        assert result.last_page == 7
        assert result.inserted == 2
        assert pulls.truncations == 1
        assert sorted(pulls.rows) == [10, 11]
        assert pulls.rows[10].is_rtc
        assert pulls.rows[11].branch == "4.1-dev"
        assert pulls.rows[10].sha == ""

    async def test_plain_issues_are_skipped(
        self,
        synchronizer: PullSynchronizer,
        remote: FakeRemote,
        pulls: InMemoryPullRepository,
    ) -> None:
        remote.issue_pages[1] = IssuePage(issues=[issue(10), issue(12, pull=False)])

        result = await synchronizer.sync(1)

        assert result.inserted == 1
        assert list(pulls.rows) == [10]

    async def test_later_pages_append(
        self,
        synchronizer: PullSynchronizer,
        remote: FakeRemote,
        pulls: InMemoryPullRepository,
    ) -> None:
        remote.issue_pages[1] = IssuePage(issues=[issue(10)], link_header=LINK_HEADER)
        remote.issue_pages[2] = IssuePage(issues=[issue(20)], link_header=LINK_HEADER)

        await synchronizer.sync(1)
        result = await synchronizer.sync(2)

        assert result.next_page == 3
        assert result.last_page is None
        assert pulls.truncations == 1
        assert sorted(pulls.rows) == [10, 20]

    async def test_empty_page_completes(
        self, synchronizer: PullSynchronizer, remote: FakeRemote
    ) -> None:
        remote.issue_pages[1] = IssuePage(issues=[issue(10)])

        await synchronizer.sync(1)
        result = await synchronizer.sync(2)

        assert result.complete
        assert result.next_page is None

    async def test_requests_pages_in_batches(
        self, synchronizer: PullSynchronizer, remote: FakeRemote
    ) -> None:
        await synchronizer.sync(1)

        listing = [args for name, args in remote.calls if name == "get_open_issues"]
        assert listing == [("joomla", "joomla-cms", 1, 100)]

    async def test_long_titles_are_truncated(
        self,
        synchronizer: PullSynchronizer,
        remote: FakeRemote,
        pulls: InMemoryPullRepository,
    ) -> None:
        remote.issue_pages[1] = IssuePage(issues=[issue(10, title="word " * 60)])

        await synchronizer.sync(1)

        title = pulls.rows[10].title
        assert len(title) <= 150
        assert title.endswith("...")

    async def test_refuses_first_page_while_tests_are_applied(
        self,
        synchronizer: PullSynchronizer,
        pulls: InMemoryPullRepository,
        tests_repo: InMemoryTestRepository,
    ) -> None:
        await tests_repo.add(pull_id=1, data="[]", patched_by=1, applied_version="4.0.0")

        result = await synchronizer.sync(1)

        assert result.error is not None
        assert result.error.kind == ErrorKind.APPLIED_PATCHES_EXIST
        assert pulls.truncations == 0

    async def test_low_quota_leaves_table_alone(
        self,
        synchronizer: PullSynchronizer,
        remote: FakeRemote,
        pulls: InMemoryPullRepository,
    ) -> None:
        remote.remaining = 3

        result = await synchronizer.sync(1)

        assert result.error is not None
        assert result.error.kind == ErrorKind.RATE_LIMIT_EXCEEDED
        assert result.error.safe_to_retry
        assert pulls.truncations == 0

    async def test_remote_failure(self, synchronizer: PullSynchronizer, remote: FakeRemote) -> None:
        remote.failing.add("get_open_issues")

        result = await synchronizer.sync(2)

        assert result.error is not None
        assert result.error.kind == ErrorKind.REMOTE_UNAVAILABLE

    async def test_insert_failure_is_unsafe(
        self,
        synchronizer: PullSynchronizer,
        remote: FakeRemote,
        pulls: InMemoryPullRepository,
    ) -> None:
        remote.issue_pages[1] = IssuePage(issues=[issue(10)])
        pulls.fail_insert = True

        result = await synchronizer.sync(1)

        assert result.error is not None
        assert result.error.kind == ErrorKind.DATABASE_IO
        assert not result.error.safe_to_retry

    async def test_page_zero_is_rejected(self, synchronizer: PullSynchronizer) -> None:
        with pytest.raises(ValueError, match="Page numbers start at 1"):
            await synchronizer.sync(0)
