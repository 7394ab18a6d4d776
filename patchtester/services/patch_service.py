"""Patch engine: apply a pull request's files to the working tree and revert them.

Apply runs in three phases:

1. validate -- every remote fetch and every precondition check happens here,
   nothing on disk or in the database is touched;
2. mutate -- existing files are backed up, then written or deleted in the
   order GitHub listed them;
3. record -- the applied test row and the pull's commit are stored.

A failure in phase 1 is safe to retry. A failure in phases 2 or 3 leaves the
working tree partially patched: no compensation is attempted and the caller
must inspect the tree (or run a reset).
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from patchtester.exceptions import (
    Conflict,
    DatabaseIO,
    FilesystemIO,
    MissingLocalFile,
    PatchTesterError,
    RateLimitExceeded,
    RemoteUnavailable,
    RepoGone,
    TestNotFound,
    UnsupportedEncoding,
)
from patchtester.github.exceptions import UnexpectedResponse
from patchtester.services.file_list import (
    FileAction,
    FileChange,
    deserialize_changes,
    parse_file_list,
    serialize_changes,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from patchtester.filesystem.backup_store import BackupStore
    from patchtester.filesystem.media_version import AssetVersion
    from patchtester.filesystem.working_tree import FileSystem
    from patchtester.github.base import RemoteClient
    from patchtester.github.models import PullRequestInfo
    from patchtester.models import AppliedTest
    from patchtester.services.repositories import PullRepository, TestRepository

logger = logging.getLogger(__name__)


@dataclass
class ApplyResult:
    """Outcome of applying a pull request.

    ``patched`` is False without an error when the pull request has no files
    that belong in the working tree.
    """

    patched: bool = False
    test_id: int | None = None
    files: list[FileChange] = field(default_factory=list)
    error: PatchTesterError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class RevertResult:
    """Outcome of reverting an applied test.

    ``restored_files`` is False when the host version changed since the
    patch was applied and only the bookkeeping was removed.
    """

    reverted: bool = False
    restored_files: bool = False
    error: PatchTesterError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ResetResult:
    """Outcome of reverting everything and clearing both registries."""

    reverted: list[int] = field(default_factory=list)
    errors: list[PatchTesterError] = field(default_factory=list)
    removed_backups: int = 0

    @property
    def ok(self) -> bool:
        return not self.errors


class PatchEngine:
    """Applies and reverts pull requests against one working tree."""

    def __init__(
        self,
        *,
        remote: RemoteClient,
        pulls: PullRepository,
        tests: TestRepository,
        backups: BackupStore,
        tree: FileSystem,
        media_version: AssetVersion,
        owner: str,
        repo: str,
        host_version: str,
        source_prefix: str = "src",
        non_production_folders: Iterable[str] = (),
        non_production_files: Iterable[str] = (),
    ) -> None:
        self.remote = remote
        self.pulls = pulls
        self.tests = tests
        self.backups = backups
        self.tree = tree
        self.media_version = media_version
        self.owner = owner
        self.repo = repo
        self.host_version = host_version
        self.source_prefix = source_prefix
        self.non_production_folders = list(non_production_folders)
        self.non_production_files = list(non_production_files)

    # ── Apply ────────────────────────────────────────

    async def apply(self, pull_id: int, user_id: int) -> ApplyResult:
        """Patch the working tree with the files of a pull request."""
        try:
            return await self._apply(pull_id, user_id)
        except PatchTesterError as exc:
            if exc.safe_to_retry:
                logger.warning("Applying pull #%d failed: %s", pull_id, exc)
            else:
                logger.error(
                    "Applying pull #%d failed after modifying the working tree: %s",
                    pull_id,
                    exc,
                )
            return ApplyResult(error=exc)

    async def _apply(self, pull_id: int, user_id: int) -> ApplyResult:
        await self._check_rate_limit()
        pull = await self._fetch_pull(pull_id)

        try:
            remote_files = await self.remote.get_files_for_pull_request(
                self.owner, self.repo, pull_id
            )
        except UnexpectedResponse as exc:
            raise RemoteUnavailable(f"Could not connect to GitHub: {exc}") from exc

        if not remote_files:
            logger.info("Pull #%d has no files to patch", pull_id)
            return ApplyResult()

        changes = parse_file_list(
            remote_files,
            source_prefix=self.source_prefix,
            non_production_folders=self.non_production_folders,
            non_production_files=self.non_production_files,
            is_dev=self.tree.is_development_checkout(),
        )
        if not changes:
            logger.info("Pull #%d only touches files outside the working tree", pull_id)
            return ApplyResult()

        await self._validate(pull, changes)
        self._mutate(changes)
        test = await self._record(pull, changes, user_id)

        logger.info(
            "Applied pull #%d at %s (%d files, test %d)",
            pull_id,
            pull.head_sha,
            len(changes),
            test.id,
        )
        return ApplyResult(patched=True, test_id=test.id, files=changes)

    async def _check_rate_limit(self) -> None:
        try:
            rate = await self.remote.get_rate_limit()
        except UnexpectedResponse as exc:
            raise RemoteUnavailable(f"Could not connect to GitHub: {exc}") from exc
        if rate.remaining == 0:
            raise RateLimitExceeded(reset_at=rate.reset, remaining=rate.remaining)

    async def _fetch_pull(self, pull_id: int) -> PullRequestInfo:
        try:
            pull = await self.remote.get_pull_request(self.owner, self.repo, pull_id)
        except UnexpectedResponse as exc:
            raise RemoteUnavailable(f"Could not connect to GitHub: {exc}") from exc
        if pull.head_repo is None:
            raise RepoGone(
                f"The repository backing pull #{pull_id} has been deleted; "
                "its files can no longer be retrieved"
            )
        return pull

    def _exists(self, rel_path: str) -> bool:
        try:
            return self.tree.exists(rel_path)
        except ValueError as exc:
            raise FilesystemIO(str(exc), safe_to_retry=True) from exc

    async def _validate(self, pull: PullRequestInfo, changes: list[FileChange]) -> None:
        """Check every change and download new contents. Mutates nothing."""
        for change in changes:
            if change.action == FileAction.DELETED:
                if not self._exists(change.filename):
                    raise MissingLocalFile(change.filename, change.action)

            elif change.action in (FileAction.ADDED, FileAction.MODIFIED, FileAction.RENAMED):
                if self.backups.has(change.filename):
                    raise Conflict(change.filename)
                if change.action == FileAction.RENAMED and change.original_filename:
                    if self.backups.has(change.backup_path):
                        raise Conflict(change.backup_path)
                    if not self._exists(change.backup_path):
                        raise MissingLocalFile(change.backup_path, change.action)
                if change.action == FileAction.MODIFIED and not self._exists(change.filename):
                    raise MissingLocalFile(change.filename, change.action)
                change.body = await self._download(pull, change)

            else:
                logger.debug("Ignoring %s file %s", change.action, change.filename)

    async def _download(self, pull: PullRequestInfo, change: FileChange) -> bytes:
        try:
            contents = await self.remote.get_file_contents(
                pull.head_owner, pull.head_repo or self.repo, change.repo_filename, pull.head_ref
            )
        except UnexpectedResponse as exc:
            raise RemoteUnavailable(f"Could not connect to GitHub: {exc}") from exc

        if contents.encoding != "base64":
            raise UnsupportedEncoding(
                f"GitHub returned {change.repo_filename} with unsupported "
                f"encoding {contents.encoding!r}"
            )
        try:
            return base64.b64decode(contents.content)
        except (binascii.Error, ValueError) as exc:
            raise RemoteUnavailable(
                f"GitHub returned undecodable content for {change.repo_filename}"
            ) from exc

    def _mutate(self, changes: list[FileChange]) -> None:
        """Back up and rewrite the working tree, in listing order."""
        for change in changes:
            self._backup_if_needed(change)
            try:
                if change.action in (FileAction.ADDED, FileAction.MODIFIED):
                    self.tree.write_bytes(change.filename, change.body or b"")
                elif change.action == FileAction.DELETED:
                    self.tree.delete(change.filename)
                elif change.action == FileAction.RENAMED:
                    if change.original_filename:
                        self.tree.delete(change.original_filename)
                    self.tree.write_bytes(change.filename, change.body or b"")
            except (OSError, ValueError) as exc:
                raise FilesystemIO(f"Cannot write {change.filename}: {exc}") from exc
            # Contents are not needed once written and must not be stored.
            change.body = None

    def _backup_if_needed(self, change: FileChange) -> None:
        """Save the bytes this change overwrites or removes, if the file exists."""
        if change.action not in (FileAction.DELETED, FileAction.MODIFIED, FileAction.RENAMED):
            return
        source = change.backup_path
        try:
            if change.action != FileAction.DELETED and not self.tree.exists(source):
                return
            self.backups.save(source, self.tree.read_bytes(source))
        except (OSError, ValueError) as exc:
            raise FilesystemIO(f"Cannot back up {source}: {exc}") from exc

    async def _record(
        self, pull: PullRequestInfo, changes: list[FileChange], user_id: int
    ) -> AppliedTest:
        try:
            test = await self.tests.add(
                pull_id=pull.number,
                data=serialize_changes(changes),
                patched_by=user_id,
                applied_version=self.host_version,
            )
            await self.pulls.set_sha(pull.number, pull.head_sha)
        except SQLAlchemyError as exc:
            raise DatabaseIO(f"Could not record the applied patch: {exc}") from exc
        self._refresh_media_version()
        return test

    def _refresh_media_version(self) -> None:
        try:
            self.media_version.refresh()
        except OSError as exc:
            raise FilesystemIO(f"Cannot refresh the media version: {exc}") from exc

    # ── Revert ───────────────────────────────────────

    async def revert(self, test_id: int) -> RevertResult:
        """Restore the files an applied test changed and forget the test."""
        try:
            return await self._revert(test_id)
        except PatchTesterError as exc:
            if exc.safe_to_retry:
                logger.warning("Reverting test %d failed: %s", test_id, exc)
            else:
                logger.error(
                    "Reverting test %d failed after modifying the working tree: %s",
                    test_id,
                    exc,
                )
            return RevertResult(error=exc)

    async def _revert(self, test_id: int) -> RevertResult:
        try:
            test = await self.tests.get(test_id)
        except SQLAlchemyError as exc:
            raise DatabaseIO(f"Could not load test {test_id}: {exc}", safe_to_retry=True) from exc
        if test is None:
            raise TestNotFound(test_id)

        if test.applied_version != self.host_version:
            # Files may have been replaced by the upgrade; restoring backups
            # taken from the old version would downgrade them.
            logger.warning(
                "Test %d was applied on version %s, current version is %s; "
                "removing it without restoring files",
                test_id,
                test.applied_version,
                self.host_version,
            )
            await self._remove_test(test)
            return RevertResult(reverted=True, restored_files=False)

        try:
            changes = deserialize_changes(test.data)
        except ValueError as exc:
            raise DatabaseIO(
                f"Error reading the stored file list of test {test_id}: {exc}",
                safe_to_retry=True,
            ) from exc
        if not changes:
            raise DatabaseIO(f"Test {test_id} has no stored files", safe_to_retry=True)

        for change in changes:
            self._restore(change)

        self._refresh_media_version()
        await self._remove_test(test)
        logger.info("Reverted pull #%d (test %d)", test.pull_id, test_id)
        return RevertResult(reverted=True, restored_files=True)

    def _restore(self, change: FileChange) -> None:
        try:
            if change.action in (FileAction.MODIFIED, FileAction.DELETED):
                self._restore_backup(change.filename)
            elif change.action == FileAction.ADDED:
                self.tree.delete(change.filename)
            elif change.action == FileAction.RENAMED:
                if change.original_filename:
                    self._restore_backup(change.original_filename)
                self.tree.delete(change.filename)
        except (OSError, ValueError) as exc:
            raise FilesystemIO(f"Cannot revert {change.filename}: {exc}") from exc

    def _restore_backup(self, rel_path: str) -> None:
        self.tree.write_bytes(rel_path, self.backups.load(rel_path))
        self.backups.delete(rel_path)

    async def _remove_test(self, test: AppliedTest) -> None:
        try:
            await self.pulls.set_sha(test.pull_id, "")
            await self.tests.delete(test.id)
        except SQLAlchemyError as exc:
            raise DatabaseIO(f"Could not remove test {test.id}: {exc}") from exc

    # ── Reset ────────────────────────────────────────

    async def reset(self) -> ResetResult:
        """Revert every applied test, then clear pulls, tests and backups."""
        result = ResetResult()
        try:
            applied = await self.tests.list_applied()
        except SQLAlchemyError as exc:
            result.errors.append(DatabaseIO(f"Could not list applied tests: {exc}"))
            return result

        for test in applied:
            outcome = await self.revert(test.id)
            if outcome.error is not None:
                result.errors.append(outcome.error)
            else:
                result.reverted.append(test.id)

        try:
            await self.tests.truncate()
            await self.pulls.truncate()
        except SQLAlchemyError as exc:
            result.errors.append(DatabaseIO(f"Could not clear the registries: {exc}"))
            return result

        try:
            result.removed_backups = self.backups.clear()
        except OSError as exc:
            result.errors.append(FilesystemIO(f"Could not clear backups: {exc}"))

        logger.info(
            "Reset complete: %d tests reverted, %d backups removed, %d errors",
            len(result.reverted),
            result.removed_backups,
            len(result.errors),
        )
        return result
