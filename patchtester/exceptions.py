"""Application-level exception types.

Convention:
- Every failure the patch engine or the pull synchronizer can report is a
  ``PatchTesterError`` subclass carrying an ``ErrorKind``.
- ``safe_to_retry`` is True for failures raised before anything was mutated
  (preflight and validation). Failures raised after the first filesystem or
  database write are unsafe: state may be half-applied and must be inspected
  (or cleared with a reset) before trying again.
- The engine and synchronizer convert these into result values at their
  public boundary; the API layer maps ``kind`` to an HTTP status.
"""

from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    """Kind of failure reported by a core operation."""

    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    REMOTE_UNAVAILABLE = "remote_unavailable"
    REPO_GONE = "repo_gone"
    CONFLICT = "conflict"
    MISSING_LOCAL_FILE = "missing_local_file"
    UNSUPPORTED_ENCODING = "unsupported_encoding"
    FILESYSTEM_IO = "filesystem_io"
    DATABASE_IO = "database_io"
    APPLIED_PATCHES_EXIST = "applied_patches_exist"
    TEST_NOT_FOUND = "test_not_found"


class PatchTesterError(Exception):
    """Base class for failures of the sync and apply/revert operations."""

    kind: ErrorKind
    safe_to_retry: bool = True

    def __init__(self, message: str, *, safe_to_retry: bool | None = None) -> None:
        super().__init__(message)
        self.message = message
        if safe_to_retry is not None:
            self.safe_to_retry = safe_to_retry


class RateLimitExceeded(PatchTesterError):
    """The remaining GitHub API quota is too low to proceed."""

    kind = ErrorKind.RATE_LIMIT_EXCEEDED

    def __init__(self, reset_at: int, remaining: int) -> None:
        super().__init__(
            f"GitHub API rate limit reached ({remaining} requests remaining); "
            f"the limit resets at {reset_at}"
        )
        self.reset_at = reset_at
        self.remaining = remaining


class RemoteUnavailable(PatchTesterError):
    """GitHub could not be reached or answered unexpectedly."""

    kind = ErrorKind.REMOTE_UNAVAILABLE


class RepoGone(PatchTesterError):
    """The fork backing a pull request no longer exists."""

    kind = ErrorKind.REPO_GONE


class Conflict(PatchTesterError):
    """A backup already exists for a path, so another patch is active on it."""

    kind = ErrorKind.CONFLICT

    def __init__(self, path: str) -> None:
        super().__init__(f"The file {path} is already modified by another applied patch")
        self.path = path


class MissingLocalFile(PatchTesterError):
    """A path the patch expects to exist is absent from the working tree."""

    kind = ErrorKind.MISSING_LOCAL_FILE

    def __init__(self, path: str, action: str) -> None:
        super().__init__(f"The file {path} marked as {action} does not exist")
        self.path = path
        self.action = action


class UnsupportedEncoding(PatchTesterError):
    """GitHub returned file contents in an encoding other than base64."""

    kind = ErrorKind.UNSUPPORTED_ENCODING


class FilesystemIO(PatchTesterError):
    """Copying, writing or deleting a file failed."""

    kind = ErrorKind.FILESYSTEM_IO
    safe_to_retry = False


class DatabaseIO(PatchTesterError):
    """Reading or writing the pulls/tests tables failed."""

    kind = ErrorKind.DATABASE_IO
    safe_to_retry = False


class AppliedPatchesExist(PatchTesterError):
    """Refusing to refresh pulls while patches are still applied."""

    kind = ErrorKind.APPLIED_PATCHES_EXIST

    def __init__(self, count: int) -> None:
        super().__init__(
            f"{count} patch(es) are currently applied; revert them before fetching pull requests"
        )
        self.count = count


class TestNotFound(PatchTesterError):
    """No applied test exists with the given id."""

    __test__ = False
    kind = ErrorKind.TEST_NOT_FOUND

    def __init__(self, test_id: int) -> None:
        super().__init__(f"No applied test with id {test_id}")
        self.test_id = test_id
