"""Exceptions raised by the GitHub client."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import httpx


class UnexpectedResponse(Exception):
    """GitHub answered with something other than the expected payload.

    ``response`` is None when the request never produced a response
    (connection refused, timeout, TLS failure).
    """

    def __init__(self, message: str, response: httpx.Response | None = None) -> None:
        super().__init__(message)
        self.response = response

    @property
    def status_code(self) -> int | None:
        return self.response.status_code if self.response is not None else None
