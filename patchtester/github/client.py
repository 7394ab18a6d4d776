"""GitHub REST v3 client built on httpx."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import httpx

from patchtester.github.exceptions import UnexpectedResponse
from patchtester.github.models import (
    ChangedFile,
    FileContents,
    Issue,
    IssuePage,
    PullRequestInfo,
    RateLimit,
)

if TYPE_CHECKING:
    from patchtester.config import Settings

logger = logging.getLogger(__name__)

_NEXT_LINK_RE = re.compile(r'<([^>]+)>;\s*rel="next"')
_FILES_PER_PAGE = 100
# GitHub stops listing pull request files after 3000 entries.
_MAX_FILE_PAGES = 30


class GitHubClient:
    """Async client for the subset of the GitHub API the patch tester needs."""

    def __init__(self, http_client: httpx.AsyncClient) -> None:
        self._http = http_client

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> GitHubClient:
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": "patchtester",
        }
        if settings.github_token:
            headers["Authorization"] = f"token {settings.github_token}"
        http_client = httpx.AsyncClient(
            base_url=settings.github_api_url.rstrip("/"),
            headers=headers,
            timeout=settings.github_timeout,
            transport=transport,
        )
        return cls(http_client)

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._http.aclose()

    async def _get(self, url: str, params: dict[str, Any] | None = None) -> httpx.Response:
        try:
            response = await self._http.get(url, params=params)
        except httpx.HTTPError as exc:
            logger.warning("GitHub request to %s failed: %s", url, exc)
            raise UnexpectedResponse(f"Could not connect to GitHub: {exc}") from exc
        if response.status_code != 200:
            raise UnexpectedResponse(
                f"Unexpected response from GitHub for {url}: HTTP {response.status_code}",
                response,
            )
        return response

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise UnexpectedResponse("GitHub returned invalid JSON", response) from exc

    async def get_rate_limit(self) -> RateLimit:
        response = await self._get("/rate_limit")
        try:
            return RateLimit.from_json(self._json(response))
        except (KeyError, TypeError, ValueError) as exc:
            raise UnexpectedResponse("Malformed rate limit response", response) from exc

    async def get_open_issues(
        self, owner: str, repo: str, page: int, per_page: int
    ) -> IssuePage:
        response = await self._get(
            f"/repos/{owner}/{repo}/issues",
            params={"state": "open", "page": page, "per_page": per_page},
        )
        payload = self._json(response)
        if not isinstance(payload, list):
            raise UnexpectedResponse("Issue listing is not a list", response)
        try:
            issues = [Issue.from_json(item) for item in payload]
        except (KeyError, TypeError, ValueError) as exc:
            raise UnexpectedResponse("Malformed issue listing", response) from exc
        return IssuePage(issues=issues, link_header=response.headers.get("link"))

    async def get_pull_request(self, owner: str, repo: str, number: int) -> PullRequestInfo:
        response = await self._get(f"/repos/{owner}/{repo}/pulls/{number}")
        try:
            return PullRequestInfo.from_json(self._json(response))
        except (KeyError, TypeError, ValueError) as exc:
            raise UnexpectedResponse("Malformed pull request response", response) from exc

    async def get_files_for_pull_request(
        self, owner: str, repo: str, number: int
    ) -> list[ChangedFile]:
        files: list[ChangedFile] = []
        for page in range(1, _MAX_FILE_PAGES + 1):
            response = await self._get(
                f"/repos/{owner}/{repo}/pulls/{number}/files",
                params={"page": page, "per_page": _FILES_PER_PAGE},
            )
            payload = self._json(response)
            if not isinstance(payload, list):
                raise UnexpectedResponse("File listing is not a list", response)
            try:
                files.extend(ChangedFile.from_json(item) for item in payload)
            except (KeyError, TypeError) as exc:
                raise UnexpectedResponse("Malformed file listing", response) from exc
            if not _NEXT_LINK_RE.search(response.headers.get("link", "")):
                break
        return files

    async def get_file_contents(
        self, owner: str, repo: str, path: str, ref: str
    ) -> FileContents:
        response = await self._get(
            f"/repos/{owner}/{repo}/contents/{quote(path, safe='/')}",
            params={"ref": ref},
        )
        payload = self._json(response)
        if not isinstance(payload, dict):
            raise UnexpectedResponse(f"{path} is not a file", response)
        return FileContents.from_json(payload)
