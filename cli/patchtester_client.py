"""Command line client for a running PatchTester server."""

from __future__ import annotations

import argparse
import os
import sys
from typing import Any
from urllib.parse import urlparse

import httpx

DEFAULT_SERVER = "http://127.0.0.1:8000"
_LOCALHOST_HOSTS = {"localhost", "127.0.0.1", "::1"}


class ApiError(Exception):
    """Error response from the server."""

    def __init__(
        self, status_code: int, detail: str, kind: str | None = None, safe_to_retry: bool = True
    ) -> None:
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail
        self.kind = kind
        self.safe_to_retry = safe_to_retry

    def __str__(self) -> str:
        prefix = f"{self.kind}: " if self.kind else ""
        return f"{prefix}{self.detail} (HTTP {self.status_code})"


def validate_server_url(server_url: str, allow_insecure_http: bool = False) -> str:
    """Validate server URL and enforce HTTPS for non-localhost hosts by default."""
    normalized = server_url.strip().rstrip("/")
    parsed = urlparse(normalized)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError("Server URL must include scheme and host (e.g. https://example.com)")

    hostname = parsed.hostname
    if parsed.scheme == "http" and not allow_insecure_http and hostname not in _LOCALHOST_HOSTS:
        raise ValueError(
            "HTTPS is required for non-localhost servers. "
            "Use --allow-insecure-http only on trusted networks."
        )

    return normalized


def _raise_for_error(resp: httpx.Response) -> None:
    if resp.status_code < 400:
        return
    try:
        body = resp.json()
    except ValueError:
        raise ApiError(resp.status_code, resp.text or resp.reason_phrase) from None
    detail = body.get("detail", "") if isinstance(body, dict) else ""
    if not isinstance(detail, str):
        detail = "; ".join(f"{e.get('field')}: {e.get('message')}" for e in detail)
    raise ApiError(
        resp.status_code,
        detail,
        kind=body.get("kind"),
        safe_to_retry=bool(body.get("safe_to_retry", True)),
    )


class PatchTesterClient:
    """Client for the PatchTester HTTP API."""

    def __init__(
        self,
        server_url: str,
        user_id: int = 0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.server_url = server_url.rstrip("/")
        self.client = httpx.Client(
            base_url=self.server_url,
            headers={"X-Patchtester-User": str(user_id)},
            timeout=120.0,
            transport=transport,
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self) -> PatchTesterClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _post(self, path: str) -> dict[str, Any]:
        resp = self.client.post(path)
        _raise_for_error(resp)
        result: dict[str, Any] = resp.json()
        return result

    def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        resp = self.client.get(path, params=params)
        _raise_for_error(resp)
        return resp.json()

    def fetch(self) -> int:
        """Refresh the pull list page by page. Returns the number of pulls stored."""
        progress = self._post("/api/fetch/start")
        page: int | None = progress.get("next_page")
        last_page: int | None = None
        inserted = 0
        while page is not None:
            progress = self._post(f"/api/fetch/{page}")
            if progress.get("last_page") is not None:
                last_page = progress["last_page"]
            inserted += progress.get("inserted", 0)
            if progress.get("complete"):
                break
            print(f"  Page {page}/{last_page or '?'}: {progress.get('inserted', 0)} pull(s)")
            page = progress.get("next_page")
        return inserted

    def list_pulls(self, **filters: Any) -> dict[str, Any]:
        params = {k: v for k, v in filters.items() if v not in (None, "")}
        result: dict[str, Any] = self._get("/api/pulls", params=params)
        return result

    def list_tests(self) -> list[dict[str, Any]]:
        result: list[dict[str, Any]] = self._get("/api/tests")
        return result

    def apply(self, pull_id: int) -> dict[str, Any]:
        return self._post(f"/api/pulls/{pull_id}/apply")

    def revert(self, test_id: int) -> dict[str, Any]:
        return self._post(f"/api/tests/{test_id}/revert")

    def reset(self) -> dict[str, Any]:
        return self._post("/api/reset")


def _print_pulls(listing: dict[str, Any]) -> None:
    items: list[dict[str, Any]] = listing.get("items", [])
    for pull in items:
        flags = []
        if pull.get("applied") is not None:
            flags.append(f"applied as test {pull['applied']}")
        if pull.get("is_rtc"):
            flags.append("RTC")
        if pull.get("branch"):
            flags.append(f"branch {pull['branch']}")
        suffix = f" [{', '.join(flags)}]" if flags else ""
        print(f"  #{pull['pull_id']} {pull['title']}{suffix}")
    print(f"{len(items)} of {listing.get('total', len(items))} pull request(s).")


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="patchtester",
        description="Apply and revert GitHub pull requests on a PatchTester server",
    )
    parser.add_argument(
        "--server",
        "-s",
        default=os.environ.get("PATCHTESTER_SERVER", DEFAULT_SERVER),
        help=f"Server URL (default: $PATCHTESTER_SERVER or {DEFAULT_SERVER})",
    )
    parser.add_argument(
        "--allow-insecure-http",
        action="store_true",
        help="Allow http:// server URLs for non-localhost hosts",
    )
    parser.add_argument("--user", "-u", type=int, default=0, help="Acting user id")

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("fetch", help="Refresh the list of open pull requests")
    list_parser = subparsers.add_parser("list", help="List pull requests")
    list_parser.add_argument("--search", default="")
    list_parser.add_argument("--applied", choices=["yes", "no"])
    list_parser.add_argument("--rtc", choices=["yes", "no"])
    list_parser.add_argument("--branch", default="")
    list_parser.add_argument("--limit", type=int, default=20)
    list_parser.add_argument("--start", type=int, default=0)
    subparsers.add_parser("tests", help="List applied pull requests")
    apply_parser = subparsers.add_parser("apply", help="Apply a pull request")
    apply_parser.add_argument("pull_id", type=int)
    revert_parser = subparsers.add_parser("revert", help="Revert an applied test")
    revert_parser.add_argument("test_id", type=int)
    subparsers.add_parser("reset", help="Revert everything and clear all data")

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return

    try:
        server_url = validate_server_url(args.server, args.allow_insecure_http)
    except ValueError as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    try:
        with PatchTesterClient(server_url, user_id=args.user) as client:
            if args.command == "fetch":
                inserted = client.fetch()
                print(f"Fetch complete. {inserted} pull request(s) stored.")

            elif args.command == "list":
                _print_pulls(
                    client.list_pulls(
                        search=args.search,
                        applied=args.applied,
                        rtc=args.rtc,
                        branch=args.branch,
                        limit=args.limit,
                        start=args.start,
                    )
                )

            elif args.command == "tests":
                tests = client.list_tests()
                for test in tests:
                    print(
                        f"  Test {test['id']}: pull #{test['pull_id']} "
                        f"({len(test.get('files', []))} file(s), version "
                        f"{test['applied_version']})"
                    )
                print(f"{len(tests)} applied test(s).")

            elif args.command == "apply":
                result = client.apply(args.pull_id)
                print(result["message"])
                for change in result.get("files", []):
                    print(f"  {change['action']}: {change['filename']}")

            elif args.command == "revert":
                print(client.revert(args.test_id)["message"])

            elif args.command == "reset":
                result = client.reset()
                print(
                    f"Reset complete. {len(result.get('reverted', []))} test(s) reverted, "
                    f"{result.get('removed_backups', 0)} backup(s) removed."
                )
                for err in result.get("errors", []):
                    print(f"  Error: {err['kind']}: {err['detail']}")
                if result.get("errors"):
                    sys.exit(1)

    except ApiError as exc:
        print(f"Error: {exc}")
        if not exc.safe_to_retry:
            print("  The working tree may be partially patched; inspect it or run a reset.")
        sys.exit(1)
    except httpx.HTTPError as exc:
        print(f"Error: could not reach {server_url}: {exc}")
        sys.exit(1)


if __name__ == "__main__":
    main()
