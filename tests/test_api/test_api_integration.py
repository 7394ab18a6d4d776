"""Integration tests for the HTTP API."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from patchtester.github.models import IssuePage
from tests.conftest import create_test_client
from tests.test_services._fakes import FakeRemote, changed, issue, pull_info

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from httpx import AsyncClient

    from patchtester.config import Settings


@pytest.fixture
def remote() -> FakeRemote:
    fake = FakeRemote()
    fake.issue_pages[1] = IssuePage(
        issues=[
            issue(10, "Fix the loader", labels=["RTC", "PR-4.1-dev"]),
            issue(11, "Tweak stylesheet", labels=["PR-5.0-dev"]),
            issue(12, "Just an issue", pull=False),
        ]
    )
    fake.pulls[10] = pull_info(10, sha="sha10", ref="loader-fix")
    fake.files[10] = [changed("modified", "libraries/loader.php")]
    fake.add_file("libraries/loader.php", "<?php // fixed\n", ref="loader-fix")
    fake.pulls[11] = pull_info(11, sha="sha11", ref="css")
    fake.files[11] = [changed("modified", "libraries/loader.php")]
    fake.add_file("libraries/loader.php", "<?php // other\n", ref="css")
    return fake


@pytest.fixture
async def client(test_settings: Settings, remote: FakeRemote) -> AsyncGenerator[AsyncClient]:
    """Create test HTTP client."""
    async with create_test_client(test_settings, remote) as ac:
        yield ac


async def fetch_all(client: AsyncClient) -> None:
    resp = await client.post("/api/fetch/start")
    assert resp.status_code == 200
    page = resp.json()["next_page"]
    while page is not None:
        resp = await client.post(f"/api/fetch/{page}")
        assert resp.status_code == 200
        data = resp.json()
        if data["complete"]:
            break
        page = data["next_page"]


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient) -> None:
        resp = await client.get("/api/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["database"] == "ok"
        assert data["host_version"] == "4.0.0"


class TestFetch:
    @pytest.mark.asyncio
    async def test_start_returns_first_page(self, client: AsyncClient) -> None:
        resp = await client.post("/api/fetch/start")
        assert resp.status_code == 200
        assert resp.json() == {
            "complete": False,
            "next_page": 1,
            "last_page": None,
            "inserted": 0,
        }

    @pytest.mark.asyncio
    async def test_pages_fill_pull_list(self, client: AsyncClient) -> None:
        resp = await client.post("/api/fetch/1")
        assert resp.status_code == 200
        assert resp.json()["inserted"] == 2
        assert resp.json()["last_page"] == 1

        resp = await client.post("/api/fetch/2")
        assert resp.json()["complete"] is True

        resp = await client.get("/api/pulls")
        data = resp.json()
        assert data["total"] == 2
        assert [p["pull_id"] for p in data["items"]] == [11, 10]
        assert data["items"][1]["is_rtc"] is True
        assert data["items"][1]["branch"] == "4.1-dev"

    @pytest.mark.asyncio
    async def test_page_zero_is_rejected(self, client: AsyncClient) -> None:
        resp = await client.post("/api/fetch/0")
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_rate_limit_returns_429(self, client: AsyncClient, remote: FakeRemote) -> None:
        remote.remaining = 2
        resp = await client.post("/api/fetch/start")
        assert resp.status_code == 429
        data = resp.json()
        assert data["kind"] == "rate_limit_exceeded"
        assert data["safe_to_retry"] is True
        assert data["reset_at"] == remote.reset

    @pytest.mark.asyncio
    async def test_remote_failure_returns_502(
        self, client: AsyncClient, remote: FakeRemote
    ) -> None:
        remote.failing.add("get_open_issues")
        resp = await client.post("/api/fetch/1")
        assert resp.status_code == 502
        assert resp.json()["kind"] == "remote_unavailable"


class TestPullList:
    @pytest.mark.asyncio
    async def test_filters(self, client: AsyncClient) -> None:
        await fetch_all(client)

        resp = await client.get("/api/pulls", params={"rtc": "yes"})
        assert [p["pull_id"] for p in resp.json()["items"]] == [10]

        resp = await client.get("/api/pulls", params={"search": "stylesheet"})
        assert [p["pull_id"] for p in resp.json()["items"]] == [11]

        resp = await client.get("/api/pulls", params={"branch": "5.0-dev"})
        assert [p["pull_id"] for p in resp.json()["items"]] == [11]

    @pytest.mark.asyncio
    async def test_invalid_filter_value(self, client: AsyncClient) -> None:
        resp = await client.get("/api/pulls", params={"applied": "maybe"})
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_invalid_ordering(self, client: AsyncClient) -> None:
        resp = await client.get("/api/pulls", params={"ordering": "sha"})
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_branches(self, client: AsyncClient) -> None:
        await fetch_all(client)
        resp = await client.get("/api/pulls/branches")
        assert resp.json() == {"branches": ["4.1-dev", "5.0-dev"]}


class TestApplyAndRevert:
    @pytest.mark.asyncio
    async def test_round_trip(self, client: AsyncClient, test_settings: Settings) -> None:
        await fetch_all(client)
        loader = test_settings.working_tree / "libraries/loader.php"

        resp = await client.post("/api/pulls/10/apply", headers={"X-Patchtester-User": "7"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["patched"] is True
        assert data["files"][0]["filename"] == "libraries/loader.php"
        assert loader.read_text() == "<?php // fixed\n"
        test_id = data["test_id"]

        resp = await client.get("/api/tests")
        tests = resp.json()
        assert len(tests) == 1
        assert tests[0]["pull_id"] == 10
        assert tests[0]["patched_by"] == 7
        assert tests[0]["applied_version"] == "4.0.0"

        resp = await client.get("/api/pulls", params={"applied": "yes"})
        items = resp.json()["items"]
        assert [p["pull_id"] for p in items] == [10]
        assert items[0]["applied"] == test_id
        assert items[0]["sha"] == "sha10"

        resp = await client.post(f"/api/tests/{test_id}/revert")
        assert resp.status_code == 200
        assert resp.json()["restored_files"] is True
        assert loader.read_text() == "<?php // loader\n"

        resp = await client.get("/api/tests")
        assert resp.json() == []

    @pytest.mark.asyncio
    async def test_second_patch_on_same_file_conflicts(self, client: AsyncClient) -> None:
        await fetch_all(client)
        resp = await client.post("/api/pulls/10/apply")
        assert resp.status_code == 200

        resp = await client.post("/api/pulls/11/apply")
        assert resp.status_code == 409
        data = resp.json()
        assert data["kind"] == "conflict"
        assert data["safe_to_retry"] is True
        assert "libraries/loader.php" in data["detail"]

    @pytest.mark.asyncio
    async def test_refresh_refused_while_applied(self, client: AsyncClient) -> None:
        await fetch_all(client)
        await client.post("/api/pulls/10/apply")

        resp = await client.post("/api/fetch/start")
        assert resp.status_code == 409
        assert resp.json()["kind"] == "applied_patches_exist"

        resp = await client.post("/api/fetch/1")
        assert resp.status_code == 409

    @pytest.mark.asyncio
    async def test_nothing_to_patch(self, client: AsyncClient, remote: FakeRemote) -> None:
        remote.pulls[20] = pull_info(20)
        remote.files[20] = [changed("modified", "tests/unit/LoaderTest.php")]

        resp = await client.post("/api/pulls/20/apply")
        assert resp.status_code == 200
        assert resp.json()["patched"] is False

    @pytest.mark.asyncio
    async def test_deleted_fork_returns_410(
        self, client: AsyncClient, remote: FakeRemote
    ) -> None:
        remote.pulls[10] = pull_info(10, repo=None)
        resp = await client.post("/api/pulls/10/apply")
        assert resp.status_code == 410
        assert resp.json()["kind"] == "repo_gone"

    @pytest.mark.asyncio
    async def test_missing_local_file_returns_422(
        self, client: AsyncClient, remote: FakeRemote
    ) -> None:
        remote.pulls[30] = pull_info(30)
        remote.files[30] = [changed("deleted", "libraries/gone.php")]
        resp = await client.post("/api/pulls/30/apply")
        assert resp.status_code == 422
        assert resp.json()["kind"] == "missing_local_file"

    @pytest.mark.asyncio
    async def test_negative_user_header_is_rejected(self, client: AsyncClient) -> None:
        resp = await client.post("/api/pulls/10/apply", headers={"X-Patchtester-User": "-1"})
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_revert_unknown_test(self, client: AsyncClient) -> None:
        resp = await client.post("/api/tests/999/revert")
        assert resp.status_code == 404
        assert resp.json()["kind"] == "test_not_found"


class TestReset:
    @pytest.mark.asyncio
    async def test_reset_reverts_and_clears(
        self, client: AsyncClient, test_settings: Settings
    ) -> None:
        await fetch_all(client)
        resp = await client.post("/api/pulls/10/apply")
        test_id = resp.json()["test_id"]

        resp = await client.post("/api/reset")
        assert resp.status_code == 200
        data = resp.json()
        assert data["reverted"] == [test_id]
        assert data["errors"] == []
        assert (test_settings.working_tree / "libraries/loader.php").read_text() == (
            "<?php // loader\n"
        )

        resp = await client.get("/api/pulls")
        assert resp.json()["total"] == 0
