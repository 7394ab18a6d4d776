"""Pull list queries: filtering, ordering and paging of the pulls table."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sqlalchemy import false, func, select

from patchtester.models import AppliedTest, Pull

if TYPE_CHECKING:
    from sqlalchemy import Select
    from sqlalchemy.ext.asyncio import AsyncSession

SORT_FIELDS = ("pull_id", "title", "applied")
DEFAULT_LIMIT = 20


@dataclass(frozen=True)
class PullListState:
    """Filter, ordering and paging state of one pull list request."""

    search: str = ""
    applied: str = ""  # "yes", "no" or "" for both
    branch: str = ""
    rtc: str = ""  # "yes", "no" or "" for both
    ordering: str = "pull_id"
    direction: str = "desc"
    start: int = 0
    limit: int = DEFAULT_LIMIT

    def __post_init__(self) -> None:
        if self.ordering not in SORT_FIELDS:
            raise ValueError(f"Cannot sort pull requests by {self.ordering!r}")
        if self.direction not in ("asc", "desc"):
            raise ValueError(f"Invalid sort direction {self.direction!r}")
        if self.limit < 1:
            raise ValueError("limit must be positive")
        if self.start < 0:
            raise ValueError("start must not be negative")


@dataclass
class PullListItem:
    """Pull request row joined with the id of its applied test, if any."""

    pull_id: int
    title: str
    description: str
    pull_url: str
    is_rtc: bool
    branch: str
    sha: str
    applied: int | None


@dataclass
class PullListPage:
    items: list[PullListItem]
    total: int
    start: int
    limit: int


def clamp_start(start: int, limit: int, total: int) -> int:
    """Move ``start`` back onto the last page when it points past the end."""
    if start > total - limit:
        return max(0, (math.ceil(total / limit) - 1) * limit)
    return start


class PullListService:
    """Read side of the pulls registry.

    Results are memoized per ``PullListState`` for the lifetime of the
    instance, which is one request in the API layer.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self._cache: dict[tuple[str, PullListState], Any] = {}

    def _base_query(self, state: PullListState) -> Select[Any]:
        stmt = select(Pull, AppliedTest.id.label("applied")).outerjoin(
            AppliedTest, AppliedTest.pull_id == Pull.pull_id
        )

        search = state.search.strip()
        if search:
            if search.lower().startswith("id:"):
                digits = search[3:].strip()
                stmt = stmt.where(Pull.pull_id == int(digits) if digits.isdigit() else false())
            elif search.isdigit():
                stmt = stmt.where(Pull.pull_id == int(search))
            else:
                stmt = stmt.where(
                    func.lower(Pull.title).contains(search.lower(), autoescape=True)
                )

        if state.applied == "yes":
            stmt = stmt.where(AppliedTest.id.is_not(None))
        elif state.applied == "no":
            stmt = stmt.where(AppliedTest.id.is_(None))

        if state.branch:
            stmt = stmt.where(Pull.branch == state.branch)

        if state.rtc == "yes":
            stmt = stmt.where(Pull.is_rtc.is_(True))
        elif state.rtc == "no":
            stmt = stmt.where(Pull.is_rtc.is_(False))

        return stmt

    async def total(self, state: PullListState) -> int:
        key = ("total", state)
        if key not in self._cache:
            count_stmt = select(func.count()).select_from(self._base_query(state).subquery())
            result = await self.session.execute(count_stmt)
            self._cache[key] = result.scalar() or 0
        total: int = self._cache[key]
        return total

    async def list_pulls(self, state: PullListState) -> PullListPage:
        """Return one page of pull requests for the given state."""
        key = ("items", state)
        if key in self._cache:
            cached: PullListPage = self._cache[key]
            return cached

        total = await self.total(state)
        start = clamp_start(state.start, state.limit, total)

        columns = {
            "pull_id": Pull.pull_id,
            "title": Pull.title,
            "applied": AppliedTest.id,
        }
        column = columns[state.ordering]
        order = [column.asc() if state.direction == "asc" else column.desc()]
        if state.ordering == "applied":
            order.append(Pull.pull_id.asc() if state.direction == "asc" else Pull.pull_id.desc())

        stmt = self._base_query(state).order_by(*order).offset(start).limit(state.limit)
        result = await self.session.execute(stmt)
        items = [
            PullListItem(
                pull_id=pull.pull_id,
                title=pull.title,
                description=pull.description,
                pull_url=pull.pull_url,
                is_rtc=pull.is_rtc,
                branch=pull.branch,
                sha=pull.sha,
                applied=applied,
            )
            for pull, applied in result.all()
        ]
        page = PullListPage(items=items, total=total, start=start, limit=state.limit)
        self._cache[key] = page
        return page

    async def branches(self) -> list[str]:
        """Distinct non-empty branch labels, sorted."""
        stmt = select(Pull.branch).where(Pull.branch != "").distinct().order_by(Pull.branch)
        result = await self.session.execute(stmt)
        return [row[0] for row in result.all()]

    async def applied_tests(self) -> list[AppliedTest]:
        """Applied test rows in the order they were applied."""
        stmt = select(AppliedTest).where(AppliedTest.applied.is_(True)).order_by(AppliedTest.id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
