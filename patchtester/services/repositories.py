"""Pull and applied-test registries backed by the relational store.

Each mutating method commits immediately: a sync page or an apply record is
durable as soon as the call returns, and nothing written earlier is rolled
back by a later failure. Methods raise ``SQLAlchemyError`` on failure after
rolling the session back.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError

from patchtester.models import AppliedTest, Pull

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


@runtime_checkable
class PullRepository(Protocol):
    """Registry of open pull requests."""

    async def truncate(self) -> None: ...

    async def insert_many(self, pulls: list[Pull]) -> None: ...

    async def set_sha(self, pull_id: int, sha: str) -> None: ...


@runtime_checkable
class TestRepository(Protocol):
    """Registry of applied tests."""

    async def count(self) -> int: ...

    async def add(
        self, *, pull_id: int, data: str, patched_by: int, applied_version: str
    ) -> AppliedTest: ...

    async def get(self, test_id: int) -> AppliedTest | None: ...

    async def delete(self, test_id: int) -> None: ...

    async def list_applied(self) -> list[AppliedTest]: ...

    async def truncate(self) -> None: ...


class _SqlRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def _commit(self) -> None:
        try:
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            raise


class SqlPullRepository(_SqlRepository):
    """``pulls`` table."""

    async def truncate(self) -> None:
        try:
            await self.session.execute(delete(Pull))
        except SQLAlchemyError:
            await self.session.rollback()
            raise
        await self._commit()

    async def insert_many(self, pulls: list[Pull]) -> None:
        self.session.add_all(pulls)
        await self._commit()

    async def set_sha(self, pull_id: int, sha: str) -> None:
        try:
            await self.session.execute(
                update(Pull).where(Pull.pull_id == pull_id).values(sha=sha)
            )
        except SQLAlchemyError:
            await self.session.rollback()
            raise
        await self._commit()


class SqlTestRepository(_SqlRepository):
    """``tests`` table."""

    async def count(self) -> int:
        result = await self.session.execute(select(func.count()).select_from(AppliedTest))
        return result.scalar() or 0

    async def add(
        self, *, pull_id: int, data: str, patched_by: int, applied_version: str
    ) -> AppliedTest:
        record = AppliedTest(
            pull_id=pull_id,
            data=data,
            patched_by=patched_by,
            applied=True,
            applied_version=applied_version,
        )
        self.session.add(record)
        await self._commit()
        return record

    async def get(self, test_id: int) -> AppliedTest | None:
        return await self.session.get(AppliedTest, test_id)

    async def delete(self, test_id: int) -> None:
        try:
            await self.session.execute(delete(AppliedTest).where(AppliedTest.id == test_id))
        except SQLAlchemyError:
            await self.session.rollback()
            raise
        await self._commit()

    async def list_applied(self) -> list[AppliedTest]:
        result = await self.session.execute(
            select(AppliedTest).where(AppliedTest.applied.is_(True)).order_by(AppliedTest.id)
        )
        return list(result.scalars().all())

    async def truncate(self) -> None:
        try:
            await self.session.execute(delete(AppliedTest))
        except SQLAlchemyError:
            await self.session.rollback()
            raise
        await self._commit()
