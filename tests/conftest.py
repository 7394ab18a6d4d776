"""Shared test fixtures for PatchTester."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from patchtester.config import Settings
from patchtester.filesystem.backup_store import FileBackupStore
from patchtester.filesystem.media_version import MediaVersionFile
from patchtester.filesystem.working_tree import WorkingTree
from patchtester.main import create_app
from patchtester.models.base import Base

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path

    from patchtester.github.base import RemoteClient


@asynccontextmanager
async def create_test_client(
    settings: Settings, remote: RemoteClient
) -> AsyncGenerator[AsyncClient]:
    """Create an HTTP test client with a fully initialized app.

    Manually performs the work of the application lifespan (DB, backups,
    working tree) because ASGITransport does not trigger it. The GitHub
    client is replaced by ``remote``.
    """
    from patchtester.database import create_engine as create_db_engine

    app = create_app(settings)

    engine, session_factory = create_db_engine(settings)
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.settings = settings

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    backup_store = FileBackupStore(settings.backups_dir)
    backup_store.ensure_dir()
    app.state.backup_store = backup_store
    app.state.working_tree = WorkingTree(root=settings.working_tree, dev_marker=settings.dev_marker)
    app.state.media_version = MediaVersionFile(settings.media_version_file)
    app.state.github = remote

    transport = ASGITransport(app=app)
    try:
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac
    finally:
        await engine.dispose()


@pytest.fixture
def tmp_working_tree(tmp_path: Path) -> Path:
    """Create a temporary working tree with a few release files."""
    tree = tmp_path / "site"
    tree.mkdir()
    (tree / "index.php").write_text("<?php // index\n")
    (tree / "libraries").mkdir()
    (tree / "libraries" / "loader.php").write_text("<?php // loader\n")
    (tree / "media").mkdir()
    (tree / "media" / "system.css").write_text("body {}\n")
    return tree


@pytest.fixture
def test_settings(tmp_working_tree: Path, tmp_path: Path) -> Settings:
    """Create test settings with temporary paths."""
    db_path = tmp_path / "test.db"
    return Settings(
        debug=True,
        database_url=f"sqlite+aiosqlite:///{db_path}",
        working_tree=tmp_working_tree,
        backups_dir=tmp_path / "backups",
        media_version_file=tmp_path / "media_version",
        host_version="4.0.0",
        github_user="joomla",
        github_repo="joomla-cms",
    )


@pytest.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine]:
    """Create a test database engine with the schema in place."""
    engine = create_async_engine(
        test_settings.database_url,
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(
    db_engine: AsyncEngine,
) -> AsyncGenerator[AsyncSession]:
    """Create a test database session."""
    session_factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with session_factory() as session:
        yield session
