"""Shared API dependencies: DB session, GitHub client, working tree, core services."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from patchtester.config import Settings
from patchtester.filesystem.backup_store import BackupStore
from patchtester.filesystem.media_version import AssetVersion
from patchtester.filesystem.working_tree import FileSystem
from patchtester.github.base import RemoteClient
from patchtester.services.patch_service import PatchEngine
from patchtester.services.pull_list_service import PullListService
from patchtester.services.repositories import SqlPullRepository, SqlTestRepository
from patchtester.services.sync_service import PullSynchronizer


def get_settings(request: Request) -> Settings:
    """Get application settings from app state."""
    settings: Settings = request.app.state.settings
    return settings


async def get_session(request: Request) -> AsyncGenerator[AsyncSession]:
    """Get a database session."""
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        yield session


def get_remote_client(request: Request) -> RemoteClient:
    """Get the GitHub client from app state."""
    client: RemoteClient = request.app.state.github
    return client


def get_working_tree(request: Request) -> FileSystem:
    tree: FileSystem = request.app.state.working_tree
    return tree


def get_backup_store(request: Request) -> BackupStore:
    backups: BackupStore = request.app.state.backup_store
    return backups


def get_media_version(request: Request) -> AssetVersion:
    media_version: AssetVersion = request.app.state.media_version
    return media_version


def get_acting_user(
    x_patchtester_user: Annotated[int | None, Header(ge=0)] = None,
) -> int:
    """Id of the user applying a patch; authentication happens upstream."""
    return x_patchtester_user if x_patchtester_user is not None else 0


def get_synchronizer(
    session: Annotated[AsyncSession, Depends(get_session)],
    remote: Annotated[RemoteClient, Depends(get_remote_client)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> PullSynchronizer:
    return PullSynchronizer(
        remote,
        SqlPullRepository(session),
        SqlTestRepository(session),
        owner=settings.github_user,
        repo=settings.github_repo,
        rtc_label=settings.rtc_label,
        branch_label_prefix=settings.branch_label_prefix,
    )


def get_patch_engine(
    session: Annotated[AsyncSession, Depends(get_session)],
    remote: Annotated[RemoteClient, Depends(get_remote_client)],
    tree: Annotated[FileSystem, Depends(get_working_tree)],
    backups: Annotated[BackupStore, Depends(get_backup_store)],
    media_version: Annotated[AssetVersion, Depends(get_media_version)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> PatchEngine:
    return PatchEngine(
        remote=remote,
        pulls=SqlPullRepository(session),
        tests=SqlTestRepository(session),
        backups=backups,
        tree=tree,
        media_version=media_version,
        owner=settings.github_user,
        repo=settings.github_repo,
        host_version=settings.host_version,
        source_prefix=settings.source_prefix,
        non_production_folders=settings.non_production_folders,
        non_production_files=settings.non_production_files,
    )


def get_pull_list_service(
    session: Annotated[AsyncSession, Depends(get_session)],
) -> PullListService:
    return PullListService(session)
