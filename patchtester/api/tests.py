"""Applied test endpoints: list, revert and reset."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Path

from patchtester.api.deps import get_patch_engine, get_pull_list_service
from patchtester.schemas.patch import (
    AppliedTestResponse,
    ErrorInfo,
    FileChangeResponse,
    ResetResponse,
    RevertResponse,
)
from patchtester.services.file_list import deserialize_changes
from patchtester.services.patch_service import PatchEngine
from patchtester.services.pull_list_service import PullListService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["tests"])


@router.get("/tests", response_model=list[AppliedTestResponse])
async def list_applied_tests(
    service: Annotated[PullListService, Depends(get_pull_list_service)],
) -> list[AppliedTestResponse]:
    """List currently applied pull requests."""
    responses: list[AppliedTestResponse] = []
    for test in await service.applied_tests():
        try:
            changes = deserialize_changes(test.data)
        except ValueError:
            logger.warning("Applied test %d has an unreadable file list", test.id)
            changes = []
        responses.append(
            AppliedTestResponse(
                id=test.id,
                pull_id=test.pull_id,
                patched_by=test.patched_by,
                applied_version=test.applied_version,
                files=[
                    FileChangeResponse(
                        action=c.action,
                        filename=c.filename,
                        repo_filename=c.repo_filename,
                        original_filename=c.original_filename,
                    )
                    for c in changes
                ],
            )
        )
    return responses


@router.post("/tests/{test_id}/revert", response_model=RevertResponse)
async def revert_test(
    test_id: Annotated[int, Path(ge=1)],
    engine: Annotated[PatchEngine, Depends(get_patch_engine)],
) -> RevertResponse:
    """Restore the files changed by an applied test."""
    result = await engine.revert(test_id)
    if result.error is not None:
        raise result.error
    message = (
        "Patch successfully reverted"
        if result.restored_files
        else "Patch removed without restoring files; the host version changed since it was applied"
    )
    return RevertResponse(
        reverted=result.reverted,
        restored_files=result.restored_files,
        message=message,
    )


@router.post("/reset", response_model=ResetResponse)
async def reset(
    engine: Annotated[PatchEngine, Depends(get_patch_engine)],
) -> ResetResponse:
    """Revert every applied test and clear pulls, tests and backups."""
    result = await engine.reset()
    return ResetResponse(
        reverted=result.reverted,
        removed_backups=result.removed_backups,
        errors=[
            ErrorInfo(detail=err.message, kind=err.kind, safe_to_retry=err.safe_to_retry)
            for err in result.errors
        ],
    )
