"""Pull list and patch apply endpoints."""

from __future__ import annotations

from typing import Annotated, Literal

from fastapi import APIRouter, Depends, Path, Query

from patchtester.api.deps import get_acting_user, get_patch_engine, get_pull_list_service
from patchtester.schemas.patch import (
    ApplyResponse,
    BranchesResponse,
    FileChangeResponse,
    PullListResponse,
    PullResponse,
)
from patchtester.services.patch_service import PatchEngine
from patchtester.services.pull_list_service import PullListService, PullListState

router = APIRouter(prefix="/api/pulls", tags=["pulls"])


@router.get("", response_model=PullListResponse)
async def list_pulls(
    service: Annotated[PullListService, Depends(get_pull_list_service)],
    search: Annotated[str, Query(max_length=200)] = "",
    applied: Literal["", "yes", "no"] = "",
    branch: Annotated[str, Query(max_length=255)] = "",
    rtc: Literal["", "yes", "no"] = "",
    ordering: Literal["pull_id", "title", "applied"] = "pull_id",
    direction: Literal["asc", "desc"] = "desc",
    start: Annotated[int, Query(ge=0)] = 0,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
) -> PullListResponse:
    """List mirrored pull requests."""
    state = PullListState(
        search=search,
        applied=applied,
        branch=branch,
        rtc=rtc,
        ordering=ordering,
        direction=direction,
        start=start,
        limit=limit,
    )
    page = await service.list_pulls(state)
    return PullListResponse(
        items=[PullResponse(**vars(item)) for item in page.items],
        total=page.total,
        start=page.start,
        limit=page.limit,
    )


@router.get("/branches", response_model=BranchesResponse)
async def list_branches(
    service: Annotated[PullListService, Depends(get_pull_list_service)],
) -> BranchesResponse:
    """Distinct target branches of the mirrored pull requests."""
    return BranchesResponse(branches=await service.branches())


@router.post("/{pull_id}/apply", response_model=ApplyResponse)
async def apply_pull(
    pull_id: Annotated[int, Path(ge=1)],
    engine: Annotated[PatchEngine, Depends(get_patch_engine)],
    user_id: Annotated[int, Depends(get_acting_user)],
) -> ApplyResponse:
    """Apply a pull request's files to the working tree."""
    result = await engine.apply(pull_id, user_id)
    if result.error is not None:
        raise result.error
    if not result.patched:
        return ApplyResponse(patched=False, message="There are no files to patch")
    return ApplyResponse(
        patched=True,
        test_id=result.test_id,
        files=[
            FileChangeResponse(
                action=change.action,
                filename=change.filename,
                repo_filename=change.repo_filename,
                original_filename=change.original_filename,
            )
            for change in result.files
        ],
        message="Patch successfully applied",
    )
