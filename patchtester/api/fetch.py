"""Pull list refresh endpoints, driven one page per request."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Path

from patchtester.api.deps import get_synchronizer
from patchtester.schemas.patch import FetchResponse
from patchtester.services.sync_service import PullSynchronizer, SyncResult

router = APIRouter(prefix="/api/fetch", tags=["fetch"])


def _to_response(result: SyncResult) -> FetchResponse:
    if result.error is not None:
        raise result.error
    return FetchResponse(
        complete=result.complete,
        next_page=result.next_page,
        last_page=result.last_page,
        inserted=result.inserted,
    )


@router.post("/start", response_model=FetchResponse)
async def start_fetch(
    synchronizer: Annotated[PullSynchronizer, Depends(get_synchronizer)],
) -> FetchResponse:
    """Check that a refresh may run and return the first page to request."""
    return _to_response(await synchronizer.start())


@router.post("/{page}", response_model=FetchResponse)
async def fetch_page(
    page: Annotated[int, Path(ge=1)],
    synchronizer: Annotated[PullSynchronizer, Depends(get_synchronizer)],
) -> FetchResponse:
    """Store one page of open pull requests. Page 1 discards the previous list."""
    return _to_response(await synchronizer.sync(page))
