"""Sync routes."""

from fastapi import APIRouter

from core.dependencies import GradebookSessionDep
from schemas.sync import SyncState

router = APIRouter(prefix="/api/sync", tags=["Sync"])


@router.get("/status", response_model=SyncState, summary="Sync status")
def get_sync_status(session: GradebookSessionDep) -> SyncState:
    return session.controller.state()


@router.post("", response_model=SyncState, summary="Sync now")
async def sync_now(session: GradebookSessionDep) -> SyncState:
    """Run one sync with the remote backend.

    Local-only sessions and syncs already in flight are left alone; the
    returned state tells what happened.
    """
    await session.controller.sync_with_cloud()
    return session.controller.state()
