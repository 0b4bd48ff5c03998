"""Sync bookkeeping schemas."""

from typing import Literal, Optional

from pydantic import Field

from schemas.gradebook import Classroom, GradebookModel, SyncStatus

ConflictResolution = Literal["local", "cloud", "merge"]


class Conflict(GradebookModel):
    """A classroom edited on both sides since the last sync."""
    type: Literal["classroom"] = "classroom"
    id: str
    local: Classroom
    cloud: Classroom


class SyncState(GradebookModel):
    """Snapshot of the sync controller exposed to the HTTP surface and CLI."""
    status: SyncStatus
    last_sync: Optional[str] = None
    pending_changes: int = 0
    remote_backed: bool = False
    online: bool = True
    last_error: Optional[str] = Field(default=None, description="Message of the last failed sync.")
