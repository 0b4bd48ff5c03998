"""Sync controller.

Runs the pull -> merge -> push -> persist sequence against the remote backend,
keeps the sync status and the bounded pending-change queue, and drives the
periodic auto-sync timer.
"""

import asyncio
import logging
from typing import Callable, List, Optional

import config
from core.exceptions import NetworkError, PartialSyncError, RemoteError
from schemas.gradebook import GradebookDocument, PendingChange, SyncStatus, now_iso
from schemas.sync import Conflict, ConflictResolution, SyncState
from utils.gradebook_manager import GradebookManager
from utils.local_persistence import LocalPersistence
from utils.merge import apply_conflict_resolution, detect_conflicts, merge_documents
from utils.remote_adapter import PushReport, RemoteAdapter

logger = logging.getLogger(__name__)

# (message, level) -> None
Notifier = Callable[[str, str], None]
ConflictResolver = Callable[[Conflict], ConflictResolution]


def log_notifier(message: str, level: str = "info") -> None:
    """Default notifier: user-facing notices go to the log."""
    logger.log(getattr(logging, level.upper(), logging.INFO), "Notice: %s", message)


class SyncController:
    """Synchronizes the active document with the remote backend."""

    def __init__(
        self,
        manager: GradebookManager,
        persistence: LocalPersistence,
        remote: Optional[RemoteAdapter] = None,
        notifier: Notifier = log_notifier,
        conflict_resolver: Optional[ConflictResolver] = None,
        interval: float = config.SYNC_INTERVAL_SECONDS,
        pending_limit: int = config.PENDING_CHANGES_LIMIT,
        deep_merge_children: bool = False,
    ):
        """Initialize SyncController.

        Args:
            manager: Owner of the document and its index.
            persistence: Local snapshot store.
            remote: Remote adapter; None for local-only sessions.
            notifier: Receives user-facing notices.
            conflict_resolver: Optional callback choosing a disposition for each
                classroom edited on both sides. Without it the automatic merge
                result is used.
            interval: Seconds between auto-sync attempts.
            pending_limit: Max pending-change markers kept.
            deep_merge_children: Merge children even when the local classroom wins.
        """
        self.manager = manager
        self.persistence = persistence
        self.remote = remote
        self.notifier = notifier
        self.conflict_resolver = conflict_resolver
        self.interval = interval
        self.pending_limit = pending_limit
        self.deep_merge_children = deep_merge_children
        self.online = True
        self.last_error: Optional[str] = None
        self._schema_notice_shown = False
        self._auto_task: Optional[asyncio.Task] = None

    @property
    def document(self) -> GradebookDocument:
        return self.manager.document

    @property
    def status(self) -> SyncStatus:
        return self.document.sync_status

    def _set_status(self, status: SyncStatus) -> None:
        self.document.sync_status = status

    def is_online(self) -> bool:
        return self.online

    def can_sync(self) -> bool:
        """True for remote-backed sessions with a stable user identity."""
        user = self.document.user
        return self.remote is not None and user is not None and user.is_remote_backed

    def state(self) -> SyncState:
        return SyncState(
            status=self.status,
            last_sync=self.document.last_sync,
            pending_changes=len(self.document.pending_changes),
            remote_backed=self.can_sync(),
            online=self.online,
            last_error=self.last_error,
        )

    # --- Pending changes ---

    def queue_pending_change(self, context: str = "unknown") -> PendingChange:
        """Record that a save could not reach the remote backend.

        The queue keeps insertion order and evicts the oldest marker once it
        grows past `pending_limit`. The document is persisted locally.
        """
        change = PendingChange(timestamp=now_iso(), context=context)
        pending: List[PendingChange] = self.document.pending_changes
        pending.append(change)
        while len(pending) > self.pending_limit:
            pending.pop(0)
        self.persistence.save(self.document)
        return change

    # --- Remote steps ---

    async def pull(self, user_id: str) -> Optional[GradebookDocument]:
        """Fetch the remote document.

        Returns:
            The remote document, or None when the pull failed for a reason other
            than a network outage (the local document is then pushed as is).

        Raises:
            NetworkError: When the backend is unreachable.
        """
        try:
            remote = await self.remote.load_remote(user_id)
        except NetworkError:
            raise
        except RemoteError as exc:
            logger.warning("Remote pull failed, treating remote as empty: %s", exc)
            return None
        if self.remote.schema_missing and not self._schema_notice_shown:
            self._schema_notice_shown = True
            self.notifier("Cloud database is not set up yet. Working locally for now.", "info")
        return remote

    async def push(self) -> PushReport:
        """Push the current document and drop the deletions that were applied.

        Raises:
            NetworkError: When the backend is unreachable.
            PartialSyncError: When some rows failed; the rest were committed.
        """
        document = self.document
        report = await self.remote.save_remote(document, document.user.id)
        if report.applied_tombstones:
            document.tombstones = [t for t in document.tombstones if t not in report.applied_tombstones]
        if report.errors:
            raise PartialSyncError(report.errors)
        return report

    # --- Sync ---

    async def sync_with_cloud(self) -> bool:
        """Run one full sync.

        Does nothing when a sync is already running or the session is not
        remote-backed. Failures never propagate: the status becomes 'error', the
        user is notified and a pending-change marker is queued.

        Returns:
            True if a sync ran to completion.
        """
        if self.status == SyncStatus.SYNCING:
            logger.debug("Sync already in progress, skipping")
            return False
        if not self.can_sync():
            return False

        self._set_status(SyncStatus.SYNCING)
        try:
            local = self.document
            remote = await self.pull(local.user.id)

            local = self.document
            merged = merge_documents(local, remote, self.deep_merge_children)
            if self.conflict_resolver is not None:
                for conflict in detect_conflicts(local, remote):
                    resolution = self.conflict_resolver(conflict)
                    logger.info("Conflict on classroom %s resolved as %s", conflict.id, resolution)
                    merged = apply_conflict_resolution(merged, conflict, resolution)

            self.manager.replace_document(merged)
            await self.push()

            merged = self.document
            merged.pending_changes = []
            merged.last_sync = now_iso()
            self._set_status(SyncStatus.IDLE)
            self.last_error = None
            self.persistence.save(merged)
            logger.info("Sync completed (%d classrooms)", len(merged.classrooms))
            return True
        except Exception as exc:
            logger.error("Sync error: %s", exc)
            self.last_error = str(exc)
            self._set_status(SyncStatus.ERROR)
            self.notifier(f"Sync failed: {exc}", "error")
            self.queue_pending_change("sync-error")
            return False

    # --- Auto sync ---

    def start_auto_sync(self) -> None:
        """Start the periodic sync task on the running event loop."""
        if self._auto_task is not None and not self._auto_task.done():
            return
        self._auto_task = asyncio.create_task(self._auto_sync_loop())
        logger.info("Auto-sync started (every %ss)", self.interval)

    def stop_auto_sync(self) -> None:
        if self._auto_task is not None:
            self._auto_task.cancel()
            self._auto_task = None
            logger.info("Auto-sync stopped")

    @property
    def auto_sync_running(self) -> bool:
        return self._auto_task is not None and not self._auto_task.done()

    async def _auto_sync_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            if self.is_online() and self.can_sync():
                await self.sync_with_cloud()

    async def on_connectivity_changed(self, online: bool) -> None:
        """Handle a connectivity transition; regaining it triggers a sync."""
        was_online = self.online
        self.online = online
        if not online:
            if self.status != SyncStatus.SYNCING:
                self._set_status(SyncStatus.OFFLINE)
            self.notifier("You're offline. Changes will sync when reconnected.", "warning")
            return
        if not was_online:
            if self.status == SyncStatus.OFFLINE:
                self._set_status(SyncStatus.IDLE)
            self.notifier("Back online", "info")
            await self.sync_with_cloud()
