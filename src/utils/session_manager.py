"""Session management module.

This module wires one user's gradebook session together: the document and its
command manager, local persistence, the remote adapter, the sync controller and
the save pipeline. It also owns the session lifecycle (load, sign-in,
sign-out, backup and restore).
"""

import json
import logging
from typing import Optional

import config
from core.exceptions import ValidationError
from schemas.gradebook import GradebookDocument, SyncStatus, UserInfo, migrate_legacy_data
from utils.gradebook_manager import GradebookManager, NavigationState
from utils.local_persistence import LocalPersistence, create_local_persistence
from utils.postgrest_store import PostgrestRecordStore
from utils.record_store import RecordStore
from utils.remote_adapter import RemoteAdapter
from utils.save_pipeline import SavePipeline
from utils.sync_controller import ConflictResolver, Notifier, SyncController, log_notifier

logger = logging.getLogger(__name__)


class GradebookSession:
    """One user's gradebook session."""

    def __init__(
        self,
        persistence: LocalPersistence,
        store: Optional[RecordStore] = None,
        notifier: Notifier = log_notifier,
        conflict_resolver: Optional[ConflictResolver] = None,
        auto_sync: bool = True,
        sync_interval: float = config.SYNC_INTERVAL_SECONDS,
        debounce_seconds: float = config.SAVE_DEBOUNCE_SECONDS,
    ):
        """Initialize GradebookSession.

        Args:
            persistence: Local snapshot store.
            store: Remote record store; None for local-only use.
            notifier: Receives user-facing notices.
            conflict_resolver: Optional per-classroom conflict callback.
            auto_sync: Start the periodic sync timer for remote-backed users.
            sync_interval: Seconds between auto-sync attempts.
            debounce_seconds: Debounce window of the save pipeline.
        """
        self.persistence = persistence
        self.store = store
        self.notifier = notifier
        self.auto_sync = auto_sync
        self.manager = GradebookManager()
        self.remote = RemoteAdapter(store) if store is not None else None
        self.controller = SyncController(
            self.manager,
            persistence,
            self.remote,
            notifier=notifier,
            conflict_resolver=conflict_resolver,
            interval=sync_interval,
        )
        self.pipeline = SavePipeline(self.controller, debounce_seconds)
        self.navigation = NavigationState()

    @property
    def document(self) -> GradebookDocument:
        return self.manager.document

    def _adopt(self, document: GradebookDocument) -> None:
        migrate_legacy_data(document)
        # A crash mid-sync must not leave the session locked out of syncing
        if document.sync_status == SyncStatus.SYNCING:
            document.sync_status = SyncStatus.IDLE
        self.manager.replace_document(document)
        self.navigation = NavigationState()

    def _start_auto_sync(self) -> None:
        if self.auto_sync and self.controller.can_sync():
            self.controller.start_auto_sync()

    async def load(self) -> GradebookDocument:
        """Load the local snapshot, then sync if the user is remote-backed.

        Falls back to the backup slot when loading fails, and to an empty
        document when there is nothing usable.
        """
        try:
            self._adopt(self.persistence.load() or GradebookDocument())
            if self.controller.can_sync() and self.controller.is_online():
                await self.controller.sync_with_cloud()
        except Exception as exc:
            logger.error("Failed to load data: %s", exc)
            self.notifier("Failed to load data. Using backup if available.", "warning")
            backup = self.persistence.load_backup_only()
            if backup is not None:
                self._adopt(backup)
                self.notifier("Restored from backup", "info")
            else:
                self._adopt(GradebookDocument())
        self._start_auto_sync()
        logger.info("Session loaded with %d classrooms", len(self.document.classrooms))
        return self.document

    async def sign_in(self, user: UserInfo) -> GradebookDocument:
        """Attach a user to the session and sync their remote data.

        The remote copy is pulled and merged before anything is pushed, so a
        stale local document never overwrites newer remote rows. Offline or
        local-only sign-ins are saved locally, with a pending marker for
        remote-backed users.
        """
        self.document.user = user
        if self.controller.can_sync() and self.controller.is_online():
            await self.controller.sync_with_cloud()
        else:
            await self.pipeline.save("sign-in", immediate=True)
        self._start_auto_sync()
        logger.info("Signed in as %s (%s)", user.email or user.name or user.id, user.mode)
        return self.document

    async def sign_out(self) -> None:
        """Save everything, keep a sign-out snapshot and detach the user."""
        self.controller.stop_auto_sync()
        await self.pipeline.save("home", immediate=True)
        self.persistence.save_last_user(self.document)
        self.document.user = None
        self.document.sync_status = SyncStatus.IDLE
        self.persistence.save(self.document)
        self.navigation = NavigationState()
        logger.info("Signed out")

    def backup_json(self) -> str:
        """Serialize the whole document for a downloadable backup file."""
        return json.dumps(self.document.model_dump(mode="json", by_alias=True), indent=2)

    async def restore_json(self, text: str) -> GradebookDocument:
        """Replace all data with a backup produced by `backup_json`.

        Raises:
            ValidationError: If the text is not a valid backup.
        """
        try:
            restored = GradebookDocument.model_validate_json(text)
        except ValueError as exc:
            logger.error("Restore failed: %s", exc)
            raise ValidationError("backup", "Invalid backup file") from exc
        if restored.user is None:
            restored.user = self.document.user
        self._adopt(restored)
        await self.pipeline.save("restore", immediate=True)
        if self.controller.can_sync() and self.controller.is_online():
            await self.controller.sync_with_cloud()
        self.notifier("Data restored!", "info")
        return self.document

    async def close(self) -> None:
        """Stop background work and flush what is still pending."""
        self.controller.stop_auto_sync()
        await self.pipeline.flush()
        if self.document.pending_changes:
            self.persistence.save(self.document)
        if self.store is not None:
            await self.store.close()


def create_record_store(access_token: Optional[str] = None) -> Optional[RecordStore]:
    """Build the configured remote record store, or None when none is configured."""
    if not config.SUPABASE_URL or not config.SUPABASE_ANON_KEY:
        return None
    return PostgrestRecordStore(config.SUPABASE_URL, config.SUPABASE_ANON_KEY, access_token=access_token)


def create_session(
    persistence: Optional[LocalPersistence] = None,
    store: Optional[RecordStore] = None,
    **kwargs,
) -> GradebookSession:
    """Build a session against the configured local database and remote backend."""
    if persistence is None:
        persistence = create_local_persistence()
    if store is None:
        store = create_record_store()
    return GradebookSession(persistence, store, **kwargs)
