"""Save pipeline.

Every edit ends in `SavePipeline.save`: the document is always written locally,
then pushed to the remote backend when the session is online and
remote-backed. High-frequency edits are debounced into a single save.
"""

import asyncio
import logging
from typing import Optional

import config
from utils.sync_controller import SyncController

logger = logging.getLogger(__name__)


class SavePipeline:
    """Debounced local + remote save of the active document."""

    def __init__(self, controller: SyncController, debounce_seconds: float = config.SAVE_DEBOUNCE_SECONDS):
        self.controller = controller
        self.debounce_seconds = debounce_seconds
        self._timer: Optional[asyncio.Task] = None
        self._pending_label: Optional[str] = None

    @property
    def has_pending_save(self) -> bool:
        return self._timer is not None and not self._timer.done()

    async def save(self, label: str = "save", immediate: bool = False) -> None:
        """Save the document.

        Args:
            label: Free-form context recorded if the remote push is deferred.
            immediate: Save now instead of after the debounce window. Use for
                deletions and explicit "save now" actions.
        """
        self._cancel_timer()
        if immediate:
            self._pending_label = None
            await self._perform(label)
            return
        self._pending_label = label
        self._timer = asyncio.create_task(self._debounced(label))

    def _cancel_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def _debounced(self, label: str) -> None:
        await asyncio.sleep(self.debounce_seconds)
        self._timer = None
        self._pending_label = None
        await self._perform(label)

    async def _perform(self, label: str) -> None:
        controller = self.controller
        document = controller.document
        controller.persistence.save(document)

        if controller.is_online() and controller.can_sync():
            tombstones_before = len(document.tombstones)
            try:
                await controller.push()
            except Exception as exc:
                logger.warning("Remote save failed (%s), queued for later: %s", label, exc)
                controller.queue_pending_change(label)
                return
            # Everything is on the remote now, including earlier deferred saves
            had_pending = bool(document.pending_changes)
            document.pending_changes = []
            if had_pending or len(document.tombstones) != tombstones_before:
                controller.persistence.save(document)
        elif document.user is not None and document.user.mode == "supabase":
            controller.queue_pending_change(label)

    async def flush(self) -> None:
        """Run a debounced save that is still waiting, right now."""
        if not self.has_pending_save:
            return
        label = self._pending_label or "flush"
        self._cancel_timer()
        self._pending_label = None
        await self._perform(label)
