"""Tests for the sync controller."""

import asyncio

import pytest

from schemas.gradebook import Classroom, GradebookDocument, SyncStatus
from utils.gradebook_manager import GradebookManager
from utils.record_store import InMemoryRecordStore
from utils.remote_adapter import RemoteAdapter
from utils.sync_controller import SyncController


class BlockingStore(InMemoryRecordStore):
    """Holds every classroom fetch until `release` is set."""

    def __init__(self):
        super().__init__()
        self.release = asyncio.Event()

    async def fetch_rows(self, table, filters=None):
        if table == "classrooms":
            await self.release.wait()
        return await super().fetch_rows(table, filters)


class TestPendingChanges:
    def test_queue_keeps_newest_fifty(self, controller):
        for i in range(60):
            controller.queue_pending_change(f"edit-{i}")
        pending = controller.document.pending_changes
        assert len(pending) == 50
        assert [p.context for p in pending] == [f"edit-{i}" for i in range(10, 60)]

    def test_queue_is_persisted(self, controller, persistence):
        controller.queue_pending_change("grade")
        assert persistence.load().pending_changes[0].context == "grade"


class TestSyncWithCloud:
    async def test_successful_sync(self, controller, manager, store):
        manager.create_classroom("Room A")
        manager.document.pending_changes = []
        controller.queue_pending_change("offline edit")

        assert await controller.sync_with_cloud() is True
        document = controller.document
        assert document.sync_status == SyncStatus.IDLE
        assert document.last_sync is not None
        assert document.pending_changes == []
        assert [r["name"] for r in store.tables["classrooms"]] == ["Room A"]

    async def test_second_device_receives_data(self, controller, manager, store, persistence, remote_user):
        manager.create_classroom("Room A")
        await controller.sync_with_cloud()

        other = GradebookManager(GradebookDocument(user=remote_user))
        other_controller = SyncController(other, persistence, RemoteAdapter(store))
        assert await other_controller.sync_with_cloud() is True
        assert [c.name for c in other.document.classrooms] == ["Room A"]
        assert other.get_classroom(other.document.classrooms[0].id) is other.document.classrooms[0]

    async def test_local_only_session_is_a_noop(self, persistence, store):
        manager = GradebookManager()
        controller = SyncController(manager, persistence, RemoteAdapter(store))
        assert await controller.sync_with_cloud() is False
        assert store.calls == []

    async def test_sync_in_flight_blocks_another(self, manager, persistence, remote_user):
        store = BlockingStore()
        manager.document.user = remote_user
        controller = SyncController(manager, persistence, RemoteAdapter(store))

        first = asyncio.create_task(controller.sync_with_cloud())
        await asyncio.sleep(0.01)
        assert controller.status == SyncStatus.SYNCING
        assert await controller.sync_with_cloud() is False

        store.release.set()
        assert await first is True
        assert store.count_calls("fetch", "classrooms") == 1

    async def test_network_failure_sets_error_and_queues(self, controller, store, notifier):
        store.offline = True
        assert await controller.sync_with_cloud() is False
        assert controller.status == SyncStatus.ERROR
        assert [p.context for p in controller.document.pending_changes] == ["sync-error"]
        assert any(level == "error" for level, _ in notifier.messages)

        store.offline = False
        assert await controller.sync_with_cloud() is True
        assert controller.status == SyncStatus.IDLE

    async def test_unprovisioned_schema_notice_is_shown_once(self, controller, notifier):
        controller.remote.store.missing_tables = {"classrooms", "export_settings"}
        await controller.sync_with_cloud()
        await controller.sync_with_cloud()
        notices = [m for m in notifier.texts() if "not set up" in m]
        assert len(notices) == 1

    async def test_other_pull_errors_push_local_data(self, controller, manager, store):
        from core.exceptions import RemoteError

        manager.create_classroom("Room A")
        store.fail_on("fetch", "students", RemoteError("statement timeout"))
        assert await controller.sync_with_cloud() is True
        assert len(store.tables["classrooms"]) == 1

    async def test_partial_push_failure_is_reported(self, controller, manager, store, notifier):
        from core.exceptions import RemoteError

        classroom = manager.create_classroom("Room A")
        manager.add_student(classroom.id, "Ada")
        store.fail_on("upsert", "students", RemoteError("permission denied"))
        assert await controller.sync_with_cloud() is False
        assert controller.status == SyncStatus.ERROR
        assert any("1 items failed to sync" in m for m in notifier.texts())
        assert len(store.tables["classrooms"]) == 1

    async def test_merge_keeps_newer_remote_changes(self, controller, manager, store):
        classroom = manager.create_classroom("Room A")
        await controller.sync_with_cloud()
        store.tables["classrooms"][0]["name"] = "Renamed elsewhere"
        store.tables["classrooms"][0]["updated_at"] = "2999-01-01T00:00:00+00:00"

        await controller.sync_with_cloud()
        assert manager.get_classroom(classroom.id).name == "Renamed elsewhere"

    async def test_conflict_resolver_can_keep_local(self, manager, persistence, store, remote_user):
        manager.document.user = remote_user
        decisions = []

        def keep_local(conflict):
            decisions.append(conflict.id)
            return "local"

        controller = SyncController(manager, persistence, RemoteAdapter(store), conflict_resolver=keep_local)
        classroom = manager.create_classroom("Mine")
        await controller.sync_with_cloud()
        store.tables["classrooms"][0]["name"] = "Theirs"
        store.tables["classrooms"][0]["updated_at"] = "2999-01-01T00:00:00+00:00"

        await controller.sync_with_cloud()
        assert decisions == [classroom.id]
        assert manager.get_classroom(classroom.id).name == "Mine"
        assert store.tables["classrooms"][0]["name"] == "Mine"

    async def test_deletion_reaches_remote_and_is_not_resurrected(self, controller, manager, store):
        classroom = manager.create_classroom("Room A")
        await controller.sync_with_cloud()
        manager.delete_classroom(classroom.id)

        assert await controller.sync_with_cloud() is True
        assert store.tables["classrooms"] == []
        assert manager.document.classrooms == []
        assert manager.document.tombstones == []


class TestAutoSync:
    async def test_timer_syncs_while_online(self, controller, store):
        controller.start_auto_sync()
        assert controller.auto_sync_running
        await asyncio.sleep(0.05)
        controller.stop_auto_sync()
        assert not controller.auto_sync_running
        assert store.count_calls("fetch", "classrooms") >= 1

    async def test_timer_skips_while_offline(self, controller, store):
        controller.online = False
        controller.start_auto_sync()
        await asyncio.sleep(0.05)
        controller.stop_auto_sync()
        assert store.calls == []

    async def test_connectivity_transitions(self, controller, store, notifier):
        await controller.on_connectivity_changed(False)
        assert controller.status == SyncStatus.OFFLINE
        assert store.calls == []

        await controller.on_connectivity_changed(True)
        assert controller.status == SyncStatus.IDLE
        assert store.count_calls("fetch", "classrooms") == 1
        assert "Back online" in notifier.texts()


@pytest.mark.parametrize("status", [SyncStatus.ERROR, SyncStatus.OFFLINE])
async def test_non_syncing_states_allow_a_new_sync(controller, status):
    controller.document.sync_status = status
    assert await controller.sync_with_cloud() is True


def test_state_snapshot(controller):
    controller.document.classrooms.append(Classroom(id="class_1_x", name="A"))
    state = controller.state()
    assert state.status == SyncStatus.IDLE
    assert state.remote_backed is True
    assert state.pending_changes == 0
