"""Tests for the gradebook session lifecycle."""

import pytest

from core.exceptions import ValidationError
from schemas.gradebook import Classroom, ExportSettings, GradebookDocument, SyncStatus
from utils.remote_adapter import RemoteAdapter
from utils.session_manager import GradebookSession


@pytest.fixture
def session(persistence, store, notifier):
    return GradebookSession(persistence, store, notifier=notifier, auto_sync=False, debounce_seconds=0.01)


class TestLoad:
    async def test_empty_storage_gives_default_document(self, session):
        document = await session.load()
        assert document.classrooms == []
        assert document.user is None

    async def test_load_restores_saved_document(self, session, persistence, populated_manager):
        persistence.save(populated_manager.document)
        document = await session.load()
        classroom = document.classrooms[0]
        assert session.manager.get_classroom(classroom.id) is classroom

    async def test_stale_syncing_status_is_cleared(self, session, persistence):
        persistence.save(GradebookDocument(sync_status=SyncStatus.SYNCING))
        document = await session.load()
        assert document.sync_status == SyncStatus.IDLE

    async def test_remote_user_syncs_on_load(self, session, persistence, store, populated_manager, remote_user):
        populated_manager.document.user = remote_user
        persistence.save(populated_manager.document)
        await session.load()
        assert len(store.tables["classrooms"]) == 1
        assert session.document.last_sync is not None

    async def test_failed_load_falls_back_to_backup(self, session, persistence, notifier, monkeypatch):
        persistence.save(GradebookDocument(next_id=42))

        def broken_load():
            raise RuntimeError("corrupt state")

        monkeypatch.setattr(persistence, "load", broken_load)
        document = await session.load()
        assert document.next_id == 42
        assert "Restored from backup" in notifier.texts()


class TestSignInOut:
    async def test_sign_in_syncs_and_starts_timer(self, persistence, store, remote_user):
        session = GradebookSession(persistence, store, sync_interval=60)
        await session.load()
        await session.sign_in(remote_user)
        assert session.controller.auto_sync_running
        assert store.count_calls("fetch", "classrooms") == 1
        await session.close()
        assert not session.controller.auto_sync_running

    async def test_sign_out_keeps_last_user_snapshot(self, session, persistence, remote_user):
        await session.load()
        await session.sign_in(remote_user)
        session.manager.create_classroom("Room A")
        await session.sign_out()

        assert session.document.user is None
        snapshot = persistence.load_last_user()
        assert snapshot.user.id == remote_user.id
        assert [c.name for c in snapshot.classrooms] == ["Room A"]
        assert persistence.load().user is None

    async def test_sign_in_pulls_before_pushing_stale_copy(self, session, persistence, store, remote_user):
        newer = GradebookDocument(
            classrooms=[Classroom(id="class_1_x", name="New name", updated_at="2024-06-01T00:00:00Z")],
            export_settings=ExportSettings(logo="data:image/png;base64,AAAA", logo_name="logo.png"),
        )
        await RemoteAdapter(store).save_remote(newer, remote_user.id)

        persistence.save(GradebookDocument(
            classrooms=[Classroom(id="class_1_x", name="Old name", updated_at="2024-01-01T00:00:00Z")],
        ))
        await session.load()
        await session.sign_in(remote_user)

        assert session.document.classrooms[0].name == "New name"
        assert session.document.export_settings.logo == "data:image/png;base64,AAAA"
        assert [row["name"] for row in store.tables["classrooms"]] == ["New name"]
        assert store.tables["export_settings"][0]["logo_data"] == "data:image/png;base64,AAAA"
        assert persistence.load().classrooms[0].name == "New name"

    async def test_offline_sign_in_saves_locally_and_queues(self, session, persistence, store, remote_user):
        await session.load()
        session.controller.online = False
        await session.sign_in(remote_user)
        assert store.calls == []
        assert [p.context for p in session.document.pending_changes] == ["sign-in"]
        assert persistence.load().user.id == remote_user.id


class TestBackupRestore:
    async def test_backup_round_trip(self, session, populated_manager, persistence):
        session.manager.replace_document(populated_manager.document)
        text = session.backup_json()
        assert '"nextSid"' in text

        other = GradebookSession(persistence, None, auto_sync=False)
        await other.restore_json(text)
        assert other.document.model_dump() == populated_manager.document.model_dump()
        assert persistence.load().classrooms[0].name == "Year 9 English"

    async def test_invalid_backup_is_rejected(self, session):
        await session.load()
        with pytest.raises(ValidationError):
            await session.restore_json("{not json")
        assert session.document.classrooms == []


async def test_close_flushes_pending_save(session, persistence):
    await session.load()
    writes = persistence.writes
    session.manager.create_classroom("Room A")
    await session.pipeline.save("create")
    await session.close()
    assert persistence.writes == writes + 1
    assert persistence.load().classrooms[0].name == "Room A"
