"""Tests for the remote adapter (pull/push translation)."""

import pytest

import config
from core.exceptions import NetworkError, RemoteError
from schemas.gradebook import ExportSettings, GradebookDocument, HSLColor
from utils.record_store import InMemoryRecordStore
from utils.remote_adapter import RemoteAdapter, next_document_id

USER = "user-1"


@pytest.fixture
def adapter(store):
    return RemoteAdapter(store)


async def _push(adapter, manager):
    return await adapter.save_remote(manager.document, USER)


class TestFetchInBatches:
    async def test_sixty_ids_take_three_chunked_calls(self):
        rows = [{"id": f"g{i}", "lesson_id": i, "grade": str(i)} for i in range(70)]
        store = InMemoryRecordStore({"grades": rows})
        adapter = RemoteAdapter(store, batch_size=25)
        lesson_ids = list(range(60))

        chunked = await adapter.fetch_in_batches("grades", "lesson_id", lesson_ids)

        calls = [detail["lesson_id"] for op, table, detail in store.calls if op == "fetch"]
        assert [len(c) for c in calls] == [25, 25, 10]
        unchunked = await store.fetch_rows("grades", {"lesson_id": lesson_ids})
        assert sorted(r["id"] for r in chunked) == sorted(r["id"] for r in unchunked)
        assert len(chunked) == 60

    async def test_no_ids_no_calls(self, adapter, store):
        assert await adapter.fetch_in_batches("grades", "lesson_id", []) == []
        assert store.calls == []


class TestRoundTrip:
    async def test_push_then_pull_rebuilds_the_document(self, adapter, populated_manager):
        manager = populated_manager
        classroom = manager.document.classrooms[0]
        manager.create_lesson(classroom.id, "Mock test", mode="ielts")
        manager.set_grade(classroom.id, 2, 2, 3, "6.5")
        manager.document.export_settings = ExportSettings(color=HSLColor(h=210, s=40), logo="data:image/png;base64,AAAA")

        report = await _push(adapter, manager)
        assert report.ok
        assert report.pushed_classrooms == 1

        remote = await adapter.load_remote(USER)
        assert [c.model_dump() for c in remote.classrooms] == [c.model_dump() for c in manager.document.classrooms]
        assert remote.export_settings.color.h == 210
        assert "export_settings" in remote.model_fields_set
        assert remote.next_id == manager.document.next_id

    async def test_lesson_display_number_comes_back_as_lesson_number(self, adapter, populated_manager):
        classroom = populated_manager.document.classrooms[0]
        classroom.lessons[0].num = 7
        await _push(adapter, populated_manager)

        remote = await adapter.load_remote(USER)
        lesson = remote.classrooms[0].lessons[0]
        assert lesson.id == 1
        assert lesson.num == 1

    async def test_repeated_push_does_not_duplicate_rows(self, adapter, store, populated_manager):
        await _push(adapter, populated_manager)
        counts = {name: len(rows) for name, rows in store.tables.items()}
        await _push(adapter, populated_manager)
        assert {name: len(rows) for name, rows in store.tables.items()} == counts
        assert counts["students"] == 3
        assert counts["grades"] == 1
        assert counts["attendance"] == 1

    async def test_cells_reference_remote_row_ids(self, adapter, store, populated_manager):
        await _push(adapter, populated_manager)
        grade = store.tables["grades"][0]
        student_row = next(r for r in store.tables["students"] if r["student_number"] == 1)
        column_row = store.tables["columns"][0]
        assert grade["student_id"] == student_row["id"]
        assert grade["column_id"] == column_row["id"]

    async def test_logo_is_truncated(self, adapter, store, manager):
        manager.document.export_settings.logo = "x" * (config.LOGO_MAX_CHARS + 10)
        await _push(adapter, manager)
        assert len(store.tables["export_settings"][0]["logo_data"]) == config.LOGO_MAX_CHARS

    async def test_other_users_rows_are_not_pulled(self, adapter, populated_manager):
        await _push(adapter, populated_manager)
        remote = await adapter.load_remote("someone-else")
        assert remote.classrooms == []
        assert "export_settings" not in remote.model_fields_set


class TestPullFailures:
    async def test_unprovisioned_schema_is_an_empty_remote(self):
        store = InMemoryRecordStore(missing_tables=["classrooms", "export_settings"])
        adapter = RemoteAdapter(store)
        remote = await adapter.load_remote(USER)
        assert remote.classrooms == []
        assert adapter.schema_missing is True

    async def test_network_failure_propagates(self, adapter, store):
        store.offline = True
        with pytest.raises(NetworkError):
            await adapter.load_remote(USER)

    async def test_unknown_attendance_status_is_skipped(self, adapter, store, populated_manager):
        await _push(adapter, populated_manager)
        store.tables["attendance"][0]["status"] = "excused"
        remote = await adapter.load_remote(USER)
        assert remote.classrooms[0].lessons[0].attendance == {}


class TestPushFailures:
    async def test_failed_classroom_is_collected_and_others_continue(self, adapter, store, manager):
        manager.create_classroom("A")
        manager.create_classroom("B")
        store.fail_on("upsert", "students", RemoteError("permission denied", table="students"))
        manager.add_student(manager.document.classrooms[0].id, "Ada")

        report = await _push(adapter, manager)
        assert len(report.errors) == 1
        assert report.pushed_classrooms == 2
        assert len(store.tables["classrooms"]) == 2

    async def test_network_failure_aborts_push(self, adapter, store, populated_manager):
        store.offline = True
        with pytest.raises(NetworkError):
            await _push(adapter, populated_manager)


class TestDeletions:
    async def test_deleted_student_rows_are_removed(self, adapter, store, populated_manager):
        manager = populated_manager
        classroom = manager.document.classrooms[0]
        await _push(adapter, manager)

        manager.delete_student(classroom.id, 1)
        report = await _push(adapter, manager)
        assert len(report.applied_tombstones) == 1
        assert sorted(r["student_number"] for r in store.tables["students"]) == [2, 3]
        assert store.tables["grades"] == []

        remote = await adapter.load_remote(USER)
        assert [s.id for s in remote.classrooms[0].students] == [2, 3]

    async def test_deleted_classroom_and_children_are_removed(self, adapter, store, populated_manager):
        manager = populated_manager
        classroom = manager.document.classrooms[0]
        await _push(adapter, manager)

        manager.delete_classroom(classroom.id)
        await _push(adapter, manager)
        for table in ("classrooms", "students", "lessons", "columns", "grades", "attendance"):
            assert store.tables[table] == [], table

    async def test_deleted_lesson_removes_its_columns(self, adapter, store, manager):
        classroom = manager.create_classroom("A")
        lesson = manager.create_lesson(classroom.id, "Mock", mode="ielts")
        await _push(adapter, manager)
        assert len(store.tables["columns"]) == 4

        manager.delete_lesson(classroom.id, lesson.id)
        await _push(adapter, manager)
        assert store.tables["columns"] == []
        assert store.tables["lessons"] == []


def test_next_document_id_uses_embedded_timestamps():
    document = GradebookDocument.model_validate({
        "classrooms": [
            {"id": "class_1700000000000_abc", "name": "A"},
            {"id": "class_1700000000500_def", "name": "B"},
            {"id": "legacy", "name": "C"},
        ]
    })
    assert next_document_id(document.classrooms) == 1700000000501
