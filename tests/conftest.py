"""
Shared fixtures for the gradebook test suite.

Local snapshots go to a SQLite file under tmp_path; the remote backend is an
InMemoryRecordStore unless a test needs the HTTP client.
"""

import pytest

from core.database import create_session_factory
from schemas.gradebook import UserInfo
from utils.gradebook_manager import GradebookManager
from utils.local_persistence import LocalPersistence
from utils.record_store import InMemoryRecordStore
from utils.remote_adapter import RemoteAdapter
from utils.sync_controller import SyncController


class CountingPersistence(LocalPersistence):
    """LocalPersistence that counts snapshot writes."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.writes = 0

    def save(self, document):
        self.writes += 1
        return super().save(document)


class RecordingNotifier:
    def __init__(self):
        self.messages = []

    def __call__(self, message, level="info"):
        self.messages.append((level, message))

    def texts(self):
        return [m for _, m in self.messages]


@pytest.fixture
def session_factory(tmp_path):
    return create_session_factory(f"sqlite:///{tmp_path / 'gradejournal-test.db'}")


@pytest.fixture
def persistence(session_factory):
    return CountingPersistence(session_factory)


@pytest.fixture
def store():
    return InMemoryRecordStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def remote_user():
    return UserInfo(id="user-1", email="teacher@example.com", name="Ms Smith", mode="supabase")


@pytest.fixture
def manager():
    return GradebookManager()


@pytest.fixture
def populated_manager(manager):
    """A classroom with three students, one standard lesson and one grade column."""
    classroom = manager.create_classroom("Year 9 English", subject="English", teacher="Ms Smith")
    for name in ("Charlie", "Ada", "Bea"):
        manager.add_student(classroom.id, name, phone="555-0100")
    lesson = manager.create_lesson(classroom.id, "Poetry", lesson_date="2024-03-01")
    column = manager.add_column(classroom.id, "Quiz")
    manager.set_grade(classroom.id, lesson.id, column.id, 1, "8")
    manager.set_attendance(classroom.id, lesson.id, 2, "late")
    return manager


@pytest.fixture
def controller(manager, persistence, store, notifier, remote_user):
    manager.document.user = remote_user
    return SyncController(manager, persistence, RemoteAdapter(store), notifier=notifier, interval=0.01)
