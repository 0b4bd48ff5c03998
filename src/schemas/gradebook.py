"""Gradebook document schema definitions.

This module defines the in-memory document tree (classrooms, students, lessons,
grade columns) together with user, export and sync bookkeeping. Field names are
snake_case in Python; camelCase aliases let snapshots written by older clients
load unchanged.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

import pytz
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

import config

AttendanceStatus = Literal["present", "late", "absent"]
LessonMode = Literal["standard", "ielts"]

ATTENDANCE_STATUSES = ("present", "late", "absent")
DEFAULT_ATTENDANCE = "present"

# Flat cell-key prefixes used by legacy snapshots
ATTENDANCE_KEY_PREFIX = "att_"
GRADE_KEY_PREFIX = "col_"


def now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(pytz.utc).isoformat()


class SyncStatus(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"
    OFFLINE = "offline"


class GradebookModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class HSLColor(GradebookModel):
    h: int = 30
    s: int = 60
    l: int = 50
    a: int = 100


class ExportSettings(GradebookModel):
    """Accent color and optional logo used by report exports."""
    color: HSLColor = Field(default_factory=lambda: HSLColor(**config.DEFAULT_EXPORT_COLOR))
    logo: Optional[str] = Field(default=None, description="Data URL of the logo image.")
    logo_name: Optional[str] = None
    logo_size: Optional[int] = None


class UserInfo(GradebookModel):
    id: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None
    school: Optional[str] = None
    role: Optional[str] = None
    mode: Literal["local", "supabase"] = Field(
        default="local",
        description="'supabase' sessions are mirrored to the remote backend.",
    )
    onboarding_completed: bool = False

    @property
    def is_remote_backed(self) -> bool:
        return self.mode == "supabase" and bool(self.id)


class PendingChange(GradebookModel):
    """Marker noting that a save was attempted while offline or failing."""
    timestamp: str = Field(default_factory=now_iso)
    context: str = "unknown"


class Student(GradebookModel):
    id: int
    name: str
    phone: str = ""
    email: str = ""
    parent_name: str = ""
    parent_phone: str = ""
    note: str = ""
    updated_at: Optional[str] = None


class Column(GradebookModel):
    """A grade column. IELTS columns belong to the lesson that created them."""
    id: int
    name: str
    ielts: bool = False
    lesson_id: Optional[int] = None
    updated_at: Optional[str] = None


class Lesson(GradebookModel):
    id: int
    topic: str
    date: str
    num: Optional[int] = None
    mode: LessonMode = "standard"
    student_ids: Optional[List[int]] = Field(
        default=None,
        description="Roster snapshot taken at creation; None means every current student.",
    )
    attendance: Dict[int, AttendanceStatus] = Field(default_factory=dict)
    grades: Dict[int, Dict[int, str]] = Field(
        default_factory=dict,
        description="column_id -> student_id -> grade value",
    )
    updated_at: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def unpack_legacy_data(cls, data: Any) -> Any:
        """
        Older snapshots keep cells in one flat 'data' map keyed by
        'att_<sid>' and 'col_<cid>_<sid>'; split it into attendance and grades.
        """
        if not isinstance(data, dict) or "data" not in data:
            return data
        data = dict(data)
        flat = data.pop("data") or {}
        attendance = dict(data.get("attendance") or {})
        grades = {k: dict(v) for k, v in (data.get("grades") or {}).items()}
        for key, value in flat.items():
            parsed = parse_cell_key(key)
            if parsed is None:
                continue
            kind, column_id, student_id = parsed
            if kind == "att":
                if value in ATTENDANCE_STATUSES:
                    attendance[student_id] = value
            else:
                grades.setdefault(column_id, {})[student_id] = "" if value is None else str(value)
        data["attendance"] = attendance
        data["grades"] = grades
        return data

    def includes(self, student_id: int) -> bool:
        return self.student_ids is None or student_id in self.student_ids

    def attendance_for(self, student_id: int) -> str:
        return self.attendance.get(student_id, DEFAULT_ATTENDANCE)

    def grade_for(self, column_id: int, student_id: int) -> str:
        return self.grades.get(column_id, {}).get(student_id, "")

    def legacy_data(self) -> Dict[str, str]:
        """Flatten cells back into the 'att_<sid>' / 'col_<cid>_<sid>' key scheme."""
        flat: Dict[str, str] = {}
        for column_id, by_student in self.grades.items():
            for student_id, value in by_student.items():
                flat[grade_key(column_id, student_id)] = value
        for student_id, status in self.attendance.items():
            flat[attendance_key(student_id)] = status
        return flat


class Classroom(GradebookModel):
    id: str
    name: str
    subject: str = ""
    teacher: str = ""
    students: List[Student] = Field(default_factory=list)
    lessons: List[Lesson] = Field(default_factory=list)
    columns: List[Column] = Field(default_factory=list)
    next_sid: int = 1
    next_lid: int = 1
    next_cid: int = 1
    updated_at: Optional[str] = None


class Tombstone(GradebookModel):
    """Record of an explicit local deletion still to be applied remotely."""
    kind: Literal["classroom", "student", "lesson", "column"]
    classroom_id: str
    entity_id: Optional[int] = None  # None for classrooms
    deleted_at: str = Field(default_factory=now_iso)

    def matches(self, kind: str, classroom_id: str, entity_id: Optional[int] = None) -> bool:
        return (
            self.kind == kind
            and self.classroom_id == classroom_id
            and self.entity_id == entity_id
        )


class GradebookDocument(GradebookModel):
    """The complete client-side application state."""
    classrooms: List[Classroom] = Field(default_factory=list)
    next_id: int = 1
    user: Optional[UserInfo] = None
    last_sync: Optional[str] = None
    sync_status: SyncStatus = SyncStatus.IDLE
    pending_changes: List[PendingChange] = Field(default_factory=list)
    export_settings: ExportSettings = Field(default_factory=ExportSettings)
    tombstones: List[Tombstone] = Field(default_factory=list)

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, text: str) -> "GradebookDocument":
        return cls.model_validate_json(text)


def attendance_key(student_id: int) -> str:
    return f"{ATTENDANCE_KEY_PREFIX}{student_id}"


def grade_key(column_id: int, student_id: int) -> str:
    return f"{GRADE_KEY_PREFIX}{column_id}_{student_id}"


def parse_cell_key(key: str) -> Optional[tuple]:
    """Parse a flat cell key.

    Returns:
        ('att', None, student_id), ('col', column_id, student_id) or None when
        the key is not a recognizable cell key.
    """
    try:
        if key.startswith(ATTENDANCE_KEY_PREFIX):
            return ("att", None, int(key[len(ATTENDANCE_KEY_PREFIX):]))
        if key.startswith(GRADE_KEY_PREFIX):
            column_part, student_part = key[len(GRADE_KEY_PREFIX):].split("_", 1)
            return ("col", int(column_part), int(student_part))
    except ValueError:
        return None
    return None


def migrate_legacy_data(document: GradebookDocument) -> GradebookDocument:
    """Fill in fields older snapshots lack, in place.

    Lessons without a roster snapshot get the current roster; entities without a
    timestamp inherit their classroom's (classrooms default to now).
    """
    for classroom in document.classrooms:
        if not classroom.updated_at:
            classroom.updated_at = now_iso()
        for student in classroom.students:
            if not student.updated_at:
                student.updated_at = classroom.updated_at
        for lesson in classroom.lessons:
            if lesson.student_ids is None:
                lesson.student_ids = [s.id for s in classroom.students]
            if not lesson.updated_at:
                lesson.updated_at = classroom.updated_at
    return document
