"""Gradebook management utilities.

This module provides the command layer over the gradebook document: creating,
editing and deleting classrooms, students, lessons and grade columns, recording
attendance and grades, and computing attendance statistics. Every structural
command rebuilds the secondary index before it returns.
"""

import logging
import math
import secrets
import time
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

import config
from core.exceptions import (
    ClassroomNotFoundError,
    ColumnNotFoundError,
    LessonNotFoundError,
    StudentNotFoundError,
    ValidationError,
)
from schemas.gradebook import (
    ATTENDANCE_STATUSES,
    Classroom,
    Column,
    GradebookDocument,
    Lesson,
    Student,
    Tombstone,
    now_iso,
)
from utils.index import SecondaryIndex

logger = logging.getLogger(__name__)

NEXT_ATTENDANCE = {"present": "late", "late": "absent", "absent": "present"}
STUDENT_FIELDS = ("phone", "email", "parent_name", "parent_phone", "note")


@dataclass
class NavigationState:
    """The classroom and lesson currently open in the UI."""
    classroom_id: Optional[str] = None
    lesson_id: Optional[int] = None


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _required(value: Optional[str], field: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValidationError(field)
    return cleaned


def new_classroom_id() -> Tuple[str, int]:
    """Generate a client-side classroom id and the timestamp embedded in it."""
    millis = int(time.time() * 1000)
    return f"class_{millis}_{secrets.token_hex(5)[:9]}", millis


class GradebookManager:
    """Manages gradebook mutations and derived statistics."""

    def __init__(self, document: Optional[GradebookDocument] = None):
        """Initialize GradebookManager.

        Args:
            document: The document to operate on; a fresh one if omitted.
        """
        self.document = document or GradebookDocument()
        self.index = SecondaryIndex(self.document)
        self._undo_stack: List[Dict[str, Any]] = []

    # --- Document / index ---

    def replace_document(self, document: GradebookDocument) -> None:
        self.document = document
        self.rebuild_index()

    def rebuild_index(self) -> None:
        self.index.rebuild(self.document)

    def get_classroom(self, classroom_id: str) -> Optional[Classroom]:
        return self.index.get_classroom(classroom_id)

    def require_classroom(self, classroom_id: str) -> Classroom:
        classroom = self.index.get_classroom(classroom_id)
        if classroom is None:
            raise ClassroomNotFoundError(classroom_id)
        return classroom

    def require_student(self, classroom_id: str, student_id: int) -> Student:
        student = self.index.get_student(classroom_id, student_id)
        if student is None:
            raise StudentNotFoundError(classroom_id, student_id)
        return student

    def require_lesson(self, classroom_id: str, lesson_id: int) -> Lesson:
        lesson = self.index.get_lesson(classroom_id, lesson_id)
        if lesson is None:
            raise LessonNotFoundError(classroom_id, lesson_id)
        return lesson

    def require_column(self, classroom_id: str, column_id: int) -> Column:
        column = self.index.get_column(classroom_id, column_id)
        if column is None:
            raise ColumnNotFoundError(classroom_id, column_id)
        return column

    def _bury(self, kind: str, classroom_id: str, entity_id: Optional[int] = None) -> None:
        self.document.tombstones.append(
            Tombstone(kind=kind, classroom_id=classroom_id, entity_id=entity_id)
        )

    # --- Classrooms ---

    def create_classroom(self, name: str, subject: str = "", teacher: str = "") -> Classroom:
        name = _required(name, "name")
        classroom_id, millis = new_classroom_id()
        classroom = Classroom(
            id=classroom_id,
            name=name,
            subject=(subject or "").strip(),
            teacher=(teacher or "").strip(),
            updated_at=now_iso(),
        )
        self.document.classrooms.append(classroom)
        self.document.next_id = max(self.document.next_id, millis + 1)
        self.rebuild_index()
        logger.info("Created classroom %s (%s)", classroom.id, classroom.name)
        return classroom

    def update_classroom(
        self,
        classroom_id: str,
        name: str,
        subject: Optional[str] = None,
        teacher: Optional[str] = None,
    ) -> Classroom:
        name = _required(name, "name")
        classroom = self.require_classroom(classroom_id)
        classroom.name = name
        if subject is not None:
            classroom.subject = subject.strip()
        if teacher is not None:
            classroom.teacher = teacher.strip()
        classroom.updated_at = now_iso()
        return classroom

    def delete_classroom(self, classroom_id: str) -> None:
        classroom = self.require_classroom(classroom_id)
        self._push_undo(f'Deleted "{classroom.name}"')
        self.document.classrooms = [c for c in self.document.classrooms if c.id != classroom_id]
        self._bury("classroom", classroom_id)
        self.rebuild_index()
        logger.info("Deleted classroom %s", classroom_id)

    def _push_undo(self, description: str) -> None:
        self._undo_stack.append(
            {
                "description": description,
                "classrooms": [c.model_copy(deep=True) for c in self.document.classrooms],
                "tombstones": [t.model_copy() for t in self.document.tombstones],
            }
        )
        if len(self._undo_stack) > config.UNDO_STACK_LIMIT:
            self._undo_stack.pop(0)

    def undo(self) -> Optional[str]:
        """Restore the snapshot taken before the last undoable deletion.

        Returns:
            The description of the undone action, or None if nothing to undo.
        """
        if not self._undo_stack:
            return None
        entry = self._undo_stack.pop()
        self.document.classrooms = entry["classrooms"]
        self.document.tombstones = entry["tombstones"]
        self.rebuild_index()
        logger.info("Undo: %s", entry["description"])
        return entry["description"]

    # --- Students ---

    def add_student(self, classroom_id: str, name: str, **fields: str) -> Student:
        name = _required(name, "name")
        classroom = self.require_classroom(classroom_id)
        student = Student(
            id=classroom.next_sid,
            name=name,
            updated_at=now_iso(),
            **{k: (fields.get(k) or "").strip() for k in STUDENT_FIELDS},
        )
        classroom.next_sid += 1
        classroom.students.append(student)
        classroom.updated_at = student.updated_at
        self.rebuild_index()
        return student

    def update_student(self, classroom_id: str, student_id: int, name: str, **fields: str) -> Student:
        name = _required(name, "name")
        student = self.require_student(classroom_id, student_id)
        student.name = name
        for key in STUDENT_FIELDS:
            if key in fields:
                setattr(student, key, (fields[key] or "").strip())
        student.updated_at = now_iso()
        return student

    def delete_student(self, classroom_id: str, student_id: int) -> None:
        """Remove a student from the roster.

        Attendance and grade cells already recorded on lessons are left in
        place; they are unreachable once the student is gone.
        """
        classroom = self.require_classroom(classroom_id)
        self.require_student(classroom_id, student_id)
        classroom.students = [s for s in classroom.students if s.id != student_id]
        classroom.updated_at = now_iso()
        self._bury("student", classroom_id, student_id)
        self.rebuild_index()

    # --- Lessons ---

    def create_lesson(
        self,
        classroom_id: str,
        topic: str,
        lesson_date: Optional[str] = None,
        num: Optional[int] = None,
        mode: str = "standard",
    ) -> Lesson:
        topic = _required(topic, "topic")
        if mode not in ("standard", "ielts"):
            raise ValidationError("mode", f"Unknown lesson mode '{mode}'")
        classroom = self.require_classroom(classroom_id)
        stamp = now_iso()
        lesson = Lesson(
            id=classroom.next_lid,
            topic=topic,
            date=lesson_date or date.today().isoformat(),
            num=int(num) if num else len(classroom.lessons) + 1,
            mode=mode,
            student_ids=[s.id for s in classroom.students],
            updated_at=stamp,
        )
        classroom.next_lid += 1

        if mode == "ielts":
            for section in config.IELTS_SECTIONS:
                if section == config.OVERALL_BAND_COLUMN:
                    continue
                classroom.columns.append(
                    Column(
                        id=classroom.next_cid,
                        name=section,
                        ielts=True,
                        lesson_id=lesson.id,
                        updated_at=stamp,
                    )
                )
                classroom.next_cid += 1

        classroom.lessons.append(lesson)
        classroom.updated_at = stamp
        self.rebuild_index()
        logger.info("Created %s lesson %d in %s", mode, lesson.id, classroom_id)
        return lesson

    def update_lesson(
        self,
        classroom_id: str,
        lesson_id: int,
        topic: str,
        lesson_date: Optional[str] = None,
        num: Optional[int] = None,
    ) -> Lesson:
        topic = _required(topic, "topic")
        lesson = self.require_lesson(classroom_id, lesson_id)
        lesson.topic = topic
        if lesson_date:
            lesson.date = lesson_date
        if num:
            lesson.num = int(num)
        lesson.updated_at = now_iso()
        return lesson

    def delete_lesson(self, classroom_id: str, lesson_id: int) -> None:
        """Delete a lesson together with the IELTS columns it created."""
        classroom = self.require_classroom(classroom_id)
        self.require_lesson(classroom_id, lesson_id)
        for column in classroom.columns:
            if column.lesson_id == lesson_id:
                self._bury("column", classroom_id, column.id)
        classroom.columns = [c for c in classroom.columns if c.lesson_id != lesson_id]
        classroom.lessons = [l for l in classroom.lessons if l.id != lesson_id]
        classroom.updated_at = now_iso()
        self._bury("lesson", classroom_id, lesson_id)
        self.rebuild_index()

    # --- Columns ---

    def add_column(self, classroom_id: str, name: str) -> Column:
        name = _required(name, "name")
        classroom = self.require_classroom(classroom_id)
        column = Column(id=classroom.next_cid, name=name, updated_at=now_iso())
        classroom.next_cid += 1
        classroom.columns.append(column)
        classroom.updated_at = column.updated_at
        self.rebuild_index()
        return column

    def rename_column(self, classroom_id: str, column_id: int, name: str) -> Column:
        name = _required(name, "name")
        column = self.require_column(classroom_id, column_id)
        column.name = name
        column.updated_at = now_iso()
        return column

    def delete_column(self, classroom_id: str, column_id: int) -> None:
        classroom = self.require_classroom(classroom_id)
        self.require_column(classroom_id, column_id)
        classroom.columns = [c for c in classroom.columns if c.id != column_id]
        classroom.updated_at = now_iso()
        self._bury("column", classroom_id, column_id)
        self.rebuild_index()

    # --- Cells ---

    def set_attendance(self, classroom_id: str, lesson_id: int, student_id: int, status: str) -> Lesson:
        if status not in ATTENDANCE_STATUSES:
            raise ValidationError("status", f"Unknown attendance status '{status}'")
        lesson = self.require_lesson(classroom_id, lesson_id)
        lesson.attendance[student_id] = status
        lesson.updated_at = now_iso()
        return lesson

    def cycle_attendance(self, classroom_id: str, lesson_id: int, student_id: int) -> str:
        """Advance present -> late -> absent -> present and return the new status."""
        lesson = self.require_lesson(classroom_id, lesson_id)
        status = NEXT_ATTENDANCE[lesson.attendance_for(student_id)]
        self.set_attendance(classroom_id, lesson_id, student_id, status)
        return status

    def set_grade(self, classroom_id: str, lesson_id: int, column_id: int, student_id: int, value: str) -> Lesson:
        lesson = self.require_lesson(classroom_id, lesson_id)
        lesson.grades.setdefault(column_id, {})[student_id] = (value or "").strip()
        lesson.updated_at = now_iso()
        return lesson

    def quick_add_student_to_lesson(self, classroom_id: str, lesson_id: int, name: str) -> Student:
        """Add a student to the roster and to the given lesson's roster snapshot."""
        lesson = self.require_lesson(classroom_id, lesson_id)
        student = self.add_student(classroom_id, name)
        if lesson.student_ids is not None:
            lesson.student_ids.append(student.id)
        lesson.updated_at = now_iso()
        return student

    # --- Statistics ---

    def student_stats(self, classroom_id: str, student_id: int) -> Dict[str, int]:
        classroom = self.get_classroom(classroom_id)
        if classroom is None:
            return {"present": 0, "late": 0, "absent": 0, "attended": 0, "total": 0}

        present = late = absent = total = 0
        for lesson in classroom.lessons:
            if not lesson.includes(student_id):
                continue
            total += 1
            status = lesson.attendance_for(student_id)
            if status == "present":
                present += 1
            elif status == "late":
                late += 1
            else:
                absent += 1
        return {
            "present": present,
            "late": late,
            "absent": absent,
            "attended": present + late,
            "total": total,
        }

    def attendance_rate(self, classroom_id: str, student_id: int) -> int:
        stats = self.student_stats(classroom_id, student_id)
        if stats["total"] == 0:
            return 100
        return round_half_up(stats["attended"] / stats["total"] * 100)

    def lesson_attendance_counts(self, classroom: Classroom, lesson: Lesson) -> Dict[str, int]:
        counts = {"present": 0, "late": 0, "absent": 0}
        for student in classroom.students:
            if not lesson.includes(student.id):
                continue
            status = lesson.attendance_for(student.id)
            counts[status if status in counts else "absent"] += 1
        return counts

    def lesson_columns(self, classroom: Classroom, lesson: Lesson, include_overall: bool = True) -> List[Column]:
        """Columns shown for a lesson: its own IELTS columns, or every standard column."""
        if lesson.mode == "ielts":
            return [
                c for c in classroom.columns
                if c.ielts and c.lesson_id == lesson.id
                and (include_overall or c.name != config.OVERALL_BAND_COLUMN)
            ]
        return [c for c in classroom.columns if not c.ielts]

    def calculate_overall_band(self, classroom_id: str, lesson_id: int, student_id: int) -> str:
        classroom = self.get_classroom(classroom_id)
        lesson = self.index.get_lesson(classroom_id, lesson_id)
        if classroom is None or lesson is None or lesson.mode != "ielts":
            return "-"
        if not lesson.includes(student_id):
            return "-"

        total = 0.0
        count = 0
        for column in self.lesson_columns(classroom, lesson, include_overall=False):
            value = lesson.grade_for(column.id, student_id).strip()
            if not value:
                continue
            try:
                total += float(value)
                count += 1
            except ValueError:
                continue
        if count == 0:
            return "-"
        return f"{total / count:.1f}"

    @staticmethod
    def band_class(score: Optional[str]) -> str:
        if not score or score == "-":
            return ""
        try:
            n = float(score)
        except ValueError:
            return ""
        for band in (9, 8, 7, 6, 5):
            if n >= band:
                return f"band-{band}"
        return "band-low"

    def lesson_completion_status(self, classroom: Classroom, lesson: Lesson) -> str:
        """Return 'empty', 'att-only', 'partial' or 'complete'."""
        students = [s for s in classroom.students if lesson.includes(s.id)]
        if not students:
            return "empty"
        columns = self.lesson_columns(classroom, lesson, include_overall=False)
        if not columns:
            return "att-only"

        expected = len(students) * len(columns)
        filled = sum(
            1
            for s in students
            for c in columns
            if lesson.grade_for(c.id, s.id).strip()
        )
        if filled == 0:
            return "att-only"
        if filled < expected:
            return "partial"
        return "complete"

    def class_analytics(self, classroom_id: str) -> Dict[str, Any]:
        """Per-student attendance rates (highest first) and classroom totals."""
        classroom = self.require_classroom(classroom_id)
        rows = []
        total_present = total_late = total_absent = total_lessons = 0
        for student in classroom.students:
            stats = self.student_stats(classroom_id, student.id)
            total_present += stats["present"]
            total_late += stats["late"]
            total_absent += stats["absent"]
            total_lessons += stats["total"]
            rows.append(
                {
                    "student_id": student.id,
                    "name": student.name,
                    "rate": self.attendance_rate(classroom_id, student.id),
                    **stats,
                }
            )
        rows.sort(key=lambda r: r["rate"], reverse=True)

        avg_rate = 100
        if total_lessons > 0:
            avg_rate = round_half_up((total_present + total_late) / total_lessons * 100)
        return {
            "lesson_count": len(classroom.lessons),
            "student_count": len(classroom.students),
            "avg_rate": avg_rate,
            "total_present": total_present,
            "total_late": total_late,
            "total_absent": total_absent,
            "rows": rows,
        }
