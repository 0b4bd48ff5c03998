"""Remote adapter.

Translates the nested gradebook document to and from the normalized remote
schema: flat classrooms/students/lessons/columns/grades/attendance tables keyed
by foreign ids, plus a per-user export_settings row.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import config
from core.exceptions import (
    NetworkError,
    RemoteError,
    SchemaNotProvisionedError,
)
from schemas.gradebook import (
    ATTENDANCE_STATUSES,
    Classroom,
    Column,
    ExportSettings,
    GradebookDocument,
    HSLColor,
    Lesson,
    Student,
    Tombstone,
)
from utils.record_store import RecordStore, Row

logger = logging.getLogger(__name__)

_CLASS_ID_TIMESTAMP = re.compile(r"^class_(\d+)_")


@dataclass
class PushReport:
    """Outcome of a push: what failed and which deletions were applied."""
    pushed_classrooms: int = 0
    errors: List[Exception] = field(default_factory=list)
    applied_tombstones: List[Tombstone] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def _group_by(rows: List[Row], key: str) -> Dict[Any, List[Row]]:
    grouped: Dict[Any, List[Row]] = {}
    for row in rows:
        grouped.setdefault(row.get(key), []).append(row)
    return grouped


def next_document_id(classrooms: Sequence[Classroom]) -> int:
    """One past the largest timestamp embedded in client-generated classroom ids."""
    stamps = [0]
    for classroom in classrooms:
        match = _CLASS_ID_TIMESTAMP.match(classroom.id)
        if match:
            stamps.append(int(match.group(1)))
    return max(stamps) + 1


class RemoteAdapter:
    """Pulls and pushes gradebook documents through a RecordStore."""

    def __init__(self, store: RecordStore, batch_size: int = config.REMOTE_BATCH_SIZE):
        """Initialize RemoteAdapter.

        Args:
            store: The remote record store.
            batch_size: Max ids per membership filter when fetching cells.
        """
        self.store = store
        self.batch_size = batch_size
        self.schema_missing = False

    async def fetch_in_batches(self, table: str, column: str, ids: Sequence[Any]) -> List[Row]:
        """Fetch rows whose `column` is in `ids`, `batch_size` ids per request."""
        rows: List[Row] = []
        ids = list(ids)
        for start in range(0, len(ids), self.batch_size):
            chunk = ids[start:start + self.batch_size]
            rows.extend(await self.store.fetch_rows(table, {column: chunk}))
        return rows

    # --- Pull ---

    async def load_remote(self, user_id: str) -> GradebookDocument:
        """Fetch the user's data and rebuild the nested document.

        Returns:
            The remote document. Its classroom list is empty when the backend
            schema has not been provisioned yet. `export_settings` is only set
            explicitly when the user has a settings row.

        Raises:
            NetworkError: On transient transport failure.
            RemoteError: On any other backend failure.
        """
        try:
            classroom_rows = await self.store.fetch_rows("classrooms", {"user_id": user_id})
        except SchemaNotProvisionedError as exc:
            logger.info("Remote schema not provisioned yet (%s); treating as empty", exc)
            self.schema_missing = True
            return GradebookDocument()
        self.schema_missing = False

        settings = await self._load_export_settings(user_id)
        if not classroom_rows:
            return self._document([], settings)

        classroom_ids = [row["id"] for row in classroom_rows]
        students = _group_by(await self.store.fetch_rows("students", {"classroom_id": classroom_ids}), "classroom_id")
        lessons = _group_by(await self.store.fetch_rows("lessons", {"classroom_id": classroom_ids}), "classroom_id")
        columns = _group_by(await self.store.fetch_rows("columns", {"classroom_id": classroom_ids}), "classroom_id")

        lesson_ids = [row["id"] for rows in lessons.values() for row in rows]
        grades = _group_by(await self.fetch_in_batches("grades", "lesson_id", lesson_ids), "lesson_id")
        attendance = _group_by(await self.fetch_in_batches("attendance", "lesson_id", lesson_ids), "lesson_id")

        classrooms = [
            self._build_classroom(
                row,
                students.get(row["id"], []),
                lessons.get(row["id"], []),
                columns.get(row["id"], []),
                grades,
                attendance,
            )
            for row in classroom_rows
        ]
        logger.info("Loaded %d classrooms from remote", len(classrooms))
        return self._document(classrooms, settings)

    def _document(self, classrooms: List[Classroom], settings: Optional[ExportSettings]) -> GradebookDocument:
        fields: Dict[str, Any] = {
            "classrooms": classrooms,
            "next_id": next_document_id(classrooms),
        }
        if settings is not None:
            fields["export_settings"] = settings
        return GradebookDocument(**fields)

    async def _load_export_settings(self, user_id: str) -> Optional[ExportSettings]:
        try:
            row = await self.store.fetch_one("export_settings", {"user_id": user_id})
        except SchemaNotProvisionedError:
            return None
        if not row:
            return None
        color = row.get("color") or config.DEFAULT_EXPORT_COLOR
        return ExportSettings(
            color=HSLColor(**color),
            logo=row.get("logo_data"),
            logo_name=row.get("logo_name"),
            logo_size=row.get("logo_size"),
        )

    def _build_classroom(
        self,
        row: Row,
        student_rows: List[Row],
        lesson_rows: List[Row],
        column_rows: List[Row],
        grades: Dict[Any, List[Row]],
        attendance: Dict[Any, List[Row]],
    ) -> Classroom:
        # Cells reference remote row ids; local ids are the per-classroom numbers.
        student_numbers = {s["id"]: s["student_number"] for s in student_rows}
        lesson_numbers = {l["id"]: l["lesson_number"] for l in lesson_rows}
        column_numbers = {c["id"]: c["column_number"] for c in column_rows}

        students = [
            Student(
                id=s["student_number"],
                name=s.get("name") or "",
                phone=s.get("phone") or "",
                email=s.get("email") or "",
                parent_name=s.get("parent_name") or "",
                parent_phone=s.get("parent_phone") or "",
                note=s.get("notes") or "",
                updated_at=s.get("updated_at"),
            )
            for s in student_rows
        ]

        lessons = []
        for l in lesson_rows:
            cells_attendance: Dict[int, str] = {}
            for a in attendance.get(l["id"], []):
                student_id = student_numbers.get(a.get("student_id"))
                if student_id is not None and a.get("status") in ATTENDANCE_STATUSES:
                    cells_attendance[student_id] = a["status"]

            cells_grades: Dict[int, Dict[int, str]] = {}
            for g in grades.get(l["id"], []):
                column_id = column_numbers.get(g.get("column_id"))
                student_id = student_numbers.get(g.get("student_id"))
                if column_id is None or student_id is None:
                    continue
                cells_grades.setdefault(column_id, {})[student_id] = g.get("grade") or ""

            lessons.append(
                Lesson(
                    id=l["lesson_number"],
                    topic=l.get("title") or "",
                    date=l.get("lesson_date") or "",
                    # The lessons table has no column for the display number
                    num=l["lesson_number"],
                    mode=l.get("mode") or "standard",
                    student_ids=l.get("student_ids"),
                    attendance=cells_attendance,
                    grades=cells_grades,
                    updated_at=l.get("updated_at"),
                )
            )

        columns = [
            Column(
                id=c["column_number"],
                name=c.get("name") or "",
                ielts=bool(c.get("ielts")),
                lesson_id=lesson_numbers.get(c.get("lesson_id")),
                updated_at=c.get("updated_at"),
            )
            for c in column_rows
        ]

        return Classroom(
            id=row["id"],
            name=row.get("name") or "",
            subject=row.get("subject") or "",
            teacher=row.get("teacher_name") or "",
            students=students,
            lessons=lessons,
            columns=columns,
            next_sid=max([row.get("next_student_id") or 1] + [s.id + 1 for s in students]),
            next_lid=max([row.get("next_lesson_id") or 1] + [l.id + 1 for l in lessons]),
            next_cid=max([row.get("next_column_id") or 1] + [c.id + 1 for c in columns]),
            updated_at=row.get("updated_at"),
        )

    # --- Push ---

    async def save_remote(self, document: GradebookDocument, user_id: str) -> PushReport:
        """Upsert the whole document by natural keys and apply pending deletions.

        Failures of individual rows are collected in the report and do not stop
        the remaining rows. A transient network failure aborts the push.

        Raises:
            NetworkError: When the backend is unreachable.
        """
        report = PushReport()

        for tombstone in list(document.tombstones):
            try:
                await self._apply_tombstone(tombstone, user_id)
                report.applied_tombstones.append(tombstone)
            except NetworkError:
                raise
            except RemoteError as exc:
                report.errors.append(exc)

        for classroom in document.classrooms:
            try:
                await self.store.upsert_row("classrooms", self._classroom_row(classroom, user_id), ("id",))
            except NetworkError:
                raise
            except RemoteError as exc:
                logger.error("Classroom %s failed to sync: %s", classroom.id, exc)
                report.errors.append(exc)
                continue
            await self._save_children(classroom, report)
            report.pushed_classrooms += 1

        try:
            await self.store.upsert_row("export_settings", self._settings_row(document.export_settings, user_id), ("user_id",))
        except NetworkError:
            raise
        except RemoteError as exc:
            report.errors.append(exc)

        if report.errors:
            logger.error("Some saves failed: %d errors", len(report.errors))
        else:
            logger.info("All data saved to remote (%d classrooms)", report.pushed_classrooms)
        return report

    async def _upsert(self, table: str, row: Row, on_conflict: Sequence[str], report: PushReport) -> Optional[Row]:
        try:
            return await self.store.upsert_row(table, row, on_conflict)
        except NetworkError:
            raise
        except RemoteError as exc:
            report.errors.append(exc)
            return None

    async def _save_children(self, classroom: Classroom, report: PushReport) -> None:
        student_rows: Dict[int, Any] = {}
        for s in classroom.students:
            stored = await self._upsert("students", {
                "classroom_id": classroom.id,
                "student_number": s.id,
                "name": s.name,
                "phone": s.phone,
                "email": s.email,
                "parent_name": s.parent_name,
                "parent_phone": s.parent_phone,
                "notes": s.note,
                "updated_at": s.updated_at,
            }, ("classroom_id", "student_number"), report)
            if stored:
                student_rows[s.id] = stored["id"]

        lesson_rows: Dict[int, Any] = {}
        for l in classroom.lessons:
            stored = await self._upsert("lessons", {
                "classroom_id": classroom.id,
                "lesson_number": l.id,
                "title": l.topic,
                "lesson_date": l.date,
                "mode": l.mode,
                "student_ids": l.student_ids if l.student_ids is not None else [s.id for s in classroom.students],
                "updated_at": l.updated_at,
            }, ("classroom_id", "lesson_number"), report)
            if stored:
                lesson_rows[l.id] = stored["id"]

        column_rows: Dict[int, Any] = {}
        for c in classroom.columns:
            stored = await self._upsert("columns", {
                "classroom_id": classroom.id,
                "lesson_id": lesson_rows.get(c.lesson_id) if c.lesson_id is not None else None,
                "column_number": c.id,
                "name": c.name,
                "ielts": c.ielts,
                "updated_at": c.updated_at,
            }, ("classroom_id", "column_number"), report)
            if stored:
                column_rows[c.id] = stored["id"]

        for l in classroom.lessons:
            lesson_row = lesson_rows.get(l.id)
            if lesson_row is None:
                continue
            for column_id, by_student in l.grades.items():
                column_row = column_rows.get(column_id)
                if column_row is None:
                    continue
                for student_id, value in by_student.items():
                    student_row = student_rows.get(student_id)
                    if student_row is None:
                        continue
                    await self._upsert("grades", {
                        "lesson_id": lesson_row,
                        "student_id": student_row,
                        "column_id": column_row,
                        "grade": value,
                    }, ("lesson_id", "student_id", "column_id"), report)
            for student_id, status in l.attendance.items():
                student_row = student_rows.get(student_id)
                if student_row is None:
                    continue
                await self._upsert("attendance", {
                    "lesson_id": lesson_row,
                    "student_id": student_row,
                    "status": status,
                }, ("lesson_id", "student_id"), report)

    @staticmethod
    def _classroom_row(classroom: Classroom, user_id: str) -> Row:
        return {
            "id": classroom.id,
            "user_id": user_id,
            "name": classroom.name,
            "subject": classroom.subject,
            "teacher_name": classroom.teacher,
            "next_student_id": classroom.next_sid,
            "next_lesson_id": classroom.next_lid,
            "next_column_id": classroom.next_cid,
            "updated_at": classroom.updated_at,
        }

    @staticmethod
    def _settings_row(settings: ExportSettings, user_id: str) -> Row:
        return {
            "user_id": user_id,
            "color": settings.color.model_dump(),
            "logo_data": settings.logo[:config.LOGO_MAX_CHARS] if settings.logo else None,
            "logo_name": settings.logo_name,
            "logo_size": settings.logo_size,
        }

    async def _apply_tombstone(self, tombstone: Tombstone, user_id: str) -> None:
        store = self.store
        if tombstone.kind == "classroom":
            lessons = await store.fetch_rows("lessons", {"classroom_id": tombstone.classroom_id})
            lesson_ids = [row["id"] for row in lessons]
            for start in range(0, len(lesson_ids), self.batch_size):
                chunk = lesson_ids[start:start + self.batch_size]
                await store.delete_rows("grades", {"lesson_id": chunk})
                await store.delete_rows("attendance", {"lesson_id": chunk})
            for table in ("columns", "lessons", "students"):
                await store.delete_rows(table, {"classroom_id": tombstone.classroom_id})
            await store.delete_rows("classrooms", {"id": tombstone.classroom_id, "user_id": user_id})
            return

        table, number_column, cell_column = {
            "student": ("students", "student_number", "student_id"),
            "lesson": ("lessons", "lesson_number", "lesson_id"),
            "column": ("columns", "column_number", "column_id"),
        }[tombstone.kind]
        row = await store.fetch_one(table, {
            "classroom_id": tombstone.classroom_id,
            number_column: tombstone.entity_id,
        })
        if row is None:
            return
        await store.delete_rows("grades", {cell_column: row["id"]})
        if tombstone.kind != "column":
            await store.delete_rows("attendance", {cell_column: row["id"]})
        if tombstone.kind == "lesson":
            await store.delete_rows("columns", {"lesson_id": row["id"]})
        await store.delete_rows(table, {"id": row["id"]})
