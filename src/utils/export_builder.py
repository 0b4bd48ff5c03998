"""Export payload builder.

Produces the lesson/class payload consumed by the spreadsheet and PDF
renderers, and validates payloads received over HTTP.
"""

import logging
import re
from typing import Any, Dict, List, Tuple

import config
from core.exceptions import LessonNotFoundError, ValidationError
from schemas.export import (
    ClassExportPayload,
    ClassExportRow,
    ExportContext,
    ExportPayload,
    LessonExportPayload,
    LessonExportRow,
)
from schemas.gradebook import GradebookDocument, HSLColor
from utils.gradebook_manager import GradebookManager

logger = logging.getLogger(__name__)

_HSL_PATTERN = re.compile(r"hsl\((\d+),\s*(\d+)%,\s*(\d+)%\)")

# Used when a payload carries no parsable accent color
DEFAULT_ACCENT_ARGB = "FFC17F3A"


def hsl_to_rgb(h: float, s: float, l: float) -> Tuple[int, int, int]:
    """Convert HSL (degrees, percent, percent) to 0-255 RGB components."""
    s /= 100
    l /= 100
    c = (1 - abs(2 * l - 1)) * s
    x = c * (1 - abs(((h / 60) % 2) - 1))
    m = l - c / 2
    if h < 60:
        r, g, b = c, x, 0
    elif h < 120:
        r, g, b = x, c, 0
    elif h < 180:
        r, g, b = 0, c, x
    elif h < 240:
        r, g, b = 0, x, c
    elif h < 300:
        r, g, b = x, 0, c
    else:
        r, g, b = c, 0, x
    return tuple(int((v + m) * 255 + 0.5) for v in (r, g, b))


def hsl_to_argb(h: float, s: float, l: float) -> str:
    """Opaque ARGB hex string (e.g. 'FFC17F3A') for spreadsheet fills."""
    r, g, b = hsl_to_rgb(h, s, l)
    return f"FF{r:02X}{g:02X}{b:02X}"


def accent_argb(accent_color: str) -> str:
    """Parse an `hsl(h, s%, l%)` accent string into ARGB, with a fallback."""
    match = _HSL_PATTERN.search(accent_color or "")
    if not match:
        return DEFAULT_ACCENT_ARGB
    return hsl_to_argb(*(int(part) for part in match.groups()))


def accent_colors(color: HSLColor) -> Dict[str, str]:
    return {
        "accent_color": f"hsl({color.h}, {color.s}%, 50%)",
        "accent_color_dark": f"hsl({color.h}, {color.s}%, 35%)",
        "accent_color_light": f"hsl({color.h}, {color.s}%, 92%)",
    }


def _name_key(name: str) -> str:
    return name.casefold()


def build_export_payload(manager: GradebookManager, context: ExportContext) -> ExportPayload:
    """Build the payload for a lesson sheet or a class roster.

    Args:
        manager: Manager holding the document to export from.
        context: Which classroom (and lesson, for lesson exports) to export.

    Returns:
        A LessonExportPayload or ClassExportPayload.

    Raises:
        ClassroomNotFoundError: If the classroom does not exist.
        LessonNotFoundError: If a lesson export names a missing lesson.
    """
    document: GradebookDocument = manager.document
    settings = document.export_settings
    classroom = manager.require_classroom(context.classroom_id)
    user = document.user
    institution = (user and (user.school or user.name)) or config.DEFAULT_INSTITUTION_NAME
    common: Dict[str, Any] = {
        "class_name": classroom.name,
        "institution_name": institution,
        "logo_data": settings.logo[:config.LOGO_MAX_CHARS] if settings.logo else None,
        **accent_colors(settings.color),
    }

    if context.type == "lesson":
        if context.lesson_id is None:
            raise ValidationError("lesson_id", "A lesson export needs a lesson id")
        lesson = manager.index.get_lesson(classroom.id, context.lesson_id)
        if lesson is None:
            raise LessonNotFoundError(classroom.id, context.lesson_id)
        columns = manager.lesson_columns(classroom, lesson)
        column_names = [c.name for c in columns]
        # IELTS lessons always report a computed band after the section scores
        add_band = lesson.mode == "ielts" and config.OVERALL_BAND_COLUMN not in column_names
        if add_band:
            column_names.append(config.OVERALL_BAND_COLUMN)
        students = sorted(
            (s for s in classroom.students if lesson.includes(s.id)),
            key=lambda s: _name_key(s.name),
        )
        rows = []
        for student in students:
            grades = [
                manager.calculate_overall_band(classroom.id, lesson.id, student.id)
                if column.name == config.OVERALL_BAND_COLUMN
                else lesson.grade_for(column.id, student.id)
                for column in columns
            ]
            if add_band:
                grades.append(manager.calculate_overall_band(classroom.id, lesson.id, student.id))
            rows.append(
                LessonExportRow(
                    student_name=student.name,
                    attendance=lesson.attendance_for(student.id),
                    grades=grades,
                )
            )
        return LessonExportPayload(
            lesson_name=lesson.topic,
            lesson_date=lesson.date,
            lesson_num=lesson.num,
            columns=column_names,
            rows=rows,
            teacher_name=classroom.teacher or (user.name if user and user.name else ""),
            **common,
        )

    rows = []
    for student in sorted(classroom.students, key=lambda s: _name_key(s.name)):
        stats = manager.student_stats(classroom.id, student.id)
        rows.append(
            ClassExportRow(
                name=student.name,
                phone=student.phone,
                email=student.email,
                parent_name=student.parent_name,
                parent_phone=student.parent_phone,
                attendance_rate=manager.attendance_rate(classroom.id, student.id),
                present=stats["present"],
                late=stats["late"],
                absent=stats["absent"],
                total=stats["total"],
            )
        )
    return ClassExportPayload(
        subject=classroom.subject or "Class",
        total_lessons=len(classroom.lessons),
        rows=rows,
        teacher_name=classroom.teacher or (user.name if user and user.name else "Teacher"),
        **common,
    )


def validate_export_payload(data: Dict[str, Any]) -> List[str]:
    """Check a raw camelCase payload received by the export endpoint.

    Returns:
        A list of error messages; empty when the payload is acceptable.
    """
    payload_type = data.get("type")
    if payload_type not in ("lesson", "class"):
        return ["Invalid export type"]

    errors = []
    required = ["className"]
    if payload_type == "lesson":
        required += ["lessonName", "lessonDate"]
    for key in required:
        value = data.get(key)
        if not value or not isinstance(value, str):
            errors.append(f"Missing {key}")
    if payload_type == "lesson" and not isinstance(data.get("columns"), list):
        errors.append("columns must be an array")
    rows = data.get("rows")
    if not isinstance(rows, list):
        errors.append("rows must be an array")
    elif len(rows) > config.EXPORT_MAX_ROWS:
        errors.append(f"Too many rows (max {config.EXPORT_MAX_ROWS})")
    if errors:
        logger.warning("Rejected %s export payload: %s", payload_type, ", ".join(errors))
    return errors
