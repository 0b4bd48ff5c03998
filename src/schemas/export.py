"""Export payload schemas.

The payload is the boundary with the report renderers: it carries everything
needed to draw a lesson sheet or a class roster, already resolved to plain
strings and numbers. Serialize with `by_alias=True` for the camelCase wire form.
"""

from typing import List, Literal, Optional, Union

from pydantic import Field

from schemas.gradebook import AttendanceStatus, GradebookModel


class ExportContext(GradebookModel):
    type: Literal["lesson", "class"]
    classroom_id: str
    lesson_id: Optional[int] = None


class LessonExportRow(GradebookModel):
    student_name: str
    attendance: AttendanceStatus = "present"
    grades: List[str] = Field(default_factory=list)


class ClassExportRow(GradebookModel):
    name: str
    phone: str = ""
    email: str = ""
    parent_name: str = ""
    parent_phone: str = ""
    attendance_rate: int = 100
    present: int = 0
    late: int = 0
    absent: int = 0
    total: int = 0


class ExportPayloadBase(GradebookModel):
    class_name: str
    teacher_name: str = ""
    institution_name: str
    logo_data: Optional[str] = None
    accent_color: str
    accent_color_dark: str
    accent_color_light: str


class LessonExportPayload(ExportPayloadBase):
    type: Literal["lesson"] = "lesson"
    lesson_name: str
    lesson_date: str
    lesson_num: Optional[int] = None
    columns: List[str] = Field(default_factory=list)
    rows: List[LessonExportRow] = Field(default_factory=list)


class ClassExportPayload(ExportPayloadBase):
    type: Literal["class"] = "class"
    subject: str = "Class"
    total_lessons: int = 0
    rows: List[ClassExportRow] = Field(default_factory=list)


ExportPayload = Union[LessonExportPayload, ClassExportPayload]
