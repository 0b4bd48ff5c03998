"""Secondary index over the gradebook document.

The index is a derived cache of by-id lookups. It is never a source of truth
and must be rebuilt after every structural mutation of the document.
"""

import logging
from typing import Dict, Optional

from schemas.gradebook import Classroom, Column, GradebookDocument, Lesson, Student

logger = logging.getLogger(__name__)


class SecondaryIndex:
    """By-id lookup tables for classrooms and their children."""

    def __init__(self, document: Optional[GradebookDocument] = None):
        self.classrooms_by_id: Dict[str, Classroom] = {}
        self.students_by_classroom: Dict[str, Dict[int, Student]] = {}
        self.lessons_by_classroom: Dict[str, Dict[int, Lesson]] = {}
        self.columns_by_classroom: Dict[str, Dict[int, Column]] = {}
        if document is not None:
            self.rebuild(document)

    def rebuild(self, document: GradebookDocument) -> None:
        """Replace all lookup tables with fresh maps built from the document."""
        classrooms_by_id: Dict[str, Classroom] = {}
        students: Dict[str, Dict[int, Student]] = {}
        lessons: Dict[str, Dict[int, Lesson]] = {}
        columns: Dict[str, Dict[int, Column]] = {}

        for classroom in document.classrooms:
            classrooms_by_id[classroom.id] = classroom
            students[classroom.id] = {s.id: s for s in classroom.students}
            lessons[classroom.id] = {l.id: l for l in classroom.lessons}
            columns[classroom.id] = {c.id: c for c in classroom.columns}

        self.classrooms_by_id = classrooms_by_id
        self.students_by_classroom = students
        self.lessons_by_classroom = lessons
        self.columns_by_classroom = columns
        logger.debug("Index rebuilt (%d classrooms)", len(classrooms_by_id))

    def get_classroom(self, classroom_id: str) -> Optional[Classroom]:
        return self.classrooms_by_id.get(classroom_id)

    def get_student(self, classroom_id: str, student_id: int) -> Optional[Student]:
        return self.students_by_classroom.get(classroom_id, {}).get(student_id)

    def get_lesson(self, classroom_id: str, lesson_id: int) -> Optional[Lesson]:
        return self.lessons_by_classroom.get(classroom_id, {}).get(lesson_id)

    def get_column(self, classroom_id: str, column_id: int) -> Optional[Column]:
        return self.columns_by_classroom.get(classroom_id, {}).get(column_id)
