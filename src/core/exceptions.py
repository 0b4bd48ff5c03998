"""Custom exception classes for GradeJournal.

This module defines application-specific exceptions following Google Python
Style Guide.
"""

from typing import List, Optional


class GradebookError(Exception):
    """Base exception for all GradeJournal errors."""

    pass


class ValidationError(GradebookError):
    """Raised when a required field is missing before a mutation."""

    def __init__(self, field: str, message: Optional[str] = None):
        """Initialize the exception.

        Args:
            field: Name of the offending input field.
            message: Optional human readable message.
        """
        self.field = field
        super().__init__(message or f"'{field}' is required")


class ClassroomNotFoundError(GradebookError):
    """Raised when a requested classroom cannot be found."""

    def __init__(self, classroom_id: str):
        self.classroom_id = classroom_id
        super().__init__(f"Classroom '{classroom_id}' not found")


class StudentNotFoundError(GradebookError):
    """Raised when a requested student cannot be found."""

    def __init__(self, classroom_id: str, student_id: int):
        self.classroom_id = classroom_id
        self.student_id = student_id
        super().__init__(f"Student {student_id} not found in classroom '{classroom_id}'")


class LessonNotFoundError(GradebookError):
    """Raised when a requested lesson cannot be found."""

    def __init__(self, classroom_id: str, lesson_id: int):
        self.classroom_id = classroom_id
        self.lesson_id = lesson_id
        super().__init__(f"Lesson {lesson_id} not found in classroom '{classroom_id}'")


class ColumnNotFoundError(GradebookError):
    """Raised when a requested grade column cannot be found."""

    def __init__(self, classroom_id: str, column_id: int):
        self.classroom_id = classroom_id
        self.column_id = column_id
        super().__init__(f"Column {column_id} not found in classroom '{classroom_id}'")


class StorageError(GradebookError):
    """Raised when the local snapshot store cannot be read or written."""

    pass


class RemoteError(GradebookError):
    """Raised when the remote record store rejects an operation."""

    def __init__(self, message: str, table: Optional[str] = None):
        """Initialize the exception.

        Args:
            message: Error message reported by the backend.
            table: The remote table involved, if known.
        """
        self.table = table
        super().__init__(message)


class NetworkError(RemoteError):
    """Raised on a transient transport failure (connection refused, timeout)."""

    pass


class SchemaNotProvisionedError(RemoteError):
    """Raised when the expected remote tables do not exist yet."""

    pass


class PartialSyncError(GradebookError):
    """Raised when some items of a push failed while the rest were committed."""

    def __init__(self, errors: List[Exception]):
        self.errors = list(errors)
        super().__init__(f"{len(self.errors)} items failed to sync")


def classify_remote_error(message: str, table: Optional[str] = None) -> RemoteError:
    """Map a raw backend error message onto the remote error hierarchy.

    Args:
        message: Error text returned by the backend.
        table: The remote table involved, if known.

    Returns:
        A SchemaNotProvisionedError for "relation ... does not exist" errors,
        a NetworkError for network-level failures, otherwise a RemoteError.
    """
    lowered = (message or "").lower()
    if "relation" in lowered and "does not exist" in lowered:
        return SchemaNotProvisionedError(message, table=table)
    if "network error" in lowered or "failed to fetch" in lowered:
        return NetworkError(message, table=table)
    return RemoteError(message, table=table)
