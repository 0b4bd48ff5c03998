"""Export payload routes.

Rendering of spreadsheets and PDFs happens elsewhere; these routes hand out
the payload and validate payloads before rendering.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, HTTPException, status

from core.dependencies import GradebookSessionDep
from core.exceptions import ClassroomNotFoundError, LessonNotFoundError
from schemas.export import ExportContext
from utils.export_builder import build_export_payload, validate_export_payload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Export"])


def _payload(session, context: ExportContext) -> Dict[str, Any]:
    try:
        payload = build_export_payload(session.manager, context)
    except (ClassroomNotFoundError, LessonNotFoundError) as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return payload.model_dump(mode="json", by_alias=True)


@router.get("/classrooms/{classroom_id}/export", summary="Class roster export payload")
def export_classroom(classroom_id: str, session: GradebookSessionDep) -> Dict[str, Any]:
    return _payload(session, ExportContext(type="class", classroom_id=classroom_id))


@router.get(
    "/classrooms/{classroom_id}/lessons/{lesson_id}/export",
    summary="Lesson sheet export payload",
)
def export_lesson(classroom_id: str, lesson_id: int, session: GradebookSessionDep) -> Dict[str, Any]:
    return _payload(
        session,
        ExportContext(type="lesson", classroom_id=classroom_id, lesson_id=lesson_id),
    )


@router.post("/export/validate", summary="Validate an export payload")
def validate_export(data: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    """Reject payloads a renderer could not draw.

    Raises:
        HTTPException: 400 with the joined error list.
    """
    errors = validate_export_payload(data)
    if errors:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=", ".join(errors))
    return {"valid": True, "type": data["type"], "rows": len(data["rows"])}
