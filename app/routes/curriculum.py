import logging

from fastapi import APIRouter, Depends, Query, Request

from app.db import lessons as lessons_db
from app.db import students as students_db
from app.db.database import get_db
from app.models.curriculum import CurriculumGenerateResponse, CurriculumRequest
from app.routes.auth import get_current_user, require_family_student
from app.services.ai_client import ensure_configured
from app.services.curriculum_generator import generate_curriculum, validate_request
from app.services.errors import AuthorizationError, StudentNotFoundError, TutorAppError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/curriculum", tags=["curriculum"])


@router.post("/generate")
async def generate(body: CurriculumRequest, request: Request, db=Depends(get_db)):
    user = await get_current_user(request, db)
    ensure_configured("curriculum")
    validate_request(body)

    student = await students_db.get_family_student(db, body.student_id, user["family_id"])
    if student is None:
        raise StudentNotFoundError(body.student_id)

    try:
        result = await generate_curriculum(db, body, student)
    except TutorAppError:
        raise
    except Exception as exc:
        logger.exception("Curriculum generation error: %s", exc)
        raise TutorAppError("Failed to generate curriculum") from exc

    response = CurriculumGenerateResponse(
        curriculum=result.curriculum,
        saved_id=result.saved_id,
        usage=result.usage,
    )
    # savedId is left out entirely when the draft could not be stored
    return response.model_dump(by_alias=True, exclude_none=True)


@router.get("")
async def list_curricula(
    request: Request,
    student_id: str = Query(alias="studentId"),
    db=Depends(get_db),
):
    """Saved drafts for a student, newest first."""
    await require_family_student(request, student_id, db)
    lessons = await lessons_db.get_lessons_by_student(db, student_id)
    return {"lessons": [lesson.model_dump(by_alias=True) for lesson in lessons]}


@router.get("/{lesson_id}")
async def get_curriculum(lesson_id: str, request: Request, db=Depends(get_db)):
    lesson = await lessons_db.get_lesson(db, lesson_id)
    if lesson is None:
        raise AuthorizationError("Curriculum not found")
    try:
        await require_family_student(request, lesson.student_id, db)
    except StudentNotFoundError:
        raise AuthorizationError("Curriculum not found")
    return {"lesson": lesson.model_dump(by_alias=True)}
