import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from app.db import students as students_db
from app.db import tutor as tutor_db
from app.db.database import get_db
from app.models.tutor import TutorChatRequest
from app.routes.auth import get_current_user, require_family_student
from app.services.ai_client import ensure_configured
from app.services.errors import SessionNotFoundError, StudentNotFoundError, ValidationError
from app.services.tutor_chat import start_turn, stream_turn, validate_chat_request

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tutor", tags=["tutor"])


@router.post("/chat")
async def chat(body: TutorChatRequest, request: Request, db=Depends(get_db)):
    """Stream the tutor's reply as newline-delimited JSON frames."""
    user = await get_current_user(request, db)
    ensure_configured("tutor")
    validate_chat_request(body)

    student = await students_db.get_family_student(db, body.student_id, user["family_id"])
    if student is None:
        raise StudentNotFoundError(body.student_id)

    turn = await start_turn(db, student, body)
    return StreamingResponse(
        stream_turn(turn),
        media_type="application/x-ndjson",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@router.get("/chat")
async def chat_history(
    request: Request,
    session_id: Optional[str] = Query(default=None, alias="sessionId"),
    student_id: Optional[str] = Query(default=None, alias="studentId"),
    db=Depends(get_db),
):
    """Messages of one session, or the student's 20 most recent sessions."""
    await get_current_user(request, db)
    if not session_id and not student_id:
        raise ValidationError("Provide sessionId or studentId")

    if session_id:
        session = await tutor_db.get_session(db, session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        try:
            await require_family_student(request, session.student_id, db)
        except StudentNotFoundError:
            raise SessionNotFoundError(session_id)
        messages = await tutor_db.get_messages(db, session_id)
        return {"messages": [m.model_dump(by_alias=True) for m in messages]}

    await require_family_student(request, student_id, db)
    sessions = await tutor_db.get_recent_sessions(db, student_id, limit=20)
    return {"sessions": [s.model_dump(by_alias=True) for s in sessions]}
