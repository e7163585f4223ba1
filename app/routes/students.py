from fastapi import APIRouter, Depends, Query, Request

from app.db import students as students_db
from app.db.database import get_db
from app.models.student import ActivityRequest, StudentCreate, StudentUpdate, XPRequest
from app.routes.auth import get_current_user, require_family_student
from app.services import gamification
from app.services.errors import ValidationError

router = APIRouter(prefix="/api/students", tags=["students"])


@router.get("")
async def list_students(request: Request, db=Depends(get_db)):
    user = await get_current_user(request, db)
    if not user["family_id"]:
        return {"students": []}
    students = await students_db.get_students_by_family(db, user["family_id"])
    return {"students": [s.model_dump(by_alias=True, mode="json") for s in students]}


@router.post("", status_code=201)
async def create_student(body: StudentCreate, request: Request, db=Depends(get_db)):
    user = await get_current_user(request, db)
    if not user["family_id"]:
        raise ValidationError("Complete family setup before adding students")
    if not body.name.strip() or not body.grade.strip():
        raise ValidationError("Missing required fields: name, grade")
    student = await students_db.create_student(db, user["family_id"], user["id"], body)
    return {"student": student.model_dump(by_alias=True, mode="json")}


@router.get("/{student_id}")
async def get_student(student_id: str, request: Request, db=Depends(get_db)):
    _, student = await require_family_student(request, student_id, db)
    return {"student": student.model_dump(by_alias=True, mode="json")}


@router.patch("/{student_id}")
async def update_student(student_id: str, body: StudentUpdate, request: Request, db=Depends(get_db)):
    await require_family_student(request, student_id, db)
    student = await students_db.update_student(db, student_id, body)
    return {"student": student.model_dump(by_alias=True, mode="json")}


@router.post("/{student_id}/xp")
async def add_xp(student_id: str, body: XPRequest, request: Request, db=Depends(get_db)):
    await require_family_student(request, student_id, db)
    result = await gamification.add_xp(db, student_id, body.amount, body.reason)
    return result.model_dump(by_alias=True)


@router.post("/{student_id}/activity")
async def record_activity(
    student_id: str,
    request: Request,
    body: ActivityRequest | None = None,
    db=Depends(get_db),
):
    await require_family_student(request, student_id, db)
    update = await gamification.record_activity(db, student_id, body.today if body else None)
    return update.model_dump(by_alias=True, mode="json")


@router.get("/{student_id}/xp-transactions")
async def list_xp_transactions(
    student_id: str,
    request: Request,
    limit: int = Query(default=50, ge=1, le=500),
    db=Depends(get_db),
):
    await require_family_student(request, student_id, db)
    transactions = await gamification.get_xp_transactions(db, student_id, limit)
    return {"transactions": [t.model_dump(by_alias=True) for t in transactions]}


@router.get("/{student_id}/progress")
async def get_progress(student_id: str, request: Request, db=Depends(get_db)):
    await require_family_student(request, student_id, db)
    progress = await gamification.get_progress(db, student_id)
    return progress.model_dump(by_alias=True, mode="json")
