"""Caller identity and family setup.

Access tokens are issued by the external auth provider (HS256, signed with
JWT_SECRET); this module only verifies them and resolves the caller's family.
"""

import logging

import aiosqlite
import jwt
from fastapi import APIRouter, Depends, Request

from app.config import settings
from app.db import students as students_db
from app.db.database import get_db
from app.models.student import FamilySetupRequest, Student
from app.services.errors import AuthenticationError, StudentNotFoundError, ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["auth"])

JWT_ALGORITHM = "HS256"


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[JWT_ALGORITHM],
            audience=settings.jwt_audience,
        )
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired")
    except jwt.InvalidTokenError:
        raise AuthenticationError("Invalid token")


async def get_current_user(request: Request, db: aiosqlite.Connection) -> dict:
    """Extract and validate the caller from the Bearer token.

    The returned dict always has id and email; family_id is None until the
    caller has completed setup.
    """
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.lower().startswith("bearer "):
        raise AuthenticationError()

    token = auth_header.split(" ", 1)[1].strip()
    if not token:
        raise AuthenticationError("Empty token")

    payload = decode_token(token)
    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Invalid token")

    user = await students_db.get_user(db, user_id)
    return {
        "id": user_id,
        "email": payload.get("email") or (user or {}).get("email"),
        "family_id": (user or {}).get("family_id"),
        "role": (user or {}).get("role") or "parent",
    }


async def require_family_student(
    request: Request,
    student_id: str,
    db: aiosqlite.Connection,
) -> tuple[dict, Student]:
    """Get the current user and the student, which must belong to the user's family.

    A student of another family is reported exactly like a missing one.
    """
    user = await get_current_user(request, db)
    student = await students_db.get_family_student(db, student_id, user["family_id"])
    if student is None:
        raise StudentNotFoundError(student_id)
    return user, student


@router.post("/setup")
async def setup_family(body: FamilySetupRequest, request: Request, db=Depends(get_db)):
    """Create the caller's family and link their user row to it."""
    user = await get_current_user(request, db)

    family_name = body.family_name.strip()
    if not family_name:
        raise ValidationError("Family name is required")

    if user["family_id"]:
        raise ValidationError("User already has a family")

    family_id = await students_db.create_family(db, family_name)
    await students_db.link_user_to_family(db, user["id"], user["email"], family_id)
    logger.info("Created family %s for user %s", family_id, user["id"])
    return {"success": True, "familyId": family_id}
