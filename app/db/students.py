"""
students.py - Database helper queries for families, users and students

Provides insert/fetch functions for:
- families
- users
- students (profile fields; gamification counters are written by
  app.services.gamification)
"""

import json
import uuid
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

import aiosqlite

from app.models.student import (
    DIFFICULTY_PREFERENCES,
    Student,
    StudentCreate,
    StudentSettings,
    StudentUpdate,
)
from app.services.errors import RecordShapeError
from app.services.xp_engine import clamp_xp, level_of


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# Defaults applied when a student row has NULL in the column.
STUDENT_DEFAULTS: Dict[str, Any] = {
    "avatar": "1",
    "difficulty_preference": "standard",
    "subjects": ["math", "ela"],
    "daily_goal_minutes": 60,
    "xp": 0,
    "streak": 0,
    "longest_streak": 0,
}

_REQUIRED_STUDENT_COLUMNS = ("id", "family_id", "name", "grade")


def _parse_date(value, column: str) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError as exc:
        raise RecordShapeError(f"students.{column} is not a date: {value!r}") from exc


def parse_student_row(row) -> Student:
    """Map a students row to a Student, failing loudly on shape mismatch.

    Only the columns listed in STUDENT_DEFAULTS may be NULL. The level is
    always derived from xp, never read back from the row.
    """
    record = dict(row)
    missing = [c for c in _REQUIRED_STUDENT_COLUMNS if not record.get(c)]
    if missing:
        raise RecordShapeError(f"students row is missing {', '.join(missing)}")

    def value(column):
        v = record.get(column)
        return STUDENT_DEFAULTS[column] if v is None else v

    difficulty = value("difficulty_preference")
    if difficulty not in DIFFICULTY_PREFERENCES:
        raise RecordShapeError(f"students.difficulty_preference is invalid: {difficulty!r}")

    subjects = record.get("subjects")
    if subjects is None:
        subjects = list(STUDENT_DEFAULTS["subjects"])
    elif isinstance(subjects, str):
        try:
            subjects = json.loads(subjects)
        except json.JSONDecodeError as exc:
            raise RecordShapeError("students.subjects is not valid JSON") from exc
    if not isinstance(subjects, list):
        raise RecordShapeError("students.subjects must be a list")

    xp = clamp_xp(int(value("xp")))
    streak = int(value("streak"))
    return Student(
        id=str(record["id"]),
        family_id=str(record["family_id"]),
        user_id=record.get("user_id"),
        name=record["name"],
        grade=record["grade"],
        birth_date=_parse_date(record.get("birth_date"), "birth_date"),
        avatar=str(value("avatar")),
        settings=StudentSettings(
            difficulty_preference=difficulty,
            subjects=subjects,
            learning_style=record.get("learning_style"),
            daily_goal_minutes=int(value("daily_goal_minutes")),
        ),
        xp=xp,
        level=level_of(xp),
        streak=streak,
        longest_streak=max(int(value("longest_streak")), streak),
        last_activity_date=_parse_date(record.get("last_activity_date"), "last_activity_date"),
    )


# ══════════════════════════════════════════════════════════════════════════════
# FAMILIES & USERS
# ══════════════════════════════════════════════════════════════════════════════

async def get_user(db: aiosqlite.Connection, user_id: str) -> Optional[Dict[str, Any]]:
    cursor = await db.execute(
        "SELECT id, email, full_name, family_id, role FROM users WHERE id = ?",
        (user_id,),
    )
    row = await cursor.fetchone()
    return dict(row) if row else None


async def create_family(db: aiosqlite.Connection, name: str) -> str:
    """Create a family. Returns the new family ID."""
    family_id = new_id()
    await db.execute(
        "INSERT INTO families (id, name, created_at) VALUES (?, ?, ?)",
        (family_id, name, utcnow_iso()),
    )
    await db.commit()
    return family_id


async def link_user_to_family(
    db: aiosqlite.Connection,
    user_id: str,
    email: Optional[str],
    family_id: str,
) -> None:
    """Point the user's row at a family, creating the row on first setup."""
    existing = await get_user(db, user_id)
    if existing:
        await db.execute(
            "UPDATE users SET family_id = ? WHERE id = ?",
            (family_id, user_id),
        )
    else:
        await db.execute(
            """INSERT INTO users (id, email, family_id, role, created_at)
               VALUES (?, ?, ?, 'parent', ?)""",
            (user_id, email, family_id, utcnow_iso()),
        )
    await db.commit()


# ══════════════════════════════════════════════════════════════════════════════
# STUDENTS
# ══════════════════════════════════════════════════════════════════════════════

async def get_student(db: aiosqlite.Connection, student_id: str) -> Optional[Student]:
    cursor = await db.execute("SELECT * FROM students WHERE id = ?", (student_id,))
    row = await cursor.fetchone()
    return parse_student_row(row) if row else None


async def get_family_student(
    db: aiosqlite.Connection,
    student_id: str,
    family_id: Optional[str],
) -> Optional[Student]:
    """Get a student only if it belongs to the given family."""
    if not family_id:
        return None
    cursor = await db.execute(
        "SELECT * FROM students WHERE id = ? AND family_id = ?",
        (student_id, family_id),
    )
    row = await cursor.fetchone()
    return parse_student_row(row) if row else None


async def get_students_by_family(db: aiosqlite.Connection, family_id: str) -> List[Student]:
    cursor = await db.execute(
        "SELECT * FROM students WHERE family_id = ? ORDER BY created_at ASC",
        (family_id,),
    )
    rows = await cursor.fetchall()
    return [parse_student_row(r) for r in rows]


async def create_student(
    db: aiosqlite.Connection,
    family_id: str,
    user_id: Optional[str],
    data: StudentCreate,
) -> Student:
    student_id = new_id()
    await db.execute(
        """INSERT INTO students
           (id, family_id, user_id, name, grade, birth_date, avatar,
            difficulty_preference, subjects, xp, level, streak, longest_streak, created_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, 0, 0, ?)""",
        (
            student_id,
            family_id,
            user_id,
            data.name,
            data.grade,
            data.birth_date.isoformat() if data.birth_date else None,
            data.avatar or STUDENT_DEFAULTS["avatar"],
            data.difficulty_preference,
            json.dumps(data.subjects if data.subjects is not None else STUDENT_DEFAULTS["subjects"]),
            level_of(0),
            utcnow_iso(),
        ),
    )
    await db.commit()
    student = await get_student(db, student_id)
    if student is None:
        raise RecordShapeError(f"students row {student_id} missing after insert")
    return student


# StudentUpdate field → students column
_UPDATE_COLUMNS = {
    "name": "name",
    "grade": "grade",
    "avatar": "avatar",
    "difficulty_preference": "difficulty_preference",
    "subjects": "subjects",
    "learning_style": "learning_style",
    "daily_goal_minutes": "daily_goal_minutes",
}


async def update_student(
    db: aiosqlite.Connection,
    student_id: str,
    updates: StudentUpdate,
) -> Optional[Student]:
    """Apply the fields that were set on ``updates``. Returns the updated student."""
    changes = updates.model_dump(exclude_unset=True)
    assignments = []
    params: list = []
    for field, column in _UPDATE_COLUMNS.items():
        if field not in changes or changes[field] is None:
            continue
        value = changes[field]
        if field == "subjects":
            value = json.dumps(value)
        assignments.append(f"{column} = ?")
        params.append(value)

    if assignments:
        params.append(student_id)
        await db.execute(
            f"UPDATE students SET {', '.join(assignments)} WHERE id = ?",
            tuple(params),
        )
        await db.commit()
    return await get_student(db, student_id)
