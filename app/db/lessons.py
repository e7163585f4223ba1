"""
lessons.py - Database helper queries for generated curriculum drafts

Each generated curriculum is written once as a 'draft' row; regeneration
creates a new row instead of updating an old one.
"""

import json
from typing import Any, Dict, List, Optional

import aiosqlite

from app.db.students import new_id, utcnow_iso
from app.models.curriculum import SavedLesson


def _row_to_lesson(row) -> SavedLesson:
    record = dict(row)
    content = record["content"]
    if isinstance(content, str):
        content = json.loads(content)
    record["content"] = content
    return SavedLesson.model_validate(record)


async def create_draft_lesson(
    db: aiosqlite.Connection,
    student_id: str,
    subject: str,
    topic: Optional[str],
    grade_level: str,
    difficulty: str,
    content: Dict[str, Any],
    generated_by: Optional[str] = None,
) -> str:
    """Store a generated curriculum. Returns the new lesson ID."""
    lesson_id = new_id()
    await db.execute(
        """INSERT INTO lessons
           (id, student_id, subject, topic, grade_level, difficulty, content,
            generated_by, status, created_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, 'draft', ?)""",
        (
            lesson_id,
            student_id,
            subject,
            topic,
            grade_level,
            difficulty,
            json.dumps(content),
            generated_by,
            utcnow_iso(),
        ),
    )
    await db.commit()
    return lesson_id


async def get_lesson(db: aiosqlite.Connection, lesson_id: str) -> Optional[SavedLesson]:
    cursor = await db.execute("SELECT * FROM lessons WHERE id = ?", (lesson_id,))
    row = await cursor.fetchone()
    return _row_to_lesson(row) if row else None


async def get_lessons_by_student(
    db: aiosqlite.Connection,
    student_id: str,
    limit: int = 50,
) -> List[SavedLesson]:
    """Newest first."""
    cursor = await db.execute(
        "SELECT * FROM lessons WHERE student_id = ? ORDER BY created_at DESC LIMIT ?",
        (student_id, limit),
    )
    return [_row_to_lesson(r) for r in await cursor.fetchall()]
