"""
tutor.py - Database helper queries for tutor chat transcripts

tutor_sessions and tutor_messages are append-only.
"""

from typing import List, Optional

import aiosqlite

from app.db.students import new_id, utcnow_iso
from app.models.tutor import TutorMessage, TutorSession


async def create_session(
    db: aiosqlite.Connection,
    student_id: str,
    subject: Optional[str] = None,
) -> str:
    """Create an active session. Returns the new session ID."""
    session_id = new_id()
    await db.execute(
        """INSERT INTO tutor_sessions (id, student_id, subject, status, created_at)
           VALUES (?, ?, ?, 'active', ?)""",
        (session_id, student_id, subject or "general", utcnow_iso()),
    )
    await db.commit()
    return session_id


async def get_session(db: aiosqlite.Connection, session_id: str) -> Optional[TutorSession]:
    cursor = await db.execute(
        "SELECT id, student_id, subject, status, created_at FROM tutor_sessions WHERE id = ?",
        (session_id,),
    )
    row = await cursor.fetchone()
    return TutorSession(**dict(row)) if row else None


async def add_message(
    db: aiosqlite.Connection,
    session_id: str,
    role: str,
    content: str,
) -> str:
    """Append a message to a session. Returns the new message ID."""
    message_id = new_id()
    await db.execute(
        """INSERT INTO tutor_messages (id, session_id, role, content, created_at)
           VALUES (?, ?, ?, ?, ?)""",
        (message_id, session_id, role, content, utcnow_iso()),
    )
    await db.commit()
    return message_id


async def get_messages(db: aiosqlite.Connection, session_id: str) -> List[TutorMessage]:
    """All messages of a session, oldest first."""
    cursor = await db.execute(
        """SELECT id, session_id, role, content, created_at
           FROM tutor_messages
           WHERE session_id = ?
           ORDER BY created_at ASC""",
        (session_id,),
    )
    return [TutorMessage(**dict(r)) for r in await cursor.fetchall()]


async def get_recent_sessions(
    db: aiosqlite.Connection,
    student_id: str,
    limit: int = 20,
) -> List[TutorSession]:
    """Newest sessions first, each with its message count."""
    cursor = await db.execute(
        """SELECT s.id, s.student_id, s.subject, s.status, s.created_at,
                  COUNT(m.id) AS message_count
           FROM tutor_sessions s
           LEFT JOIN tutor_messages m ON m.session_id = s.id
           WHERE s.student_id = ?
           GROUP BY s.id, s.student_id, s.subject, s.status, s.created_at
           ORDER BY s.created_at DESC
           LIMIT ?""",
        (student_id, limit),
    )
    return [TutorSession(**dict(r)) for r in await cursor.fetchall()]
