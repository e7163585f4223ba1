"""XP and streak operations against the students / xp_transactions tables.

The XP counter on students is a denormalized, clamped left fold of the
student's xp_transactions. It is changed with a single storage-level
increment so that concurrent additions for one student cannot lose an
update. Streak updates use compare-and-set on last_activity_date and are
retried when they lose a race.
"""

import logging
from datetime import date

import aiosqlite
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from app.config import settings
from app.db.students import get_student, new_id, utcnow_iso
from app.models.student import StreakUpdate, StudentProgress, XPResult, XPTransaction
from app.services.errors import ConcurrentUpdateError, StudentNotFoundError, ValidationError
from app.services.xp_engine import LEVELS, level_of, level_rank, next_streak, today_in, xp_to_next_level

logger = logging.getLogger(__name__)


async def add_xp(db: aiosqlite.Connection, student_id: str, amount: int, reason: str) -> XPResult:
    """Add (or, for a negative amount, remove) XP and log the transaction.

    Stored xp never goes below 0; the transaction keeps the raw amount.
    """
    if amount == 0:
        raise ValidationError("XP amount must be non-zero")
    if not reason or not reason.strip():
        raise ValidationError("XP reason is required")

    try:
        cursor = await db.execute(
            """UPDATE students
               SET xp = CASE WHEN xp + ? < 0 THEN 0 ELSE xp + ? END
               WHERE id = ?
               RETURNING xp, level""",
            (amount, amount, student_id),
        )
        rows = await cursor.fetchall()
        if not rows:
            raise StudentNotFoundError(student_id)
        new_xp = rows[0]["xp"]
        new_level = level_of(new_xp)
        # The level column is not touched by the increment, so it still holds
        # the label from before this change
        previous_level = rows[0]["level"]
        if previous_level not in LEVELS:
            previous_level = level_of(max(0, new_xp - amount))

        # Only the writer whose increment produced this total sets its level
        await db.execute(
            "UPDATE students SET level = ? WHERE id = ? AND xp = ?",
            (new_level, student_id, new_xp),
        )

        transaction_id = new_id()
        await db.execute(
            """INSERT INTO xp_transactions (id, student_id, amount, reason, created_at)
               VALUES (?, ?, ?, ?, ?)""",
            (transaction_id, student_id, amount, reason.strip(), utcnow_iso()),
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    leveled_up = level_rank(new_level) > level_rank(previous_level)
    logger.info(
        "Student %s %+d XP for %s → %d (%s)%s",
        student_id, amount, reason, new_xp, new_level, " LEVEL UP" if leveled_up else "",
    )
    return XPResult(
        student_id=student_id,
        xp=new_xp,
        level=new_level,
        previous_level=previous_level,
        leveled_up=leveled_up,
        transaction_id=transaction_id,
    )


@retry(
    stop=stop_after_attempt(5),
    wait=wait_exponential(multiplier=0.05, min=0.05, max=1),
    retry=retry_if_exception_type(ConcurrentUpdateError),
    before_sleep=lambda retry_state: logger.warning(
        "Streak update lost a race (attempt %d), retrying",
        retry_state.attempt_number,
    ),
    reraise=True,
)
async def record_activity(
    db: aiosqlite.Connection,
    student_id: str,
    today: date | None = None,
) -> StreakUpdate:
    """Count a qualifying activity towards the student's daily streak.

    Idempotent within a calendar day. ``today`` defaults to the current date
    in settings.activity_timezone.
    """
    student = await get_student(db, student_id)
    if student is None:
        raise StudentNotFoundError(student_id)

    if today is None:
        today = today_in(settings.activity_timezone)

    update = next_streak(
        student.streak,
        student.longest_streak,
        student.last_activity_date,
        today,
    )
    if not update.changed:
        return update

    expected = student.last_activity_date.isoformat() if student.last_activity_date else ""
    try:
        cursor = await db.execute(
            """UPDATE students
               SET streak = ?, longest_streak = ?, last_activity_date = ?
               WHERE id = ? AND COALESCE(last_activity_date, '') = ?
               RETURNING id""",
            (update.streak, update.longest_streak, today.isoformat(), student_id, expected),
        )
        rows = await cursor.fetchall()
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    if not rows:
        raise ConcurrentUpdateError("Streak was updated concurrently")

    logger.info(
        "Student %s activity on %s: streak %d (longest %d)",
        student_id, today.isoformat(), update.streak, update.longest_streak,
    )
    return update


async def get_xp_transactions(
    db: aiosqlite.Connection,
    student_id: str,
    limit: int = 50,
) -> list[XPTransaction]:
    """Most recent XP transactions first."""
    cursor = await db.execute(
        """SELECT id, student_id, amount, reason, created_at
           FROM xp_transactions
           WHERE student_id = ?
           ORDER BY created_at DESC
           LIMIT ?""",
        (student_id, limit),
    )
    return [XPTransaction(**dict(r)) for r in await cursor.fetchall()]


async def get_progress(db: aiosqlite.Connection, student_id: str) -> StudentProgress:
    student = await get_student(db, student_id)
    if student is None:
        raise StudentNotFoundError(student_id)
    next_level, remaining = xp_to_next_level(student.xp)
    return StudentProgress(
        student_id=student.id,
        xp=student.xp,
        level=student.level,
        next_level=next_level,
        xp_to_next_level=remaining,
        streak=student.streak,
        longest_streak=student.longest_streak,
        last_activity_date=student.last_activity_date,
    )
