"""Tests for XP and streak operations against the database."""

import asyncio
from datetime import date

import aiosqlite
import pytest

from app.db.students import get_student
from app.services import gamification
from app.services.errors import StudentNotFoundError, ValidationError
from tests.conftest import STUDENT_ID


class TestAddXP:

    def test_add_xp_updates_total_and_logs_transaction(self, run_db):
        async def scenario(db):
            result = await gamification.add_xp(db, STUDENT_ID, 120, "Completed quiz")
            student = await get_student(db, STUDENT_ID)
            transactions = await gamification.get_xp_transactions(db, STUDENT_ID)
            return result, student, transactions

        result, student, transactions = run_db(scenario)
        assert result.xp == 120
        assert result.level == "Explorer"
        assert result.leveled_up is False
        assert student.xp == 120
        assert len(transactions) == 1
        assert transactions[0].amount == 120
        assert transactions[0].reason == "Completed quiz"
        assert transactions[0].id == result.transaction_id

    def test_crossing_threshold_levels_up(self, run_db):
        async def scenario(db):
            await gamification.add_xp(db, STUDENT_ID, 450, "Lesson")
            return await gamification.add_xp(db, STUDENT_ID, 100, "Lesson")

        result = run_db(scenario)
        assert result.xp == 550
        assert result.previous_level == "Explorer"
        assert result.level == "Learner"
        assert result.leveled_up is True

    def test_stored_level_matches_xp(self, run_db):
        async def scenario(db):
            await gamification.add_xp(db, STUDENT_ID, 1600, "Project")
            cursor = await db.execute("SELECT xp, level FROM students WHERE id = ?", (STUDENT_ID,))
            return dict(await cursor.fetchone())

        row = run_db(scenario)
        assert row == {"xp": 1600, "level": "Scholar"}

    def test_negative_amount_clamps_at_zero(self, run_db):
        async def scenario(db):
            await gamification.add_xp(db, STUDENT_ID, 30, "Warmup")
            result = await gamification.add_xp(db, STUDENT_ID, -100, "Correction")
            transactions = await gamification.get_xp_transactions(db, STUDENT_ID)
            return result, transactions

        result, transactions = run_db(scenario)
        assert result.xp == 0
        assert result.level == "Explorer"
        # The transaction keeps the raw amount
        assert sorted(t.amount for t in transactions) == [-100, 30]

    def test_penalty_reports_level_before_the_drop(self, run_db):
        async def scenario(db):
            await gamification.add_xp(db, STUDENT_ID, 600, "Unit complete")
            return await gamification.add_xp(db, STUDENT_ID, -200, "Correction")

        result = run_db(scenario)
        assert result.xp == 400
        assert result.previous_level == "Learner"
        assert result.level == "Explorer"
        assert result.leveled_up is False

    def test_zero_amount_rejected(self, run_db):
        with pytest.raises(ValidationError):
            run_db(lambda db: gamification.add_xp(db, STUDENT_ID, 0, "Nothing"))

    def test_blank_reason_rejected(self, run_db):
        with pytest.raises(ValidationError):
            run_db(lambda db: gamification.add_xp(db, STUDENT_ID, 10, "   "))

    def test_unknown_student(self, run_db):
        with pytest.raises(StudentNotFoundError):
            run_db(lambda db: gamification.add_xp(db, "missing", 10, "Lesson"))

    def test_concurrent_additions_are_not_lost(self, db_path):
        """Twenty writers on separate connections, one increment each."""

        async def one(amount):
            async with aiosqlite.connect(db_path, timeout=30) as db:
                db.row_factory = aiosqlite.Row
                await gamification.add_xp(db, STUDENT_ID, amount, "Concurrent")

        async def main():
            await asyncio.gather(*(one(25) for _ in range(20)))
            async with aiosqlite.connect(db_path) as db:
                db.row_factory = aiosqlite.Row
                student = await get_student(db, STUDENT_ID)
                transactions = await gamification.get_xp_transactions(db, STUDENT_ID)
                return student, transactions

        student, transactions = asyncio.run(main())
        assert student.xp == 500
        assert student.level == "Learner"
        assert len(transactions) == 20
        assert sum(t.amount for t in transactions) == 500


class TestRecordActivity:

    def test_sequence_of_days(self, run_db):
        async def scenario(db):
            results = []
            for day in (date(2026, 3, 1), date(2026, 3, 2), date(2026, 3, 2), date(2026, 3, 5)):
                results.append(await gamification.record_activity(db, STUDENT_ID, day))
            return results, await get_student(db, STUDENT_ID)

        results, student = run_db(scenario)
        assert [r.streak for r in results] == [1, 2, 2, 1]
        assert [r.changed for r in results] == [True, True, False, True]
        assert student.streak == 1
        assert student.longest_streak == 2
        assert student.last_activity_date == date(2026, 3, 5)

    def test_same_day_twice_writes_once(self, run_db):
        async def scenario(db):
            first = await gamification.record_activity(db, STUDENT_ID, date(2026, 3, 1))
            second = await gamification.record_activity(db, STUDENT_ID, date(2026, 3, 1))
            return first, second

        first, second = run_db(scenario)
        assert first.streak == second.streak == 1
        assert second.changed is False

    def test_unknown_student(self, run_db):
        with pytest.raises(StudentNotFoundError):
            run_db(lambda db: gamification.record_activity(db, "missing", date(2026, 3, 1)))


class TestProgress:

    def test_progress_summary(self, run_db):
        async def scenario(db):
            await gamification.add_xp(db, STUDENT_ID, 1200, "Unit complete")
            await gamification.record_activity(db, STUDENT_ID, date(2026, 3, 1))
            return await gamification.get_progress(db, STUDENT_ID)

        progress = run_db(scenario)
        assert progress.xp == 1200
        assert progress.level == "Learner"
        assert progress.next_level == "Scholar"
        assert progress.xp_to_next_level == 300
        assert progress.streak == 1
