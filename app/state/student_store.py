"""Client-side student state.

An explicit state object handed to whatever renders the dashboard, instead of
a module-level global. The selection and the student list are persisted,
through a KeyValueStorage under STORAGE_KEY; dashboard data is always
refetched.

XP and streak changes made here use the same rules as the server
(app.services.xp_engine) so an optimistic local update matches what the
server will store.
"""

import json
import logging
from datetime import date
from pathlib import Path
from typing import Optional, Protocol

from pydantic import BaseModel, Field

from app.models.student import CamelModel, Student
from app.services.xp_engine import clamp_xp, level_of, next_streak

logger = logging.getLogger(__name__)

STORAGE_KEY = "gifted-tutor-student"


class KeyValueStorage(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...


class MemoryStorage:
    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value


class JsonFileStorage:
    """All keys in one JSON object on disk."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def _read(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text())
        except json.JSONDecodeError:
            logger.warning("Ignoring unreadable state file %s", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, key: str) -> Optional[str]:
        return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2))


class DashboardStats(CamelModel):
    assignments_completed: int = 0
    achievements_earned: int = 0
    avg_mastery_rate: float = 0.0
    learning_time_this_week: int = 0


class PersistedSelection(BaseModel):
    """The part of the state that crosses the storage boundary."""

    selected_student: Optional[Student] = None
    students: list[Student] = Field(default_factory=list)


class StudentStore:
    def __init__(self, storage: Optional[KeyValueStorage] = None) -> None:
        self.storage = storage or MemoryStorage()
        self.selected_student: Optional[Student] = None
        self.students: list[Student] = []
        self.dashboard_stats = DashboardStats()

    # ── persistence boundary ──

    def dump(self) -> None:
        snapshot = PersistedSelection(
            selected_student=self.selected_student,
            students=self.students,
        )
        self.storage.set(STORAGE_KEY, snapshot.model_dump_json())

    @classmethod
    def load(cls, storage: KeyValueStorage) -> "StudentStore":
        store = cls(storage)
        raw = storage.get(STORAGE_KEY)
        if raw:
            snapshot = PersistedSelection.model_validate_json(raw)
            store.selected_student = snapshot.selected_student
            store.students = snapshot.students
        return store

    # ── students ──

    def select(self, student: Optional[Student]) -> None:
        self.selected_student = student
        self.dump()

    def set_students(self, students: list[Student]) -> None:
        self.students = list(students)
        self.dump()

    def add_student(self, student: Student) -> None:
        self.students.append(student)
        self.dump()

    def update_student(self, student_id: str, **updates) -> None:
        self.students = [
            s.model_copy(update=updates) if s.id == student_id else s
            for s in self.students
        ]
        if self.selected_student and self.selected_student.id == student_id:
            self.selected_student = self.selected_student.model_copy(update=updates)
        self.dump()

    def set_dashboard_stats(self, stats: DashboardStats) -> None:
        self.dashboard_stats = stats

    # ── gamification ──

    def add_xp(self, amount: int, reason: str) -> None:
        student = self.selected_student
        if student is None:
            return
        new_xp = clamp_xp(student.xp + amount)
        self.update_student(student.id, xp=new_xp, level=level_of(new_xp))
        logger.debug("[XP] %+d for %s", amount, reason)

    def update_streak(self, today: date) -> None:
        student = self.selected_student
        if student is None:
            return
        update = next_streak(
            student.streak,
            student.longest_streak,
            student.last_activity_date,
            today,
        )
        if not update.changed:
            return
        self.update_student(
            student.id,
            streak=update.streak,
            longest_streak=update.longest_streak,
            last_activity_date=update.last_activity_date,
        )
