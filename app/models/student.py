from datetime import date
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

DifficultyPreference = Literal["standard", "advanced", "challenge"]
LearningStyle = Literal["visual", "auditory", "kinesthetic", "reading"]

DIFFICULTY_PREFERENCES = ("standard", "advanced", "challenge")


class CamelModel(BaseModel):
    """Base model whose JSON form uses camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StudentSettings(CamelModel):
    difficulty_preference: DifficultyPreference = "standard"
    subjects: list[str] = Field(default_factory=lambda: ["math", "ela"])
    learning_style: Optional[LearningStyle] = None
    daily_goal_minutes: int = 60


class Student(CamelModel):
    id: str
    family_id: str
    user_id: Optional[str] = None
    name: str
    grade: str
    birth_date: Optional[date] = None
    avatar: str = "1"
    settings: StudentSettings = Field(default_factory=StudentSettings)
    xp: int = 0
    level: str = "Explorer"
    streak: int = 0
    longest_streak: int = 0
    last_activity_date: Optional[date] = None


class StudentCreate(CamelModel):
    name: str
    grade: str
    birth_date: Optional[date] = None
    avatar: Optional[str] = None
    difficulty_preference: DifficultyPreference = "standard"
    subjects: Optional[list[str]] = None


class StudentUpdate(CamelModel):
    """Profile fields a parent may change. Gamification counters are not here."""

    name: Optional[str] = None
    grade: Optional[str] = None
    avatar: Optional[str] = None
    difficulty_preference: Optional[DifficultyPreference] = None
    subjects: Optional[list[str]] = None
    learning_style: Optional[LearningStyle] = None
    daily_goal_minutes: Optional[int] = Field(default=None, gt=0)


class XPRequest(CamelModel):
    amount: int
    reason: str = Field(min_length=1)


class ActivityRequest(CamelModel):
    today: Optional[date] = None


class XPTransaction(CamelModel):
    id: str
    student_id: str
    amount: int
    reason: str
    created_at: Optional[str] = None


class XPResult(CamelModel):
    student_id: str
    xp: int
    level: str
    previous_level: str
    leveled_up: bool = False
    transaction_id: str


class StreakUpdate(CamelModel):
    streak: int
    longest_streak: int
    last_activity_date: date
    changed: bool = True


class StudentProgress(CamelModel):
    student_id: str
    xp: int
    level: str
    next_level: Optional[str] = None
    xp_to_next_level: int = 0
    streak: int
    longest_streak: int
    last_activity_date: Optional[date] = None


class FamilySetupRequest(CamelModel):
    family_name: str = ""
