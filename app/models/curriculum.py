from typing import Literal, Optional

from pydantic import Field

from app.models.student import CamelModel, DifficultyPreference

ActivityType = Literal["instruction", "practice", "assessment", "enrichment"]


class Activity(CamelModel):
    name: str
    type: ActivityType
    description: str = ""
    duration: str = ""
    materials: list[str] = []


class Resource(CamelModel):
    title: str
    type: str = "article"
    url: Optional[str] = None


class LessonPlan(CamelModel):
    title: str
    objective: str = ""
    duration: str = ""
    activities: list[Activity] = []
    assessment_criteria: list[str] = []
    extensions: list[str] = []
    resources: list[Resource] = []


class CurriculumResponse(CamelModel):
    topic: str
    grade_level: str = ""
    difficulty: str = ""
    overview: str = ""
    learning_objectives: list[str] = []
    prerequisites: list[str] = []
    lesson_plans: list[LessonPlan] = []
    total_duration: str = ""
    standards: list[str] = []


class CurriculumRequest(CamelModel):
    """Body of POST /api/curriculum/generate.

    Required fields default to "" so that a missing field is reported with
    the endpoint's own 400 message rather than a schema error.
    """

    student_id: str = ""
    subject: str = ""
    topic: Optional[str] = None
    grade: str = ""
    difficulty_preference: DifficultyPreference = "standard"
    duration: float = Field(default=1, allow_inf_nan=False, description="Length of the unit in weeks")
    interests: list[str] = []


class TokenUsage(CamelModel):
    input_tokens: int = 0
    output_tokens: int = 0


class CurriculumGenerateResponse(CamelModel):
    success: bool = True
    curriculum: CurriculumResponse
    saved_id: Optional[str] = None
    usage: TokenUsage


class SavedLesson(CamelModel):
    id: str
    student_id: str
    subject: str
    topic: Optional[str] = None
    grade_level: Optional[str] = None
    difficulty: Optional[str] = None
    content: CurriculumResponse
    generated_by: Optional[str] = None
    status: str = "draft"
    created_at: Optional[str] = None
