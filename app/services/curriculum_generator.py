"""Curriculum unit generation.

Turns a CurriculumRequest into a validated CurriculumResponse via the AI
client, then stores it as a draft lesson. Storage is best-effort: a failed or
slow write is logged and the generated curriculum is still returned, with no
saved id.
"""

import asyncio
import json
import logging
import math
import re
from dataclasses import dataclass
from typing import Optional

import aiosqlite
from pydantic import ValidationError as SchemaValidationError

from app.config import settings
from app.db import lessons as lessons_db
from app.models.curriculum import CurriculumRequest, CurriculumResponse, TokenUsage
from app.models.student import Student
from app.services.ai_client import ai_chat
from app.services.errors import CurriculumParseError, PersistenceError, ValidationError
from app.services.prompts import load_prompt

logger = logging.getLogger(__name__)

_LEADING_FENCE_RE = re.compile(r"^```(?:json)?", re.IGNORECASE)
_TRAILING_FENCE_RE = re.compile(r"```$")

# One school year
MAX_DURATION_WEEKS = 52


@dataclass
class GenerationResult:
    curriculum: CurriculumResponse
    saved_id: Optional[str]
    usage: TokenUsage


def validate_request(request: CurriculumRequest) -> None:
    if not request.student_id or not request.subject or not request.grade:
        raise ValidationError("Missing required fields: studentId, subject, grade")
    if not math.isfinite(request.duration) or not 0 < request.duration <= MAX_DURATION_WEEKS:
        raise ValidationError(
            f"duration must be a number of weeks between 0 and {MAX_DURATION_WEEKS}"
        )


def lesson_plan_target(duration_weeks: float) -> int:
    """Three lesson plans per week, rounded up."""
    return math.ceil(duration_weeks * 3)


def _format_weeks(duration_weeks: float) -> str:
    return f"{duration_weeks:g}"


def build_curriculum_prompt(
    grade: str,
    subject: str,
    difficulty: str,
    duration_weeks: float,
    topic: Optional[str] = None,
    interests: Optional[list[str]] = None,
) -> str:
    prompt = load_prompt("curriculum_generator.yaml")
    descriptions = prompt["difficulty_descriptions"]

    topic_line = (
        prompt["topic_line"].format(topic=topic) if topic else prompt["no_topic_line"]
    )
    interests_line = (
        prompt["interests_line"].format(interests=", ".join(interests)) if interests else ""
    )

    return prompt["user_template"].format(
        grade=grade,
        subject=subject,
        difficulty=difficulty,
        difficulty_description=descriptions.get(difficulty, descriptions["standard"]),
        duration=_format_weeks(duration_weeks),
        topic_line=topic_line,
        interests_line=interests_line,
        lesson_count=lesson_plan_target(duration_weeks),
    )


def strip_code_fences(text: str) -> str:
    """Remove a leading ```/```json token and a trailing ``` token, if present."""
    cleaned = text.strip()
    cleaned = _LEADING_FENCE_RE.sub("", cleaned, count=1)
    cleaned = _TRAILING_FENCE_RE.sub("", cleaned.rstrip(), count=1)
    return cleaned.strip()


def parse_curriculum(text: str, expected_plans: Optional[int] = None) -> CurriculumResponse:
    """Parse generator output into a CurriculumResponse.

    Raises CurriculumParseError (with the raw text attached) when the output
    is not a single JSON object matching the schema. When ``expected_plans``
    is given, surplus lesson plans are dropped and a shortfall is logged.
    """
    try:
        data = json.loads(strip_code_fences(text))
    except json.JSONDecodeError as exc:
        raise CurriculumParseError(text, f"invalid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise CurriculumParseError(text, f"expected a JSON object, got {type(data).__name__}")

    try:
        curriculum = CurriculumResponse.model_validate(data)
    except SchemaValidationError as exc:
        raise CurriculumParseError(text, str(exc)) from exc

    if expected_plans is not None:
        count = len(curriculum.lesson_plans)
        if count > expected_plans:
            logger.info("Dropping %d surplus lesson plans", count - expected_plans)
            curriculum.lesson_plans = curriculum.lesson_plans[:expected_plans]
        elif count < expected_plans:
            logger.warning("Generator returned %d of %d lesson plans", count, expected_plans)

    return curriculum


async def _save_draft(
    db: aiosqlite.Connection,
    request: CurriculumRequest,
    curriculum: CurriculumResponse,
    model: str,
) -> Optional[str]:
    try:
        return await asyncio.wait_for(
            lessons_db.create_draft_lesson(
                db,
                student_id=request.student_id,
                subject=request.subject,
                topic=curriculum.topic,
                grade_level=request.grade,
                difficulty=request.difficulty_preference,
                content=curriculum.model_dump(by_alias=True),
                generated_by=model,
            ),
            timeout=settings.persistence_timeout_seconds,
        )
    except asyncio.TimeoutError as exc:
        error = PersistenceError("draft lesson insert (timed out)", exc)
    except Exception as exc:
        error = PersistenceError("draft lesson insert", exc)

    # The curriculum is still returned to the caller
    logger.error("Failed to save curriculum for student %s: %s", request.student_id, error)
    return None


async def generate_curriculum(
    db: aiosqlite.Connection,
    request: CurriculumRequest,
    student: Student,
) -> GenerationResult:
    """Generate, parse and (best-effort) store a curriculum unit for ``student``."""
    validate_request(request)
    target = lesson_plan_target(request.duration)

    prompt = build_curriculum_prompt(
        grade=request.grade,
        subject=request.subject,
        difficulty=request.difficulty_preference,
        duration_weeks=request.duration,
        topic=request.topic,
        interests=request.interests,
    )

    result = await ai_chat(
        messages=[{"role": "user", "content": prompt}],
        use_case="curriculum",
        temperature=0.7,
        max_tokens=settings.curriculum_max_tokens,
    )

    try:
        curriculum = parse_curriculum(result.text, expected_plans=target)
    except CurriculumParseError as exc:
        logger.error("Failed to parse AI response (%s): %s", exc.reason, exc.raw_text)
        raise

    saved_id = await _save_draft(db, request, curriculum, result.model)
    logger.info(
        "Generated %s curriculum for student %s (%d lesson plans, saved=%s)",
        request.subject, student.id, len(curriculum.lesson_plans), saved_id,
    )
    return GenerationResult(
        curriculum=curriculum,
        saved_id=saved_id,
        usage=TokenUsage(input_tokens=result.input_tokens, output_tokens=result.output_tokens),
    )
