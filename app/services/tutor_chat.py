"""Streaming tutor chat.

A turn has two phases:

1. start_turn: resolve or create the session, build the prompt and record
   the user's message. Everything here happens before any generation call,
   so a failure mid-stream never loses the user's input.
2. stream_turn: relay the assistant's fragments as NDJSON frames, then
   record the assembled reply. A failed stream ends with an "error" frame
   and the partial reply is not recorded.
"""

import asyncio
import contextlib
import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Optional

import aiosqlite

from app.config import settings
from app.db import tutor as tutor_db
from app.db.database import open_db
from app.models.student import Student
from app.models.tutor import TutorChatRequest
from app.services.ai_client import ai_stream
from app.services.errors import SessionNotFoundError, TutorAppError, ValidationError
from app.services.prompts import load_prompt

logger = logging.getLogger(__name__)


def build_tutor_system_prompt(
    student_name: str,
    grade_level: str,
    subject: Optional[str] = None,
    current_topic: Optional[str] = None,
    difficulty_preference: Optional[str] = None,
) -> str:
    prompt = load_prompt("tutor.yaml")
    return prompt["system_template"].format(
        tutor_name=prompt["tutor_name"],
        student_name=student_name,
        grade_level=grade_level,
        level_note=prompt["level_notes"].get(difficulty_preference or "standard", ""),
        subject_line=prompt["subject_line"].format(subject=subject) if subject else "",
        topic_line=prompt["topic_line"].format(current_topic=current_topic) if current_topic else "",
    )


# ── Fragment channel ──────────────────────────────────────────────────


class StreamDone:
    """Terminal signal: the source finished normally."""


@dataclass
class StreamFailed:
    """Terminal signal: the source raised."""

    error: Exception


class TextStream:
    """Runs a fragment source in its own task and hands fragments over a queue.

    Iterating yields the fragments in order and stops after the terminal
    signal; a failed source re-raises its exception in the consumer. The
    stream cannot be restarted. aclose() cancels the producer.
    """

    def __init__(self, source: AsyncIterator[str]):
        self._source = source
        self._queue: asyncio.Queue = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self._finished = False

    async def _produce(self) -> None:
        try:
            async for fragment in self._source:
                await self._queue.put(fragment)
        except Exception as exc:
            await self._queue.put(StreamFailed(exc))
        else:
            await self._queue.put(StreamDone())
        finally:
            aclose = getattr(self._source, "aclose", None)
            if aclose is not None:
                await aclose()

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        if self._finished:
            raise StopAsyncIteration
        if self._task is None:
            self._task = asyncio.create_task(self._produce())

        item = await self._queue.get()
        if isinstance(item, str):
            return item

        self._finished = True
        if isinstance(item, StreamFailed):
            raise item.error
        raise StopAsyncIteration

    async def aclose(self) -> None:
        self._finished = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task


# ── Turns ─────────────────────────────────────────────────────────────


@dataclass
class TutorTurn:
    student_id: str
    session_id: Optional[str]
    messages: list[dict] = field(default_factory=list)


def encode_frame(frame: dict) -> str:
    return json.dumps(frame) + "\n"


def validate_chat_request(request: TutorChatRequest) -> None:
    if not request.student_id or not request.message:
        raise ValidationError("Missing required fields: studentId, message")


async def start_turn(
    db: aiosqlite.Connection,
    student: Student,
    request: TutorChatRequest,
) -> TutorTurn:
    """Resolve the session, build the prompt and record the user's message."""
    validate_chat_request(request)

    session_id = request.session_id
    if session_id:
        session = await tutor_db.get_session(db, session_id)
        if session is None or session.student_id != student.id:
            raise SessionNotFoundError(session_id)
    else:
        try:
            session_id = await tutor_db.create_session(db, student.id, request.subject)
        except Exception as exc:
            logger.error("Failed to create tutor session for student %s: %s", student.id, exc)
            session_id = None

    context = request.context
    system_prompt = build_tutor_system_prompt(
        student_name=student.name,
        grade_level=student.grade or (context.grade_level if context else None) or "",
        subject=request.subject,
        current_topic=context.current_topic if context else None,
        difficulty_preference=student.settings.difficulty_preference
        or (context.difficulty_preference if context else None),
    )

    messages = [{"role": "system", "content": system_prompt}]
    messages.extend({"role": m.role, "content": m.content} for m in request.conversation_history)
    messages.append({"role": "user", "content": request.message})

    if session_id:
        try:
            await tutor_db.add_message(db, session_id, "user", request.message)
        except Exception as exc:
            # Without the user's message the transcript would be inconsistent,
            # so this turn is not recorded at all.
            logger.error("Failed to record user message in session %s: %s", session_id, exc)
            session_id = None

    return TutorTurn(student_id=student.id, session_id=session_id, messages=messages)


def _client_error(exc: Exception) -> str:
    if isinstance(exc, TutorAppError):
        return exc.message
    return "Streaming failed"


async def stream_turn(turn: TutorTurn, source: Optional[AsyncIterator[str]] = None) -> AsyncIterator[str]:
    """Yield NDJSON frames: chunks, then exactly one "done" or "error" frame."""
    if source is None:
        source = ai_stream(
            turn.messages,
            use_case="tutor",
            max_tokens=settings.tutor_max_tokens,
        )
    stream = TextStream(source)
    parts: list[str] = []
    try:
        try:
            async for fragment in stream:
                parts.append(fragment)
                yield encode_frame({"type": "chunk", "content": fragment})
        except Exception as exc:
            logger.error("Streaming error in session %s: %s", turn.session_id, exc)
            yield encode_frame({"type": "error", "error": _client_error(exc)})
            return
    finally:
        await stream.aclose()

    full_response = "".join(parts)
    if turn.session_id:
        try:
            async with open_db() as db:
                await tutor_db.add_message(db, turn.session_id, "assistant", full_response)
        except Exception as exc:
            logger.error("Failed to record assistant reply in session %s: %s", turn.session_id, exc)
            yield encode_frame({"type": "error", "error": "Failed to save tutor response"})
            return

    yield encode_frame({
        "type": "done",
        "sessionId": turn.session_id,
        "fullResponse": full_response,
    })
