from typing import Literal, Optional

from app.models.student import CamelModel

ChatRole = Literal["user", "assistant"]


class ChatMessage(CamelModel):
    role: ChatRole
    content: str


class TutorContext(CamelModel):
    current_topic: Optional[str] = None
    grade_level: Optional[str] = None
    difficulty_preference: Optional[str] = None


class TutorChatRequest(CamelModel):
    student_id: str = ""
    session_id: Optional[str] = None
    message: str = ""
    subject: Optional[str] = None
    context: Optional[TutorContext] = None
    conversation_history: list[ChatMessage] = []


class TutorMessage(CamelModel):
    id: str
    session_id: str
    role: ChatRole
    content: str
    created_at: Optional[str] = None


class TutorSession(CamelModel):
    id: str
    student_id: str
    subject: str = "general"
    status: str = "active"
    created_at: Optional[str] = None
    message_count: int = 0
