"""Exception hierarchy shared by routes and services.

Each error knows the HTTP status it maps to; the handler registered in
app.server turns any TutorAppError into a JSON error body.
"""
from fastapi import HTTPException, status


class TutorAppError(Exception):
    """Base exception for all application errors."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=self.message)


class AuthenticationError(TutorAppError):
    """No verified caller."""

    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class AuthorizationError(TutorAppError):
    """Resource is not owned by the caller.

    Reported as 404 so that existence of other families' data does not leak.
    """

    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, message: str = "Not found"):
        super().__init__(message)


class StudentNotFoundError(AuthorizationError):
    def __init__(self, student_id: str | None = None):
        self.student_id = student_id
        super().__init__("Student not found")


class SessionNotFoundError(AuthorizationError):
    def __init__(self, session_id: str | None = None):
        self.session_id = session_id
        super().__init__("Session not found")


class ConfigurationError(TutorAppError):
    """Backend credentials are missing."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class ValidationError(TutorAppError):
    """Missing or malformed request fields."""

    status_code = status.HTTP_400_BAD_REQUEST


class UpstreamProviderError(TutorAppError):
    """The text-generation API failed."""

    def __init__(self, message: str, provider_status: int | None = None):
        self.provider_status = provider_status
        super().__init__(f"AI API error: {message}")
        if provider_status and 400 <= provider_status < 600:
            self.status_code = provider_status


class GenerationTimeoutError(TutorAppError):
    """The text-generation call exceeded its deadline. Safe for the caller to retry."""

    status_code = status.HTTP_504_GATEWAY_TIMEOUT

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"AI generation timed out after {timeout:g} seconds")


class CurriculumParseError(TutorAppError):
    """Generator output is not a valid curriculum document.

    The raw text stays on the exception for server-side logging only.
    """

    def __init__(self, raw_text: str, reason: str = ""):
        self.raw_text = raw_text
        self.reason = reason
        super().__init__("Failed to parse curriculum response")


class PersistenceError(TutorAppError):
    """A database write failed or timed out."""

    def __init__(self, operation: str, original_error: Exception | None = None):
        self.operation = operation
        self.original_error = original_error
        super().__init__(f"Database {operation} failed: {original_error}")


class ConcurrentUpdateError(TutorAppError):
    """A compare-and-set write lost a race with another writer."""

    status_code = status.HTTP_409_CONFLICT


class RecordShapeError(TutorAppError):
    """A stored row does not have the shape of the entity it should map to."""
