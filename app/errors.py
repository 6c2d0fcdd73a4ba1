"""
Vocab Tutor — Error Taxonomy
Every failure a caller can see maps to one stable code and one HTTP status.
Services raise these; app.main renders them into the error envelope.
"""

from typing import Optional


class TutorError(Exception):
    code = "internal_error"
    status_code = 500
    message = "Internal error"

    def __init__(self, message: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message or self.message)
        self.message = message or self.message
        self.details = details or {}

    def to_envelope(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            }
        }


class RateLimited(TutorError):
    code = "rate_limit"
    status_code = 429
    message = "Too many requests"


class SessionNotFound(TutorError):
    code = "session_not_found"
    status_code = 404
    message = "Session not found"


class AssignmentNotFound(TutorError):
    code = "assignment_not_found"
    status_code = 404
    message = "Assignment not found"


class InvalidJoinKey(TutorError):
    code = "invalid_join_key"
    status_code = 404
    message = "Invalid join key"


class Unauthorized(TutorError):
    code = "auth_error"
    status_code = 401
    message = "Unauthorized"


class ConflictInProgress(TutorError):
    """Another request owns this Idempotency-Key and has not finished yet."""
    code = "conflict_in_progress"
    status_code = 409
    message = "Request with this Idempotency-Key is already in progress"


class ValidationError(TutorError):
    code = "validation_error"
    status_code = 400
    message = "Validation failed"


class InternalError(TutorError):
    pass


# ─── Upstream (LLM provider) ─────────────────────────────────────────────────

def snip(text: Optional[str], limit: int = 800) -> str:
    """Trim a provider response body so it is safe to log and return."""
    s = (text or "").strip()
    return s if len(s) <= limit else s[:limit] + "…(truncated)"


class UpstreamError(TutorError):
    """
    A provider answered with a non-success status (or garbage).

    The rendered code depends on the provider status:
    429 -> rate_limit, 401/403 -> auth_error, anything else -> upstream_error.
    """

    def __init__(
        self,
        provider: str,
        status: Optional[int] = None,
        body_snippet: Optional[str] = None,
        message: Optional[str] = None,
    ):
        self.provider = provider
        self.status = status
        self.body_snippet = body_snippet
        details = {"upstream_status": str(status) if status is not None else ""}
        if body_snippet:
            details["body"] = body_snippet
        super().__init__(
            message or f"Upstream error ({provider})",
            details=details,
        )

    @property
    def kind(self) -> str:
        if self.status == 429:
            return "rate_limit"
        if self.status in (401, 403):
            return "auth"
        return "server_error"

    @property
    def code(self) -> str:
        return {"rate_limit": "rate_limit", "auth": "auth_error"}.get(self.kind, "upstream_error")

    @property
    def status_code(self) -> int:
        return 429 if self.kind == "rate_limit" else 502


class UpstreamTimeout(TutorError):
    code = "timeout"
    status_code = 504
    message = "Upstream timeout"

    def __init__(self, provider: str, message: Optional[str] = None):
        self.provider = provider
        super().__init__(message or f"Upstream timeout ({provider})")
