from __future__ import annotations

from enum import Enum
from typing import Any

from .schemas import ErrorResponse


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    BAD_REQUEST = "bad_request"
    RATE_LIMITED = "rate_limited"
    UNAUTHENTICATED = "unauthenticated"
    BACKEND_UNAVAILABLE = "backend_unavailable"
    QUOTA_EXCEEDED = "quota_exceeded"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.BAD_REQUEST: 400,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.UNAUTHENTICATED: 401,
    ErrorKind.BACKEND_UNAVAILABLE: 503,
    ErrorKind.QUOTA_EXCEEDED: 402,
    ErrorKind.TIMEOUT: 504,
    ErrorKind.UNKNOWN: 500,
}

# User-facing text for failures that come from the generation backend.
BACKEND_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.RATE_LIMITED: "I'm receiving too many requests right now. Please wait a moment and try again.",
    ErrorKind.UNAUTHENTICATED: "API authentication failed. Please contact your administrator.",
    ErrorKind.BACKEND_UNAVAILABLE: "The AI service is temporarily unavailable. Please try again in a few moments.",
    ErrorKind.QUOTA_EXCEEDED: "API usage limit reached. Please contact your administrator.",
    ErrorKind.TIMEOUT: "Request timed out. Please check your connection and try again.",
}

_TIMEOUT_CODES = {"timeout", "ETIMEDOUT", "ECONNABORTED"}


class ChatError(RuntimeError):
    def __init__(self, kind: ErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message

    @property
    def status_code(self) -> int:
        return _STATUS_BY_KIND[self.kind]

    def to_dict(self) -> dict[str, Any]:
        return ErrorResponse(error=self.kind.value, detail=self.message).model_dump()


class GenerationError(RuntimeError):
    """Failure reported by a generation backend: HTTP status and/or provider error code."""

    def __init__(self, message: str, *, status: int | None = None, code: str | None = None) -> None:
        super().__init__(message)
        self.status = status
        self.code = code


def _status_of(exc: BaseException) -> int | None:
    status = getattr(exc, "status", None)
    if status is None:
        status = getattr(exc, "status_code", None)
    if status is None:
        response = getattr(exc, "response", None)
        status = getattr(response, "status_code", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def classify_backend_error(exc: BaseException) -> ErrorKind:
    status = _status_of(exc)
    code = str(getattr(exc, "code", None) or "")

    if code == "insufficient_quota":
        return ErrorKind.QUOTA_EXCEEDED
    if status == 429:
        return ErrorKind.RATE_LIMITED
    if status == 401:
        return ErrorKind.UNAUTHENTICATED
    if status is not None and status >= 500:
        return ErrorKind.BACKEND_UNAVAILABLE
    if code in _TIMEOUT_CODES:
        return ErrorKind.TIMEOUT
    return ErrorKind.UNKNOWN


def normalize_backend_error(exc: BaseException) -> ChatError:
    kind = classify_backend_error(exc)
    message = BACKEND_MESSAGES.get(kind)
    if message is None:
        raw = str(exc).strip() or "Unknown error"
        message = f"Unable to process your request: {raw}. Please try again."
    return ChatError(kind, message)
