"""Typed failures surfaced by the orchestration core.

Every error carries a stable ``code`` so the HTTP layer (and the desktop
shell behind it) can render guidance without parsing messages.
"""

from __future__ import annotations

from typing import Any


class OrchestrationError(Exception):
    """Base class for all orchestration failures."""

    code = "orchestration_error"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class AuthRequired(OrchestrationError):
    """No backend is authenticated."""

    code = "auth_required"


class Timeout(OrchestrationError):
    """The backend subprocess exceeded its deadline on every attempt."""

    code = "timeout"


class QuotaExhausted(OrchestrationError):
    """Rate budget spent and no cheaper tier left to fall back to."""

    code = "quota_exhausted"

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        *,
        retry_after_s: float | None = None,
    ) -> None:
        super().__init__(message, details)
        self.retry_after_s = retry_after_s


class ModelRefused(OrchestrationError):
    """Every prompt phrasing was refused by the backend."""

    code = "model_refused"


class MalformedResponse(OrchestrationError):
    """The backend output did not contain a parseable JSON value."""

    code = "malformed_response"

    def __init__(self, message: str, raw_preview: str = "") -> None:
        super().__init__(message, {"raw_preview": raw_preview} if raw_preview else None)
        self.raw_preview = raw_preview


ParseError = MalformedResponse


class SubprocessFailed(OrchestrationError):
    """Non-zero exit unrelated to quota or refusal, or the binary is missing."""

    code = "subprocess_failed"


class DocumentNotFound(OrchestrationError):
    """The requested PDF does not exist or cannot be opened."""

    code = "document_not_found"


class DocumentUnreadable(OrchestrationError):
    """The PDF exists but pypdf could not parse or decrypt it."""

    code = "document_unreadable"
