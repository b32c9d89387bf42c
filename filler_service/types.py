from __future__ import annotations

import asyncio
import hashlib
import json
import os
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

Document = dict[str, Any]


class ProviderId(str, Enum):
    CLAUDE = "claude"  # primary
    GEMINI = "gemini"  # secondary
    CODEX = "codex"  # tertiary


class FieldKind(str, Enum):
    TEXT = "text"
    CHECKBOX = "checkbox"
    DROPDOWN = "dropdown"
    RADIO = "radio"


class ResultSource(str, Enum):
    CACHE = "cache"
    INFLIGHT = "inflight"
    FRESH = "fresh"


@dataclass(frozen=True)
class ExtractionKey:
    path: str  # absolute, normalised
    template_fingerprint: str | None = None

    @classmethod
    def for_file(cls, file_path: str, template: dict[str, Any] | None = None) -> ExtractionKey:
        return cls(
            path=os.path.normpath(os.path.abspath(file_path)),
            template_fingerprint=template_fingerprint(template),
        )

    def __str__(self) -> str:
        if self.template_fingerprint:
            return f"{self.path}#{self.template_fingerprint}"
        return self.path


def template_fingerprint(template: dict[str, Any] | None) -> str | None:
    if not template:
        return None
    canonical = json.dumps(template, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()[:16]


@dataclass(frozen=True)
class CacheEntry:
    result: Document
    produced_at: datetime
    produced_by: ProviderId


@dataclass(frozen=True)
class InFlightHandle:
    key: ExtractionKey
    future: asyncio.Future[CacheEntry]


@dataclass(frozen=True)
class AuthStatus:
    installed: bool
    authenticated: bool
    detail: str | None = None


@dataclass(frozen=True)
class RateLimits:
    per_minute: int
    per_day: int


@dataclass(frozen=True)
class InvocationResult:
    exit_code: int | None  # None when killed on timeout
    stdout: str
    stderr: str
    timed_out: bool
    duration_s: float = 0.0

    @property
    def ok(self) -> bool:
        return not self.timed_out and self.exit_code == 0


@dataclass(frozen=True)
class FillInstruction:
    field: str
    value: str | int | float | bool
    kind: FieldKind = FieldKind.TEXT


@dataclass(frozen=True)
class ValidationReport:
    is_valid: bool
    missing_fields: list[str] = field(default_factory=list)
    filled_fields: list[str] = field(default_factory=list)
    all_fields: list[str] = field(default_factory=list)
    summary: str = ""


@dataclass(frozen=True)
class FieldDescriptor:
    name: str
    type: str  # text|checkbox|dropdown|radio|signature|unknown
    value: Any
    options: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class Extraction:
    """What one successful extraction run hands back to the cache."""

    document: Document
    provider: ProviderId
