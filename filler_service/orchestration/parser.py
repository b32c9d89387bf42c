"""Recover JSON values from noisy CLI output.

Backends are asked for "ONLY the JSON object" and routinely ignore it: the
value arrives fenced in a markdown block, wrapped in commentary, spelled with
Python literals, or cut off mid-object when the process was killed. All
interpretation of backend text happens here; the retry controller only ever
hands over an opaque string.

Every entry point is total: it returns a value or raises
``MalformedResponse`` carrying a preview of the raw text. Nothing is ever
partially populated.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from filler_service.errors import MalformedResponse
from filler_service.types import Document, FieldKind, FillInstruction, ValidationReport

logger = logging.getLogger(__name__)

RAW_PREVIEW_CHARS = 500
_MAX_CANDIDATES = 50

_FENCE_RE = re.compile(r"```([\w+-]*)[ \t]*\r?\n?(.*?)```", re.DOTALL)
_LITERAL_RE = re.compile(r"\b(True|False|None)\b")
_PY_LITERALS = {"True": "true", "False": "false", "None": "null"}
_PLACEHOLDER_RE = re.compile(r"^[A-Z]$")

_KIND_ALIASES = {
    "text": FieldKind.TEXT,
    "textfield": FieldKind.TEXT,
    "string": FieldKind.TEXT,
    "checkbox": FieldKind.CHECKBOX,
    "check": FieldKind.CHECKBOX,
    "boolean": FieldKind.CHECKBOX,
    "dropdown": FieldKind.DROPDOWN,
    "select": FieldKind.DROPDOWN,
    "choice": FieldKind.DROPDOWN,
    "radio": FieldKind.RADIO,
    "radiogroup": FieldKind.RADIO,
}


def parse_structured(raw: str | None) -> Document:
    """Extract the first JSON object from backend output."""
    value = _parse(raw, "{", "}")
    if not isinstance(value, dict):
        raise MalformedResponse("Backend output is not a JSON object", _preview(raw))
    return value


def parse_array(raw: str | None) -> list[Any]:
    """Extract the first JSON array from backend output."""
    value = _parse(raw, "[", "]")
    if not isinstance(value, list):
        raise MalformedResponse("Backend output is not a JSON array", _preview(raw))
    return value


def normalize_literals(text: str) -> str:
    """Replace Python ``True``/``False``/``None`` tokens outside string literals."""
    parts: list[str] = []
    seg_start = 0
    in_str = False
    escaped = False
    for i, ch in enumerate(text):
        if in_str:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_str = False
                parts.append(text[seg_start : i + 1])
                seg_start = i + 1
            continue
        if ch == '"':
            parts.append(_replace_literals(text[seg_start:i]))
            seg_start = i
            in_str = True
    tail = text[seg_start:]
    parts.append(tail if in_str else _replace_literals(tail))
    return "".join(parts)


def find_balanced_span(text: str, start: int, opener: str, closer: str) -> tuple[int, int] | None:
    """Return ``(start, end)`` of the balanced value beginning at ``start``.

    Tracks nesting depth while skipping over string literals and their
    escape sequences. ``None`` when the value never closes (truncated output).
    """
    depth = 0
    in_str = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_str:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"':
            in_str = True
        elif ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return start, i + 1
    return None


def clean_extracted(data: Any) -> Any:
    """Drop placeholder values the backends emit for unreadable fields.

    Single capital letters (checkbox glyph codes), empty strings and nulls are
    removed recursively; other strings are stripped.
    """
    if isinstance(data, str):
        stripped = data.strip()
        if _PLACEHOLDER_RE.match(stripped):
            return None
        return stripped
    if isinstance(data, list):
        items = [clean_extracted(item) for item in data]
        return [item for item in items if item is not None and item != ""]
    if isinstance(data, dict):
        cleaned: dict[str, Any] = {}
        for key, value in data.items():
            cv = clean_extracted(value)
            if cv is not None and cv != "":
                cleaned[key] = cv
        return cleaned
    return data


def parse_fill_instructions(raw: str | None) -> list[FillInstruction]:
    """Parse a JSON array of ``{"field", "value", "type"}`` entries.

    Entries without a field name or with a non-scalar value are skipped; an
    output with no usable entry at all is malformed.
    """
    items = parse_array(raw)
    instructions: list[FillInstruction] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        name = item.get("field") or item.get("name")
        value = item.get("value")
        if not isinstance(name, str) or not name.strip():
            continue
        if value is None or isinstance(value, (dict, list)):
            logger.debug("Skipping instruction for %s with unusable value %r", name, value)
            continue
        kind = _KIND_ALIASES.get(str(item.get("type", "text")).strip().lower(), FieldKind.TEXT)
        instructions.append(FillInstruction(field=name.strip(), value=value, kind=kind))
    if items and not instructions:
        raise MalformedResponse("No usable fill instructions in backend output", _preview(raw))
    return instructions


def to_validation_report(doc: Document) -> ValidationReport:
    def _names(key: str) -> list[str]:
        value = doc.get(key) or []
        return [str(v) for v in value] if isinstance(value, list) else []

    return ValidationReport(
        is_valid=bool(doc.get("isValid", doc.get("is_valid", False))),
        missing_fields=_names("missingFields") or _names("missing_fields"),
        filled_fields=_names("filledFields") or _names("filled_fields"),
        all_fields=_names("allFields") or _names("all_fields"),
        summary=str(doc.get("summary") or ""),
    )


def _parse(raw: str | None, opener: str, closer: str) -> Any:
    if raw is None or not raw.strip():
        raise MalformedResponse("Empty backend output")

    first_error: MalformedResponse | None = None
    for text in _candidate_texts(raw):
        try:
            return _scan(text, raw, opener, closer)
        except MalformedResponse as e:
            first_error = first_error or e
    assert first_error is not None
    raise first_error


def _candidate_texts(raw: str) -> list[str]:
    """Fenced bodies (``json``-tagged first, then the rest), then the whole output."""
    fences = [(m.group(1).lower(), m.group(2)) for m in _FENCE_RE.finditer(raw)]
    texts = [body for tag, body in fences if tag == "json"]
    texts += [body for tag, body in fences if tag != "json"]
    texts.append(raw)
    return texts


def _scan(text: str, raw: str, opener: str, closer: str) -> Any:
    start = text.find(opener)
    if start == -1:
        raise MalformedResponse(f"No JSON {_kind(opener)} found in backend output", _preview(raw))

    saw_truncated = False
    for _ in range(_MAX_CANDIDATES):
        if start == -1:
            break
        span = find_balanced_span(text, start, opener, closer)
        if span is None:
            saw_truncated = True
            break
        candidate = normalize_literals(text[span[0] : span[1]])
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            # Unrelated braces in commentary. Resume after the whole span so a
            # nested value of a malformed object is never returned instead.
            start = text.find(opener, span[1])

    if saw_truncated:
        raise MalformedResponse(
            f"JSON {_kind(opener)} in backend output is truncated", _preview(raw)
        )
    raise MalformedResponse(f"Could not parse JSON {_kind(opener)} from backend output", _preview(raw))


def _replace_literals(segment: str) -> str:
    return _LITERAL_RE.sub(lambda m: _PY_LITERALS[m.group(1)], segment)


def _kind(opener: str) -> str:
    return "object" if opener == "{" else "array"


def _preview(raw: str | None) -> str:
    return (raw or "")[:RAW_PREVIEW_CHARS]
