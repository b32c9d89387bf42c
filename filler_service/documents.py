"""Thin pypdf wrapper: read AcroForm fields, extract text, write values.

Everything here is synchronous; callers on the event loop go through
``asyncio.to_thread``.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from pypdf import PdfReader, PdfWriter
from pypdf.errors import PdfReadError

from filler_service.errors import DocumentNotFound, DocumentUnreadable
from filler_service.types import FieldDescriptor, FieldKind, FillInstruction

logger = logging.getLogger(__name__)

_RADIO_FLAG = 1 << 15
_PUSHBUTTON_FLAG = 1 << 16
_TRUTHY = {"true", "yes", "on", "1", "x", "checked"}


@dataclass(frozen=True)
class TextExtract:
    text: str
    pages: int


@dataclass
class FillReport:
    output_path: str
    filled: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


def read_form_fields(path: str, password: str | None = None) -> list[FieldDescriptor]:
    reader = _open(path, password)
    try:
        fields = reader.get_fields() or {}
    except PdfReadError as e:
        raise DocumentUnreadable(f"Could not read form fields: {e}", {"path": path}) from e

    descriptors: list[FieldDescriptor] = []
    for name, f in fields.items():
        kind = _field_kind(f)
        if kind == "button":
            continue
        descriptors.append(
            FieldDescriptor(name=name, type=kind, value=_field_value(f, kind), options=_options(f, kind))
        )
    return descriptors


def extract_text(path: str, password: str | None = None) -> TextExtract:
    reader = _open(path, password)
    parts: list[str] = []
    try:
        for page in reader.pages:
            t = page.extract_text() or ""
            if t.strip():
                parts.append(t)
        pages = len(reader.pages)
    except PdfReadError as e:
        raise DocumentUnreadable(f"Could not extract text: {e}", {"path": path}) from e
    return TextExtract(text="\n".join(parts), pages=pages)


def fill_form(
    path: str,
    values: Mapping[str, Any] | Sequence[FillInstruction],
    out_path: str,
    password: str | None = None,
) -> FillReport:
    """Write ``values`` into the form at ``path`` and save to ``out_path``.

    Unknown fields and values that do not fit a field are recorded in
    ``FillReport.failed``; the remaining fields are still written.
    """
    reader = _open(path, password)
    fields = reader.get_fields() or {}
    report = FillReport(output_path=out_path)

    requested = (
        {i.field: i.value for i in values}
        if not isinstance(values, Mapping)
        else dict(values)
    )
    updates: dict[str, Any] = {}
    for name, value in requested.items():
        f = fields.get(name)
        if f is None:
            report.failed[name] = "no such field"
            continue
        try:
            updates[name] = _coerce(f, _field_kind(f), value)
        except ValueError as e:
            report.failed[name] = str(e)

    writer = PdfWriter(clone_from=reader)
    if updates:
        for page in writer.pages:
            writer.update_page_form_field_values(page, updates)
        writer.set_need_appearances_writer(True)

    out_dir = os.path.dirname(os.path.abspath(out_path))
    os.makedirs(out_dir, exist_ok=True)
    with open(out_path, "wb") as fh:
        writer.write(fh)

    report.filled.extend(updates)
    logger.info(
        "Filled %d field(s) into %s (%d failed)", len(report.filled), out_path, len(report.failed)
    )
    return report


def _open(path: str, password: str | None) -> PdfReader:
    if not os.path.isfile(path):
        raise DocumentNotFound(f"PDF not found: {path}", {"path": path})
    try:
        reader = PdfReader(path, password=password)
        # Many published forms carry only an owner password; an empty user
        # password opens them.
        if reader.is_encrypted and password is None and not reader.decrypt(""):
            raise DocumentUnreadable("PDF is encrypted; a password is required", {"path": path})
        return reader
    except PdfReadError as e:
        raise DocumentUnreadable(f"Could not open PDF: {e}", {"path": path}) from e


def _field_kind(f: Mapping[str, Any]) -> str:
    ft = f.get("/FT")
    flags = int(f.get("/Ff", 0) or 0)
    if ft == "/Tx":
        return FieldKind.TEXT.value
    if ft == "/Btn":
        if flags & _PUSHBUTTON_FLAG:
            return "button"
        return FieldKind.RADIO.value if flags & _RADIO_FLAG else FieldKind.CHECKBOX.value
    if ft == "/Ch":
        return FieldKind.DROPDOWN.value
    if ft == "/Sig":
        return "signature"
    return "unknown"


def _states(f: Mapping[str, Any]) -> list[str]:
    return [str(s) for s in f.get("/_States_", []) or []]


def _options(f: Mapping[str, Any], kind: str) -> list[str]:
    if kind == FieldKind.DROPDOWN.value:
        opts: list[str] = []
        for item in f.get("/Opt", []) or []:
            # [export, display] pairs or plain strings
            opts.append(str(item[0]) if isinstance(item, list) and item else str(item))
        return opts
    if kind == FieldKind.RADIO.value:
        return [s.lstrip("/") for s in _states(f) if s != "/Off"]
    return []


def _field_value(f: Mapping[str, Any], kind: str) -> Any:
    value = f.get("/V")
    if kind == FieldKind.CHECKBOX.value:
        return value is not None and str(value) != "/Off"
    if value is None:
        return None
    if kind == FieldKind.RADIO.value:
        return None if str(value) == "/Off" else str(value).lstrip("/")
    return str(value)


def _coerce(f: Mapping[str, Any], kind: str, value: Any) -> Any:
    if kind == FieldKind.CHECKBOX.value:
        on_state = next((s for s in _states(f) if s != "/Off"), "/Yes")
        if isinstance(value, bool):
            checked = value
        else:
            text = str(value).strip()
            checked = text.lower() in _TRUTHY or text.lstrip("/") == on_state.lstrip("/")
        return on_state if checked else "/Off"

    if kind == FieldKind.RADIO.value:
        wanted = str(value).strip().lstrip("/")
        for state in _states(f):
            if state.lstrip("/").lower() == wanted.lower():
                return state
        raise ValueError(f"{value!r} is not an option of this radio group")

    if kind == FieldKind.DROPDOWN.value:
        options = _options(f, kind)
        text = str(value)
        if not options or text in options:
            return text
        for option in options:
            if option.lower() == text.lower():
                return option
        raise ValueError(f"{value!r} is not one of {options}")

    if kind in ("signature", "button"):
        raise ValueError(f"{kind} fields cannot be filled")
    return "" if value is None else str(value)
