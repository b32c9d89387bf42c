"""Ordered prompt phrasings per task.

Each task yields a list: the detailed primary phrasing first, then
progressively simpler ones. The retry controller walks the list on refusal
or timeout, so later entries must be shorter and less demanding.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from filler_service.config import FILLER_DATA_PROMPT_CHARS, FILLER_TEMPLATE_PROMPT_CHARS
from filler_service.types import FieldDescriptor

DOCUMENT_TEXT_CHARS = 16_000


class PromptTask(str, Enum):
    EXTRACT = "extract"
    FILL = "fill"
    VALIDATE = "validate"


@dataclass(frozen=True)
class PromptContext:
    """Inputs a phrasing may reference.

    ``document_text`` is set only for backends that cannot open files
    themselves; the prompt then embeds the text instead of the path.
    """

    path: str
    template: dict[str, Any] | None = None
    data: dict[str, Any] | None = None
    required_fields: list[str] | None = None
    fields: list[FieldDescriptor] = field(default_factory=list)
    document_text: str | None = None


def build_prompts(task: PromptTask, ctx: PromptContext) -> list[str]:
    if task is PromptTask.EXTRACT:
        return extract_prompts(ctx)
    if task is PromptTask.FILL:
        return fill_prompts(ctx)
    return validate_prompts(ctx)


def extract_prompts(ctx: PromptContext) -> list[str]:
    guide = ""
    if ctx.template:
        guide = (
            "\n\nUse this JSON shape as a guide for the keys: "
            f"{_dump(ctx.template, FILLER_TEMPLATE_PROMPT_CHARS)}"
        )

    if ctx.document_text is not None:
        text = ctx.document_text[:DOCUMENT_TEXT_CHARS]
        return [
            "Extract structured data from this PDF text (truncated). "
            f"Return ONLY valid JSON values (no placeholders).\n\n{text}{guide}\n\n"
            "Return ONLY the JSON object.",
            f"Summarise the data in this text as one JSON object.\n\n{text}{guide}",
            f"List the values in this text as JSON.\n\n{text[: DOCUMENT_TEXT_CHARS // 4]}",
        ]

    return [
        f"Extract all filled data/values from the PDF at: {ctx.path}\n\n"
        "Read the document and return every filled-in value with a descriptive "
        'key. Don\'t use internal field names like "f1_1"; use the printed labels. '
        "Leave out empty fields."
        f"{guide}\n\n"
        "Return the extracted data as a JSON object. Return ONLY the JSON object, "
        "no explanations.",
        f"Read the PDF at: {ctx.path}\n\n"
        "What information is filled in on this document? Format your response as a "
        f"JSON object mapping labels to values.{guide}\n\n"
        "Return ONLY the JSON object.",
        f"Check the PDF at: {ctx.path}\n\nExtract all data as JSON.",
    ]


def fill_prompts(ctx: PromptContext) -> list[str]:
    data = _dump(ctx.data or {}, FILLER_TEMPLATE_PROMPT_CHARS)
    shape = ""
    if ctx.fields:
        described = [{"name": f.name, "type": f.type, "options": f.options} for f in ctx.fields]
        shape = f"\nThe form has these fields: {_dump(described, FILLER_DATA_PROMPT_CHARS)}\n"
    example = (
        "[\n"
        '  {"field": "fieldName", "value": "fieldValue", "type": "text"},\n'
        '  {"field": "checkbox1", "value": true, "type": "checkbox"},\n'
        '  {"field": "dropdown1", "value": "option1", "type": "dropdown"}\n'
        "]"
    )

    if ctx.document_text is not None:
        return [
            f"{shape}Given this data object: {data}\n"
            "Return ONLY a JSON array of instructions: "
            '[{"field":"<name>","value":<value>,"type":"text|checkbox|dropdown|radio"}]',
            f"{shape}Match these values to the field names: {data}\n"
            "Answer with a JSON array only.",
        ]

    return [
        f"Read the PDF form at {ctx.path} and analyze its structure.\n"
        f"{shape}Given this data to fill: {data}\n\n"
        "Create instructions for filling each form field. Match the data keys to "
        "the PDF field names.\nReturn a JSON array with this structure:\n"
        f"{example}\n\nReturn ONLY the JSON array, no explanations.",
        f"Look at the form fields in the PDF at {ctx.path}.{shape}\n"
        f"Which field should receive each of these values? {data}\n\n"
        'Answer with a JSON array of {"field", "value", "type"} objects only.',
        f"Map this data onto the fields of {ctx.path} as a JSON array: {data}",
    ]


def validate_prompts(ctx: PromptContext) -> list[str]:
    if ctx.required_fields:
        focus = f"Check specifically for these fields: {json.dumps(ctx.required_fields)}"
    else:
        focus = "List all fields you can identify in the PDF."
    report = (
        "{\n"
        '  "isValid": true or false,\n'
        '  "missingFields": ["list of empty field names"],\n'
        '  "filledFields": ["list of filled field names"],\n'
        '  "allFields": ["list of all field names found"],\n'
        '  "summary": "brief description of what you found"\n'
        "}"
    )

    if ctx.document_text is not None:
        text = ctx.document_text[:DOCUMENT_TEXT_CHARS]
        return [
            f"From this PDF text (truncated):\n\n{text}\n\n{focus}\n"
            'Return ONLY JSON {"isValid": boolean, "missingFields": [], '
            '"filledFields": [], "allFields": [], "summary": "..."}',
            f"Which fields are empty in this text?\n\n{text[: DOCUMENT_TEXT_CHARS // 4]}\n\n"
            f"Answer as JSON in this format: {report}",
        ]

    return [
        f"Read the PDF form at {ctx.path}.\n\n"
        f"Analyze what information is filled in and what is missing.\n{focus}\n\n"
        f"Return your analysis as JSON in this exact format:\n{report}\n\n"
        "Return ONLY the JSON, no other text.",
        f"Which fields in the PDF at {ctx.path} are filled and which are empty? "
        f"{focus}\n\nAnswer as JSON: {report}",
        f"Check the PDF at {ctx.path} for empty fields. Answer as JSON: {report}",
    ]


def _dump(value: Any, limit: int) -> str:
    return json.dumps(value, default=str)[:limit]
