"""MCP tool implementations for PDF extraction, field listing and validation.

Each tool forwards to the filler service HTTP API and renders a plain-text
answer for the calling agent.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import httpx

from filler_mcp.config import FILLER_SERVICE_URL, MCP_REQUEST_TIMEOUT_S

logger = logging.getLogger(__name__)

_MAX_RETRIES = 2
_RETRY_BACKOFF_BASE = 0.5
_RETRYABLE_STATUS = {502, 503, 504}
_UNAVAILABLE = "The PDF filler service is not reachable. Start it with `pdf-filler serve`."


async def _request_with_retry(
    method: str,
    url: str,
    *,
    json_body: dict[str, Any] | None = None,
    params: dict[str, Any] | None = None,
) -> httpx.Response:
    """Make an HTTP request with retry on transient failures."""
    for attempt in range(_MAX_RETRIES + 1):
        try:
            async with httpx.AsyncClient(timeout=MCP_REQUEST_TIMEOUT_S) as client:
                resp = await client.request(method, url, json=json_body, params=params)
            if resp.status_code not in _RETRYABLE_STATUS or attempt >= _MAX_RETRIES:
                return resp
        except (httpx.ConnectError, httpx.ReadTimeout) as e:
            if attempt >= _MAX_RETRIES:
                raise
            logger.warning(
                "HTTP request failed (attempt %d/%d): %s",
                attempt + 1,
                _MAX_RETRIES + 1,
                e,
            )
        await asyncio.sleep(_RETRY_BACKOFF_BASE * (2**attempt))
    raise RuntimeError("Unreachable retry path")


def _error_message(resp: httpx.Response) -> str:
    """Render the service's error body for the agent."""
    try:
        body = resp.json()
    except ValueError:
        body = {}
    code = body.get("error") if isinstance(body, dict) else None
    detail = body.get("detail") if isinstance(body, dict) else None
    if code == "auth_required":
        return "No AI backend is logged in. Authenticate Claude, Gemini or Codex in the desktop app."
    if code == "quota_exhausted":
        return "The AI backend's quota is exhausted. Please try again later."
    if code == "document_not_found":
        return f"PDF not found: {detail}" if detail else "PDF not found."
    if resp.status_code == 429:
        return "Rate limit exceeded. Please try again later."
    if isinstance(detail, str) and resp.status_code < 500:
        return detail
    if resp.status_code >= 500:
        return "The PDF filler service failed to process the document. Please try again later."
    return f"Request failed with status {resp.status_code}."


async def extract_pdf(
    file_path: str,
    template: dict[str, Any] | None = None,
    force_refresh: bool = False,
) -> str:
    """Extract the filled-in values of a PDF as JSON text."""
    try:
        resp = await _request_with_retry(
            "POST",
            f"{FILLER_SERVICE_URL}/v1/extract",
            json_body={"file_path": file_path, "template": template, "force_refresh": force_refresh},
        )
    except (httpx.ConnectError, httpx.ReadTimeout):
        return _UNAVAILABLE

    if resp.status_code != 200:
        return _error_message(resp)

    data = resp.json()
    if not data:
        return "No filled values found in this PDF."
    source = resp.headers.get("x-extract-source", "fresh")
    provider = resp.headers.get("x-extract-provider", "unknown")
    return f"Extracted by {provider} ({source}):\n" + json.dumps(data, indent=2, ensure_ascii=False)


async def list_fields(file_path: str, password: str | None = None) -> str:
    """List the fillable fields of a PDF form."""
    try:
        resp = await _request_with_retry(
            "POST",
            f"{FILLER_SERVICE_URL}/v1/fields",
            json_body={"file_path": file_path, "password": password},
        )
    except (httpx.ConnectError, httpx.ReadTimeout):
        return _UNAVAILABLE

    if resp.status_code != 200:
        return _error_message(resp)

    data = resp.json()
    fields = data.get("fields", [])
    if not fields:
        return "This PDF has no fillable form fields."

    lines: list[str] = [f"Found {data.get('total', len(fields))} fields:"]
    for f in fields:
        value = f.get("value")
        options = f.get("options") or []
        line = f"- {f.get('name')} [{f.get('type', 'unknown')}]"
        if value not in (None, "", False):
            line += f" = {value}"
        if options:
            line += f" (options: {', '.join(options)})"
        lines.append(line)
    return "\n".join(lines)


async def validate_pdf(file_path: str, required_fields: list[str] | None = None) -> str:
    """Report which form fields are filled and which are missing."""
    try:
        resp = await _request_with_retry(
            "POST",
            f"{FILLER_SERVICE_URL}/v1/validate",
            json_body={"file_path": file_path, "required_fields": required_fields},
        )
    except (httpx.ConnectError, httpx.ReadTimeout):
        return _UNAVAILABLE

    if resp.status_code != 200:
        return _error_message(resp)

    report = resp.json()
    lines = ["Form is complete." if report.get("is_valid") else "Form is incomplete."]
    missing = report.get("missing_fields") or []
    if missing:
        lines.append("Missing: " + ", ".join(missing))
    filled = report.get("filled_fields") or []
    if filled:
        lines.append("Filled: " + ", ".join(filled))
    if report.get("summary"):
        lines.append(report["summary"])
    return "\n".join(lines)
