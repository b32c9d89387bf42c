"""Claude Code CLI: prompt on stdin, JSON envelope on stdout."""

from __future__ import annotations

import json
import logging

from filler_service.config import FILLER_CLAUDE_FALLBACK_MODEL, FILLER_CLAUDE_PRO_MODEL
from filler_service.providers.base import Backend
from filler_service.types import ProviderId

logger = logging.getLogger(__name__)


class ClaudeBackend(Backend):
    provider_id = ProviderId.CLAUDE
    binary_name = "claude"

    @property
    def tiers(self) -> tuple[str | None, ...]:
        return (FILLER_CLAUDE_PRO_MODEL, FILLER_CLAUDE_FALLBACK_MODEL)

    def build_args(self, prompt: str, tier: str | None) -> tuple[list[str], str | None]:
        args = ["-p", "--output-format", "json", "--allowedTools", "Read"]
        if tier:
            args += ["--model", tier]
        return args, prompt

    def unwrap_output(self, stdout: str) -> str:
        """Return the ``result`` (or ``content``) field of the JSON envelope.

        Output that is not an envelope is passed through untouched.
        """
        text = stdout.strip()
        if not text.startswith("{"):
            return stdout
        try:
            envelope = json.loads(text)
        except json.JSONDecodeError:
            return stdout
        if not isinstance(envelope, dict):
            return stdout
        content = envelope.get("result", envelope.get("content"))
        if isinstance(content, str):
            return content
        if envelope.get("type") == "result" and content is not None:
            return json.dumps(content)
        logger.debug("Claude envelope without a result field; passing output through")
        return stdout
