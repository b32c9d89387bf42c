"""Codex CLI: one tier, and PDFs are handed over as extracted text."""

from __future__ import annotations

import os

from filler_service.providers.base import Backend
from filler_service.types import ProviderId


class CodexBackend(Backend):
    provider_id = ProviderId.CODEX
    binary_name = "codex"
    reads_files = False

    def environment(self) -> dict[str, str]:
        env = super().environment()
        env["CODEX_HOME"] = os.path.join(self.home, ".codex")
        return env

    def build_args(self, prompt: str, tier: str | None) -> tuple[list[str], str | None]:
        return [
            "--config",
            'preferred_auth_method="chatgpt"',
            "exec",
            "--skip-git-repo-check",
            prompt,
        ], None
