"""Gemini CLI: ``-m <model> -p <prompt>`` with a Pro and a Flash tier."""

from __future__ import annotations

from filler_service.config import FILLER_GEMINI_FLASH_MODEL, FILLER_GEMINI_PRO_MODEL
from filler_service.providers.base import Backend
from filler_service.types import ProviderId


class GeminiBackend(Backend):
    provider_id = ProviderId.GEMINI
    binary_name = "gemini"

    @property
    def tiers(self) -> tuple[str | None, ...]:
        return (FILLER_GEMINI_PRO_MODEL, FILLER_GEMINI_FLASH_MODEL)

    def build_args(self, prompt: str, tier: str | None) -> tuple[list[str], str | None]:
        return ["-m", tier or FILLER_GEMINI_PRO_MODEL, "-p", prompt], None
