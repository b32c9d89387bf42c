"""Orchestrator facade: selection -> retry/fallback -> parse, behind the cache.

All collaborators are injected; ``build_orchestrator()`` wires the defaults
from config for the HTTP app and the CLI.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from filler_service import documents
from filler_service.auth import ClaudeAuthChecker, CodexAuthChecker, GeminiAuthChecker
from filler_service.config import (
    CLAUDE_CODE_OAUTH_TOKEN,
    FILLER_CACHE_TTL_S,
    FILLER_CLAUDE_BIN,
    FILLER_CLAUDE_HOME,
    FILLER_CLAUDE_RPD,
    FILLER_CLAUDE_RPM,
    FILLER_CODEX_BIN,
    FILLER_CODEX_HOME,
    FILLER_CODEX_RPD,
    FILLER_CODEX_RPM,
    FILLER_DEFAULT_PROVIDER,
    FILLER_GEMINI_BIN,
    FILLER_GEMINI_HOME,
    FILLER_GEMINI_PROJECT,
    FILLER_GEMINI_RPD,
    FILLER_GEMINI_RPM,
    FILLER_INVOKE_TIMEOUT_S,
    FILLER_PROVIDER_PRIORITY,
)
from filler_service.errors import AuthRequired, DocumentNotFound, OrchestrationError
from filler_service.orchestration.cache import CacheLookup, ExtractionCache
from filler_service.orchestration.invoker import SubprocessInvoker
from filler_service.orchestration.parser import (
    clean_extracted,
    parse_fill_instructions,
    parse_structured,
    to_validation_report,
)
from filler_service.orchestration.rate_limiter import RateLimiter
from filler_service.orchestration.retry import FallbackRegistry, RetryController
from filler_service.orchestration.selector import AuthChecker, ProviderSelector
from filler_service.providers.base import Backend, BackendSettings
from filler_service.providers.claude import ClaudeBackend
from filler_service.providers.codex import CodexBackend
from filler_service.providers.gemini import GeminiBackend
from filler_service.providers.prompts import PromptContext, PromptTask
from filler_service.types import (
    Extraction,
    ExtractionKey,
    FieldDescriptor,
    FillInstruction,
    ProviderId,
    RateLimits,
    ValidationReport,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExtractResult:
    document: dict[str, Any]
    source: str
    provider: str
    key: ExtractionKey

    @classmethod
    def from_lookup(cls, key: ExtractionKey, lookup: CacheLookup) -> ExtractResult:
        return cls(
            document=lookup.document,
            source=lookup.source.value,
            provider=lookup.entry.produced_by.value,
            key=key,
        )


class Orchestrator:
    def __init__(
        self,
        *,
        backends: Mapping[ProviderId, Backend],
        selector: ProviderSelector,
        controller: RetryController,
        cache: ExtractionCache,
        limiters: Mapping[ProviderId, RateLimiter] | None = None,
    ) -> None:
        self._backends = dict(backends)
        self._selector = selector
        self._controller = controller
        self._cache = cache
        self._limiters = dict(limiters or {})

    @property
    def cache(self) -> ExtractionCache:
        return self._cache

    # -- Operations -----------------------------------------------------------

    async def extract(
        self,
        file_path: str,
        template: dict[str, Any] | None = None,
        *,
        force_refresh: bool = False,
    ) -> ExtractResult:
        key = ExtractionKey.for_file(file_path, template)
        _require_file(key.path)

        async def work() -> Extraction:
            backend = await self._choose_backend()
            ctx = await self._context(backend, key.path, template=template)
            outcome = await self._controller.run(
                backend, PromptTask.EXTRACT, prompt_context=ctx, cwd=os.path.dirname(key.path)
            )
            data = clean_extracted(parse_structured(outcome.text))
            return Extraction(document=data, provider=backend.provider_id)

        lookup = await self._cache.get_or_extract(key, work, force_refresh=force_refresh)
        logger.info("Extract %s -> %s via %s", key, lookup.source.value, lookup.entry.produced_by.value)
        return ExtractResult.from_lookup(key, lookup)

    async def generate_fill_instructions(
        self, file_path: str, data: dict[str, Any]
    ) -> list[FillInstruction]:
        path = os.path.abspath(file_path)
        _require_file(path)
        backend = await self._choose_backend()
        fields = await self._fields_hint(path)
        ctx = await self._context(backend, path, data=data, fields=fields)
        outcome = await self._controller.run(
            backend, PromptTask.FILL, prompt_context=ctx, cwd=os.path.dirname(path)
        )
        return parse_fill_instructions(outcome.text)

    async def validate(
        self, file_path: str, required_fields: list[str] | None = None
    ) -> ValidationReport:
        path = os.path.abspath(file_path)
        _require_file(path)
        backend = await self._choose_backend()
        ctx = await self._context(backend, path, required_fields=required_fields)
        outcome = await self._controller.run(
            backend, PromptTask.VALIDATE, prompt_context=ctx, cwd=os.path.dirname(path)
        )
        return to_validation_report(parse_structured(outcome.text))

    async def fill(
        self,
        file_path: str,
        output_path: str,
        *,
        data: dict[str, Any] | None = None,
        instructions: list[FillInstruction] | None = None,
        password: str | None = None,
    ) -> documents.FillReport:
        """Fill the form. Explicit instructions win; otherwise they are generated from ``data``."""
        path = os.path.abspath(file_path)
        _require_file(path)
        if instructions is None:
            instructions = await self.generate_fill_instructions(path, data or {})
        return await asyncio.to_thread(
            documents.fill_form, path, instructions, os.path.abspath(output_path), password
        )

    async def fill_values(
        self,
        file_path: str,
        output_path: str,
        values: dict[str, Any],
        *,
        password: str | None = None,
    ) -> documents.FillReport:
        """Write field values directly; no backend is involved."""
        path = os.path.abspath(file_path)
        return await asyncio.to_thread(
            documents.fill_form, path, values, os.path.abspath(output_path), password
        )

    async def fields(self, file_path: str, password: str | None = None) -> list[FieldDescriptor]:
        return await asyncio.to_thread(
            documents.read_form_fields, os.path.abspath(file_path), password
        )

    async def status(self) -> dict[str, Any]:
        selected, statuses = await self._selector.select_with_statuses()
        providers: dict[str, Any] = {}
        for pid, st in statuses.items():
            limiter = self._limiters.get(pid)
            providers[pid.value] = {
                "installed": st.installed,
                "authenticated": st.authenticated,
                "detail": st.detail,
                "fallback_active": self._controller.fallback.is_active(pid),
                "rate": limiter.snapshot() if limiter else None,
            }
        return {
            "selected": selected.value,
            "authenticated": statuses[selected].authenticated if selected in statuses else False,
            "providers": providers,
            "cache": self._cache.stats(),
        }

    # -- Internals ------------------------------------------------------------

    async def _choose_backend(self) -> Backend:
        provider, statuses = await self._selector.select_with_statuses()
        status = statuses.get(provider)
        if status is None or not status.authenticated:
            raise AuthRequired(
                "No AI backend is authenticated. Log in to Claude, Gemini or Codex first.",
                {
                    "provider": provider.value,
                    "detail": status.detail if status else "not configured",
                },
            )
        return self._backends[provider]

    async def _context(
        self,
        backend: Backend,
        path: str,
        *,
        template: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        required_fields: list[str] | None = None,
        fields: list[FieldDescriptor] | None = None,
    ) -> PromptContext:
        text = None
        if not backend.reads_files:
            extract = await asyncio.to_thread(documents.extract_text, path)
            text = extract.text
        return PromptContext(
            path=path,
            template=template,
            data=data,
            required_fields=required_fields,
            fields=fields or [],
            document_text=text,
        )

    async def _fields_hint(self, path: str) -> list[FieldDescriptor]:
        try:
            return await asyncio.to_thread(documents.read_form_fields, path)
        except OrchestrationError as e:
            # The backend can still read the form itself.
            logger.warning("Could not list form fields for %s: %s", path, e)
            return []


def _require_file(path: str) -> None:
    if not os.path.isfile(path):
        raise DocumentNotFound(f"PDF not found: {path}", {"path": path})


def build_backends() -> dict[ProviderId, Backend]:
    timeout = FILLER_INVOKE_TIMEOUT_S
    claude_env = {"CLAUDE_CODE_OAUTH_TOKEN": CLAUDE_CODE_OAUTH_TOKEN} if CLAUDE_CODE_OAUTH_TOKEN else {}
    return {
        ProviderId.CLAUDE: ClaudeBackend(
            BackendSettings(
                home=FILLER_CLAUDE_HOME,
                limits=RateLimits(FILLER_CLAUDE_RPM, FILLER_CLAUDE_RPD),
                binary_override=FILLER_CLAUDE_BIN,
                timeout_s=timeout,
                extra_env=claude_env,
            )
        ),
        ProviderId.GEMINI: GeminiBackend(
            BackendSettings(
                home=FILLER_GEMINI_HOME,
                limits=RateLimits(FILLER_GEMINI_RPM, FILLER_GEMINI_RPD),
                binary_override=FILLER_GEMINI_BIN,
                timeout_s=timeout,
                extra_env={"GOOGLE_CLOUD_PROJECT": FILLER_GEMINI_PROJECT},
            )
        ),
        ProviderId.CODEX: CodexBackend(
            BackendSettings(
                home=FILLER_CODEX_HOME,
                limits=RateLimits(FILLER_CODEX_RPM, FILLER_CODEX_RPD),
                binary_override=FILLER_CODEX_BIN,
                timeout_s=timeout,
            )
        ),
    }


def build_orchestrator(backends: Mapping[ProviderId, Backend] | None = None) -> Orchestrator:
    backends = dict(backends or build_backends())
    checkers: dict[ProviderId, AuthChecker] = {}
    for pid, backend in backends.items():
        if pid is ProviderId.CLAUDE:
            checkers[pid] = ClaudeAuthChecker(backend)
        elif pid is ProviderId.GEMINI:
            checkers[pid] = GeminiAuthChecker(backend)
        else:
            checkers[pid] = CodexAuthChecker(backend)

    priority = [ProviderId(p) for p in FILLER_PROVIDER_PRIORITY]
    limiters = {pid: RateLimiter(b.settings.limits) for pid, b in backends.items()}
    return Orchestrator(
        backends=backends,
        selector=ProviderSelector(
            checkers, priority=priority, default=ProviderId(FILLER_DEFAULT_PROVIDER)
        ),
        controller=RetryController(SubprocessInvoker(), limiters, FallbackRegistry()),
        cache=ExtractionCache(ttl_s=FILLER_CACHE_TTL_S),
        limiters=limiters,
    )
