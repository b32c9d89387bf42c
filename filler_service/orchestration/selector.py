"""Choose the backend for the next call from live auth state."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from typing import Protocol

from filler_service.types import AuthStatus, ProviderId

logger = logging.getLogger(__name__)


class AuthChecker(Protocol):
    async def check_auth_status(self) -> AuthStatus: ...


class ProviderSelector:
    """Highest-priority authenticated backend wins; nothing is remembered between calls."""

    def __init__(
        self,
        checkers: Mapping[ProviderId, AuthChecker],
        *,
        priority: Sequence[ProviderId] = (ProviderId.CLAUDE, ProviderId.GEMINI, ProviderId.CODEX),
        default: ProviderId = ProviderId.GEMINI,
    ) -> None:
        self._checkers = dict(checkers)
        self._priority = [p for p in priority if p in self._checkers]
        self._default = default

    @property
    def default(self) -> ProviderId:
        return self._default

    async def statuses(self) -> dict[ProviderId, AuthStatus]:
        providers = list(self._checkers)
        results = await asyncio.gather(
            *(self._checkers[p].check_auth_status() for p in providers),
            return_exceptions=True,
        )
        statuses: dict[ProviderId, AuthStatus] = {}
        for provider, result in zip(providers, results):
            if isinstance(result, BaseException):
                logger.warning("Auth check for %s failed: %s", provider.value, result)
                statuses[provider] = AuthStatus(
                    installed=False, authenticated=False, detail=f"auth check failed: {result}"
                )
            else:
                statuses[provider] = result
        return statuses

    async def select(self) -> ProviderId:
        selected, _ = await self.select_with_statuses()
        return selected

    async def select_with_statuses(self) -> tuple[ProviderId, dict[ProviderId, AuthStatus]]:
        statuses = await self.statuses()
        for provider in self._priority:
            if statuses[provider].authenticated:
                logger.debug("Selected %s", provider.value)
                return provider, statuses
        logger.info("No backend authenticated; defaulting to %s", self._default.value)
        return self._default, statuses
