"""Credential checks for each backend CLI.

Each checker inspects the backend's isolated home for the marker file its
CLI writes after login. Results are memoised for a short TTL because the
selector asks on every call.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from collections.abc import Callable

from filler_service.config import CLAUDE_CODE_OAUTH_TOKEN, FILLER_AUTH_CACHE_S
from filler_service.providers.base import Backend
from filler_service.types import AuthStatus

logger = logging.getLogger(__name__)


class BackendAuthChecker:
    """Base checker: binary on PATH (or override) plus a credential probe."""

    def __init__(
        self,
        backend: Backend,
        *,
        ttl_s: float = FILLER_AUTH_CACHE_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._backend = backend
        self._ttl_s = ttl_s
        self._clock = clock
        self._cached: tuple[float, AuthStatus] | None = None

    async def check_auth_status(self) -> AuthStatus:
        now = self._clock()
        if self._cached is not None and now - self._cached[0] < self._ttl_s:
            return self._cached[1]
        status = await asyncio.to_thread(self._probe)
        self._cached = (now, status)
        return status

    def invalidate(self) -> None:
        self._cached = None

    def _probe(self) -> AuthStatus:
        binary = self._backend.resolve_binary()
        if binary is None:
            return AuthStatus(
                installed=False,
                authenticated=False,
                detail=f"{self._backend.binary_name} not found",
            )
        detail = self._credentials()
        if detail is None:
            return AuthStatus(installed=True, authenticated=True)
        return AuthStatus(installed=True, authenticated=False, detail=detail)

    def _credentials(self) -> str | None:
        """Return ``None`` when authenticated, otherwise why not."""
        raise NotImplementedError


class ClaudeAuthChecker(BackendAuthChecker):
    def __init__(
        self,
        backend: Backend,
        *,
        oauth_token: str | None = CLAUDE_CODE_OAUTH_TOKEN,
        ttl_s: float = FILLER_AUTH_CACHE_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(backend, ttl_s=ttl_s, clock=clock)
        self._oauth_token = oauth_token

    def _credentials(self) -> str | None:
        if self._oauth_token:
            return None
        path = os.path.join(self._backend.home, ".claude", ".credentials.json")
        if os.path.isfile(path):
            return None
        return "not logged in (no credentials file or CLAUDE_CODE_OAUTH_TOKEN)"


class GeminiAuthChecker(BackendAuthChecker):
    def _credentials(self) -> str | None:
        path = os.path.join(self._backend.home, ".gemini", "oauth_creds.json")
        if os.path.isfile(path):
            return None
        return "not logged in (no oauth_creds.json)"


class CodexAuthChecker(BackendAuthChecker):
    def _credentials(self) -> str | None:
        path = os.path.join(self._backend.home, ".codex", "auth.json")
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return "not logged in (no auth.json)"
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Unreadable Codex auth file %s: %s", path, e)
            return "auth.json is unreadable"
        if not isinstance(data, dict) or not data:
            return "auth.json holds no credentials"
        return None
