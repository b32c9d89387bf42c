"""Shared shape of a backend CLI.

A backend knows how to turn a prompt into an argv/stdin/env for its CLI and
how to peel its own output envelope. It never interprets the payload.
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from filler_service.orchestration.invoker import build_isolated_env, resolve_binary
from filler_service.types import ProviderId, RateLimits


@dataclass(frozen=True)
class Invocation:
    binary: str
    args: list[str]
    env: dict[str, str]
    cwd: str | None = None
    stdin: str | None = None


@dataclass(frozen=True)
class BackendSettings:
    home: str
    limits: RateLimits
    binary_override: str | None = None
    timeout_s: float | None = None
    extra_env: dict[str, str] = field(default_factory=dict)


class Backend(ABC):
    provider_id: ProviderId
    binary_name: str
    reads_files: bool = True  # False -> prompts must embed extracted text

    def __init__(self, settings: BackendSettings) -> None:
        self.settings = settings

    @property
    def name(self) -> str:
        return self.provider_id.value

    @property
    def home(self) -> str:
        return self.settings.home

    @property
    def tiers(self) -> tuple[str | None, ...]:
        """Model tiers, strongest first. A single entry means no fallback."""
        return (None,)

    @property
    def has_fallback_tier(self) -> bool:
        return len(self.tiers) > 1

    def resolve_binary(self) -> str | None:
        return resolve_binary(self.binary_name, self.settings.binary_override)

    def environment(self) -> dict[str, str]:
        return build_isolated_env(self.home, self.settings.extra_env)

    def invocation(self, prompt: str, tier: str | None, *, cwd: str | None = None) -> Invocation:
        binary = self.resolve_binary()
        if binary is None:
            # Spawning a bare name fails with FileNotFoundError, which the
            # invoker reports as SubprocessFailed.
            binary = self.settings.binary_override or self.binary_name
        args, stdin = self.build_args(prompt, tier)
        return Invocation(
            binary=binary,
            args=args,
            env=self.environment(),
            cwd=cwd if cwd and os.path.isdir(cwd) else None,
            stdin=stdin,
        )

    @abstractmethod
    def build_args(self, prompt: str, tier: str | None) -> tuple[list[str], str | None]:
        """Return ``(argv after the binary, stdin text or None)``."""

    def unwrap_output(self, stdout: str) -> str:
        return stdout
