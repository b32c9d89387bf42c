"""Retry/fallback state machine around one backend call.

    NOT_STARTED -> ATTEMPTING(n) -> SUCCEEDED
                                 -> ATTEMPTING(n+1)    refusal or timeout, next phrasing
                                 -> FALLBACK_MODEL     quota signature, cheaper tier
                                 -> EXHAUSTED_RETRIES  attempt cap reached
                                 -> FAILED             non-retryable failure

The controller only classifies invocation results. The successful output is
returned as an opaque string; turning it into JSON is the parser's job.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum

from filler_service.config import (
    FILLER_INVOKE_TIMEOUT_S,
    FILLER_MAX_ATTEMPTS,
    FILLER_QUOTA_SIGNATURES,
    FILLER_RATE_WAIT_MAX_S,
    FILLER_REFUSAL_PHRASES,
)
from filler_service.errors import ModelRefused, QuotaExhausted, SubprocessFailed, Timeout
from filler_service.orchestration.invoker import SubprocessInvoker, clean_output
from filler_service.orchestration.rate_limiter import RateLimiter
from filler_service.providers.base import Backend
from filler_service.providers.prompts import PromptContext, PromptTask, build_prompts
from filler_service.types import InvocationResult, ProviderId

logger = logging.getLogger(__name__)

_STDERR_PREVIEW_CHARS = 300


class AttemptState(str, Enum):
    NOT_STARTED = "not_started"
    ATTEMPTING = "attempting"
    SUCCEEDED = "succeeded"
    EXHAUSTED_RETRIES = "exhausted_retries"
    FALLBACK_MODEL = "fallback_model"
    FAILED = "failed"


@dataclass(frozen=True)
class Transition:
    state: AttemptState
    attempt: int
    tier: str | None
    detail: str = ""


@dataclass
class RetryOutcome:
    provider: ProviderId
    text: str = ""
    tier: str | None = None
    attempts: int = 0
    transitions: list[Transition] = field(default_factory=list)

    @property
    def state(self) -> AttemptState:
        return self.transitions[-1].state if self.transitions else AttemptState.NOT_STARTED


class FallbackRegistry:
    """Process-wide sticky "use the cheaper tier" flags, one per backend.

    Once set, a flag stays set for the life of the process.
    """

    def __init__(self) -> None:
        self._active: dict[ProviderId, str] = {}

    def activate(self, provider: ProviderId, reason: str) -> None:
        if provider not in self._active:
            logger.warning("Switching %s to its fallback tier: %s", provider.value, reason)
            self._active[provider] = reason

    def is_active(self, provider: ProviderId) -> bool:
        return provider in self._active

    def snapshot(self) -> dict[str, str]:
        return {p.value: reason for p, reason in self._active.items()}


class RetryController:
    def __init__(
        self,
        invoker: SubprocessInvoker,
        limiters: Mapping[ProviderId, RateLimiter],
        fallback: FallbackRegistry,
        *,
        refusal_phrases: Sequence[str] = FILLER_REFUSAL_PHRASES,
        quota_signatures: Sequence[str] = FILLER_QUOTA_SIGNATURES,
        max_attempts: int = FILLER_MAX_ATTEMPTS,
        timeout_s: float = FILLER_INVOKE_TIMEOUT_S,
        rate_wait_max_s: float = FILLER_RATE_WAIT_MAX_S,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._invoker = invoker
        self._limiters = limiters
        self._fallback = fallback
        self._refusals = [p.lower() for p in refusal_phrases if p]
        self._quota = [(s, _signature_pattern(s)) for s in quota_signatures if s]
        self._max_attempts = max(1, max_attempts)
        self._timeout_s = timeout_s
        self._rate_wait_max_s = rate_wait_max_s
        self._sleep = sleep

    @property
    def fallback(self) -> FallbackRegistry:
        return self._fallback

    async def run(
        self,
        backend: Backend,
        task: PromptTask,
        *,
        prompt_context: PromptContext,
        cwd: str | None = None,
    ) -> RetryOutcome:
        """Drive one task on ``backend`` until it succeeds or a terminal error.

        Raises ``ModelRefused`` or ``Timeout`` once the attempt cap is spent,
        ``QuotaExhausted`` when no cheaper tier is left, and
        ``SubprocessFailed`` for any other failed run.
        """
        prompts = build_prompts(task, prompt_context)
        pid = backend.provider_id
        outcome = RetryOutcome(provider=pid)
        on_fallback = self._fallback.is_active(pid) and backend.has_fallback_tier
        last_failure = ""

        attempt = 0
        while attempt < self._max_attempts:
            attempt += 1
            tier = backend.tiers[1] if on_fallback else backend.tiers[0]
            prompt = prompts[min(attempt - 1, len(prompts) - 1)]
            outcome.attempts = attempt
            outcome.tier = tier
            self._record(outcome, AttemptState.ATTEMPTING, attempt, tier, task.value)

            await self._reserve(backend, outcome, attempt, tier)
            invocation = backend.invocation(prompt, tier, cwd=cwd)
            result = await self._invoker.invoke(
                invocation.binary,
                invocation.args,
                env=invocation.env,
                cwd=invocation.cwd,
                timeout_s=backend.settings.timeout_s or self._timeout_s,
                stdin=invocation.stdin,
            )

            if result.timed_out:
                last_failure = "timeout"
                self._record(outcome, AttemptState.ATTEMPTING, attempt, tier, "timed out")
                continue

            text = clean_output(backend.unwrap_output(result.stdout))
            if result.exit_code == 0 and text and not self._is_refusal(text):
                self._record(outcome, AttemptState.SUCCEEDED, attempt, tier)
                outcome.text = text
                return outcome

            quota_hit = self._quota_signature(result)
            if quota_hit and (result.exit_code != 0 or not text):
                self._fallback.activate(pid, quota_hit)
                if on_fallback or not backend.has_fallback_tier:
                    self._record(outcome, AttemptState.FAILED, attempt, tier, quota_hit)
                    raise QuotaExhausted(
                        f"{backend.name} quota exhausted",
                        {"provider": pid.value, "tier": tier, "signature": quota_hit},
                    )
                on_fallback = True
                self._record(
                    outcome, AttemptState.FALLBACK_MODEL, attempt, backend.tiers[1], quota_hit
                )
                # Switching tiers does not spend one of the attempts.
                attempt -= 1
                continue

            if result.exit_code != 0:
                self._record(outcome, AttemptState.FAILED, attempt, tier, f"exit {result.exit_code}")
                raise SubprocessFailed(
                    f"{backend.name} exited with code {result.exit_code}",
                    {
                        "provider": pid.value,
                        "exit_code": result.exit_code,
                        "stderr": result.stderr.strip()[:_STDERR_PREVIEW_CHARS],
                    },
                )

            last_failure = "refusal"
            logger.info(
                "%s refused %s (attempt %d/%d), trying another phrasing",
                backend.name,
                task.value,
                attempt,
                self._max_attempts,
            )
            self._record(
                outcome, AttemptState.ATTEMPTING, attempt, tier, "refused" if text else "empty output"
            )

        self._record(outcome, AttemptState.EXHAUSTED_RETRIES, attempt, outcome.tier, last_failure)
        details = {"provider": pid.value, "attempts": attempt}
        if last_failure == "timeout":
            raise Timeout(f"{backend.name} timed out on {attempt} attempts", details)
        raise ModelRefused(f"{backend.name} refused {task.value} on {attempt} attempts", details)

    async def _reserve(
        self, backend: Backend, outcome: RetryOutcome, attempt: int, tier: str | None
    ) -> None:
        limiter = self._limiters.get(backend.provider_id)
        if limiter is None:
            return
        reservation = limiter.try_reserve()
        if (
            not reservation.allowed
            and not reservation.terminal
            and reservation.retry_after_s is not None
            and reservation.retry_after_s <= self._rate_wait_max_s
        ):
            logger.info(
                "%s minute budget spent; waiting %.1fs", backend.name, reservation.retry_after_s
            )
            await self._sleep(reservation.retry_after_s)
            reservation = limiter.try_reserve()
        if reservation.allowed:
            return
        self._record(outcome, AttemptState.FAILED, attempt, tier, reservation.reason or "")
        raise QuotaExhausted(
            reservation.reason or f"{backend.name} rate limit reached",
            {"provider": backend.provider_id.value, "window": reservation.window},
            retry_after_s=reservation.retry_after_s,
        )

    def _is_refusal(self, text: str) -> bool:
        lowered = text.lower()
        return any(phrase in lowered for phrase in self._refusals)

    def _quota_signature(self, result: InvocationResult) -> str | None:
        # stdout is only inspected for failed runs: a document may legitimately
        # mention a "quota".
        haystacks = [result.stderr]
        if result.exit_code != 0:
            haystacks.append(result.stdout)
        for text in haystacks:
            for signature, pattern in self._quota:
                if pattern.search(text):
                    return signature
        return None

    def _record(
        self,
        outcome: RetryOutcome,
        state: AttemptState,
        attempt: int,
        tier: str | None,
        detail: str = "",
    ) -> None:
        outcome.transitions.append(Transition(state, attempt, tier, detail))
        logger.debug(
            "%s attempt %d [%s] -> %s %s", outcome.provider.value, attempt, tier, state.value, detail
        )


def _signature_pattern(signature: str) -> re.Pattern[str]:
    # Whole-token match: "429" must not hit "1429ms".
    return re.compile(rf"(?<!\w){re.escape(signature)}(?!\w)", re.IGNORECASE)
