"""Scripted stand-ins for the subprocess invoker, auth checkers and clocks."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any

from filler_service.types import AuthStatus, InvocationResult


def ok(stdout: str, stderr: str = "") -> InvocationResult:
    return InvocationResult(exit_code=0, stdout=stdout, stderr=stderr, timed_out=False)


def failed(stderr: str, code: int = 1, stdout: str = "") -> InvocationResult:
    return InvocationResult(exit_code=code, stdout=stdout, stderr=stderr, timed_out=False)


def timed_out() -> InvocationResult:
    return InvocationResult(exit_code=None, stdout="", stderr="", timed_out=True)


class ScriptedInvoker:
    """Stands in for SubprocessInvoker; replays results in order."""

    def __init__(self, results: list[InvocationResult | Exception], delay_s: float = 0.0) -> None:
        self.results = list(results)
        self.delay_s = delay_s
        self.calls: list[SimpleNamespace] = []

    async def invoke(
        self,
        binary: str,
        args: Any,
        *,
        env: Any = None,
        cwd: str | None = None,
        timeout_s: float = 120.0,
        stdin: str | None = None,
    ) -> InvocationResult:
        self.calls.append(
            SimpleNamespace(binary=binary, args=list(args), env=env, cwd=cwd, stdin=stdin, timeout_s=timeout_s)
        )
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if not self.results:
            raise AssertionError("ScriptedInvoker ran out of results")
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    def prompts(self) -> list[str]:
        """Prompt text of every call (stdin for Claude, last argv item otherwise)."""
        return [c.stdin if c.stdin is not None else c.args[-1] for c in self.calls]


class StaticChecker:
    def __init__(self, authenticated: bool = True, installed: bool = True) -> None:
        self.status = AuthStatus(installed=installed, authenticated=authenticated)
        self.calls = 0

    async def check_auth_status(self) -> AuthStatus:
        self.calls += 1
        return self.status


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds
