"""Launch a backend CLI as an isolated subprocess with a hard deadline.

The process is modelled as one awaitable that resolves once with an
``InvocationResult``. stdin is fed and stdout/stderr are drained by
separate tasks; the wait on the process is raced against the timeout, and
a timed-out process is killed and reaped rather than left running.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import sys
import time
from collections.abc import Mapping, Sequence

from filler_service.config import FILLER_NOISE_PREFIXES
from filler_service.errors import SubprocessFailed
from filler_service.types import InvocationResult

logger = logging.getLogger(__name__)

_READ_CHUNK = 4096
_KILL_GRACE_S = 5.0


def build_isolated_env(home: str, extra: Mapping[str, str] | None = None) -> dict[str, str]:
    """Copy the host environment with HOME pointed at a dedicated directory."""
    os.makedirs(home, exist_ok=True)
    env = dict(os.environ)
    env["HOME"] = home
    if sys.platform == "win32":
        env["USERPROFILE"] = home
    if extra:
        env.update({k: v for k, v in extra.items() if v is not None})
    return env


def resolve_binary(name: str, override: str | None = None) -> str | None:
    """Return an executable path from an explicit override or PATH."""
    if override:
        return override if os.path.exists(override) else None
    return shutil.which(name)


def clean_output(text: str, noise_prefixes: Sequence[str] = FILLER_NOISE_PREFIXES) -> str:
    """Drop known CLI noise lines (credential banners, warnings) and trim."""
    kept = [
        line
        for line in text.splitlines()
        if not any(marker in line for marker in noise_prefixes)
    ]
    return "\n".join(kept).strip()


class SubprocessInvoker:
    """Stateless: every call spawns and fully reaps its own process."""

    async def invoke(
        self,
        binary: str,
        args: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
        timeout_s: float = 120.0,
        stdin: str | None = None,
    ) -> InvocationResult:
        start = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                binary,
                *args,
                stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=dict(env) if env is not None else None,
                cwd=cwd,
            )
        except (FileNotFoundError, PermissionError, NotADirectoryError) as e:
            raise SubprocessFailed(
                f"Failed to spawn {os.path.basename(binary)}: {e}",
                {"binary": binary},
            ) from e

        assert proc.stdout is not None and proc.stderr is not None
        stdout_parts: list[str] = []
        stderr_parts: list[str] = []
        readers = [
            asyncio.create_task(_drain(proc.stdout, stdout_parts, "stdout")),
            asyncio.create_task(_drain(proc.stderr, stderr_parts, "stderr")),
        ]

        # stdin is written by its own task so the deadline below bounds it too.
        feeder: asyncio.Task[None] | None = None
        if stdin is not None and proc.stdin is not None:
            feeder = asyncio.create_task(_feed(proc.stdin, stdin.encode()))

        timed_out = False
        try:
            await asyncio.wait_for(proc.wait(), timeout=timeout_s)
        except asyncio.TimeoutError:
            timed_out = True
            logger.error(
                "%s timed out after %.0fs; killing pid %s",
                os.path.basename(binary),
                timeout_s,
                proc.pid,
            )
            await _kill(proc)
        except asyncio.CancelledError:
            await _kill(proc)
            if feeder is not None:
                feeder.cancel()
            for reader in readers:
                reader.cancel()
            raise

        if feeder is not None:
            if not feeder.done():
                feeder.cancel()
            await asyncio.gather(feeder, return_exceptions=True)

        # A grandchild that inherited the pipes can keep them open after the
        # direct child exits; stop reading after a grace period.
        _, pending = await asyncio.wait(readers, timeout=_KILL_GRACE_S)
        for reader in pending:
            reader.cancel()

        result = InvocationResult(
            exit_code=None if timed_out else proc.returncode,
            stdout="".join(stdout_parts),
            stderr="".join(stderr_parts),
            timed_out=timed_out,
            duration_s=time.monotonic() - start,
        )
        logger.info(
            "%s finished exit=%s timed_out=%s in %.1fs (stdout=%d chars)",
            os.path.basename(binary),
            result.exit_code,
            result.timed_out,
            result.duration_s,
            len(result.stdout),
        )
        return result


async def _feed(writer: asyncio.StreamWriter, data: bytes) -> None:
    try:
        writer.write(data)
        await writer.drain()
    except (BrokenPipeError, ConnectionResetError):
        logger.debug("Backend closed stdin early")
    finally:
        writer.close()


async def _drain(stream: asyncio.StreamReader, sink: list[str], label: str) -> None:
    while True:
        chunk = await stream.read(_READ_CHUNK)
        if not chunk:
            return
        text = chunk.decode(errors="replace")
        sink.append(text)
        logger.debug("%s chunk: %s", label, text[:100])


async def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is not None:
        return
    try:
        proc.kill()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(proc.wait(), timeout=_KILL_GRACE_S)
    except asyncio.TimeoutError:
        logger.warning("Process %s did not exit after kill", proc.pid)
