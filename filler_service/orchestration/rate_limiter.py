"""Per-backend request budgets over two fixed windows (minute and day).

Pure bookkeeping: no I/O, no sleeping. The retry controller decides what to
do with a denial.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from filler_service.types import RateLimits

logger = logging.getLogger(__name__)

MINUTE_WINDOW_S = 60.0
DAY_WINDOW_S = 86_400.0


@dataclass(frozen=True)
class Reservation:
    allowed: bool
    reason: str | None = None
    window: str | None = None  # "minute" | "day" on denial
    retry_after_s: float | None = None

    @property
    def terminal(self) -> bool:
        """A daily denial ends the current call; a minute denial can be waited out."""
        return self.window == "day"


ALLOWED = Reservation(allowed=True)


class RateLimiter:
    def __init__(self, limits: RateLimits, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._limits = limits
        self._clock = clock
        now = clock()
        self._minute_used = 0
        self._minute_start = now
        self._day_used = 0
        self._day_start = now

    @property
    def limits(self) -> RateLimits:
        return self._limits

    def try_reserve(self) -> Reservation:
        now = self._clock()
        self._roll_windows(now)

        if self._day_used >= self._limits.per_day:
            retry_after = max(0.0, DAY_WINDOW_S - (now - self._day_start))
            logger.warning(
                "Daily budget exhausted (%d/%d)", self._day_used, self._limits.per_day
            )
            return Reservation(
                allowed=False,
                reason=f"Daily limit of {self._limits.per_day} requests reached",
                window="day",
                retry_after_s=retry_after,
            )

        if self._minute_used >= self._limits.per_minute:
            retry_after = max(0.0, MINUTE_WINDOW_S - (now - self._minute_start))
            return Reservation(
                allowed=False,
                reason=f"Per-minute limit of {self._limits.per_minute} requests reached",
                window="minute",
                retry_after_s=retry_after,
            )

        self._minute_used += 1
        self._day_used += 1
        return ALLOWED

    def snapshot(self) -> dict[str, Any]:
        now = self._clock()
        self._roll_windows(now)
        return {
            "per_minute_used": self._minute_used,
            "per_minute_limit": self._limits.per_minute,
            "per_day_used": self._day_used,
            "per_day_limit": self._limits.per_day,
        }

    def _roll_windows(self, now: float) -> None:
        if now - self._minute_start > MINUTE_WINDOW_S:
            self._minute_used = 0
            self._minute_start = now
        if now - self._day_start > DAY_WINDOW_S:
            self._day_used = 0
            self._day_start = now
