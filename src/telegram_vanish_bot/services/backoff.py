import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from telegram_vanish_bot.domain.errors import RateLimited

SleepFn = Callable[[float], Awaitable[None]]


async def default_sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)


@dataclass(frozen=True)
class DeletionBackoff:
    """Pacing for one-by-one deletion.

    A rate-limit signal buys exactly one pause; the limited message is not
    retried within the same run.
    """

    spacing_sec: float = 0.2
    rate_limit_pause_sec: float = 5.0
    max_rate_limit_pause_sec: float = 60.0

    def pause_for(self, signal: Optional[RateLimited] = None) -> float:
        pause = max(0.0, float(self.rate_limit_pause_sec))
        if signal is not None and signal.retry_after_ms > 0:
            pause = max(pause, signal.retry_after_ms / 1000.0)
        return min(pause, max(0.0, float(self.max_rate_limit_pause_sec)))

    def spacing(self) -> float:
        return max(0.0, float(self.spacing_sec))
