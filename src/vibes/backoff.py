"""Bounded exponential backoff shared by the gateway and token refresh."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from typing_extensions import TypeAlias

Sleep: TypeAlias = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 4
    base: float = 0.5
    ceiling: float = 8.0

    def delay(self, retry_index: int) -> float:
        """Delay before the retry numbered ``retry_index`` (0-based)."""
        return min(self.ceiling, self.base * (2 ** max(0, retry_index)))


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Read a ``Retry-After`` header given in seconds."""
    if value is None:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    if seconds < 0:
        return None
    return seconds


async def default_sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)
