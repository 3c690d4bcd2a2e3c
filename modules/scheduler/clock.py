"""Wall clock access for the scheduler tasks."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]

# Long waits are split so a suspended host or clock jump is noticed quickly
MAX_SLEEP_SECONDS = 60.0


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def sleep_until(target: datetime, clock: Clock = utcnow) -> None:
    """Sleep until ``clock()`` reaches ``target``."""
    while True:
        remaining = (target - clock()).total_seconds()
        if remaining <= 0:
            return
        await asyncio.sleep(min(remaining, MAX_SLEEP_SECONDS))
