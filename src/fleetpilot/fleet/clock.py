"""Wall clock used by ship actors for transit and cooldown wake-ups."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone


class Clock:
    """Real time. Tests substitute a clock that advances instantly."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def wait(self, seconds: float, stop: asyncio.Event) -> bool:
        """Sleep for `seconds` unless `stop` fires first.

        Returns True if the stop event ended the wait.
        """
        if stop.is_set():
            return True
        if seconds <= 0:
            return False
        try:
            await asyncio.wait_for(stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    async def wait_until(self, when: datetime, stop: asyncio.Event) -> bool:
        """Sleep until `when` (aware UTC) unless `stop` fires first."""
        return await self.wait((when - self.now()).total_seconds(), stop)
