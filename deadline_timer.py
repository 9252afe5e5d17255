"""
Countdown controller that force-completes a session when time runs out.

The timer is an explicitly owned asyncio task. Every start() begins a new
generation; a task from an older generation, or one that was cancelled,
never reaches the expiry callback.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

LOGGER = logging.getLogger(__name__)

DEFAULT_DURATION_SECONDS = 900


class DeadlineTimer:
    """One-second countdown that invokes ``on_expire`` exactly once."""

    def __init__(
        self,
        on_expire: Callable[[], Awaitable[None]],
        duration_seconds: int = DEFAULT_DURATION_SECONDS,
        tick_seconds: float = 1.0,
    ) -> None:
        if duration_seconds <= 0:
            raise ValueError("duration_seconds must be positive")
        self._on_expire = on_expire
        self._duration = duration_seconds
        self._tick = tick_seconds
        self._remaining = duration_seconds
        self._generation = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def duration_seconds(self) -> int:
        return self._duration

    @property
    def remaining_seconds(self) -> int:
        return self._remaining

    def start(self) -> None:
        """(Re)start the countdown from the full duration."""
        self.cancel()
        self._remaining = self._duration
        self._task = asyncio.get_running_loop().create_task(
            self._run(self._generation)
        )

    def cancel(self) -> None:
        """Stop the countdown; a cancelled timer never fires."""
        self._generation += 1
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()

    async def _run(self, generation: int) -> None:
        while self._remaining > 0:
            await asyncio.sleep(self._tick)
            if generation != self._generation:
                return
            self._remaining -= 1

        # Detach before firing so the callback may cancel() without
        # cancelling the task it runs in.
        self._task = None
        self._generation += 1
        LOGGER.info("Deadline reached after %s seconds", self._duration)
        await self._on_expire()
