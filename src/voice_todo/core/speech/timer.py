from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Protocol

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[None]]


class RestartTimer(Protocol):
    @property
    def armed(self) -> bool: ...
    def arm(self) -> None: ...
    async def disarm(self) -> None: ...


TimerFactory = Callable[[float, TimerCallback], RestartTimer]


@dataclass(slots=True)
class AsyncioRepeatingTimer:
    interval_s: float
    callback: TimerCallback

    _task: asyncio.Task[None] | None = field(init=False, default=None, repr=False)

    def __post_init__(self) -> None:
        if self.interval_s <= 0:
            raise ValueError("interval_s must be > 0")

    @property
    def armed(self) -> bool:
        return self._task is not None and not self._task.done()

    def arm(self) -> None:
        if self.armed:
            return
        self._task = asyncio.create_task(self._run(), name="restart-timer")

    async def disarm(self) -> None:
        task = self._task
        self._task = None
        if task is None or task.done():
            return
        if task is asyncio.current_task():
            # Disarmed from inside the callback: the loop exits once it returns.
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _run(self) -> None:
        me = asyncio.current_task()
        while self._task is me:
            await asyncio.sleep(self.interval_s)
            if self._task is not me:
                return
            try:
                await self.callback()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Restart timer callback failed")
