from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, Protocol

AvailabilityListener = Callable[[bool], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class RecognitionOptions:
    locale: str
    requires_on_device: bool = False
    report_partial_results: bool = True
    sample_rate_hz: int = 16000


@dataclass(frozen=True, slots=True)
class RecognitionResult:
    text: str  # best transcription accumulated so far in this attempt
    is_final: bool


class RecognitionSession(Protocol):
    """One recognizer invocation (request + task) bound to the open audio stream."""

    async def send_audio(self, pcm16le: bytes) -> None: ...
    async def end_audio(self) -> None: ...
    async def cancel(self) -> None: ...
    async def results(self) -> AsyncIterator[RecognitionResult]: ...


class RecognitionBackend(Protocol):
    def is_available(self) -> bool: ...
    def set_availability_listener(self, listener: AvailabilityListener | None) -> None: ...
    async def open_session(self, options: RecognitionOptions) -> RecognitionSession: ...


@dataclass(slots=True)
class AvailabilityReporter:
    """Delivers availability changes to the listener in a task of its own.

    Backends report from inside `open_session`, which the session manager
    calls while holding its lock; the listener must not run inline there.
    """

    listener: AvailabilityListener | None = None
    _pending: set[asyncio.Task[None]] = field(default_factory=set, repr=False)

    def report(self, available: bool) -> None:
        if self.listener is None:
            return
        task = asyncio.get_running_loop().create_task(self.listener(available))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
