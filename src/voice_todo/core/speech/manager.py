from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from typing import Callable

from voice_todo.core.audio.format import frame_to_pcm16le
from voice_todo.core.audio.source import AudioSource
from voice_todo.core.speech.authorization import AuthorizationGate
from voice_todo.core.speech.backend import RecognitionBackend, RecognitionOptions, RecognitionSession
from voice_todo.core.speech.errors import (
    AudioSetupError,
    AuthorizationDeniedError,
    RecognizerUnavailableError,
    is_expected_cancel,
)
from voice_todo.core.speech.sink import TranscriptSink
from voice_todo.core.speech.timer import AsyncioRepeatingTimer, RestartTimer, TimerFactory
from voice_todo.domain.events import SpeechSessionState

logger = logging.getLogger(__name__)

DEFAULT_LOCALE = "ru-RU"
DEFAULT_RESTART_INTERVAL_S = 5.0


@dataclass(slots=True)
class _Attempt:
    number: int
    session: RecognitionSession
    consumer: asyncio.Task[None] | None = None


@dataclass(slots=True)
class RecognitionSessionManager:
    """Keeps a microphone recognition session alive until stopped.

    The audio stream stays open for the whole session while the recognizer
    attempt bound to it is replaced every `restart_interval_s` seconds. All
    transitions run under one lock; the timer, the attempt consumer and the
    audio pump only ever reach the session state through it.
    """

    backend: RecognitionBackend
    audio_factory: Callable[[], AudioSource]
    authorization: AuthorizationGate
    sink: TranscriptSink | None = None
    locale: str = DEFAULT_LOCALE
    restart_interval_s: float = DEFAULT_RESTART_INTERVAL_S
    requires_on_device: bool = False
    sample_rate_hz: int = 16000
    timer_factory: TimerFactory = AsyncioRepeatingTimer

    _state: SpeechSessionState = SpeechSessionState.IDLE
    _user_stopping: bool = False
    _start_generation: int = 0
    _audio: AudioSource | None = None
    _pump_task: asyncio.Task[None] | None = None
    _attempt: _Attempt | None = None
    _attempt_counter: int = 0
    _timer: RestartTimer | None = None
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def __post_init__(self) -> None:
        if not self.locale:
            raise ValueError("locale must be non-empty")
        if self.restart_interval_s <= 0:
            raise ValueError("restart_interval_s must be > 0")
        if self.sample_rate_hz not in (8000, 16000):
            raise ValueError("sample_rate_hz must be 8000 or 16000")

    @property
    def state(self) -> SpeechSessionState:
        return self._state

    @property
    def is_listening(self) -> bool:
        return self._audio is not None

    @property
    def is_user_stopping(self) -> bool:
        return self._user_stopping

    @property
    def restart_timer_armed(self) -> bool:
        return self._timer is not None and self._timer.armed

    async def start(self) -> None:
        """Request authorization and open the session.

        Calling it while a session is open or an earlier start is still waiting
        for authorization does nothing. Failures are reported to the sink.
        """
        if self._state != SpeechSessionState.IDLE:
            logger.debug(f"[Speech] start() ignored in state {self._state.name}")
            return

        self._user_stopping = False
        self._start_generation += 1
        generation = self._start_generation
        self._set_state(SpeechSessionState.STARTING)

        try:
            granted = await self.authorization.request_authorization()
        except Exception as exc:
            logger.error(f"[Speech] Authorization check failed: {exc}")
            granted = False

        async with self._lock:
            if generation != self._start_generation or self._state != SpeechSessionState.STARTING:
                logger.info("[Speech] Start abandoned before authorization resolved")
                return

            if not granted:
                logger.warning("[Speech] Authorization denied")
                self._set_state(SpeechSessionState.IDLE)
                self._notify("on_fail", AuthorizationDeniedError())
                return

            try:
                await self._begin_recognition()
            except Exception as exc:
                logger.error(f"[Speech] Failed to start recognition: {exc!r}")
                await self._release_resources()
                self._set_state(SpeechSessionState.IDLE)
                self._notify("on_fail", exc)
                return

            self._set_state(SpeechSessionState.LISTENING)
            self._timer = self.timer_factory(self.restart_interval_s, self._on_timer_fired)
            self._timer.arm()
            logger.info(
                f"[Speech] Listening (locale={self.locale}, restart_interval={self.restart_interval_s}s, "
                f"on_device={self.requires_on_device})"
            )

    async def stop(self) -> None:
        """Close the session. Safe to call in any state and more than once."""
        if self._state in (SpeechSessionState.IDLE, SpeechSessionState.STOPPING):
            return

        self._user_stopping = True
        async with self._lock:
            if self._state == SpeechSessionState.STARTING:
                logger.info("[Speech] Stop requested while authorization pending")
                self._set_state(SpeechSessionState.IDLE)
                return
            await self._stop_session()

    async def handle_availability_changed(self, available: bool) -> None:
        if available:
            return
        logger.warning("[Speech] Recognizer became unavailable")
        await self.stop()

    async def _begin_recognition(self) -> None:
        if not self.backend.is_available():
            raise RecognizerUnavailableError()

        try:
            audio = self.audio_factory()
        except Exception as exc:
            raise AudioSetupError(f"Failed to open audio input: {exc}") from exc

        self._audio = audio
        self._pump_task = asyncio.create_task(self._pump_audio(audio), name="speech-audio-pump")
        await self._open_attempt()

    async def _open_attempt(self) -> None:
        options = RecognitionOptions(
            locale=self.locale,
            requires_on_device=self.requires_on_device,
            report_partial_results=True,
            sample_rate_hz=self.sample_rate_hz,
        )
        session = await self.backend.open_session(options)

        self._attempt_counter += 1
        attempt = _Attempt(number=self._attempt_counter, session=session)
        attempt.consumer = asyncio.create_task(
            self._consume_results(attempt), name=f"speech-attempt-{attempt.number}"
        )
        self._attempt = attempt
        logger.debug(f"[Speech] Attempt #{attempt.number} opened")

    async def _close_attempt(self) -> None:
        attempt = self._attempt
        if attempt is None:
            return

        # Detaching the tap: the pump only forwards audio to self._attempt.
        self._attempt = None
        with contextlib.suppress(Exception):
            await attempt.session.end_audio()
        with contextlib.suppress(Exception):
            await attempt.session.cancel()

        consumer = attempt.consumer
        if consumer is not None and consumer is not asyncio.current_task():
            consumer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await consumer
        logger.debug(f"[Speech] Attempt #{attempt.number} closed")

    async def _restart_attempt(self) -> None:
        if self._user_stopping or self._state != SpeechSessionState.LISTENING:
            return

        previous = self._attempt.number if self._attempt else None
        await self._close_attempt()
        try:
            await self._open_attempt()
        except Exception as exc:
            logger.error(f"[Speech] Soft restart failed to open a new attempt: {exc!r}")
            self._notify("on_fail", exc)
            await self._stop_session()
            return
        logger.info(f"[Speech] Soft restart: attempt #{previous} -> #{self._attempt_counter}")

    async def _stop_session(self) -> None:
        if self._state != SpeechSessionState.LISTENING:
            return

        self._user_stopping = True
        self._set_state(SpeechSessionState.STOPPING)

        if self._timer is not None:
            timer = self._timer
            self._timer = None
            await timer.disarm()

        await self._release_resources()
        self._set_state(SpeechSessionState.IDLE)
        self._notify("on_finish")

    async def _release_resources(self) -> None:
        audio = self._audio
        pump = self._pump_task
        self._audio = None
        self._pump_task = None

        if pump is not None and pump is not asyncio.current_task():
            pump.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await pump
        if audio is not None:
            with contextlib.suppress(Exception):
                await audio.close()

        await self._close_attempt()

    async def _on_timer_fired(self) -> None:
        async with self._lock:
            await self._restart_attempt()

    async def _on_attempt_failed(self, attempt: _Attempt, error: BaseException) -> None:
        async with self._lock:
            if attempt is not self._attempt:
                logger.debug(f"[Speech] Ignoring termination of closed attempt #{attempt.number}: {error!r}")
                return

            if is_expected_cancel(error, user_stopping=self._user_stopping):
                logger.info(f"[Speech] Attempt #{attempt.number} canceled: {error!r}")
            else:
                logger.warning(f"[Speech] Attempt #{attempt.number} failed: {error!r}")
                self._notify("on_fail", error)

            if not self._user_stopping and self._state == SpeechSessionState.LISTENING:
                await self._restart_attempt()
            else:
                await self._stop_session()

    async def _on_audio_ended(self, audio: AudioSource) -> None:
        async with self._lock:
            if audio is not self._audio:
                return
            logger.warning("[Speech] Audio input became unavailable, stopping session")
            await self._stop_session()

    async def _consume_results(self, attempt: _Attempt) -> None:
        try:
            async for result in attempt.session.results():
                if attempt is not self._attempt or self._state != SpeechSessionState.LISTENING:
                    continue
                self._notify("on_update", result.text)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            await self._on_attempt_failed(attempt, exc)
        else:
            logger.debug(f"[Speech] Attempt #{attempt.number} finished; waiting for restart timer")

    async def _pump_audio(self, audio: AudioSource) -> None:
        try:
            async for frame in audio.frames():
                attempt = self._attempt
                if attempt is None:
                    continue
                pcm = frame_to_pcm16le(frame, target_sample_rate_hz=self.sample_rate_hz)
                try:
                    await attempt.session.send_audio(pcm)
                except Exception as exc:
                    # The attempt reports its own failure through results().
                    logger.debug(f"[Speech] Attempt #{attempt.number} rejected audio: {exc!r}")
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error(f"[Speech] Audio input error: {exc!r}")
        await self._on_audio_ended(audio)

    def _notify(self, callback: str, *args: object) -> None:
        sink = self.sink
        if sink is None:
            return
        asyncio.get_running_loop().call_soon(_deliver, sink, callback, args)

    def _set_state(self, state: SpeechSessionState) -> None:
        if self._state == state:
            return
        logger.info(f"[Speech] State: {self._state.name} -> {state.name}")
        self._state = state


def _deliver(sink: TranscriptSink, callback: str, args: tuple[object, ...]) -> None:
    try:
        getattr(sink, callback)(*args)
    except Exception:
        logger.exception(f"[Speech] Transcript sink raised in {callback}")
