"""Deepgram streaming recognition backend using the official SDK v5.

Each recognition attempt is its own websocket connection driven from a worker
thread. Interim results are enabled; the session folds final segments and the
current interim hypothesis into one running transcript per attempt.
"""

from __future__ import annotations

import asyncio
import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

from voice_todo.core.speech.backend import (
    AvailabilityListener,
    AvailabilityReporter,
    RecognitionBackend,
    RecognitionOptions,
    RecognitionResult,
    RecognitionSession,
)
from voice_todo.core.speech.errors import ErrorDomain, RecognitionError, RecognizerUnavailableError

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT_S = 5.0
KEEPALIVE_INTERVAL_S = 5.0
TRANSPORT_TIMED_OUT = -1001
TRANSPORT_FAILED = -1
AUTH_REJECTED_STATUS = (401, 403)


def deepgram_language(locale: str) -> str:
    """Deepgram takes bare language codes for most models ("ru-RU" -> "ru")."""
    if locale.lower().startswith("en-"):
        return locale
    return locale.split("-")[0].lower()


def is_auth_failure(exc: BaseException | None) -> bool:
    """True when the service refused the API key (HTTP 401/403)."""
    if exc is None:
        return False
    status = getattr(exc, "status_code", None) or getattr(getattr(exc, "response", None), "status_code", None)
    if status in AUTH_REJECTED_STATUS:
        return True
    return any(str(code) in str(exc) for code in AUTH_REJECTED_STATUS)


@dataclass(slots=True)
class DeepgramRecognitionBackend(RecognitionBackend):
    api_key: str
    model: str = "nova-3"

    _key_rejected: bool = field(init=False, default=False)
    _availability: AvailabilityReporter = field(init=False, default_factory=AvailabilityReporter, repr=False)

    def is_available(self) -> bool:
        return bool(self.api_key) and not self._key_rejected

    def set_availability_listener(self, listener: AvailabilityListener | None) -> None:
        self._availability.listener = listener

    async def open_session(self, options: RecognitionOptions) -> RecognitionSession:
        if options.requires_on_device:
            raise RecognizerUnavailableError("Deepgram cannot run on-device recognition")
        if options.sample_rate_hz not in (8000, 16000):
            raise ValueError("sample_rate_hz must be 8000 or 16000")
        if not self.is_available():
            raise RecognizerUnavailableError("Deepgram API key is missing or was rejected")

        session = _DeepgramSession(
            api_key=self.api_key,
            model=self.model,
            language=deepgram_language(options.locale),
            sample_rate_hz=options.sample_rate_hz,
            interim_results=options.report_partial_results,
        )
        try:
            await session.start()
        except RecognitionError as exc:
            if not is_auth_failure(exc.__cause__):
                raise
            logger.error(f"[Deepgram] API key rejected: {exc.__cause__}")
            self._key_rejected = True
            self._availability.report(False)
            raise RecognizerUnavailableError("Deepgram rejected the API key") from exc
        return session


_END_AUDIO = object()


@dataclass(slots=True)
class _DeepgramSession(RecognitionSession):
    api_key: str
    model: str
    language: str
    sample_rate_hz: int
    interim_results: bool = True

    _results: asyncio.Queue[RecognitionResult | BaseException | None] = field(init=False, repr=False)
    _audio_q: queue.Queue[bytes | object] = field(init=False, repr=False)
    _thread: threading.Thread | None = field(init=False, default=None, repr=False)
    _loop: asyncio.AbstractEventLoop | None = field(init=False, default=None, repr=False)
    _connected: threading.Event = field(init=False, repr=False)
    _ending: bool = field(init=False, default=False)
    _canceled: bool = field(init=False, default=False)
    _failure: BaseException | None = field(init=False, default=None, repr=False)
    _final_segments: list[str] = field(init=False, default_factory=list)

    def __post_init__(self) -> None:
        self._results = asyncio.Queue()
        self._audio_q = queue.Queue()
        self._connected = threading.Event()

    async def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._thread = threading.Thread(target=self._run_sync, name="deepgram-attempt", daemon=True)
        self._thread.start()

        # Set on connect and also when the worker thread exits, so a dead
        # connection never waits out the timeout.
        connected = await asyncio.to_thread(self._connected.wait, CONNECT_TIMEOUT_S)
        if self._failure is not None:
            raise RecognitionError(
                ErrorDomain.TRANSPORT, TRANSPORT_FAILED, f"Deepgram connection failed: {self._failure}"
            ) from self._failure
        if not connected:
            await self.cancel()
            raise RecognitionError(ErrorDomain.TRANSPORT, TRANSPORT_TIMED_OUT, "Deepgram connection timeout")

    def _run_sync(self) -> None:
        try:
            from deepgram import DeepgramClient
            from deepgram.core.events import EventType
            from deepgram.extensions.types.sockets import ListenV1ControlMessage

            client = DeepgramClient(api_key=self.api_key)
            with client.listen.v1.connect(
                model=self.model,
                language=self.language,
                encoding="linear16",
                sample_rate=self.sample_rate_hz,
                channels=1,
                interim_results=self.interim_results,
                punctuate=True,
                smart_format=True,
            ) as connection:

                def on_message(message: Any) -> None:
                    channel = getattr(message, "channel", None)
                    alternatives = getattr(channel, "alternatives", None)
                    if not alternatives:
                        return
                    transcript = (alternatives[0].transcript or "").strip()
                    is_final = bool(getattr(message, "is_final", False))
                    self._on_transcript(transcript, is_final=is_final)

                def on_error(error: Any) -> None:
                    if self._canceled:
                        return
                    logger.warning(f"[Deepgram] error: {error}")
                    self._put(RecognitionError(ErrorDomain.TRANSPORT, TRANSPORT_FAILED, str(error)))

                def on_open(_event: Any) -> None:
                    self._connected.set()

                connection.on(EventType.OPEN, on_open)
                connection.on(EventType.MESSAGE, on_message)
                connection.on(EventType.ERROR, on_error)
                connection.on(EventType.CLOSE, lambda _event: logger.debug("[Deepgram] connection closed"))

                def listen() -> None:
                    try:
                        connection.start_listening()
                    except Exception as exc:
                        logger.debug(f"[Deepgram] listening ended: {exc}")

                threading.Thread(target=listen, name="deepgram-listen", daemon=True).start()

                def keepalive() -> None:
                    while not (self._ending or self._canceled):
                        time.sleep(KEEPALIVE_INTERVAL_S)
                        if self._ending or self._canceled:
                            return
                        try:
                            connection.send_control(ListenV1ControlMessage(type="KeepAlive"))
                        except Exception as exc:
                            logger.debug(f"[Deepgram] KeepAlive failed: {exc}")
                            return

                threading.Thread(target=keepalive, name="deepgram-keepalive", daemon=True).start()
                self._connected.set()

                while True:
                    try:
                        data = self._audio_q.get(timeout=0.1)
                    except queue.Empty:
                        if self._canceled:
                            break
                        continue

                    if data is _END_AUDIO:
                        try:
                            connection.send_control(ListenV1ControlMessage(type="Finalize"))
                        except Exception as exc:
                            logger.debug(f"[Deepgram] Finalize failed: {exc}")
                        break
                    if isinstance(data, bytes) and not self._canceled:
                        connection.send_media(data)

        except BaseException as exc:
            if not self._canceled:
                logger.exception("[Deepgram] attempt thread error")
                self._failure = exc
                self._put(exc)
        finally:
            self._connected.set()
            self._put(None)

    def _on_transcript(self, transcript: str, *, is_final: bool) -> None:
        if is_final:
            if transcript:
                self._final_segments.append(transcript)
            text = " ".join(self._final_segments)
        else:
            if not transcript:
                return
            text = " ".join([*self._final_segments, transcript])
        self._put(RecognitionResult(text=text, is_final=is_final))

    def _put(self, item: RecognitionResult | BaseException | None) -> None:
        if self._loop is not None:
            self._loop.call_soon_threadsafe(self._results.put_nowait, item)

    async def send_audio(self, pcm16le: bytes) -> None:
        if self._ending or self._canceled:
            return
        self._audio_q.put_nowait(pcm16le)

    async def end_audio(self) -> None:
        if self._ending:
            return
        self._ending = True
        self._audio_q.put_nowait(_END_AUDIO)

    async def cancel(self) -> None:
        if self._canceled:
            return
        self._canceled = True
        self._results.put_nowait(None)
        thread = self._thread
        self._thread = None
        if thread is not None:
            await asyncio.to_thread(thread.join, CONNECT_TIMEOUT_S)

    async def results(self) -> AsyncIterator[RecognitionResult]:
        while True:
            item = await self._results.get()
            if item is None:
                return
            if isinstance(item, BaseException):
                raise item
            yield item
