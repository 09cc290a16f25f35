"""Offline recognition with Vosk (Kaldi).

Used when on-device recognition is required. The model directory is loaded
once per backend and shared by all attempts; each attempt gets a fresh
KaldiRecognizer so its transcript starts empty.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
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

VOSK_DECODE_FAILED = 1


@dataclass(slots=True)
class VoskRecognitionBackend(RecognitionBackend):
    model_path: Path

    _model: Any = field(init=False, default=None, repr=False)
    _model_lock: asyncio.Lock = field(init=False, default_factory=asyncio.Lock, repr=False)
    _model_broken: bool = field(init=False, default=False)
    _availability: AvailabilityReporter = field(init=False, default_factory=AvailabilityReporter, repr=False)

    def is_available(self) -> bool:
        return self.model_path.is_dir() and not self._model_broken

    def set_availability_listener(self, listener: AvailabilityListener | None) -> None:
        self._availability.listener = listener

    async def open_session(self, options: RecognitionOptions) -> RecognitionSession:
        if not self.is_available():
            raise RecognizerUnavailableError(f"Vosk model not usable: {self.model_path}")

        model = await self._load_model()
        import vosk  # type: ignore

        recognizer = vosk.KaldiRecognizer(model, options.sample_rate_hz)
        return _VoskSession(recognizer=recognizer, report_partial_results=options.report_partial_results)

    async def _load_model(self) -> Any:
        async with self._model_lock:
            if self._model is None:
                import vosk  # type: ignore

                vosk.SetLogLevel(-1)
                logger.info(f"[Vosk] Loading model from {self.model_path}")
                try:
                    self._model = await asyncio.to_thread(vosk.Model, str(self.model_path))
                except Exception as exc:
                    logger.error(f"[Vosk] Failed to load model: {exc}")
                    self._model_broken = True
                    self._availability.report(False)
                    raise RecognizerUnavailableError(f"Vosk model failed to load: {exc}") from exc
            return self._model


@dataclass(slots=True)
class _VoskSession(RecognitionSession):
    recognizer: Any
    report_partial_results: bool = True

    _results: asyncio.Queue[RecognitionResult | BaseException | None] = field(
        init=False, default_factory=asyncio.Queue, repr=False
    )
    _decode_lock: asyncio.Lock = field(init=False, default_factory=asyncio.Lock, repr=False)
    _final_segments: list[str] = field(init=False, default_factory=list)
    _last_text: str = field(init=False, default="")
    _ended: bool = field(init=False, default=False)

    async def send_audio(self, pcm16le: bytes) -> None:
        if self._ended:
            return
        async with self._decode_lock:
            try:
                segment_done = await asyncio.to_thread(self.recognizer.AcceptWaveform, pcm16le)
                if segment_done:
                    self._commit(json.loads(self.recognizer.Result()).get("text", ""))
                elif self.report_partial_results:
                    self._partial(json.loads(self.recognizer.PartialResult()).get("partial", ""))
            except Exception as exc:
                self._fail(exc)

    async def end_audio(self) -> None:
        if self._ended:
            return
        async with self._decode_lock:
            try:
                final = json.loads(await asyncio.to_thread(self.recognizer.FinalResult))
                self._commit(final.get("text", ""))
            except Exception as exc:
                self._fail(exc)
            self._close()

    async def cancel(self) -> None:
        self._close()

    async def results(self) -> AsyncIterator[RecognitionResult]:
        while True:
            item = await self._results.get()
            if item is None:
                return
            if isinstance(item, BaseException):
                raise item
            yield item

    def _commit(self, segment: str) -> None:
        segment = segment.strip()
        if segment:
            self._final_segments.append(segment)
        self._emit(" ".join(self._final_segments), is_final=True)

    def _partial(self, partial: str) -> None:
        partial = partial.strip()
        if not partial:
            return
        self._emit(" ".join([*self._final_segments, partial]), is_final=False)

    def _emit(self, text: str, *, is_final: bool) -> None:
        if not is_final and text == self._last_text:
            return
        self._last_text = text
        self._results.put_nowait(RecognitionResult(text=text, is_final=is_final))

    def _fail(self, exc: Exception) -> None:
        logger.warning(f"[Vosk] decode error: {exc}")
        self._results.put_nowait(RecognitionError(ErrorDomain.SPEECH, VOSK_DECODE_FAILED, str(exc)))
        self._close()

    def _close(self) -> None:
        if self._ended:
            return
        self._ended = True
        self._results.put_nowait(None)
