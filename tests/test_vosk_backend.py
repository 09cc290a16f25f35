from __future__ import annotations

import asyncio
import json
import sys
from types import ModuleType

import pytest

from speech_fakes import settle
from voice_todo.core.speech.backend import RecognitionOptions, RecognitionResult
from voice_todo.core.speech.errors import ErrorDomain, RecognitionError, RecognizerUnavailableError
from voice_todo.providers.speech.vosk import VoskRecognitionBackend, _VoskSession


class ScriptedRecognizer:
    """Replays (segment_done, payload) pairs, one per AcceptWaveform call."""

    def __init__(self, script, final=""):
        self._script = list(script)
        self._final = final
        self._current = ""
        self.accepted: list[bytes] = []

    def AcceptWaveform(self, data):
        self.accepted.append(data)
        segment_done, self._current = self._script.pop(0)
        if isinstance(self._current, Exception):
            raise self._current
        return segment_done

    def Result(self):
        return json.dumps({"text": self._current})

    def PartialResult(self):
        return json.dumps({"partial": self._current})

    def FinalResult(self):
        return json.dumps({"text": self._final})


def test_backend_unavailable_without_model_dir(tmp_path):
    backend = VoskRecognitionBackend(model_path=tmp_path / "missing")
    assert not backend.is_available()
    with pytest.raises(RecognizerUnavailableError):
        asyncio.run(backend.open_session(RecognitionOptions(locale="ru-RU", requires_on_device=True)))


def test_backend_available_with_model_dir(tmp_path):
    assert VoskRecognitionBackend(model_path=tmp_path).is_available()


def test_session_emits_running_transcript():
    async def run():
        recognizer = ScriptedRecognizer(
            [(False, "купить"), (False, "купить"), (True, "купить молоко"), (False, "и хлеб")],
            final="и хлеб",
        )
        session = _VoskSession(recognizer=recognizer)
        for _ in range(4):
            await session.send_audio(b"\x01\x00")
        await session.end_audio()

        results = [r async for r in session.results()]
        assert results == [
            RecognitionResult("купить", is_final=False),
            RecognitionResult("купить молоко", is_final=True),
            RecognitionResult("купить молоко и хлеб", is_final=False),
            RecognitionResult("купить молоко и хлеб", is_final=True),
        ]
        assert len(recognizer.accepted) == 4

    asyncio.run(run())


def test_session_ignores_audio_after_cancel():
    async def run():
        recognizer = ScriptedRecognizer([])
        session = _VoskSession(recognizer=recognizer)
        await session.cancel()
        await session.send_audio(b"\x01\x00")

        assert [r async for r in session.results()] == []
        assert recognizer.accepted == []

    asyncio.run(run())


def test_decode_failure_surfaces_as_recognition_error():
    async def run():
        session = _VoskSession(recognizer=ScriptedRecognizer([(False, RuntimeError("kaldi"))]))
        await session.send_audio(b"\x01\x00")

        with pytest.raises(RecognitionError) as excinfo:
            async for _ in session.results():
                pass
        assert excinfo.value.domain == ErrorDomain.SPEECH

    asyncio.run(run())


def _install_fake_vosk(monkeypatch, *, model_error: BaseException | None = None):
    loaded: list[str] = []
    recognizers: list[tuple[object, int]] = []

    class _Model:
        def __init__(self, path: str) -> None:
            if model_error is not None:
                raise model_error
            loaded.append(path)

    def _kaldi_recognizer(model, sample_rate_hz):
        recognizers.append((model, sample_rate_hz))
        return ScriptedRecognizer([(False, "привет")], final="привет")

    fake_vosk = ModuleType("vosk")
    fake_vosk.SetLogLevel = lambda _level: None
    fake_vosk.Model = _Model
    fake_vosk.KaldiRecognizer = _kaldi_recognizer
    monkeypatch.setitem(sys.modules, "vosk", fake_vosk)
    return loaded, recognizers


def test_backend_loads_model_once_and_opens_fresh_recognizers(tmp_path, monkeypatch):
    loaded, recognizers = _install_fake_vosk(monkeypatch)

    async def run():
        backend = VoskRecognitionBackend(model_path=tmp_path)
        options = RecognitionOptions(locale="ru-RU", requires_on_device=True, sample_rate_hz=16000)

        first = await backend.open_session(options)
        await backend.open_session(options)

        await first.send_audio(b"\x01\x00")
        await first.end_audio()
        results = [r async for r in first.results()]
        assert results == [
            RecognitionResult("привет", is_final=False),
            RecognitionResult("привет", is_final=True),
        ]

    asyncio.run(run())

    assert loaded == [str(tmp_path)]
    assert len(recognizers) == 2
    assert all(rate == 16000 for _, rate in recognizers)


def test_broken_model_reports_unavailability(tmp_path, monkeypatch):
    _install_fake_vosk(monkeypatch, model_error=Exception("Failed to create a model"))
    reported: list[bool] = []

    async def _listener(available: bool) -> None:
        reported.append(available)

    async def run():
        backend = VoskRecognitionBackend(model_path=tmp_path)
        backend.set_availability_listener(_listener)

        with pytest.raises(RecognizerUnavailableError, match="failed to load"):
            await backend.open_session(RecognitionOptions(locale="ru-RU", requires_on_device=True))
        await settle()

        assert reported == [False]
        assert not backend.is_available()

    asyncio.run(run())
