from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from speech_fakes import FakeAudioFactory, FakeBackend, FakeTimerFactory, settle
from voice_todo.app.headless_listen import HeadlessListenRunner, format_task
from voice_todo.config.settings import AppSettings, SeedSettings
from voice_todo.core.speech.authorization import StaticAuthorizationGate
from voice_todo.core.speech.manager import RecognitionSessionManager
from voice_todo.core.storage.tasks import JsonFileTaskStore
from voice_todo.domain.models import Task

T0 = datetime(2025, 8, 9, 10, 0, tzinfo=timezone.utc)


def _settings() -> AppSettings:
    return AppSettings(seed=SeedSettings(enabled=False))


def _seed_tasks(tmp_path) -> None:
    store = JsonFileTaskStore(path=tmp_path / "tasks.json")
    store.save(Task(id=1, title="Buy milk", description="dairy", created_at=T0))
    store.save(Task(id=2, title="Call plumber", description="kitchen", created_at=T0))


def test_format_task():
    task = Task(id=3, title="Gym", description="leg day", created_at=T0, is_completed=True)
    assert format_task(task) == "[x]    3  Gym  (09/08/25)\n        leg day"
    assert format_task(task.with_changes(description="", is_completed=False)) == "[ ]    3  Gym  (09/08/25)"


def test_dictation_filters_task_list_until_audio_ends(tmp_path):
    async def run():
        _seed_tasks(tmp_path)
        backend = FakeBackend()
        audio = FakeAudioFactory()
        lines: list[str] = []

        def factory(settings, sink):
            return RecognitionSessionManager(
                backend=backend,
                audio_factory=audio,
                authorization=StaticAuthorizationGate(True),
                sink=sink,
                timer_factory=FakeTimerFactory(),
            )

        runner = HeadlessListenRunner(
            settings=_settings(),
            config_path=tmp_path / "settings.json",
            out=lines.append,
            manager_factory=factory,
        )
        task = asyncio.create_task(runner.run())
        await settle()

        backend.current.push("plumber")
        await settle()
        audio.current.end()

        assert await asyncio.wait_for(task, timeout=1.0) == 0
        assert "Listening... (Ctrl+C to stop)" in lines
        assert any('Query: "plumber" (1 match)' in line for line in lines)
        assert any("Call plumber" in line for line in lines)
        assert not any("Buy milk" in line for line in lines)
        assert audio.current.closed

    asyncio.run(run())


def test_duration_stops_session(tmp_path):
    async def run():
        backend = FakeBackend()
        audio = FakeAudioFactory()

        def factory(settings, sink):
            return RecognitionSessionManager(
                backend=backend,
                audio_factory=audio,
                authorization=StaticAuthorizationGate(True),
                sink=sink,
                timer_factory=FakeTimerFactory(),
            )

        runner = HeadlessListenRunner(
            settings=_settings(),
            config_path=tmp_path / "settings.json",
            duration_s=0.05,
            out=lambda _line: None,
            manager_factory=factory,
        )

        assert await runner.run() == 0
        assert backend.current.canceled
        assert audio.current.closed

    asyncio.run(run())


def test_denied_authorization_returns_error(tmp_path):
    async def run():
        lines: list[str] = []

        def factory(settings, sink):
            return RecognitionSessionManager(
                backend=FakeBackend(),
                audio_factory=FakeAudioFactory(),
                authorization=StaticAuthorizationGate(False),
                sink=sink,
                timer_factory=FakeTimerFactory(),
            )

        runner = HeadlessListenRunner(
            settings=_settings(),
            config_path=tmp_path / "settings.json",
            out=lines.append,
            manager_factory=factory,
        )

        assert await runner.run() == 2
        assert any(line.startswith("Speech error:") for line in lines)

    asyncio.run(run())


def test_manager_construction_failure_returns_error(tmp_path):
    async def run():
        lines: list[str] = []

        def factory(settings, sink):
            raise ValueError("Missing secret `deepgram_api_key`")

        runner = HeadlessListenRunner(
            settings=_settings(),
            config_path=tmp_path / "settings.json",
            out=lines.append,
            manager_factory=factory,
        )

        assert await runner.run() == 2
        assert "deepgram_api_key" in lines[-1]

    asyncio.run(run())


def test_corrupt_task_store_returns_error(tmp_path):
    async def run():
        (tmp_path / "tasks.json").write_text("{not json", encoding="utf-8")
        lines: list[str] = []

        def factory(settings, sink):
            raise AssertionError("speech should not start without a task store")

        runner = HeadlessListenRunner(
            settings=_settings(),
            config_path=tmp_path / "settings.json",
            out=lines.append,
            manager_factory=factory,
        )

        assert await runner.run() == 2
        assert lines[-1].startswith("Error: cannot read task store:")

    asyncio.run(run())
