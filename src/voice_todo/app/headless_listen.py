from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from voice_todo.app.wiring import (
    create_recognition_backend,
    create_secret_store,
    create_seed_source,
    create_session_manager,
    create_task_store,
)
from voice_todo.config.settings import AppSettings, SpeechProviderName
from voice_todo.core.speech.manager import RecognitionSessionManager
from voice_todo.core.tasks.dictation import DictationSearchSink
from voice_todo.core.tasks.interactor import TaskListInteractor
from voice_todo.domain.models import Task
from voice_todo.providers.seed.dummyjson import SeedFetchError

logger = logging.getLogger(__name__)


def format_task(task: Task) -> str:
    mark = "x" if task.is_completed else " "
    line = f"[{mark}] {task.id:>4}  {task.title}  ({task.created_at:%d/%m/%y})"
    if task.description:
        line += f"\n        {task.description}"
    return line


@dataclass(slots=True)
class HeadlessListenRunner:
    """Voice search in the terminal: dictated text filters the task list live."""

    settings: AppSettings
    config_path: Path
    duration_s: float | None = None
    out: Callable[[str], None] = print
    manager_factory: Callable[[AppSettings, DictationSearchSink], RecognitionSessionManager] | None = None

    _done: asyncio.Event = field(init=False, default_factory=asyncio.Event)

    async def run(self) -> int:
        try:
            store = create_task_store(self.settings, config_path=self.config_path)
        except (ValueError, OSError) as exc:
            self.out(f"Error: cannot read task store: {exc}")
            return 2
        interactor = TaskListInteractor(store=store, seed=create_seed_source(self.settings))
        try:
            await interactor.fetch_tasks()
        except SeedFetchError as exc:
            self.out(f"Warning: could not load seed tasks: {exc}")

        sink = DictationSearchSink(
            interactor=interactor,
            on_results=self._show_results,
            on_error=lambda exc: self.out(f"Speech error: {exc}"),
            on_stopped=self._done.set,
        )

        try:
            manager = self._build_manager(sink)
        except Exception as exc:
            self.out(f"Error: failed to initialize speech recognition: {exc}")
            return 2

        await manager.start()
        if not manager.is_listening:
            # start() reported the failure to the sink
            await asyncio.sleep(0)
            return 2

        self.out("Listening... (Ctrl+C to stop)")
        try:
            if self.duration_s is None:
                await self._done.wait()
            else:
                try:
                    await asyncio.wait_for(self._done.wait(), timeout=self.duration_s)
                except asyncio.TimeoutError:
                    pass
        finally:
            await manager.stop()
            await asyncio.sleep(0)
        return 0

    def _build_manager(self, sink: DictationSearchSink) -> RecognitionSessionManager:
        if self.manager_factory is not None:
            return self.manager_factory(self.settings, sink)

        secrets = None
        if self.settings.speech.provider == SpeechProviderName.DEEPGRAM:
            secrets = create_secret_store(self.settings.secrets, config_path=self.config_path)
        backend = create_recognition_backend(self.settings, config_path=self.config_path, secrets=secrets)
        return create_session_manager(self.settings, backend=backend, sink=sink)

    def _show_results(self, query: str, tasks: list[Task]) -> None:
        self.out(f'\nQuery: "{query}" ({len(tasks)} match{"" if len(tasks) == 1 else "es"})')
        for task in tasks:
            self.out(format_task(task))
