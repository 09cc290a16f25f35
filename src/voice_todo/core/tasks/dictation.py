from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from voice_todo.core.tasks.interactor import TaskListInteractor
from voice_todo.domain.models import Task

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DictationSearchSink:
    """Transcript sink that turns dictated text into a task search.

    Each update replaces the query; after a soft restart the transcript may
    start over, which simply narrows or widens the results again.
    """

    interactor: TaskListInteractor
    on_results: Callable[[str, list[Task]], None]
    on_error: Callable[[BaseException], None] | None = None
    on_stopped: Callable[[], None] | None = None

    query: str = field(init=False, default="")
    is_listening: bool = field(init=False, default=False)

    def on_update(self, text: str) -> None:
        self.is_listening = True
        self.query = text
        self.on_results(text, self.interactor.search_tasks(text))

    def on_finish(self) -> None:
        self.is_listening = False
        if self.on_stopped is not None:
            self.on_stopped()

    def on_fail(self, error: BaseException) -> None:
        logger.warning(f"Dictation failed: {error}")
        self.is_listening = False
        if self.on_error is not None:
            self.on_error(error)
