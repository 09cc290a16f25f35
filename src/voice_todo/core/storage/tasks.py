from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Protocol

from voice_todo.domain.models import Task, task_from_dict, task_to_dict

logger = logging.getLogger(__name__)

STORE_FORMAT_VERSION = 1


class TaskStore(Protocol):
    def fetch_all(self) -> list[Task]: ...
    def save(self, task: Task) -> None: ...
    def update(self, task: Task) -> None: ...
    def delete(self, task: Task) -> None: ...


def newest_first(tasks: Iterable[Task]) -> list[Task]:
    return sorted(tasks, key=lambda t: t.created_at, reverse=True)


@dataclass(slots=True)
class InMemoryTaskStore:
    _items: dict[int, Task] = field(default_factory=dict)

    def fetch_all(self) -> list[Task]:
        return newest_first(self._items.values())

    def save(self, task: Task) -> None:
        self._items[task.id] = task

    def update(self, task: Task) -> None:
        if task.id in self._items:
            self._items[task.id] = task

    def delete(self, task: Task) -> None:
        self._items.pop(task.id, None)


@dataclass(slots=True)
class JsonFileTaskStore:
    """Task store backed by a single JSON document.

    The whole document is rewritten on every change through a temp file and
    an atomic rename. A missing file reads as an empty store.
    """

    path: Path
    _items: dict[int, Task] = field(init=False, default_factory=dict)

    def __post_init__(self) -> None:
        self._items = {task.id: task for task in self._load()}

    def fetch_all(self) -> list[Task]:
        return newest_first(self._items.values())

    def save(self, task: Task) -> None:
        self._items[task.id] = task
        self._flush()

    def update(self, task: Task) -> None:
        if task.id not in self._items:
            logger.debug("update ignored, task %s not stored", task.id)
            return
        self._items[task.id] = task
        self._flush()

    def delete(self, task: Task) -> None:
        if self._items.pop(task.id, None) is not None:
            self._flush()

    def _load(self) -> list[Task]:
        if not self.path.exists():
            return []
        raw = json.loads(self.path.read_text(encoding="utf-8"))
        if not isinstance(raw, dict) or not isinstance(raw.get("tasks"), list):
            raise ValueError(f"{self.path} is not a task store file")
        try:
            return [task_from_dict(item) for item in raw["tasks"]]
        except (KeyError, TypeError, AttributeError, ValueError) as exc:
            raise ValueError(f"{self.path} has a malformed task entry: {exc}") from exc

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "version": STORE_FORMAT_VERSION,
            "tasks": [task_to_dict(task) for task in sorted(self._items.values(), key=lambda t: t.id)],
        }
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(self.path)
