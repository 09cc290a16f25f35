from __future__ import annotations

import logging
from dataclasses import dataclass, field

from voice_todo.core.clock import Clock, SystemClock
from voice_todo.core.storage.tasks import TaskStore, newest_first
from voice_todo.domain.models import RemoteTodo, Task
from voice_todo.providers.seed.dummyjson import SeedSource

logger = logging.getLogger(__name__)

SEED_TITLE_FORMAT = "Task {id}"


@dataclass(slots=True)
class TaskListInteractor:
    """Task list operations behind the list screen.

    Keeps an in-memory snapshot of the store (newest first) that search runs
    against; every mutation goes to the store and refreshes the snapshot.
    """

    store: TaskStore
    seed: SeedSource | None = None
    clock: Clock = field(default_factory=SystemClock)

    _tasks: list[Task] = field(init=False, default_factory=list)

    @property
    def tasks(self) -> list[Task]:
        return list(self._tasks)

    async def fetch_tasks(self) -> list[Task]:
        """Load tasks, seeding the store from the remote source when it is empty.

        Raises SeedFetchError when seeding fails; the snapshot stays empty.
        """
        local = self.store.fetch_all()
        if local or self.seed is None:
            self._tasks = newest_first(local)
            return self.tasks

        logger.info("Local store is empty, seeding from remote source")
        remote = await self.seed.fetch_todos()
        for todo in remote:
            self.store.save(self._task_from_remote(todo))
        return self._reload()

    def search_tasks(self, query: str) -> list[Task]:
        q = query.strip().lower()
        if not q:
            return self.tasks
        return [task for task in self._tasks if task.matches(q)]

    def add_task(self, title: str, description: str = "") -> Task:
        task = Task(
            id=self._next_id(),
            title=title,
            description=description,
            created_at=self.clock.now(),
            is_completed=False,
        )
        self.store.save(task)
        self._reload()
        return task

    def update_task(self, task: Task) -> list[Task]:
        self.store.update(task)
        return self._reload()

    def delete_task(self, task: Task) -> list[Task]:
        self.store.delete(task)
        return self._reload()

    def find_task(self, task_id: int) -> Task | None:
        return next((task for task in self._tasks if task.id == task_id), None)

    def toggle_completed(self, task_id: int) -> Task | None:
        task = self.find_task(task_id)
        if task is None:
            return None
        updated = task.with_changes(is_completed=not task.is_completed)
        self.update_task(updated)
        return updated

    def _next_id(self) -> int:
        return max((task.id for task in self._tasks), default=0) + 1

    def _task_from_remote(self, todo: RemoteTodo) -> Task:
        return Task(
            id=todo.id,
            title=SEED_TITLE_FORMAT.format(id=todo.id),
            description=todo.text,
            created_at=self.clock.now(),
            is_completed=todo.completed,
        )

    def _reload(self) -> list[Task]:
        self._tasks = newest_first(self.store.fetch_all())
        return self.tasks
