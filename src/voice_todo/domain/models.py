from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime


@dataclass(frozen=True, slots=True)
class Task:
    id: int
    title: str
    description: str
    created_at: datetime
    is_completed: bool = False

    def with_changes(self, **changes: object) -> "Task":
        return replace(self, **changes)

    def matches(self, query: str) -> bool:
        """Case-insensitive substring match over title and description.

        `query` is expected to be already trimmed and lowercased.
        """
        return query in self.title.lower() or query in self.description.lower()


@dataclass(frozen=True, slots=True)
class RemoteTodo:
    id: int
    text: str
    completed: bool = False


def task_to_dict(task: Task) -> dict[str, object]:
    return {
        "id": task.id,
        "title": task.title,
        "description": task.description,
        "created_at": task.created_at.isoformat(),
        "is_completed": task.is_completed,
    }


def task_from_dict(data: dict[str, object]) -> Task:
    created_raw = data.get("created_at")
    if not isinstance(created_raw, str) or not created_raw:
        raise ValueError("task.created_at must be an ISO-8601 string")
    return Task(
        id=int(data["id"]),  # type: ignore[arg-type]
        title=str(data.get("title") or ""),
        description=str(data.get("description") or ""),
        created_at=datetime.fromisoformat(created_raw),
        is_completed=bool(data.get("is_completed", False)),
    )
