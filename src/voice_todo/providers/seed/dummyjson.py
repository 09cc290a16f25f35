"""Remote seed source for the first launch.

Fetches the public dummyjson todo list once, when the local store is empty.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from voice_todo import SEED_TODOS_URL
from voice_todo.domain.models import RemoteTodo

logger = logging.getLogger(__name__)


class SeedFetchError(Exception):
    pass


class SeedSource(Protocol):
    async def fetch_todos(self) -> list[RemoteTodo]: ...


@dataclass(slots=True)
class DummyJsonSeedSource:
    url: str = SEED_TODOS_URL
    timeout_s: float = 10.0
    transport: httpx.AsyncBaseTransport | None = None

    async def fetch_todos(self) -> list[RemoteTodo]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout_s, transport=self.transport) as client:
                resp = await client.get(self.url, headers={"Accept": "application/json"}, follow_redirects=True)
        except httpx.TimeoutException as exc:
            logger.error(f"[Seed] request timed out: {exc}")
            raise SeedFetchError(f"Seed request timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            logger.error(f"[Seed] request error: {exc}")
            raise SeedFetchError(f"Seed request failed: {exc}") from exc

        if resp.status_code != 200:
            logger.error(f"[Seed] server returned {resp.status_code}")
            raise SeedFetchError(f"Seed server returned HTTP {resp.status_code}")

        try:
            data: dict[str, Any] = resp.json()
            todos = [_parse_todo(item) for item in data["todos"]]
        except (ValueError, KeyError, TypeError) as exc:
            logger.error(f"[Seed] decode error: {exc}")
            raise SeedFetchError(f"Malformed seed payload: {exc}") from exc

        logger.info(f"[Seed] fetched {len(todos)} todos")
        return todos


def _parse_todo(item: dict[str, Any]) -> RemoteTodo:
    return RemoteTodo(
        id=int(item["id"]),
        text=str(item.get("todo") or ""),
        completed=bool(item.get("completed") or False),
    )
