from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from voice_todo.domain.models import RemoteTodo
from voice_todo.providers.seed.dummyjson import DummyJsonSeedSource, SeedFetchError

PAYLOAD = {"todos": [{"id": 1, "todo": "Test", "completed": False, "userId": 1}, {"id": 2, "todo": "Done", "completed": True}]}


def _source(handler) -> DummyJsonSeedSource:
    return DummyJsonSeedSource(url="https://dummyjson.com/todos", transport=httpx.MockTransport(handler))


def test_fetch_todos_success():
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json=PAYLOAD)

    todos = asyncio.run(_source(handler).fetch_todos())

    assert todos == [RemoteTodo(1, "Test", False), RemoteTodo(2, "Done", True)]
    assert str(requests[0].url) == "https://dummyjson.com/todos"


def test_fetch_todos_http_error_status():
    source = _source(lambda request: httpx.Response(503))

    with pytest.raises(SeedFetchError, match="503"):
        asyncio.run(source.fetch_todos())


def test_fetch_todos_malformed_payload():
    source = _source(lambda request: httpx.Response(200, content=json.dumps({"items": []}).encode()))

    with pytest.raises(SeedFetchError):
        asyncio.run(source.fetch_todos())


def test_fetch_todos_not_json():
    source = _source(lambda request: httpx.Response(200, content=b"<html>"))

    with pytest.raises(SeedFetchError):
        asyncio.run(source.fetch_todos())


def test_fetch_todos_transport_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("no route", request=request)

    with pytest.raises(SeedFetchError):
        asyncio.run(_source(handler).fetch_todos())
