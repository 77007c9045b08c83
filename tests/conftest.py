"""Shared fixtures: config, temp storage, scripted IPS backend"""

from __future__ import annotations

import json
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
import pytest

from ips_dashboard.config import AppConfig
from ips_dashboard.gateway import ApiGateway
from ips_dashboard.session import SessionGuard
from ips_dashboard.storage import ClientStorage

BASE = "/api/v1"
ADMIN = {"id": 1, "username": "admin", "role": "admin"}


class FakeBackend:
    """httpx.MockTransport handler with per-route canned responses."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self._routes: dict[tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}

    def on(self, method: str, path: str, status: int = 200, json: Any = None, handler: Callable | None = None) -> None:
        if handler is None:
            def handler(request: httpx.Request, _status=status, _body=json) -> httpx.Response:
                if _body is None:
                    return httpx.Response(_status)
                return httpx.Response(_status, json=_body)
        self._routes[(method, BASE + path if not path.startswith("/health") else path)] = handler

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self._routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"error": f"no route {request.method} {request.url.path}"})
        return handler(request)

    def sent(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == BASE + path]

    def body(self, request: httpx.Request) -> Any:
        return json.loads(request.content)


def task_json(task_id: str, status: str = "pending", created_at: str | None = None, **extra: Any) -> dict:
    data = {"taskId": task_id, "status": status, "images": ["nginx:latest"], "batchSize": 10, "priority": 5}
    if created_at:
        data["createdAt"] = created_at
    data.update(extra)
    return data


def tasks_page(*ids: str, total: int | None = None, status: str = "pending") -> dict:
    return {"tasks": [task_json(i, status) for i in ids], "total": len(ids) if total is None else total}


@pytest.fixture
def config() -> AppConfig:
    return AppConfig(
        api_base_url="http://ips.test/api/v1",
        server_url="http://ips.test",
        poll_interval=0.05,
        search_debounce=0.01,
        toast_duration=3,
    )


@pytest.fixture
async def storage():
    with tempfile.TemporaryDirectory() as tmp:
        s = ClientStorage(str(Path(tmp) / "client.db"))
        await s.init()
        yield s
        await s.close()


@pytest.fixture
def backend() -> FakeBackend:
    b = FakeBackend()
    b.on("POST", "/login", json={"token": "tok-1", "user": ADMIN})
    return b


@pytest.fixture
def guard(storage: ClientStorage, config: AppConfig) -> SessionGuard:
    return SessionGuard(storage, config)


@pytest.fixture
async def api(config: AppConfig, guard: SessionGuard, backend: FakeBackend):
    gw = ApiGateway(config, guard, transport=httpx.MockTransport(backend))
    yield gw
    await gw.close()
