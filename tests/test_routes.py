"""Console HTTP surface tests (ASGI transport, scripted backend)"""

from __future__ import annotations

import httpx
import pytest

from ips_dashboard.config import AppConfig
from ips_dashboard.gateway import ApiGateway
from ips_dashboard.main import app
from ips_dashboard.session import SessionGuard

from conftest import FakeBackend, tasks_page


@pytest.fixture
async def client(config: AppConfig, guard: SessionGuard, api: ApiGateway, backend: FakeBackend):
    backend.on("GET", "/tasks", json=tasks_page("t1", "t2"))
    backend.on("GET", "/scheduled-tasks", json={"tasks": [], "total": 0})
    backend.on("GET", "/stats", json={"nodes": {"total": 1, "ready": 1, "coverage": 100}})
    app.state.config = config.model_copy(update={"poll_interval": 60})
    app.state.guard = guard
    app.state.api = api
    app.state.shell = None
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://console") as c:
        yield c
    if app.state.shell is not None:
        await app.state.shell.unmount()


async def _login(client: httpx.AsyncClient, **extra) -> httpx.Response:
    return await client.post("/login", json={"username": "admin", "password": "pw", **extra})


async def test_health(client: httpx.AsyncClient):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


async def test_guard_redirects_to_login(client: httpx.AsyncClient):
    resp = await client.get("/views/tasks")
    assert resp.status_code == 401
    assert resp.json()["redirect"] == "/login?returnTo=%2Fviews%2Ftasks"


async def test_login_then_view(client: httpx.AsyncClient):
    resp = await _login(client)
    assert resp.status_code == 200
    assert resp.json()["redirect"] == "/dashboard"
    assert resp.json()["user"]["username"] == "admin"

    resp = await client.post("/views/tasks/activate")
    assert resp.status_code == 200
    data = resp.json()
    assert data["view"] == "tasks"
    assert [i["taskId"] for i in data["data"]["items"]] == ["t1", "t2"]


async def test_login_honours_return_to(client: httpx.AsyncClient):
    resp = await _login(client, returnTo="/views/library")
    assert resp.json()["redirect"] == "/views/library"


async def test_login_ignores_offsite_return_to(client: httpx.AsyncClient):
    resp = await _login(client, returnTo="//evil.test/x")
    assert resp.json()["redirect"] == "/dashboard"


async def test_login_page_redirects_when_authenticated(client: httpx.AsyncClient):
    assert (await client.get("/login")).status_code == 200
    await _login(client)
    resp = await client.get("/login")
    assert resp.status_code == 303
    assert resp.headers["location"] == "/dashboard"


async def test_bad_credentials(client: httpx.AsyncClient, backend: FakeBackend):
    backend.on("POST", "/login", status=401, json={"error": "invalid credentials"})
    resp = await _login(client)
    assert resp.status_code == 401
    assert resp.json()["error"] == "invalid credentials"
    assert resp.json()["redirect"] is None


async def test_validation_error_is_422(client: httpx.AsyncClient, backend: FakeBackend):
    await _login(client)
    resp = await client.post("/tasks", json={"images": " ", "batchSize": 10, "priority": 5})
    assert resp.status_code == 422
    assert resp.json()["field"] == "images"
    assert backend.sent("POST", "/tasks") == []


async def test_select_batch_confirm(client: httpx.AsyncClient, backend: FakeBackend):
    backend.on("DELETE", "/tasks/t1", json={"status": "success"})
    await _login(client)
    await client.post("/views/tasks/activate")

    resp = await client.post("/views/tasks/select/t1")
    assert resp.json() == {"selected": True, "count": 1}
    assert (await client.post("/views/tasks/select/missing")).status_code == 404

    resp = await client.post("/views/tasks/batch", json={"action": "cancel"})
    assert resp.json()["confirm"] is True

    resp = await client.post("/confirm/accept")
    assert resp.json()["result"]["succeeded"] == 1
    assert len(backend.sent("DELETE", "/tasks/t1")) == 1


async def test_session_expiry_mid_use(client: httpx.AsyncClient, backend: FakeBackend, guard: SessionGuard):
    await _login(client)
    backend.on("POST", "/tasks", status=401, json={"error": "token expired"})
    resp = await client.post("/tasks", json={"images": "nginx:latest", "batchSize": 10, "priority": 5})
    assert resp.status_code == 401
    assert resp.json()["redirect"].startswith("/login")
    assert not guard.is_authenticated()
    assert not app.state.shell.mounted


async def test_logout(client: httpx.AsyncClient):
    await _login(client)
    resp = await client.post("/logout")
    assert resp.json() == {"redirect": "/login"}
    assert (await client.get("/views/tasks")).status_code == 401


async def test_dashboard_view_has_no_collection(client: httpx.AsyncClient):
    await _login(client)
    assert (await client.get("/dashboard")).status_code == 200
    assert (await client.post("/views/dashboard/next-page")).status_code == 422
