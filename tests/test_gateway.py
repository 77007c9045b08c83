"""HTTP gateway tests (httpx.MockTransport)"""

from __future__ import annotations

import httpx
import pytest

from ips_dashboard.config import AppConfig
from ips_dashboard.errors import AuthError, NetworkError, ServerError
from ips_dashboard.gateway import ApiGateway
from ips_dashboard.models import CreateTaskRequest, TaskStatus, UpdateSecretRequest, UserRole
from ips_dashboard.session import SessionGuard
from ips_dashboard.storage import TOKEN_KEY

from conftest import FakeBackend, task_json, tasks_page


async def test_bearer_token_injected(guard: SessionGuard, api: ApiGateway, backend: FakeBackend):
    backend.on("GET", "/tasks", json=tasks_page("t1"))
    await guard.login("admin", "pw")
    await api.list_tasks(limit=10, offset=0)
    req = backend.sent("GET", "/tasks")[0]
    assert req.headers["Authorization"] == "Bearer tok-1"
    login = backend.sent("POST", "/login")[0]
    assert "Authorization" not in login.headers


async def test_list_tasks_params_and_parse(guard: SessionGuard, api: ApiGateway, backend: FakeBackend):
    backend.on("GET", "/tasks", json=tasks_page("t1", "t2", total=42))
    await guard.login("admin", "pw")
    page = await api.list_tasks(limit=10, offset=20, status=TaskStatus.RUNNING)
    assert [t.task_id for t in page.items] == ["t1", "t2"]
    assert page.total == 42
    params = backend.sent("GET", "/tasks")[0].url.params
    assert params["limit"] == "10"
    assert params["offset"] == "20"
    assert params["status"] == "running"


async def test_list_tasks_without_status_omits_param(guard: SessionGuard, api: ApiGateway, backend: FakeBackend):
    backend.on("GET", "/tasks", json={"tasks": None, "total": 0})
    await guard.login("admin", "pw")
    page = await api.list_tasks(limit=10, offset=0)
    assert page.items == []
    assert "status" not in backend.sent("GET", "/tasks")[0].url.params


async def test_secrets_use_page_and_page_size(guard: SessionGuard, api: ApiGateway, backend: FakeBackend):
    backend.on("GET", "/secrets", json={"secrets": [{"id": 3, "name": "hub", "registry": "r", "username": "u"}], "total": 1})
    await guard.login("admin", "pw")
    page = await api.list_secrets(page=2, page_size=10)
    assert page.items[0].name == "hub"
    params = backend.sent("GET", "/secrets")[0].url.params
    assert params["page"] == "2"
    assert params["pageSize"] == "10"
    assert "limit" not in params


async def test_users_list_is_bare_array(guard: SessionGuard, api: ApiGateway, backend: FakeBackend):
    backend.on("GET", "/users", json=[{"id": 1, "username": "admin", "role": "admin"}, {"id": 2, "username": "ops", "role": "viewer"}])
    await guard.login("admin", "pw")
    users = await api.list_users()
    assert [u.role for u in users] == [UserRole.ADMIN, UserRole.VIEWER]


async def test_create_task_body_excludes_unset(guard: SessionGuard, api: ApiGateway, backend: FakeBackend):
    backend.on("POST", "/tasks", json=task_json("task-9"))
    await guard.login("admin", "pw")
    task = await api.create_task(CreateTaskRequest(images=["nginx:latest"], batch_size=10, priority=5))
    assert task.task_id == "task-9"
    body = backend.body(backend.sent("POST", "/tasks")[0])
    assert body == {"images": ["nginx:latest"], "batchSize": 10, "priority": 5}


async def test_update_secret_drops_blank_password(guard: SessionGuard, api: ApiGateway, backend: FakeBackend):
    backend.on("PUT", "/secrets/3", json={"id": 3, "name": "hub", "registry": "r", "username": "u"})
    await guard.login("admin", "pw")
    await api.update_secret(3, UpdateSecretRequest(name="hub", registry="r", username="u", password=""))
    body = backend.body(backend.sent("PUT", "/secrets/3")[0])
    assert "password" not in body


async def test_401_expires_session(guard: SessionGuard, api: ApiGateway, backend: FakeBackend, storage):
    backend.on("GET", "/tasks", status=401, json={"error": "token expired"})
    await guard.login("admin", "pw")
    with pytest.raises(AuthError) as exc:
        await api.list_tasks(limit=10, offset=0)
    assert exc.value.session_expired
    assert not guard.is_authenticated()
    assert await storage.get(TOKEN_KEY) is None
    assert guard.pending_redirect.redirect_to == "/login"


async def test_server_error_carries_message(guard: SessionGuard, api: ApiGateway, backend: FakeBackend):
    backend.on("DELETE", "/tasks/t1", status=409, json={"error": "task is locked", "details": "retry later"})
    await guard.login("admin", "pw")
    with pytest.raises(ServerError) as exc:
        await api.delete_task("t1")
    assert exc.value.status == 409
    assert exc.value.message == "task is locked"
    assert exc.value.details == "retry later"
    assert guard.is_authenticated()


async def test_not_found(guard: SessionGuard, api: ApiGateway):
    await guard.login("admin", "pw")
    with pytest.raises(ServerError) as exc:
        await api.get_task("nope")
    assert exc.value.not_found


async def test_delete_task_result(guard: SessionGuard, api: ApiGateway, backend: FakeBackend):
    backend.on("DELETE", "/tasks/t1", json={"status": "success", "action": "cancelled", "message": "Task cancelled"})
    await guard.login("admin", "pw")
    result = await api.delete_task("t1")
    assert result.task_id == "t1"
    assert result.action == "cancelled"


async def test_timeout_is_retryable_network_error(config: AppConfig, storage):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    guard = SessionGuard(storage, config)
    gw = ApiGateway(config, guard, transport=httpx.MockTransport(handler))
    try:
        with pytest.raises(NetworkError) as exc:
            await gw.list_tasks(limit=10, offset=0)
        assert exc.value.timeout
        assert exc.value.retryable
    finally:
        await gw.close()


async def test_connect_error(config: AppConfig, storage):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    gw = ApiGateway(config, SessionGuard(storage, config), transport=httpx.MockTransport(handler))
    try:
        with pytest.raises(NetworkError) as exc:
            await gw.stats()
        assert not exc.value.timeout
    finally:
        await gw.close()


async def test_health_outside_api_prefix(api: ApiGateway, backend: FakeBackend):
    backend.on("GET", "/health", json={"status": "healthy", "timestamp": "2025-01-01T00:00:00Z"})
    health = await api.health()
    assert health.status == "healthy"
    assert backend.requests[-1].url.path == "/health"
