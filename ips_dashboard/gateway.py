"""HTTP Gateway: typed calls to the IPS REST API (httpx)"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx

from ips_dashboard.config import AppConfig
from ips_dashboard.errors import AuthError, NetworkError, ServerError
from ips_dashboard.models import (
    CreateScheduledTaskRequest,
    CreateSecretRequest,
    CreateTaskRequest,
    CreateUserRequest,
    DeleteTaskResult,
    Health,
    LibraryImage,
    LoginRequest,
    Page,
    SaveImageRequest,
    ScheduledExecution,
    ScheduledTask,
    Secret,
    Session,
    Stats,
    Task,
    TaskStatus,
    UpdatePasswordRequest,
    UpdateScheduledTaskRequest,
    UpdateSecretRequest,
    UpdateUserRequest,
    User,
    UserRole,
)

if TYPE_CHECKING:
    from ips_dashboard.session import SessionGuard

logger = logging.getLogger(__name__)


def _error_fields(resp: httpx.Response, fallback: str) -> tuple[str, str | None]:
    try:
        body = resp.json()
    except ValueError:
        return fallback, resp.text or None
    if not isinstance(body, dict):
        return fallback, None
    return body.get("error") or body.get("message") or fallback, body.get("details")


class ApiGateway:
    """Single point that injects credentials and detects session expiry.

    No retries happen here; callers decide whether a NetworkError is worth
    another attempt.
    """

    def __init__(
        self,
        config: AppConfig,
        session: SessionGuard | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self._session = session
        self._client = httpx.AsyncClient(
            base_url=config.api_base_url,
            timeout=config.request_timeout,
            transport=transport,
        )
        if session is not None:
            session.bind(self)

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        auth: bool = True,
    ) -> Any:
        headers: dict[str, str] = {}
        token = self._session.get_token() if auth and self._session else None
        if token:
            headers["Authorization"] = f"Bearer {token}"
        if params:
            params = {k: v for k, v in params.items() if v is not None and v != ""}

        try:
            resp = await self._client.request(method, path, params=params or None, json=json, headers=headers)
        except httpx.TimeoutException as exc:
            raise NetworkError("Request timed out", f"{method} {path}", timeout=True) from exc
        except httpx.RequestError as exc:
            raise NetworkError("Cannot reach the server", str(exc) or f"{method} {path}") from exc

        if resp.status_code == 401:
            if not auth:
                message, details = _error_fields(resp, "Invalid username or password")
                raise AuthError(message, details)
            if self._session is not None:
                await self._session.expire()
            raise AuthError("Session expired, please log in again", session_expired=True)
        if resp.is_error:
            message, details = _error_fields(resp, f"Request failed ({resp.status_code})")
            logger.debug("%s %s -> %d %s", method, path, resp.status_code, message)
            raise ServerError(resp.status_code, message, details)

        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError:
            return resp.text

    # ── Auth ──

    async def login(self, username: str, password: str) -> Session:
        data = await self._request("POST", "/login", json=LoginRequest(username=username, password=password).to_wire(), auth=False)
        return Session.model_validate(data)

    # ── Tasks ──

    async def list_tasks(self, limit: int, offset: int, status: TaskStatus | None = None) -> Page[Task]:
        data = await self._request(
            "GET", "/tasks",
            params={"limit": limit, "offset": offset, "status": status.value if status else None},
        ) or {}
        return Page[Task](items=[Task.model_validate(t) for t in data.get("tasks") or []], total=data.get("total") or 0)

    async def get_task(self, task_id: str) -> Task:
        return Task.model_validate(await self._request("GET", f"/tasks/{task_id}"))

    async def create_task(self, data: CreateTaskRequest) -> Task | None:
        body = await self._request("POST", "/tasks", json=data.to_wire())
        return Task.model_validate(body) if isinstance(body, dict) and "taskId" in body else None

    async def delete_task(self, task_id: str) -> DeleteTaskResult:
        """Server cancels a pending/running task and deletes a terminal one."""
        body = await self._request("DELETE", f"/tasks/{task_id}")
        if isinstance(body, dict):
            return DeleteTaskResult.model_validate({"taskId": task_id, **body})
        return DeleteTaskResult(task_id=task_id)

    # ── Scheduled tasks ──

    async def list_scheduled_tasks(self, limit: int, offset: int, enabled: bool | None = None) -> Page[ScheduledTask]:
        data = await self._request(
            "GET", "/scheduled-tasks",
            params={"limit": limit, "offset": offset, "enabled": enabled},
        ) or {}
        return Page[ScheduledTask](
            items=[ScheduledTask.model_validate(t) for t in data.get("tasks") or []],
            total=data.get("total") or 0,
        )

    async def get_scheduled_task(self, task_id: str) -> ScheduledTask:
        return ScheduledTask.model_validate(await self._request("GET", f"/scheduled-tasks/{task_id}"))

    async def create_scheduled_task(self, data: CreateScheduledTaskRequest) -> ScheduledTask:
        return ScheduledTask.model_validate(await self._request("POST", "/scheduled-tasks", json=data.to_wire()))

    async def update_scheduled_task(self, task_id: str, data: UpdateScheduledTaskRequest) -> ScheduledTask:
        return ScheduledTask.model_validate(
            await self._request("PUT", f"/scheduled-tasks/{task_id}", json=data.to_wire())
        )

    async def delete_scheduled_task(self, task_id: str) -> None:
        await self._request("DELETE", f"/scheduled-tasks/{task_id}")

    async def enable_scheduled_task(self, task_id: str) -> None:
        await self._request("PUT", f"/scheduled-tasks/{task_id}/enable")

    async def disable_scheduled_task(self, task_id: str) -> None:
        await self._request("PUT", f"/scheduled-tasks/{task_id}/disable")

    async def trigger_scheduled_task(self, task_id: str) -> None:
        await self._request("POST", f"/scheduled-tasks/{task_id}/trigger")

    async def list_executions(self, scheduled_task_id: str, limit: int, offset: int) -> Page[ScheduledExecution]:
        data = await self._request(
            "GET", f"/scheduled-tasks/{scheduled_task_id}/executions",
            params={"limit": limit, "offset": offset},
        ) or {}
        return Page[ScheduledExecution](
            items=[ScheduledExecution.model_validate(e) for e in data.get("executions") or []],
            total=data.get("total") or 0,
        )

    async def get_execution(self, scheduled_task_id: str, execution_id: int) -> ScheduledExecution:
        return ScheduledExecution.model_validate(
            await self._request("GET", f"/scheduled-tasks/{scheduled_task_id}/executions/{execution_id}")
        )

    # ── Library ──

    async def list_images(self, limit: int, offset: int) -> Page[LibraryImage]:
        data = await self._request("GET", "/library", params={"limit": limit, "offset": offset}) or {}
        return Page[LibraryImage](
            items=[LibraryImage.model_validate(i) for i in data.get("images") or []],
            total=data.get("total") or 0,
        )

    async def save_image(self, data: SaveImageRequest) -> None:
        await self._request("POST", "/library", json=data.to_wire())

    async def delete_image(self, image_id: int) -> None:
        await self._request("DELETE", f"/library/{image_id}")

    # ── Secrets (page/pageSize, not limit/offset) ──

    async def list_secrets(self, page: int, page_size: int) -> Page[Secret]:
        data = await self._request("GET", "/secrets", params={"page": page, "pageSize": page_size}) or {}
        return Page[Secret](items=[Secret.model_validate(s) for s in data.get("secrets") or []], total=data.get("total") or 0)

    async def get_secret(self, secret_id: int) -> Secret:
        return Secret.model_validate(await self._request("GET", f"/secrets/{secret_id}"))

    async def create_secret(self, data: CreateSecretRequest) -> Secret:
        return Secret.model_validate(await self._request("POST", "/secrets", json=data.to_wire()))

    async def update_secret(self, secret_id: int, data: UpdateSecretRequest) -> Secret:
        body = data.to_wire()
        if not body.get("password"):
            body.pop("password", None)
        return Secret.model_validate(await self._request("PUT", f"/secrets/{secret_id}", json=body))

    async def delete_secret(self, secret_id: int) -> None:
        await self._request("DELETE", f"/secrets/{secret_id}")

    # ── Users ──

    async def list_users(self) -> list[User]:
        data = await self._request("GET", "/users") or []
        return [User.model_validate(u) for u in data]

    async def create_user(self, username: str, password: str, role: UserRole) -> User:
        body = CreateUserRequest(username=username, password=password, role=role).to_wire()
        return User.model_validate(await self._request("POST", "/users", json=body))

    async def update_user(self, user_id: int, role: UserRole) -> User:
        return User.model_validate(await self._request("PUT", f"/users/{user_id}", json=UpdateUserRequest(role=role).to_wire()))

    async def update_password(self, user_id: int, password: str) -> None:
        await self._request("PUT", f"/users/{user_id}", json=UpdatePasswordRequest(password=password).to_wire())

    async def delete_user(self, user_id: int) -> None:
        await self._request("DELETE", f"/users/{user_id}")

    # ── Stats / Health ──

    async def stats(self) -> Stats:
        return Stats.model_validate(await self._request("GET", "/stats") or {})

    async def health(self) -> Health:
        data = await self._request("GET", f"{self.config.server_url.rstrip('/')}/health", auth=False)
        if isinstance(data, dict):
            return Health.model_validate(data)
        return Health(status=str(data))
