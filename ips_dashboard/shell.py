"""Dashboard shell: owns stores, poller, UI state; every operator action goes through here"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from ips_dashboard.batch import BatchAction, BatchExecutor, BatchResult, run_selected, summarize
from ips_dashboard.config import AppConfig
from ips_dashboard.errors import AuthError, DashboardError, ValidationError, user_message
from ips_dashboard.events import EventBus
from ips_dashboard.forms import (
    ScheduledTaskForm,
    SecretForm,
    TaskForm,
    build_scheduled_request,
    build_scheduled_update,
    build_secret_request,
    build_task_request,
    check_password_change,
    parse_library_import,
)
from ips_dashboard.gateway import ApiGateway
from ips_dashboard.models import CreateSecretRequest, LibraryImage, ScheduledExecution, Secret, Task, UserRole
from ips_dashboard.overview import VIEW as DASHBOARD
from ips_dashboard.overview import Overview
from ips_dashboard.poller import Debouncer, Poller, Refreshable
from ips_dashboard.resources import (
    EXECUTIONS,
    LIBRARY,
    SCHEDULED,
    SECRETS,
    TASKS,
    USERS,
    execution_resource,
    library_resource,
    scheduled_resource,
    secret_resource,
    task_resource,
    user_resource,
)
from ips_dashboard.session import SessionGuard
from ips_dashboard.store import CollectionStore
from ips_dashboard.ui import (
    CHANGE_PASSWORD,
    CREATE_TASK,
    LIBRARY_IMPORT,
    SCHEDULED_FORM,
    SECRET_FORM,
    TASK_DETAIL,
    USER_FORM,
    UiState,
)

logger = logging.getLogger(__name__)

VIEWS = (DASHBOARD, TASKS, SCHEDULED, EXECUTIONS, LIBRARY, SECRETS, USERS)
PICKER_LIMIT = 100  # library quick-pick + secret dropdown

_NOUNS = {TASKS: "task", SCHEDULED: "scheduled task", LIBRARY: "image", SECRETS: "secret", USERS: "user"}


class DashboardShell:
    """Explicit replacement for page-global state.

    Created on mount (login or restored session), discarded on unmount. One
    poller per shell; switching views retargets it.
    """

    def __init__(self, config: AppConfig, api: ApiGateway, session: SessionGuard, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.config = config
        self.api = api
        self.session = session
        self.bus = EventBus()
        self.ui = UiState(config.toast_duration, clock=clock, bus=self.bus)
        size = config.default_page_size
        self.stores: dict[str, CollectionStore] = {
            TASKS: CollectionStore(task_resource(api), page_size=size, bus=self.bus),
            SCHEDULED: CollectionStore(scheduled_resource(api), page_size=size, bus=self.bus),
            EXECUTIONS: CollectionStore(execution_resource(api), page_size=size, bus=self.bus),
            LIBRARY: CollectionStore(library_resource(api), page_size=size, bus=self.bus),
            SECRETS: CollectionStore(secret_resource(api), page_size=size, bus=self.bus),
            USERS: CollectionStore(user_resource(api), page_size=size, bus=self.bus),
        }
        self.overview = Overview(api, self.bus)
        self.poller = Poller(config.poll_interval, is_blocked=self.ui.has_blocking_modal)
        self.search = Debouncer(config.search_debounce)
        self.executors: dict[str, BatchExecutor] = {
            TASKS: BatchExecutor({BatchAction.DELETE: self._delete_one, BatchAction.CANCEL: self._cancel_one}),
            SCHEDULED: BatchExecutor({BatchAction.DELETE: api.delete_scheduled_task}),
            LIBRARY: BatchExecutor({BatchAction.DELETE: api.delete_image}),
            SECRETS: BatchExecutor({BatchAction.DELETE: api.delete_secret}),
        }
        self.active_view = DASHBOARD
        self.mounted = False
        self.current_task: Task | None = None
        self.quick_library: list[LibraryImage] = []
        self.secret_choices: list[Secret] = []

    # ── Lifecycle ──

    async def mount(self, view: str = DASHBOARD) -> None:
        if self.mounted:
            return
        self.mounted = True
        self.session.on_logout(self.unmount)
        self.active_view = self._check_view(view)
        self.poller.retarget(self.target(view))
        self.poller.start()
        self.bus.publish("shell.mounted", view)
        await self.refresh(view)

    async def unmount(self) -> None:
        if not self.mounted:
            return
        self.mounted = False
        self.session.off_logout(self.unmount)
        await self.poller.stop()
        self.poller.retarget(None)
        self.search.cancel()
        for store in self.stores.values():
            store.close()
        self.overview.close()
        self.ui.close_all()
        self.current_task = None
        self.bus.publish("shell.unmounted")
        logger.info("Dashboard shell unmounted")

    # ── Views ──

    def _check_view(self, view: str) -> str:
        if view not in VIEWS:
            raise ValidationError(f"Unknown view: {view}", field="view")
        return view

    def store(self, view: str) -> CollectionStore:
        if view not in self.stores:
            raise ValidationError(f"View {view} has no collection", field="view")
        return self.stores[view]

    def target(self, view: str) -> Refreshable:
        return self.overview if view == DASHBOARD else self.store(view)

    async def switch_view(self, view: str) -> bool:
        self._check_view(view)
        if view == USERS and not self.session.is_admin:
            self.ui.toasts.error("Administrator role required")
            return False
        self.active_view = view
        self.ui.dropdowns.close_all()
        self.poller.retarget(self.target(view))
        await self.refresh(view)
        return True

    async def refresh(self, view: str | None = None) -> bool:
        """User-initiated (non-silent) refresh; failures become an error toast."""
        view = view or self.active_view
        try:
            return bool(await self.target(view).refresh(silent=False))
        except AuthError:
            raise
        except DashboardError as exc:
            self.ui.toasts.error(user_message(exc, f"Failed to load {view}"))
            return False

    def search_as_you_type(self, view: str, text: str) -> asyncio.Task:
        return self.search.call(self._apply_search, view, text)

    async def _apply_search(self, view: str, text: str) -> None:
        try:
            await self.store(view).set_search(text)
        except AuthError:
            raise
        except DashboardError as exc:
            self.ui.toasts.error(user_message(exc, f"Failed to load {view}"))

    def snapshot(self, view: str | None = None) -> dict:
        view = view or self.active_view
        data = self.overview.snapshot() if view == DASHBOARD else self.store(view).snapshot()
        return {"view": view, "active": view == self.active_view, "data": data, "ui": self.ui.snapshot()}

    # ── Helpers ──

    async def _call(self, fallback: str, fn: Callable[..., Awaitable[Any]], *args: Any) -> tuple[bool, Any]:
        """One gateway call on behalf of the operator; failures become a toast."""
        try:
            return True, await fn(*args)
        except AuthError:
            raise
        except DashboardError as exc:
            logger.warning("%s: %s", fallback, exc)
            self.ui.toasts.error(user_message(exc, fallback))
            return False, None

    def close_modal(self, name: str) -> None:
        self.ui.modal(name).close()
        if name == TASK_DETAIL:
            self.current_task = None

    # ── Tasks ──

    async def open_create_task(self) -> None:
        self.ui.modal(CREATE_TASK).open()
        try:
            self.quick_library = (await self.api.list_images(limit=PICKER_LIMIT, offset=0)).items
            self.secret_choices = (await self.api.list_secrets(page=1, page_size=PICKER_LIMIT)).items
        except AuthError:
            raise
        except DashboardError as exc:
            logger.warning("Could not load pickers for the create form: %s", exc)

    def pick_image(self, images_text: str, image: str) -> str:
        lines = [line.strip() for line in images_text.splitlines() if line.strip()]
        if image in lines:
            self.ui.toasts.info("Image is already in the list")
            return images_text
        self.ui.toasts.success("Image added")
        return "\n".join([*lines, image])

    async def create_task(self, form: TaskForm) -> Task | None:
        request = build_task_request(form)
        ok, task = await self._call("Failed to create task", self.api.create_task, request)
        if not ok:
            return None
        self.close_modal(CREATE_TASK)
        self.ui.toasts.success("Task created")
        await self.refresh(TASKS)
        return task

    async def show_task_detail(self, task_id: str) -> Task | None:
        ok, task = await self._call("Failed to load task details", self.api.get_task, task_id)
        if not ok:
            return None
        self.current_task = task
        self.ui.modal(TASK_DETAIL).open(taskId=task.task_id)
        return task

    def _cached_task(self, task_id: str) -> Task | None:
        if self.current_task and self.current_task.task_id == task_id:
            return self.current_task
        return self.stores[TASKS].get(task_id)

    def request_cancel_task(self, task_id: str) -> None:
        cached = self._cached_task(task_id)
        if cached is not None and not cached.is_active:
            raise ValidationError("Only pending or running tasks can be cancelled", field="status")
        self.ui.confirm.ask("Cancel task", f"Cancel task {task_id}?", lambda: self._delete_task(task_id, "Task cancelled"))

    def request_delete_task(self, task_id: str) -> None:
        cached = self._cached_task(task_id)
        if cached is not None and cached.is_active:
            raise ValidationError("Cancel the task before deleting it", field="status")
        self.ui.confirm.ask(
            "Delete task", f"Permanently delete the record of task {task_id}?",
            lambda: self._delete_task(task_id, "Task record deleted"),
        )

    # the backend cancels an active task and erases a finished one on the same call
    async def _cancel_one(self, task_id: str) -> None:
        cached = self._cached_task(task_id)
        if cached is not None and not cached.is_active:
            raise ValidationError(f"Task {task_id} is {cached.status.value}, not cancellable", field="status")
        await self.api.delete_task(task_id)

    async def _delete_one(self, task_id: str) -> None:
        cached = self._cached_task(task_id)
        if cached is not None and cached.is_active:
            raise ValidationError(f"Task {task_id} is still {cached.status.value}, cancel it first", field="status")
        await self.api.delete_task(task_id)

    async def _delete_task(self, task_id: str, done_message: str) -> bool:
        ok, _ = await self._call("Failed to update task", self.api.delete_task, task_id)
        if ok:
            self.ui.toasts.success(done_message)
            if self.current_task and self.current_task.task_id == task_id:
                self.close_modal(TASK_DETAIL)
        await self.refresh(TASKS)
        return ok

    # ── Batch ──

    def request_batch(self, view: str, action: BatchAction = BatchAction.DELETE) -> bool:
        store = self.store(view)
        executor = self.executors.get(view)
        if executor is None or not executor.supports(action):
            raise ValidationError(f"{action.value} is not available for {view}", field="action")
        count = store.selection.count()
        if count == 0:
            return False
        noun = _NOUNS.get(view, "item")
        self.ui.confirm.ask(
            "Batch operation",
            f"{action.value.capitalize()} {count} selected {noun}(s)?",
            lambda: self._run_batch(view, action),
        )
        return True

    async def _run_batch(self, view: str, action: BatchAction) -> BatchResult:
        result = await run_selected(self.executors[view], self.store(view), action)
        message = summarize(result, _NOUNS.get(view, "item"))
        if result.failed:
            self.ui.toasts.error(message)
        else:
            self.ui.toasts.success(message)
        return result

    # ── Scheduled tasks ──

    async def save_scheduled(self, form: ScheduledTaskForm, scheduled_id: str | None = None) -> bool:
        if scheduled_id is None:
            ok, _ = await self._call("Failed to create scheduled task", self.api.create_scheduled_task, build_scheduled_request(form))
            done = "Scheduled task created"
        else:
            request = build_scheduled_update(form)
            ok, _ = await self._call("Failed to update scheduled task", self.api.update_scheduled_task, scheduled_id, request)
            done = "Scheduled task updated"
        if not ok:
            return False
        self.close_modal(SCHEDULED_FORM)
        self.ui.toasts.success(done)
        await self.refresh(SCHEDULED)
        return True

    async def set_scheduled_enabled(self, scheduled_id: str, enabled: bool) -> bool:
        fn = self.api.enable_scheduled_task if enabled else self.api.disable_scheduled_task
        ok, _ = await self._call(f"Failed to {'enable' if enabled else 'disable'} scheduled task", fn, scheduled_id)
        if ok:
            self.ui.toasts.success(f"Scheduled task {'enabled' if enabled else 'disabled'}")
            await self.refresh(SCHEDULED)
        return ok

    async def trigger_scheduled(self, scheduled_id: str) -> bool:
        ok, _ = await self._call("Failed to trigger scheduled task", self.api.trigger_scheduled_task, scheduled_id)
        if ok:
            self.ui.toasts.success("Scheduled task triggered")
        return ok

    def request_delete_scheduled(self, scheduled_id: str) -> None:
        self.ui.confirm.ask("Delete scheduled task", "Delete this scheduled task?", lambda: self._delete_scheduled(scheduled_id))

    async def _delete_scheduled(self, scheduled_id: str) -> bool:
        ok, _ = await self._call("Failed to delete scheduled task", self.api.delete_scheduled_task, scheduled_id)
        if ok:
            self.ui.toasts.success("Scheduled task deleted")
        await self.refresh(SCHEDULED)
        return ok

    async def show_executions(self, scheduled_id: str) -> None:
        """Execution history of one schedule, as its own view."""
        self.active_view = EXECUTIONS
        self.poller.retarget(self.stores[EXECUTIONS])
        try:
            await self.stores[EXECUTIONS].update_filter(parent_id=scheduled_id)
        except AuthError:
            raise
        except DashboardError as exc:
            self.ui.toasts.error(user_message(exc, "Failed to load execution history"))

    async def show_execution(self, scheduled_id: str, execution_id: int) -> ScheduledExecution | None:
        _, execution = await self._call("Failed to load execution", self.api.get_execution, scheduled_id, execution_id)
        return execution

    # ── Library ──

    async def import_images(self, text: str) -> tuple[int, int]:
        """One POST per line, sequentially; returns (succeeded, failed)."""
        requests = {r.image: r for r in parse_library_import(text)}

        async def save(image: str) -> None:
            await self.api.save_image(requests[image])

        result = await BatchExecutor({BatchAction.IMPORT: save}).execute_batch(requests, BatchAction.IMPORT)
        succeeded, failed = result.succeeded, result.failed
        if failed == 0:
            self.ui.toasts.success(f"Added {succeeded} image(s)")
        else:
            self.ui.toasts.error(f"Partially added ({succeeded} ok, {failed} failed)")
        self.close_modal(LIBRARY_IMPORT)
        await self.refresh(LIBRARY)
        return succeeded, failed

    def request_delete_image(self, image_id: int) -> None:
        self.ui.confirm.ask("Delete image", "Remove this image from the library?", lambda: self._delete_image(image_id))

    async def _delete_image(self, image_id: int) -> bool:
        ok, _ = await self._call("Failed to delete image", self.api.delete_image, image_id)
        if ok:
            self.ui.toasts.success("Image deleted")
        await self.refresh(LIBRARY)
        return ok

    # ── Secrets ──

    def open_secret_form(self, secret_id: int | None = None) -> Secret | None:
        secret = self.stores[SECRETS].get(secret_id) if secret_id is not None else None
        if secret_id is not None and secret is None:
            raise ValidationError(f"Secret {secret_id} is not on this page", field="id")
        self.ui.modal(SECRET_FORM).open(secretId=secret_id)
        return secret

    async def save_secret(self, form: SecretForm, secret_id: int | None = None) -> bool:
        request = build_secret_request(form, editing=secret_id is not None)
        if isinstance(request, CreateSecretRequest):
            ok, _ = await self._call("Failed to save secret", self.api.create_secret, request)
            done = "Secret created"
        else:
            ok, _ = await self._call("Failed to save secret", self.api.update_secret, secret_id, request)
            done = "Secret updated"
        if not ok:
            return False
        self.close_modal(SECRET_FORM)
        self.ui.toasts.success(done)
        await self.refresh(SECRETS)
        return True

    def request_delete_secret(self, secret_id: int) -> None:
        self.ui.confirm.ask("Delete secret", "Delete this registry secret?", lambda: self._delete_secret(secret_id))

    async def _delete_secret(self, secret_id: int) -> bool:
        ok, _ = await self._call("Failed to delete secret", self.api.delete_secret, secret_id)
        if ok:
            self.ui.toasts.success("Secret deleted")
        await self.refresh(SECRETS)
        return ok

    # ── Users (admin) ──

    async def create_user(self, username: str, password: str, role: UserRole = UserRole.VIEWER) -> bool:
        if not username.strip() or not password:
            raise ValidationError("Username and password are required", field="username")
        ok, _ = await self._call("Failed to create user", self.api.create_user, username.strip(), password, role)
        if ok:
            self.close_modal(USER_FORM)
            self.ui.toasts.success("User created")
            await self.refresh(USERS)
        return ok

    async def update_user_role(self, user_id: int, role: UserRole) -> bool:
        ok, _ = await self._call("Failed to update user", self.api.update_user, user_id, role)
        if ok:
            self.ui.toasts.success("User updated")
            await self.refresh(USERS)
        return ok

    async def change_password(self, user_id: int, new_password: str, confirm_password: str) -> bool:
        password = check_password_change(new_password, confirm_password)
        ok, _ = await self._call("Failed to change password", self.api.update_password, user_id, password)
        if ok:
            self.close_modal(CHANGE_PASSWORD)
            self.ui.toasts.success("Password changed")
        return ok

    async def change_my_password(self, new_password: str, confirm_password: str) -> bool:
        user = self.session.user
        if user is None:
            raise AuthError("Not logged in")
        return await self.change_password(user.id, new_password, confirm_password)

    def request_delete_user(self, user_id: int) -> None:
        user = self.stores[USERS].get(user_id)
        if user is not None and user.username == "admin":
            raise ValidationError("The built-in admin account cannot be deleted", field="id")
        self.ui.confirm.ask("Delete user", "Delete this user?", lambda: self._delete_user(user_id))

    async def _delete_user(self, user_id: int) -> bool:
        ok, _ = await self._call("Failed to delete user", self.api.delete_user, user_id)
        if ok:
            self.ui.toasts.success("User deleted")
        await self.refresh(USERS)
        return ok
