"""Console REST surface + SSE state stream"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse
from pydantic import BaseModel as _PydanticBase
from sse_starlette.sse import EventSourceResponse

from ips_dashboard.batch import BatchAction
from ips_dashboard.errors import AuthError, ValidationError
from ips_dashboard.forms import ScheduledTaskForm, SecretForm, TaskForm
from ips_dashboard.models import ApiModel, TaskStatus, UserRole
from ips_dashboard.overview import VIEW as DASHBOARD
from ips_dashboard.session import SessionGuard
from ips_dashboard.shell import DashboardShell
from ips_dashboard.store import CollectionStore
from ips_dashboard.ui import CHANGE_PASSWORD, LIBRARY_IMPORT, SCHEDULED_FORM, USER_FORM

logger = logging.getLogger(__name__)

router = APIRouter()

_PLAIN_MODALS = {SCHEDULED_FORM, LIBRARY_IMPORT, USER_FORM, CHANGE_PASSWORD}


def _get_guard(request: Request) -> SessionGuard:
    return request.app.state.guard


async def _mount_shell(request: Request) -> DashboardShell:
    state = request.app.state
    shell: DashboardShell | None = state.shell
    if shell is None or not shell.mounted:
        shell = DashboardShell(state.config, state.api, state.guard)
        state.shell = shell
        await shell.mount()
    return shell


async def _get_shell(request: Request) -> DashboardShell:
    """Central route guard: every protected route resolves the shell through here."""
    guard: SessionGuard = request.app.state.guard
    decision = guard.require_auth(request.url.path)
    if not decision.allowed or not guard.is_authenticated():
        raise AuthError("Login required")
    return await _mount_shell(request)


def _require_admin(shell: DashboardShell) -> None:
    if not shell.session.is_admin:
        raise HTTPException(403, "Administrator role required")


def _item_id(store: CollectionStore, raw: str) -> Any:
    """Path ids arrive as strings; match them against the ids the store holds."""
    for item_id in [*store.visible_ids(), *store.selection.ids()]:
        if str(item_id) == raw:
            return item_id
    raise HTTPException(404, "Item is not on the current page")


def _dump(value: Any) -> Any:
    if isinstance(value, ApiModel):
        return value.to_wire()
    if isinstance(value, _PydanticBase):
        return value.model_dump(mode="json")
    return value


# ── Session ──


class LoginBody(ApiModel):
    username: str
    password: str
    return_to: str | None = None


@router.get("/login")
async def login_page(returnTo: str | None = None, guard: SessionGuard = Depends(_get_guard)):
    decision = guard.require_auth(guard.config.login_route)
    if not decision.allowed:
        return RedirectResponse(decision.location, status_code=303)
    return {"loginRequired": True, "returnTo": returnTo}


@router.post("/login")
async def login(body: LoginBody, request: Request, guard: SessionGuard = Depends(_get_guard)):
    if not body.username.strip() or not body.password:
        raise ValidationError("Username and password are required", field="username")
    session = await guard.login(body.username.strip(), body.password)
    await _mount_shell(request)
    target = body.return_to if body.return_to and body.return_to.startswith("/") and not body.return_to.startswith("//") else None
    return {"user": session.user.to_wire(), "redirect": target or guard.config.landing_route}


@router.post("/logout")
async def logout(request: Request, guard: SessionGuard = Depends(_get_guard)):
    await guard.logout()
    request.app.state.shell = None
    return {"redirect": guard.config.login_route}


@router.get("/account")
async def account(shell: DashboardShell = Depends(_get_shell)):
    user = shell.session.user
    return {"user": user.to_wire() if user else None, "isAdmin": shell.session.is_admin}


class PasswordBody(ApiModel):
    new_password: str
    confirm_password: str


@router.put("/account/password")
async def change_my_password(body: PasswordBody, shell: DashboardShell = Depends(_get_shell)):
    ok = await shell.change_my_password(body.new_password, body.confirm_password)
    return {"ok": ok}


# ── Views ──


class PageSizeBody(ApiModel):
    page_size: int


class FilterBody(ApiModel):
    search: str | None = None
    status: TaskStatus | None = None
    enabled: bool | None = None
    parent_id: str | None = None


class SearchBody(ApiModel):
    text: str = ""


class BatchBody(ApiModel):
    action: BatchAction = BatchAction.DELETE


@router.get("/dashboard")
async def dashboard(shell: DashboardShell = Depends(_get_shell)):
    return shell.snapshot(DASHBOARD)


@router.get("/views/{view}")
async def view_state(view: str, shell: DashboardShell = Depends(_get_shell)):
    return shell.snapshot(view)


@router.post("/views/{view}/activate")
async def activate_view(view: str, shell: DashboardShell = Depends(_get_shell)):
    await shell.switch_view(view)
    return shell.snapshot()


@router.post("/views/{view}/refresh")
async def refresh_view(view: str, shell: DashboardShell = Depends(_get_shell)):
    await shell.refresh(view)
    return shell.snapshot(view)


@router.post("/views/{view}/next-page")
async def next_page(view: str, shell: DashboardShell = Depends(_get_shell)):
    await shell.store(view).next_page()
    return shell.snapshot(view)


@router.post("/views/{view}/prev-page")
async def prev_page(view: str, shell: DashboardShell = Depends(_get_shell)):
    await shell.store(view).prev_page()
    return shell.snapshot(view)


@router.post("/views/{view}/page-size")
async def page_size(view: str, body: PageSizeBody, shell: DashboardShell = Depends(_get_shell)):
    await shell.store(view).set_page_size(body.page_size)
    return shell.snapshot(view)


@router.post("/views/{view}/filter")
async def update_filter(view: str, body: FilterBody, shell: DashboardShell = Depends(_get_shell)):
    changes = body.model_dump(exclude_unset=True)
    if "search" in changes:
        changes["search"] = (changes["search"] or "").strip()
    await shell.store(view).update_filter(**changes)
    return shell.snapshot(view)


@router.post("/views/{view}/search", status_code=202)
async def search(view: str, body: SearchBody, shell: DashboardShell = Depends(_get_shell)):
    shell.store(view)
    shell.search_as_you_type(view, body.text)
    return {"ok": True}


@router.post("/views/{view}/select/{item_id}")
async def toggle_select(view: str, item_id: str, shell: DashboardShell = Depends(_get_shell)):
    store = shell.store(view)
    selected = store.selection.toggle(_item_id(store, item_id))
    return {"selected": selected, "count": store.selection.count()}


@router.post("/views/{view}/select-all")
async def select_all(view: str, shell: DashboardShell = Depends(_get_shell)):
    store = shell.store(view)
    store.selection.select_all(store.visible_ids())
    return shell.snapshot(view)


@router.delete("/views/{view}/selection")
async def clear_selection(view: str, shell: DashboardShell = Depends(_get_shell)):
    shell.store(view).selection.clear()
    return {"ok": True}


@router.post("/views/{view}/batch")
async def batch(view: str, body: BatchBody, shell: DashboardShell = Depends(_get_shell)):
    asked = shell.request_batch(view, body.action)
    return {"confirm": asked, "message": shell.ui.confirm.message if asked else None}


@router.post("/views/{view}/dropdown/{row_id}")
async def toggle_dropdown(view: str, row_id: str, shell: DashboardShell = Depends(_get_shell)):
    return {"open": shell.ui.dropdowns.toggle(f"{view}:{row_id}")}


@router.delete("/views/{view}/dropdown")
async def close_dropdowns(view: str, shell: DashboardShell = Depends(_get_shell)):
    shell.ui.dropdowns.outside_click()
    return {"ok": True}


# ── Tasks ──


class PickImageBody(ApiModel):
    images_text: str = ""
    image: str


@router.post("/tasks/new")
async def open_create_task(shell: DashboardShell = Depends(_get_shell)):
    await shell.open_create_task()
    return {
        "library": [i.to_wire() for i in shell.quick_library],
        "secrets": [s.to_wire() for s in shell.secret_choices],
    }


@router.post("/tasks/pick-image")
async def pick_image(body: PickImageBody, shell: DashboardShell = Depends(_get_shell)):
    return {"imagesText": shell.pick_image(body.images_text, body.image)}


@router.post("/tasks")
async def create_task(form: TaskForm, shell: DashboardShell = Depends(_get_shell)):
    task = await shell.create_task(form)
    return {"created": task is not None, "task": task.to_wire() if task else None}


@router.get("/tasks/{task_id}")
async def task_detail(task_id: str, shell: DashboardShell = Depends(_get_shell)):
    task = await shell.show_task_detail(task_id)
    return {"task": task.to_wire() if task else None}


@router.post("/tasks/{task_id}/cancel")
async def cancel_task(task_id: str, shell: DashboardShell = Depends(_get_shell)):
    shell.request_cancel_task(task_id)
    return {"confirm": True, "message": shell.ui.confirm.message}


@router.delete("/tasks/{task_id}")
async def delete_task(task_id: str, shell: DashboardShell = Depends(_get_shell)):
    shell.request_delete_task(task_id)
    return {"confirm": True, "message": shell.ui.confirm.message}


# ── Scheduled tasks ──


@router.post("/scheduled")
async def create_scheduled(form: ScheduledTaskForm, shell: DashboardShell = Depends(_get_shell)):
    return {"ok": await shell.save_scheduled(form)}


@router.put("/scheduled/{scheduled_id}")
async def update_scheduled(scheduled_id: str, form: ScheduledTaskForm, shell: DashboardShell = Depends(_get_shell)):
    return {"ok": await shell.save_scheduled(form, scheduled_id)}


@router.post("/scheduled/{scheduled_id}/enable")
async def enable_scheduled(scheduled_id: str, shell: DashboardShell = Depends(_get_shell)):
    return {"ok": await shell.set_scheduled_enabled(scheduled_id, True)}


@router.post("/scheduled/{scheduled_id}/disable")
async def disable_scheduled(scheduled_id: str, shell: DashboardShell = Depends(_get_shell)):
    return {"ok": await shell.set_scheduled_enabled(scheduled_id, False)}


@router.post("/scheduled/{scheduled_id}/trigger")
async def trigger_scheduled(scheduled_id: str, shell: DashboardShell = Depends(_get_shell)):
    return {"ok": await shell.trigger_scheduled(scheduled_id)}


@router.delete("/scheduled/{scheduled_id}")
async def delete_scheduled(scheduled_id: str, shell: DashboardShell = Depends(_get_shell)):
    shell.request_delete_scheduled(scheduled_id)
    return {"confirm": True, "message": shell.ui.confirm.message}


@router.get("/scheduled/{scheduled_id}/executions")
async def executions(scheduled_id: str, shell: DashboardShell = Depends(_get_shell)):
    await shell.show_executions(scheduled_id)
    return shell.snapshot()


@router.get("/scheduled/{scheduled_id}/executions/{execution_id}")
async def execution_detail(scheduled_id: str, execution_id: int, shell: DashboardShell = Depends(_get_shell)):
    execution = await shell.show_execution(scheduled_id, execution_id)
    return {"execution": execution.to_wire() if execution else None}


# ── Library ──


class ImportBody(ApiModel):
    text: str


@router.post("/library/import")
async def import_images(body: ImportBody, shell: DashboardShell = Depends(_get_shell)):
    succeeded, failed = await shell.import_images(body.text)
    return {"succeeded": succeeded, "failed": failed}


@router.delete("/library/{image_id}")
async def delete_image(image_id: int, shell: DashboardShell = Depends(_get_shell)):
    shell.request_delete_image(image_id)
    return {"confirm": True, "message": shell.ui.confirm.message}


# ── Secrets ──


@router.post("/secrets/{secret_id}/edit")
async def edit_secret(secret_id: int, shell: DashboardShell = Depends(_get_shell)):
    secret = shell.open_secret_form(secret_id)
    return {"secret": secret.to_wire() if secret else None}


@router.post("/secrets")
async def create_secret(form: SecretForm, shell: DashboardShell = Depends(_get_shell)):
    return {"ok": await shell.save_secret(form)}


@router.put("/secrets/{secret_id}")
async def update_secret(secret_id: int, form: SecretForm, shell: DashboardShell = Depends(_get_shell)):
    return {"ok": await shell.save_secret(form, secret_id)}


@router.delete("/secrets/{secret_id}")
async def delete_secret(secret_id: int, shell: DashboardShell = Depends(_get_shell)):
    shell.request_delete_secret(secret_id)
    return {"confirm": True, "message": shell.ui.confirm.message}


# ── Users (admin) ──


class UserBody(ApiModel):
    username: str
    password: str
    role: UserRole = UserRole.VIEWER


class RoleBody(ApiModel):
    role: UserRole


@router.post("/users")
async def create_user(body: UserBody, shell: DashboardShell = Depends(_get_shell)):
    _require_admin(shell)
    return {"ok": await shell.create_user(body.username, body.password, body.role)}


@router.put("/users/{user_id}")
async def update_user(user_id: int, body: RoleBody, shell: DashboardShell = Depends(_get_shell)):
    _require_admin(shell)
    return {"ok": await shell.update_user_role(user_id, body.role)}


@router.put("/users/{user_id}/password")
async def reset_password(user_id: int, body: PasswordBody, shell: DashboardShell = Depends(_get_shell)):
    _require_admin(shell)
    return {"ok": await shell.change_password(user_id, body.new_password, body.confirm_password)}


@router.delete("/users/{user_id}")
async def delete_user(user_id: int, shell: DashboardShell = Depends(_get_shell)):
    _require_admin(shell)
    shell.request_delete_user(user_id)
    return {"confirm": True, "message": shell.ui.confirm.message}


# ── Confirm / modals / toasts ──


@router.post("/confirm/accept")
async def confirm_accept(shell: DashboardShell = Depends(_get_shell)):
    result = await shell.ui.confirm.accept()
    return {"result": _dump(result), "ui": shell.ui.snapshot()}


@router.post("/confirm/dismiss")
async def confirm_dismiss(shell: DashboardShell = Depends(_get_shell)):
    shell.ui.confirm.dismiss()
    return {"ok": True}


@router.post("/modals/{name}/open")
async def open_modal(name: str, shell: DashboardShell = Depends(_get_shell)):
    if name not in _PLAIN_MODALS:
        raise HTTPException(404, f"Unknown modal: {name}")
    shell.ui.modal(name).open()
    return shell.ui.snapshot()


@router.post("/modals/{name}/close")
async def close_modal(name: str, shell: DashboardShell = Depends(_get_shell)):
    shell.close_modal(name)
    return shell.ui.snapshot()


@router.get("/toasts")
async def toasts(shell: DashboardShell = Depends(_get_shell)):
    return [t.model_dump(mode="json") for t in shell.ui.toasts.visible()]


@router.delete("/toasts/{toast_id}")
async def dismiss_toast(toast_id: int, shell: DashboardShell = Depends(_get_shell)):
    shell.ui.toasts.dismiss(toast_id)
    return {"ok": True}


# ── Events ──


@router.get("/events")
async def events(shell: DashboardShell = Depends(_get_shell)):
    bus = shell.bus
    queue = bus.open_queue()

    async def generate():
        try:
            while True:
                event = await queue.get()
                yield {"event": event.kind, "data": event.model_dump_json()}
        finally:
            bus.close_queue(queue)

    return EventSourceResponse(generate())
