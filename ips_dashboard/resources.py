"""Per-resource fetch conventions and page-local predicates"""

from __future__ import annotations

from ips_dashboard.gateway import ApiGateway
from ips_dashboard.models import (
    Filter,
    LibraryImage,
    Page,
    Pagination,
    ScheduledExecution,
    ScheduledTask,
    Secret,
    Task,
    User,
)
from ips_dashboard.store import Resource

TASKS = "tasks"
SCHEDULED = "scheduled"
EXECUTIONS = "executions"
LIBRARY = "library"
SECRETS = "secrets"
USERS = "users"


def _contains(needle: str, *haystack: str | None) -> bool:
    if not needle:
        return True
    needle = needle.lower()
    return any(needle in (h or "").lower() for h in haystack)


# ── Predicates (applied to the fetched page only) ──


def task_matches(task: Task, flt: Filter) -> bool:
    # status goes to the server too, but the backend may ignore it
    if flt.status is not None and task.status != flt.status:
        return False
    return _contains(flt.search, task.task_id, *task.images)


def scheduled_matches(task: ScheduledTask, flt: Filter) -> bool:
    if flt.enabled is not None and task.enabled != flt.enabled:
        return False
    return _contains(flt.search, task.name, task.cron_expr, task.description)


def execution_matches(execution: ScheduledExecution, flt: Filter) -> bool:
    return _contains(flt.search, execution.task_id, execution.status.value, execution.error_message)


def image_matches(image: LibraryImage, flt: Filter) -> bool:
    return _contains(flt.search, image.name, image.image)


def secret_matches(secret: Secret, flt: Filter) -> bool:
    return _contains(flt.search, secret.name, secret.registry, secret.username)


def user_matches(user: User, flt: Filter) -> bool:
    return _contains(flt.search, user.username, user.role.value)


# ── Resource table ──


def task_resource(api: ApiGateway) -> Resource[Task]:
    async def fetch(p: Pagination, flt: Filter) -> Page[Task]:
        return await api.list_tasks(limit=p.page_size, offset=p.offset, status=flt.status)

    return Resource(TASKS, fetch, lambda t: t.task_id, task_matches)


def scheduled_resource(api: ApiGateway) -> Resource[ScheduledTask]:
    async def fetch(p: Pagination, flt: Filter) -> Page[ScheduledTask]:
        return await api.list_scheduled_tasks(limit=p.page_size, offset=p.offset, enabled=flt.enabled)

    return Resource(SCHEDULED, fetch, lambda t: t.id, scheduled_matches)


def execution_resource(api: ApiGateway) -> Resource[ScheduledExecution]:
    async def fetch(p: Pagination, flt: Filter) -> Page[ScheduledExecution]:
        if not flt.parent_id:
            return Page[ScheduledExecution]()
        return await api.list_executions(flt.parent_id, limit=p.page_size, offset=p.offset)

    return Resource(EXECUTIONS, fetch, lambda e: e.id, execution_matches)


def library_resource(api: ApiGateway) -> Resource[LibraryImage]:
    async def fetch(p: Pagination, flt: Filter) -> Page[LibraryImage]:
        return await api.list_images(limit=p.page_size, offset=p.offset)

    return Resource(LIBRARY, fetch, lambda i: i.id, image_matches)


def secret_resource(api: ApiGateway) -> Resource[Secret]:
    async def fetch(p: Pagination, flt: Filter) -> Page[Secret]:
        return await api.list_secrets(page=p.page, page_size=p.page_size)

    return Resource(SECRETS, fetch, lambda s: s.id, secret_matches)


def user_resource(api: ApiGateway) -> Resource[User]:
    async def fetch(p: Pagination, flt: Filter) -> Page[User]:
        # /users is unpaginated; slice locally so the pager still works
        users = await api.list_users()
        return Page[User](items=users[p.offset:p.offset + p.page_size], total=len(users))

    return Resource(USERS, fetch, lambda u: u.id, user_matches)
