"""Form input → typed requests; raises ValidationError before anything is sent"""

from __future__ import annotations

import json
import re
from enum import Enum

import pydantic
from pydantic.alias_generators import to_camel

from ips_dashboard.errors import ValidationError
from ips_dashboard.models import (
    ApiModel,
    CreateScheduledTaskRequest,
    CreateSecretRequest,
    CreateTaskRequest,
    OverlapPolicy,
    RetryStrategy,
    SaveImageRequest,
    TaskConfig,
    UpdateScheduledTaskRequest,
    UpdateSecretRequest,
)


_CRON_FIELD = re.compile(r"^[\w*/,\-?#LW]+$")
_SPLIT = re.compile(r"[\n,]")


class AuthMode(str, Enum):
    NONE = "none"
    MANUAL = "manual"
    SECRET = "secret"


def _from_pydantic(exc: pydantic.ValidationError) -> ValidationError:
    err = exc.errors()[0]
    field = ".".join(to_camel(p) if "_" in p else p for p in map(str, err.get("loc", ())))
    return ValidationError(f"Invalid {field or 'input'}: {err.get('msg', 'invalid value')}", field=field or None)


def parse_images(text: str | list[str]) -> list[str]:
    """One image per line (commas also accepted), blanks dropped, order kept."""
    raw = text if isinstance(text, list) else _SPLIT.split(text or "")
    images = [s.strip() for s in raw if s and s.strip()]
    if not images:
        raise ValidationError("At least one image is required", field="images")
    return images


def parse_node_selector(text: str | None) -> dict[str, str] | None:
    if not text or not text.strip():
        return None
    try:
        value = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValidationError("Node selector is not valid JSON", str(exc), field="nodeSelector") from exc
    if not isinstance(value, dict) or not all(isinstance(k, str) and isinstance(v, str) for k, v in value.items()):
        raise ValidationError('Node selector must be a JSON object of strings, e.g. {"disk": "ssd"}', field="nodeSelector")
    return value


def validate_cron(expr: str) -> str:
    """Standard 5-field crontab; evaluation itself is the server's job."""
    fields = (expr or "").split()
    if len(fields) != 5 or not all(_CRON_FIELD.match(f) for f in fields):
        raise ValidationError("Cron expression must have 5 fields (minute hour day month weekday)", field="cronExpr")
    return " ".join(fields)


def image_name(image: str) -> str:
    """cr01.home.lan/library/n8n:v0.1.1 -> n8n:v0.1.1"""
    return image.rstrip("/").rsplit("/", 1)[-1]


def parse_library_import(text: str) -> list[SaveImageRequest]:
    return [SaveImageRequest(name=image_name(i), image=i) for i in parse_images(text)]


def check_password_change(new_password: str, confirm_password: str) -> str:
    if not new_password:
        raise ValidationError("Password must not be empty", field="password")
    if new_password != confirm_password:
        raise ValidationError("Passwords do not match", field="confirmPassword")
    return new_password


# ── Task form ──


class TaskForm(ApiModel):
    images: str | list[str]
    batch_size: int
    priority: int
    max_retries: int | None = None
    retry_strategy: RetryStrategy | None = None
    retry_delay: int | None = None
    webhook_url: str = ""
    node_selector: str = ""
    auth_mode: AuthMode = AuthMode.NONE
    registry: str = ""
    username: str = ""
    password: str = ""
    secret_id: int | None = None


def build_task_request(form: TaskForm) -> CreateTaskRequest:
    data: dict = {
        "images": parse_images(form.images),
        "batch_size": form.batch_size,
        "priority": form.priority,
        "max_retries": form.max_retries,
        "retry_strategy": form.retry_strategy,
        "retry_delay": form.retry_delay,
        "webhook_url": form.webhook_url.strip() or None,
        "node_selector": parse_node_selector(form.node_selector),
    }
    if form.auth_mode == AuthMode.MANUAL:
        if not (form.registry.strip() and form.username.strip() and form.password):
            raise ValidationError("Registry, username and password are all required", field="registry")
        data.update(registry=form.registry.strip(), username=form.username.strip(), password=form.password)
    elif form.auth_mode == AuthMode.SECRET:
        if not form.secret_id:
            raise ValidationError("Choose a saved registry secret", field="secretId")
        data["secret_id"] = form.secret_id
    try:
        return CreateTaskRequest(**data)
    except pydantic.ValidationError as exc:
        raise _from_pydantic(exc) from exc


# ── Scheduled task form ──


class ScheduledTaskForm(ApiModel):
    name: str
    cron_expr: str
    images: str | list[str]
    description: str = ""
    enabled: bool = True
    overlap_policy: OverlapPolicy = OverlapPolicy.SKIP
    timeout_seconds: int = 0
    batch_size: int = 10
    priority: int = 1
    max_retries: int = 0
    retry_strategy: RetryStrategy = RetryStrategy.LINEAR
    retry_delay: int = 30
    node_selector: str = ""
    secret_id: int | None = None


def _task_config(form: ScheduledTaskForm) -> TaskConfig:
    return TaskConfig(
        images=parse_images(form.images),
        batch_size=form.batch_size,
        priority=form.priority,
        node_selector=parse_node_selector(form.node_selector),
        max_retries=form.max_retries,
        retry_strategy=form.retry_strategy,
        retry_delay=form.retry_delay,
        secret_id=form.secret_id,
    )


def build_scheduled_request(form: ScheduledTaskForm) -> CreateScheduledTaskRequest:
    if not form.name.strip():
        raise ValidationError("Name is required", field="name")
    if form.timeout_seconds < 0:
        raise ValidationError("Timeout must be 0 (unlimited) or more", field="timeoutSeconds")
    return CreateScheduledTaskRequest(
        name=form.name.strip(),
        description=form.description,
        cron_expr=validate_cron(form.cron_expr),
        enabled=form.enabled,
        task_config=_task_config(form),
        overlap_policy=form.overlap_policy,
        timeout_seconds=form.timeout_seconds,
    )


def build_scheduled_update(form: ScheduledTaskForm) -> UpdateScheduledTaskRequest:
    full = build_scheduled_request(form)
    return UpdateScheduledTaskRequest(**full.model_dump())


# ── Secret form ──


class SecretForm(ApiModel):
    name: str
    registry: str
    username: str
    password: str = ""


def build_secret_request(form: SecretForm, editing: bool = False) -> CreateSecretRequest | UpdateSecretRequest:
    name, registry, username = form.name.strip(), form.registry.strip(), form.username.strip()
    if not (name and registry and username):
        raise ValidationError("Name, registry and username are required", field="name")
    if editing:
        return UpdateSecretRequest(name=name, registry=registry, username=username, password=form.password or None)
    if not form.password:
        raise ValidationError("Password is required for a new secret", field="password")
    return CreateSecretRequest(name=name, registry=registry, username=username, password=form.password)
