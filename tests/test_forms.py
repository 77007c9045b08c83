"""Form validation tests"""

from __future__ import annotations

import pytest

from ips_dashboard.errors import ValidationError
from ips_dashboard.forms import (
    AuthMode,
    ScheduledTaskForm,
    SecretForm,
    TaskForm,
    build_scheduled_request,
    build_secret_request,
    build_task_request,
    check_password_change,
    image_name,
    parse_images,
    parse_library_import,
    parse_node_selector,
    validate_cron,
)
from ips_dashboard.models import CreateSecretRequest, RetryStrategy, UpdateSecretRequest


def test_parse_images_drops_blanks():
    assert parse_images("nginx:latest\n\n  redis:7 \n") == ["nginx:latest", "redis:7"]
    assert parse_images("a, b") == ["a", "b"]
    with pytest.raises(ValidationError) as exc:
        parse_images(" \n ")
    assert exc.value.field == "images"


def test_minimal_task_request_wire_body():
    req = build_task_request(TaskForm(images="nginx:latest", batch_size=10, priority=5))
    assert req.to_wire() == {"images": ["nginx:latest"], "batchSize": 10, "priority": 5}


def test_task_request_optional_fields():
    form = TaskForm(
        images=["a"], batch_size=5, priority=7, max_retries=3,
        retry_strategy=RetryStrategy.EXPONENTIAL, retry_delay=60,
        webhook_url=" https://hook.test/x ", node_selector='{"disk": "ssd"}',
    )
    wire = build_task_request(form).to_wire()
    assert wire["maxRetries"] == 3
    assert wire["retryStrategy"] == "exponential"
    assert wire["webhookUrl"] == "https://hook.test/x"
    assert wire["nodeSelector"] == {"disk": "ssd"}


@pytest.mark.parametrize(
    "changes, field",
    [
        ({"batch_size": 0}, "batchSize"),
        ({"batch_size": 101}, "batchSize"),
        ({"priority": 11}, "priority"),
        ({"max_retries": 6}, "maxRetries"),
        ({"retry_delay": 0}, "retryDelay"),
    ],
)
def test_task_request_bounds(changes, field):
    data = {"images": "a", "batch_size": 10, "priority": 5, **changes}
    with pytest.raises(ValidationError) as exc:
        build_task_request(TaskForm(**data))
    assert exc.value.field == field


def test_manual_auth_needs_all_three():
    form = TaskForm(images="a", batch_size=1, priority=1, auth_mode=AuthMode.MANUAL, registry="r", username="u")
    with pytest.raises(ValidationError):
        build_task_request(form)
    form.password = "p"
    wire = build_task_request(form).to_wire()
    assert (wire["registry"], wire["username"], wire["password"]) == ("r", "u", "p")


def test_secret_auth_needs_secret():
    form = TaskForm(images="a", batch_size=1, priority=1, auth_mode=AuthMode.SECRET)
    with pytest.raises(ValidationError) as exc:
        build_task_request(form)
    assert exc.value.field == "secretId"
    form.secret_id = 4
    assert build_task_request(form).to_wire()["secretId"] == 4


def test_node_selector_must_be_string_map():
    assert parse_node_selector("") is None
    with pytest.raises(ValidationError):
        parse_node_selector("{bad")
    with pytest.raises(ValidationError):
        parse_node_selector('{"n": 1}')


def test_cron_needs_five_fields():
    assert validate_cron("  */5  * * * 1-5 ") == "*/5 * * * 1-5"
    with pytest.raises(ValidationError):
        validate_cron("* * *")


def test_scheduled_request():
    form = ScheduledTaskForm(name=" nightly ", cron_expr="0 2 * * *", images="a\nb")
    req = build_scheduled_request(form)
    assert req.name == "nightly"
    assert req.task_config.images == ["a", "b"]
    assert req.task_config.batch_size == 10
    assert req.to_wire()["cronExpr"] == "0 2 * * *"
    with pytest.raises(ValidationError):
        build_scheduled_request(ScheduledTaskForm(name=" ", cron_expr="0 2 * * *", images="a"))


def test_library_import_names():
    assert image_name("cr01.home.lan/library/n8n:v0.1.1") == "n8n:v0.1.1"
    reqs = parse_library_import("cr01.home.lan/library/n8n:v0.1.1\nredis:7")
    assert [(r.name, r.image) for r in reqs] == [("n8n:v0.1.1", "cr01.home.lan/library/n8n:v0.1.1"), ("redis:7", "redis:7")]


def test_secret_password_required_only_on_create():
    form = SecretForm(name="hub", registry="docker.io", username="u")
    with pytest.raises(ValidationError):
        build_secret_request(form)
    update = build_secret_request(form, editing=True)
    assert isinstance(update, UpdateSecretRequest)
    assert update.password is None
    form.password = "p"
    assert isinstance(build_secret_request(form), CreateSecretRequest)


def test_password_change():
    assert check_password_change("pw", "pw") == "pw"
    with pytest.raises(ValidationError) as exc:
        check_password_change("pw", "other")
    assert exc.value.field == "confirmPassword"
    with pytest.raises(ValidationError):
        check_password_change("", "")
