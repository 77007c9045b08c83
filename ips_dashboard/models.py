"""Wire models (camelCase on the wire) + client-side view state"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# ── Users / Session ──


class UserRole(str, Enum):
    ADMIN = "admin"
    VIEWER = "viewer"


class User(ApiModel):
    id: int
    username: str
    role: UserRole = UserRole.VIEWER
    created_at: str | None = None
    updated_at: str | None = None


class Session(ApiModel):
    token: str
    user: User


class LoginRequest(ApiModel):
    username: str
    password: str


class CreateUserRequest(ApiModel):
    username: str
    password: str
    role: UserRole = UserRole.VIEWER


class UpdateUserRequest(ApiModel):
    role: UserRole


class UpdatePasswordRequest(ApiModel):
    password: str


# ── Tasks ──


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


ACTIVE_STATUSES = frozenset({TaskStatus.PENDING, TaskStatus.RUNNING})


class RetryStrategy(str, Enum):
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


class Progress(ApiModel):
    total_nodes: int = 0
    completed_nodes: int = 0
    failed_nodes: int = 0
    current_batch: int = 0
    total_batches: int = 0
    percentage: float = 0.0


class FailedNode(ApiModel):
    node_name: str
    image: str
    reason: str
    message: str | None = None
    timestamp: str | None = None


class Task(ApiModel):
    task_id: str
    status: TaskStatus
    priority: int = 5
    images: list[str] = Field(default_factory=list)
    batch_size: int = 10
    node_selector: dict[str, str] | None = None
    progress: Progress | None = None
    failed_node_details: list[FailedNode] | None = None
    max_retries: int = 0
    retry_count: int = 0
    retry_strategy: RetryStrategy = RetryStrategy.LINEAR
    retry_delay: int | None = None
    webhook_url: str | None = None
    secret_name: str | None = None
    secret_id: int | None = None
    registry: str | None = None
    username: str | None = None
    created_at: str | None = None
    started_at: str | None = None
    finished_at: str | None = None
    estimated_completion: str | None = None
    error_message: str | None = None
    node_statuses: dict[str, dict[str, int]] | None = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return not self.is_active

    @property
    def percentage(self) -> int:
        return round(self.progress.percentage) if self.progress else 0


class CreateTaskRequest(ApiModel):
    images: list[str] = Field(min_length=1)
    batch_size: int = Field(ge=1, le=100)
    priority: int = Field(default=5, ge=1, le=10)
    node_selector: dict[str, str] | None = None
    max_retries: int | None = Field(default=None, ge=0, le=5)
    retry_strategy: RetryStrategy | None = None
    retry_delay: int | None = Field(default=None, ge=1, le=300)
    webhook_url: str | None = None
    secret_id: int | None = None
    registry: str | None = None
    username: str | None = None
    password: str | None = None


class DeleteTaskResult(ApiModel):
    task_id: str
    status: str = "success"
    action: str = ""
    message: str = ""


# ── Scheduled tasks ──


class OverlapPolicy(str, Enum):
    SKIP = "skip"
    ALLOW = "allow"
    QUEUE = "queue"


class TaskConfig(ApiModel):
    images: list[str] = Field(default_factory=list)
    batch_size: int = 10
    priority: int = 5
    node_selector: dict[str, str] | None = None
    max_retries: int = 0
    retry_strategy: RetryStrategy = RetryStrategy.LINEAR
    retry_delay: int = 30
    webhook_url: str | None = None
    secret_id: int | None = None
    registry: str | None = None
    username: str | None = None
    password: str | None = None


class ScheduledTask(ApiModel):
    id: str
    name: str
    description: str = ""
    cron_expr: str
    enabled: bool = False
    task_config: TaskConfig = Field(default_factory=TaskConfig)
    overlap_policy: OverlapPolicy = OverlapPolicy.SKIP
    timeout_seconds: int = 0
    last_execution_at: str | None = None
    next_execution_at: str | None = None
    created_by: str = ""
    created_at: str | None = None
    updated_at: str | None = None


class CreateScheduledTaskRequest(ApiModel):
    name: str
    description: str = ""
    cron_expr: str
    enabled: bool = True
    task_config: TaskConfig
    overlap_policy: OverlapPolicy = OverlapPolicy.SKIP
    timeout_seconds: int = 0


class UpdateScheduledTaskRequest(ApiModel):
    name: str | None = None
    description: str | None = None
    cron_expr: str | None = None
    enabled: bool | None = None
    task_config: TaskConfig | None = None
    overlap_policy: OverlapPolicy | None = None
    timeout_seconds: int | None = None


class ExecutionStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"
    TIMEOUT = "timeout"


class ScheduledExecution(ApiModel):
    id: int
    scheduled_task_id: str
    task_id: str = ""
    status: ExecutionStatus
    started_at: str | None = None
    finished_at: str | None = None
    duration_seconds: float = 0.0
    error_message: str | None = None
    triggered_at: str | None = None


# ── Library / Secrets ──


class LibraryImage(ApiModel):
    id: int
    name: str
    image: str
    created_at: str | None = None


class SaveImageRequest(ApiModel):
    name: str
    image: str


class Secret(ApiModel):
    id: int
    name: str
    registry: str
    username: str
    created_at: str | None = None
    updated_at: str | None = None


class CreateSecretRequest(ApiModel):
    name: str
    registry: str
    username: str
    password: str


class UpdateSecretRequest(ApiModel):
    name: str
    registry: str
    username: str
    password: str | None = None  # blank = keep current


# ── Stats / Health ──


class NodeStats(ApiModel):
    total: int = 0
    ready: int = 0
    coverage: int = 0


class Stats(ApiModel):
    nodes: NodeStats = Field(default_factory=NodeStats)


class Health(ApiModel):
    status: str
    timestamp: str | None = None


# ── Client-side view state ──

ItemT = TypeVar("ItemT")


class Page(BaseModel, Generic[ItemT]):
    items: list[ItemT] = Field(default_factory=list)
    total: int = 0


class Pagination(BaseModel):
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=10, ge=1)
    total: int = Field(default=0, ge=0)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size

    @property
    def range_start(self) -> int:
        if self.total == 0:
            return 0
        return min(self.offset + 1, self.total)

    @property
    def range_end(self) -> int:
        return min(self.page * self.page_size, self.total)

    @property
    def page_count(self) -> int:
        return max(1, math.ceil(self.total / self.page_size))

    @property
    def has_prev(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page * self.page_size < self.total


class Filter(BaseModel):
    search: str = ""
    status: TaskStatus | None = None
    enabled: bool | None = None
    parent_id: str | None = None  # executions: owning scheduled task


class ToastLevel(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    INFO = "info"


class Toast(BaseModel):
    id: int
    message: str
    level: ToastLevel = ToastLevel.SUCCESS
    created_at: float


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
