"""UI Interaction State: modals, confirm dialog, toast queue, row dropdowns"""

from __future__ import annotations

import inspect
import itertools
import logging
import time
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from ips_dashboard.events import EventBus
from ips_dashboard.models import Toast, ToastLevel

logger = logging.getLogger(__name__)

ConfirmHandler = Callable[[], "Awaitable[Any] | Any"]

# Modal names used by the shell
TASK_DETAIL = "task-detail"
CREATE_TASK = "create-task"
SCHEDULED_FORM = "scheduled-form"
LIBRARY_IMPORT = "library-import"
SECRET_FORM = "secret-form"
USER_FORM = "user-form"
CHANGE_PASSWORD = "change-password"
CONFIRM = "confirm"


class ModalState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class Modal:
    def __init__(self, name: str, blocking: bool = True) -> None:
        self.name = name
        self.blocking = blocking
        self.state = ModalState.CLOSED
        self.payload: dict[str, Any] = {}

    @property
    def is_open(self) -> bool:
        return self.state == ModalState.OPEN

    def open(self, **payload: Any) -> None:
        self.payload = payload
        self.state = ModalState.OPEN

    def resolve(self, outcome: ModalState) -> None:
        if self.state != ModalState.OPEN:
            return
        self.state = outcome

    def close(self) -> None:
        self.state = ModalState.CLOSED
        self.payload = {}


class ConfirmDialog(Modal):
    """Generic confirm, rebound on every open.

    Opening detaches whatever handler the previous invocation left behind,
    so a stale or duplicate action can never run.
    """

    def __init__(self) -> None:
        super().__init__(CONFIRM, blocking=True)
        self.title = ""
        self.message = ""
        self._handler: ConfirmHandler | None = None

    @property
    def bound(self) -> bool:
        return self._handler is not None

    def ask(self, title: str, message: str, on_confirm: ConfirmHandler) -> None:
        self.title = title
        self.message = message
        self._handler = on_confirm  # replaces, never stacks
        self.open(title=title, message=message)

    async def accept(self) -> Any:
        if not self.is_open or self._handler is None:
            return None
        handler, self._handler = self._handler, None
        self.resolve(ModalState.CONFIRMED)
        try:
            result = handler()
            if inspect.isawaitable(result):
                result = await result
            return result
        finally:
            self.close()

    def dismiss(self) -> None:
        self._handler = None
        self.resolve(ModalState.CANCELLED)
        self.close()


class ToastQueue:
    """Creation-ordered, auto-expiring notifications."""

    def __init__(self, duration: float = 3.0, clock: Callable[[], float] = time.monotonic, bus: EventBus | None = None) -> None:
        self.duration = duration
        self._clock = clock
        self._bus = bus
        self._toasts: list[Toast] = []
        self._ids = itertools.count(1)

    def push(self, message: str, level: ToastLevel = ToastLevel.SUCCESS) -> Toast:
        toast = Toast(id=next(self._ids), message=message, level=level, created_at=self._clock())
        self._toasts.append(toast)
        if level == ToastLevel.ERROR:
            logger.info("Toast (error): %s", message)
        if self._bus is not None:
            self._bus.publish(
                "toast", None, id=toast.id, message=message, level=level.value, duration=self.duration,
            )
        return toast

    def success(self, message: str) -> Toast:
        return self.push(message, ToastLevel.SUCCESS)

    def error(self, message: str) -> Toast:
        return self.push(message, ToastLevel.ERROR)

    def info(self, message: str) -> Toast:
        return self.push(message, ToastLevel.INFO)

    def expire(self) -> list[Toast]:
        now = self._clock()
        expired = [t for t in self._toasts if now - t.created_at >= self.duration]
        if expired:
            self._toasts = [t for t in self._toasts if now - t.created_at < self.duration]
            if self._bus is not None:
                for t in expired:
                    self._bus.publish("toast.expired", None, id=t.id)
        return expired

    def visible(self) -> list[Toast]:
        self.expire()
        return sorted(self._toasts, key=lambda t: (t.created_at, t.id))

    def dismiss(self, toast_id: int) -> None:
        self._toasts = [t for t in self._toasts if t.id != toast_id]


class DropdownGroup:
    """Per-row action menus; at most one open."""

    def __init__(self) -> None:
        self._open: str | None = None

    @property
    def open_id(self) -> str | None:
        return self._open

    def toggle(self, row_id: str) -> bool:
        self._open = None if self._open == row_id else row_id
        return self._open == row_id

    def is_open(self, row_id: str) -> bool:
        return self._open == row_id

    def close_all(self) -> None:
        self._open = None

    def outside_click(self) -> None:
        self.close_all()


class UiState:
    def __init__(self, toast_duration: float = 3.0, clock: Callable[[], float] = time.monotonic, bus: EventBus | None = None) -> None:
        self.confirm = ConfirmDialog()
        self.toasts = ToastQueue(toast_duration, clock=clock, bus=bus)
        self.dropdowns = DropdownGroup()
        self._modals: dict[str, Modal] = {CONFIRM: self.confirm}

    def modal(self, name: str) -> Modal:
        if name not in self._modals:
            self._modals[name] = Modal(name)
        return self._modals[name]

    def open_modals(self) -> list[str]:
        return [name for name, m in self._modals.items() if m.is_open]

    def has_blocking_modal(self) -> bool:
        return any(m.is_open and m.blocking for m in self._modals.values())

    def close_all(self) -> None:
        self.confirm.dismiss()
        for m in self._modals.values():
            m.close()
        self.dropdowns.close_all()

    def snapshot(self) -> dict:
        return {
            "modals": {name: {"state": m.state.value, "payload": m.payload} for name, m in self._modals.items()},
            "confirm": {"open": self.confirm.is_open, "title": self.confirm.title, "message": self.confirm.message},
            "toasts": [t.model_dump() for t in self.toasts.visible()],
            "dropdown": self.dropdowns.open_id,
        }
