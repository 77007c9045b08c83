"""State-change event bus: rendering subscribes, engine publishes"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, Field

from ips_dashboard.models import _now_iso

logger = logging.getLogger(__name__)


class StateEvent(BaseModel):
    kind: str  # "collection.loading" | "collection.refreshed" | "collection.error" | "toast" | ...
    view: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: str = Field(default_factory=_now_iso)


class EventBus:
    def __init__(self, max_queue: int = 100) -> None:
        self._listeners: list[Callable[[StateEvent], None]] = []
        self._queues: set[asyncio.Queue[StateEvent]] = set()
        self._max_queue = max_queue

    def subscribe(self, listener: Callable[[StateEvent], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def open_queue(self) -> asyncio.Queue[StateEvent]:
        q: asyncio.Queue[StateEvent] = asyncio.Queue(maxsize=self._max_queue)
        self._queues.add(q)
        return q

    def close_queue(self, q: asyncio.Queue[StateEvent]) -> None:
        self._queues.discard(q)

    def publish(self, kind: str, view: str | None = None, **data: Any) -> StateEvent:
        event = StateEvent(kind=kind, view=view, data=data)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Event listener failed on %s", kind)
        for q in list(self._queues):
            if q.full():
                # slow subscriber: drop its oldest event
                q.get_nowait()
            q.put_nowait(event)
        return event
