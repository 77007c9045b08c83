"""Dashboard overview: headline figures + most recent tasks"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from pydantic import BaseModel, Field

from ips_dashboard.errors import AuthError, DashboardError
from ips_dashboard.events import EventBus
from ips_dashboard.gateway import ApiGateway
from ips_dashboard.models import NodeStats, Task, TaskStatus, _parse_iso

logger = logging.getLogger(__name__)

VIEW = "dashboard"
STATS_SAMPLE = 1000  # tasks pulled to compute the figures
RECENT_COUNT = 5


class OverviewFigures(BaseModel):
    active_tasks: int = 0  # running + pending
    today_total: int = 0
    success_rate: int = 100  # percent of today's tasks that completed
    scheduled_total: int = 0
    scheduled_enabled: int = 0
    nodes: NodeStats | None = None  # None when /stats is unavailable
    recent: list[Task] = Field(default_factory=list)


def summarize_tasks(tasks: list[Task], today: datetime | None = None) -> tuple[int, int, int]:
    """(active, today_total, success_rate) for a sample of tasks."""
    day = (today or datetime.now(timezone.utc)).date()
    active = sum(1 for t in tasks if t.status in (TaskStatus.RUNNING, TaskStatus.PENDING))
    todays = [t for t in tasks if (created := _parse_iso(t.created_at)) is not None and created.date() == day]
    completed = sum(1 for t in todays if t.status == TaskStatus.COMPLETED)
    rate = round(completed / len(todays) * 100) if todays else 100
    return active, len(todays), rate


class Overview:
    def __init__(self, api: ApiGateway, bus: EventBus | None = None) -> None:
        self.api = api
        self.figures = OverviewFigures()
        self.loaded = False
        self._bus = bus
        self._issued_seq = 0
        self._applied_seq = 0
        self._closed = False

    async def refresh(self, silent: bool = False) -> bool:
        if self._closed:
            return False
        self._issued_seq += 1
        seq = self._issued_seq
        try:
            sample = await self.api.list_tasks(limit=STATS_SAMPLE, offset=0)
            scheduled = await self.api.list_scheduled_tasks(limit=STATS_SAMPLE, offset=0)
            recent = await self.api.list_tasks(limit=RECENT_COUNT, offset=0)
        except AuthError:
            raise
        except DashboardError as exc:
            if self._is_stale(seq):
                logger.debug("Dropping stale overview failure (seq %d): %s", seq, exc)
                return False
            if silent:
                logger.warning("Silent overview refresh failed: %s", exc)
                return False
            raise

        nodes: NodeStats | None
        try:
            nodes = (await self.api.stats()).nodes
        except AuthError:
            raise
        except DashboardError as exc:
            # cluster access is optional for the console
            logger.info("Node stats unavailable: %s", exc)
            nodes = None

        if self._is_stale(seq):
            return False
        self._applied_seq = seq
        active, today_total, rate = summarize_tasks(sample.items)
        self.figures = OverviewFigures(
            active_tasks=active,
            today_total=today_total,
            success_rate=rate,
            scheduled_total=scheduled.total or len(scheduled.items),
            scheduled_enabled=sum(1 for s in scheduled.items if s.enabled),
            nodes=nodes,
            recent=recent.items,
        )
        self.loaded = True
        if self._bus is not None:
            self._bus.publish("overview.refreshed", VIEW, active=active, success_rate=rate)
        return True

    def _is_stale(self, seq: int) -> bool:
        return self._closed or seq <= self._applied_seq

    def close(self) -> None:
        self._closed = True

    def snapshot(self) -> dict:
        data = self.figures.model_dump(mode="json", exclude={"recent"})
        data["recent"] = [t.to_wire() for t in self.figures.recent]
        data["loaded"] = self.loaded
        return data
