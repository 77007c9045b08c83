"""Polling Scheduler: one repeating silent refresh, retargeted per view"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from ips_dashboard.errors import AuthError

logger = logging.getLogger(__name__)


class Refreshable(Protocol):
    async def refresh(self, silent: bool = False) -> Any: ...


class Poller:
    """Single timer per shell. Ticks are skipped while a blocking modal is open."""

    def __init__(self, interval: float = 5.0, is_blocked: Callable[[], bool] | None = None) -> None:
        self.interval = interval
        self._is_blocked = is_blocked or (lambda: False)
        self._target: Refreshable | None = None
        self._loop_task: asyncio.Task | None = None
        self._stop_requested = False
        self.ticks = 0
        self.skipped = 0

    @property
    def target(self) -> Refreshable | None:
        return self._target

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def retarget(self, target: Refreshable | None) -> None:
        self._target = target

    # ── Loop Control ──

    def start(self) -> None:
        if self.running:
            return
        self._stop_requested = False
        self._loop_task = asyncio.create_task(self._run_loop())
        logger.debug("Poller started (every %.1fs)", self.interval)

    async def stop(self) -> None:
        self._stop_requested = True
        task = self._loop_task
        self._loop_task = None
        if task is None or task.done():
            return
        if task is asyncio.current_task():
            # stopped from inside a tick (e.g. 401 -> logout); the loop exits on its own
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug("Poller stopped")

    async def tick(self) -> bool:
        """Run one silent refresh. Returns False when skipped."""
        target = self._target
        if target is None:
            return False
        if self._is_blocked():
            self.skipped += 1
            return False
        self.ticks += 1
        try:
            await target.refresh(silent=True)
        except AuthError:
            logger.info("Poll stopped by authentication failure")
        except Exception:
            logger.exception("Poll tick failed")
        return True

    async def _run_loop(self) -> None:
        try:
            while not self._stop_requested:
                await asyncio.sleep(self.interval)
                if self._stop_requested:
                    break
                await self.tick()
        except asyncio.CancelledError:
            pass


class Debouncer:
    """Run only the last call made within `delay` seconds (search-as-you-type)."""

    def __init__(self, delay: float = 0.3) -> None:
        self.delay = delay
        self._pending: asyncio.Task | None = None

    def call(self, fn: Callable[..., Awaitable[Any]], *args: Any) -> asyncio.Task:
        self.cancel()
        self._pending = asyncio.create_task(self._later(fn, *args))
        return self._pending

    def cancel(self) -> None:
        if self._pending and not self._pending.done():
            self._pending.cancel()
        self._pending = None

    async def _later(self, fn: Callable[..., Awaitable[Any]], *args: Any) -> None:
        await asyncio.sleep(self.delay)
        try:
            await fn(*args)
        except Exception:
            logger.exception("Debounced call failed")
