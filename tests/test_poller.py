"""Polling scheduler + debouncer tests"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

from ips_dashboard.errors import AuthError
from ips_dashboard.poller import Debouncer, Poller


class Target:
    def __init__(self, error: Exception | None = None) -> None:
        self.calls: list[bool] = []
        self.error = error

    async def refresh(self, silent: bool = False) -> bool:
        self.calls.append(silent)
        if self.error:
            raise self.error
        return True


async def test_tick_refreshes_silently():
    target = Target()
    poller = Poller(interval=10)
    poller.retarget(target)
    assert await poller.tick()
    assert target.calls == [True]


async def test_tick_passes_silent_flag():
    target = AsyncMock()
    poller = Poller()
    poller.retarget(target)
    await poller.tick()
    target.refresh.assert_awaited_once_with(silent=True)


async def test_tick_skipped_while_blocked():
    blocked = True
    target = Target()
    poller = Poller(interval=10, is_blocked=lambda: blocked)
    poller.retarget(target)
    assert not await poller.tick()
    assert poller.skipped == 1
    blocked = False
    assert await poller.tick()
    assert target.calls == [True]


async def test_tick_without_target():
    assert not await Poller().tick()


async def test_tick_survives_errors():
    poller = Poller()
    poller.retarget(Target(AuthError("expired", session_expired=True)))
    assert await poller.tick()
    poller.retarget(Target(RuntimeError("boom")))
    assert await poller.tick()


async def test_retarget_moves_the_single_loop():
    a, b = Target(), Target()
    poller = Poller(interval=0.01)
    poller.retarget(a)
    poller.start()
    poller.start()  # idempotent
    await asyncio.sleep(0.05)
    poller.retarget(b)
    calls_a = len(a.calls)
    await asyncio.sleep(0.05)
    await poller.stop()
    assert calls_a > 0
    assert len(b.calls) > 0
    assert len(a.calls) <= calls_a + 1
    assert not poller.running


async def test_stop_halts_ticks():
    target = Target()
    poller = Poller(interval=0.01)
    poller.retarget(target)
    poller.start()
    await asyncio.sleep(0.03)
    await poller.stop()
    count = len(target.calls)
    await asyncio.sleep(0.03)
    assert len(target.calls) == count


async def test_debouncer_runs_last_call_only():
    seen = []

    async def search(text):
        seen.append(text)

    debouncer = Debouncer(delay=0.02)
    debouncer.call(search, "n")
    debouncer.call(search, "ng")
    last = debouncer.call(search, "nginx")
    await last
    assert seen == ["nginx"]


async def test_debouncer_cancel():
    seen = []

    async def search(text):
        seen.append(text)

    debouncer = Debouncer(delay=0.01)
    debouncer.call(search, "x")
    debouncer.cancel()
    await asyncio.sleep(0.03)
    assert seen == []
