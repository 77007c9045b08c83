"""Batch Action Executor: sequential mutations over a selected set"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from ips_dashboard.errors import AuthError, DashboardError
from ips_dashboard.selection import ItemId
from ips_dashboard.store import CollectionStore

logger = logging.getLogger(__name__)

Mutation = Callable[[Any], Awaitable[Any]]


class BatchAction(str, Enum):
    DELETE = "delete"
    CANCEL = "cancel"
    IMPORT = "import"


class BatchResult(BaseModel):
    action: BatchAction
    succeeded: int = 0
    failed: int = 0
    errors: dict[str, str] = Field(default_factory=dict)  # str(id) -> message

    @property
    def attempted(self) -> int:
        return self.succeeded + self.failed


class BatchExecutor:
    """Applies one mutation per id, strictly one request in flight at a time.

    The backend serialises writes per store; parallel deletes were seen to
    hit lock contention, so requests are awaited one after another. A failing
    item is recorded and the batch moves on. AuthError ends the batch since
    the session is already gone.
    """

    def __init__(self, mutations: dict[BatchAction, Mutation]) -> None:
        self._mutations = mutations

    def supports(self, action: BatchAction) -> bool:
        return action in self._mutations

    async def execute_batch(self, ids: Iterable[ItemId], action: BatchAction) -> BatchResult:
        mutate = self._mutations.get(action)
        if mutate is None:
            raise ValueError(f"Unsupported batch action: {action.value}")
        result = BatchResult(action=action)
        for item_id in list(ids):
            try:
                await mutate(item_id)
            except AuthError:
                raise
            except DashboardError as exc:
                result.failed += 1
                result.errors[str(item_id)] = exc.message
                logger.warning("Batch %s failed for %s: %s", action.value, item_id, exc)
            else:
                result.succeeded += 1
        logger.info("Batch %s done: %d ok, %d failed", action.value, result.succeeded, result.failed)
        return result


_VERBS = {BatchAction.DELETE: "deleted", BatchAction.CANCEL: "cancelled", BatchAction.IMPORT: "added"}


def summarize(result: BatchResult, noun: str = "item") -> str:
    """One toast line for the whole batch."""
    verb = _VERBS[result.action]
    if result.failed == 0:
        return f"{result.succeeded} {noun}(s) {verb}"
    return f"{result.succeeded} {noun}(s) {verb}, {result.failed} failed"


async def run_selected(executor: BatchExecutor, store: CollectionStore, action: BatchAction) -> BatchResult:
    """Batch over a store's selection, then clear it and refresh whatever happened."""
    ids = store.selection.ids()
    try:
        return await executor.execute_batch(ids, action)
    finally:
        store.selection.clear()
        if not store.closed:
            try:
                await store.refresh()
            except DashboardError as exc:
                logger.warning("Refresh after batch %s failed: %s", action.value, exc)
