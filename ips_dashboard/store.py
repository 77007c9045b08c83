"""Collection Store: cached page + pagination/filter state + fetch-and-reconcile"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any, Generic, TypeVar

from ips_dashboard.errors import AuthError, DashboardError, ValidationError
from ips_dashboard.events import EventBus
from ips_dashboard.models import Filter, Page, Pagination
from ips_dashboard.selection import ItemId, Selection

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Resource(Generic[T]):
    """How one resource kind is fetched, identified and filtered locally."""

    def __init__(
        self,
        name: str,
        fetch: Callable[[Pagination, Filter], Awaitable[Page[T]]],
        id_of: Callable[[T], ItemId],
        matches: Callable[[T, Filter], bool] | None = None,
    ) -> None:
        self.name = name
        self.fetch = fetch
        self.id_of = id_of
        self.matches = matches or (lambda item, flt: True)


class CollectionStore(Generic[T]):
    """Mutable view of one server-owned collection.

    Every refresh is tagged with an increasing sequence number. A response is
    applied only when it is newer than the last applied one, so a slow stale
    response can never overwrite fresher data. Once closed, the store drops
    every late completion.
    """

    def __init__(self, resource: Resource[T], *, page_size: int = 10, bus: EventBus | None = None) -> None:
        self.resource = resource
        self.view = resource.name
        self.items: list[T] = []
        self.pagination = Pagination(page_size=page_size)
        self.filter = Filter()
        self.selection = Selection()
        self.loading = False
        self.loaded = False
        self.error: str | None = None
        self._bus = bus
        self._issued_seq = 0
        self._applied_seq = 0
        self._closed = False

    # ── Derived ──

    @property
    def visible(self) -> list[T]:
        """Current page after the client-side predicates (page-local only)."""
        return [i for i in self.items if self.resource.matches(i, self.filter)]

    def visible_ids(self) -> list[ItemId]:
        return [self.resource.id_of(i) for i in self.visible]

    def get(self, item_id: ItemId) -> T | None:
        for item in self.items:
            if self.resource.id_of(item) == item_id:
                return item
        return None

    @property
    def closed(self) -> bool:
        return self._closed

    # ── Refresh ──

    def _is_stale(self, seq: int) -> bool:
        return self._closed or seq <= self._applied_seq

    async def refresh(self, silent: bool = False) -> bool:
        """Fetch the current page and replace items/total atomically.

        Returns True when this call's response was applied. Silent refreshes
        never touch visible state before data arrives and only log failures.
        """
        if self._closed:
            return False
        self._issued_seq += 1
        seq = self._issued_seq
        if not silent:
            self.loading = True
            self.error = None
            self._publish("collection.loading")

        pagination = self.pagination.model_copy()
        flt = self.filter.model_copy()
        try:
            page = await self.resource.fetch(pagination, flt)
        except AuthError:
            self.loading = False
            raise
        except DashboardError as exc:
            if self._is_stale(seq):
                logger.debug("Dropping stale %s failure (seq %d)", self.view, seq)
                return False
            if silent:
                logger.warning("Silent refresh of %s failed: %s", self.view, exc)
                return False
            self.loading = False
            self.error = exc.message
            self._publish("collection.error", message=exc.message)
            raise

        if self._is_stale(seq):
            logger.debug("Dropping stale %s response (seq %d <= %d)", self.view, seq, self._applied_seq)
            return False
        self._apply(seq, page)

        # rows deleted under us can leave the page past the end
        if not self.items and self.pagination.total > 0 and self.pagination.page > self.pagination.page_count:
            self.pagination.page = self.pagination.page_count
            return await self.refresh(silent=silent)
        return True

    def _apply(self, seq: int, page: Page[T]) -> None:
        self._applied_seq = seq
        self.items = list(page.items)
        self.pagination.total = page.total
        self.loading = False
        self.loaded = True
        self.error = None
        dropped = self.selection.apply_refresh(self.resource.id_of(i) for i in self.items)
        if dropped:
            logger.debug("Dropped %d stale selections from %s", len(dropped), self.view)
        self._publish("collection.refreshed", total=page.total, count=len(self.items), dropped=[str(d) for d in dropped])

    # ── Pagination / filter ──

    async def next_page(self) -> bool:
        if not self.pagination.has_next:
            return False
        self.pagination.page += 1
        await self.refresh()
        return True

    async def prev_page(self) -> bool:
        if not self.pagination.has_prev:
            return False
        self.pagination.page -= 1
        await self.refresh()
        return True

    async def set_page_size(self, size: int) -> None:
        if size < 1:
            raise ValidationError("Page size must be at least 1", field="pageSize")
        self.pagination.page_size = size
        self.pagination.page = 1
        await self.refresh()

    async def update_filter(self, **changes: Any) -> None:
        unknown = set(changes) - set(Filter.model_fields)
        if unknown:
            raise ValidationError(f"Unknown filter field(s): {', '.join(sorted(unknown))}")
        self.filter = Filter.model_validate({**self.filter.model_dump(), **changes})
        self.pagination.page = 1
        await self.refresh()

    async def set_search(self, text: str) -> None:
        await self.update_filter(search=text.strip())

    # ── Lifecycle ──

    def close(self) -> None:
        self._closed = True
        self.selection.clear()

    def snapshot(self) -> dict:
        visible = self.visible
        visible_ids = [self.resource.id_of(i) for i in visible]
        p = self.pagination
        return {
            "view": self.view,
            "items": [_wire(i) for i in visible],
            "pagination": {
                "page": p.page,
                "pageSize": p.page_size,
                "total": p.total,
                "rangeStart": p.range_start,
                "rangeEnd": p.range_end,
                "hasPrev": p.has_prev,
                "hasNext": p.has_next,
            },
            "filter": self.filter.model_dump(mode="json"),
            "selection": {
                "ids": self.selection.ids(),
                "count": self.selection.count(),
                "allSelected": self.selection.is_all_selected(visible_ids),
                "indeterminate": self.selection.is_indeterminate(visible_ids),
            },
            "loading": self.loading,
            "loaded": self.loaded,
            "error": self.error,
        }

    def _publish(self, kind: str, **data: Any) -> None:
        if self._bus is not None:
            self._bus.publish(kind, self.view, **data)


def _wire(item: Any) -> Any:
    to_wire = getattr(item, "to_wire", None)
    return to_wire() if to_wire else item
