"""Selection Manager: identifier set per collection"""

from __future__ import annotations

from collections.abc import Hashable, Iterable

ItemId = Hashable


def reconcile(selected: Iterable[ItemId], fresh_ids: Iterable[ItemId]) -> list[ItemId]:
    """Drop every selected id that the latest fetch no longer returned.

    Pure: keeps the original selection order, never mutates its inputs.
    """
    fresh = set(fresh_ids)
    return [i for i in selected if i in fresh]


class Selection:
    # dict as an insertion-ordered set, so batches run in click order
    def __init__(self) -> None:
        self._ids: dict[ItemId, None] = {}

    def toggle(self, item_id: ItemId) -> bool:
        """Flip membership; returns the new state."""
        if item_id in self._ids:
            del self._ids[item_id]
            return False
        self._ids[item_id] = None
        return True

    def select_all(self, visible_ids: Iterable[ItemId]) -> None:
        """Tri-state toggle over the visible rows only.

        All visible already selected -> deselect them. Otherwise select every
        visible row. Selected rows on other pages are left alone either way.
        """
        visible = list(visible_ids)
        if not visible:
            return
        if all(i in self._ids for i in visible):
            for i in visible:
                self._ids.pop(i, None)
        else:
            for i in visible:
                self._ids.setdefault(i, None)

    def clear(self) -> None:
        self._ids.clear()

    def has(self, item_id: ItemId) -> bool:
        return item_id in self._ids

    def count(self) -> int:
        return len(self._ids)

    def ids(self) -> list[ItemId]:
        return list(self._ids)

    def is_all_selected(self, visible_ids: Iterable[ItemId]) -> bool:
        visible = list(visible_ids)
        return bool(visible) and all(i in self._ids for i in visible)

    def is_indeterminate(self, visible_ids: Iterable[ItemId]) -> bool:
        visible = list(visible_ids)
        hits = sum(1 for i in visible if i in self._ids)
        return 0 < hits < len(visible)

    def apply_refresh(self, fresh_ids: Iterable[ItemId]) -> list[ItemId]:
        """Reconcile in place after a refresh; returns the ids that were dropped."""
        kept = reconcile(self._ids, fresh_ids)
        kept_set = set(kept)
        dropped = [i for i in self._ids if i not in kept_set]
        self._ids = dict.fromkeys(kept)
        return dropped
