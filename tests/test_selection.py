"""Selection manager tests"""

from __future__ import annotations

from ips_dashboard.selection import Selection, reconcile


def test_reconcile_is_pure_and_ordered():
    selected = ["c", "a", "b"]
    assert reconcile(selected, ["a", "c", "z"]) == ["c", "a"]
    assert selected == ["c", "a", "b"]
    assert reconcile([], ["a"]) == []


def test_toggle():
    sel = Selection()
    assert sel.toggle(1) is True
    assert sel.has(1)
    assert sel.toggle(1) is False
    assert sel.count() == 0


def test_select_all_visible_only():
    sel = Selection()
    sel.toggle("other-page")
    sel.select_all(["a", "b"])
    assert sel.ids() == ["other-page", "a", "b"]
    assert sel.is_all_selected(["a", "b"])
    # second press deselects the visible rows, leaves the rest
    sel.select_all(["a", "b"])
    assert sel.ids() == ["other-page"]


def test_select_all_from_partial_selects_everything():
    sel = Selection()
    sel.toggle("a")
    assert sel.is_indeterminate(["a", "b"])
    sel.select_all(["a", "b"])
    assert sel.is_all_selected(["a", "b"])
    assert not sel.is_indeterminate(["a", "b"])


def test_select_all_on_empty_page_is_noop():
    sel = Selection()
    sel.select_all([])
    assert sel.count() == 0
    assert not sel.is_all_selected([])


def test_apply_refresh_returns_dropped():
    sel = Selection()
    for i in (3, 1, 2):
        sel.toggle(i)
    dropped = sel.apply_refresh([1, 3, 9])
    assert dropped == [2]
    assert sel.ids() == [3, 1]
