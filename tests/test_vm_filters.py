from datetime import datetime, timedelta, timezone

import pytest

from event_gallery.domain import MediaItem, SortBy
from event_gallery.vm_filters import FilterController, apply_sort_filter, group_by_user

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _item(media_id, user_id, minute, likes=0):
    return MediaItem(
        id=media_id,
        event_id="evt-1",
        user_id=user_id,
        url=f"https://cdn.test/{media_id}.jpg",
        created_at=T0 + timedelta(minutes=minute),
        display_name=user_id.upper(),
        likes_count=likes,
    )


ITEMS = [
    _item("a", "u1", 1, likes=2),
    _item("b", "u2", 2, likes=5),
    _item("c", "u1", 3, likes=2),
    _item("d", "u3", 4, likes=0),
]


def _ids(items):
    return [i.id for i in items]


def test_sort_orders():
    assert _ids(apply_sort_filter(ITEMS, SortBy.NEWEST)) == ["d", "c", "b", "a"]
    assert _ids(apply_sort_filter(ITEMS, SortBy.OLDEST)) == ["a", "b", "c", "d"]
    # Ties on likes are broken newest first
    assert _ids(apply_sort_filter(ITEMS, SortBy.MOST_LIKES)) == ["b", "c", "a", "d"]
    assert _ids(apply_sort_filter(ITEMS, SortBy.BY_USER)) == ["d", "c", "a", "b"]


def test_only_mine():
    assert _ids(apply_sort_filter(ITEMS, SortBy.NEWEST, True, "u1")) == ["c", "a"]
    assert apply_sort_filter(ITEMS, SortBy.NEWEST, True, None) == []


def test_projection_is_pure():
    source = list(ITEMS)
    out = apply_sort_filter(source, SortBy.OLDEST, True, "u1")
    assert source == ITEMS
    assert out is not source
    assert apply_sort_filter(source, SortBy.OLDEST, True, "u1") == out


def test_group_by_user():
    groups = group_by_user(ITEMS)
    assert [g.user_id for g in groups] == ["u3", "u1", "u2"]
    assert _ids(groups[1].items) == ["c", "a"]
    assert groups[1].display_name == "U1"
    assert group_by_user([]) == []


def test_filter_controller_setters_report_changes():
    ctrl = FilterController()
    assert not ctrl.active()
    assert not ctrl.set_sort(SortBy.NEWEST)
    assert ctrl.set_sort("most_likes")
    assert ctrl.sort_by is SortBy.MOST_LIKES
    assert ctrl.set_only_mine(True)
    assert not ctrl.set_only_mine(True)
    assert ctrl.active()
    assert ctrl.clear()
    assert not ctrl.clear()

    with pytest.raises(ValueError):
        ctrl.set_sort("alphabetical")


def test_filter_controller_groups_only_when_grouping():
    ctrl = FilterController()
    assert ctrl.groups(ITEMS, "u1") == []
    ctrl.set_sort(SortBy.BY_USER)
    assert [g.user_id for g in ctrl.groups(ITEMS, "u1")] == ["u3", "u1", "u2"]
    ctrl.set_only_mine(True)
    assert [g.user_id for g in ctrl.groups(ITEMS, "u1")] == ["u1"]
    assert _ids(ctrl.apply(ITEMS, "u1")) == ["c", "a"]
