"""Sort/filter controller separated from GalleryViewModel (SRP).

``apply_sort_filter`` is a pure function of the authoritative list and the UI
state; the projection it returns can be thrown away and re-derived at any time.
"""

from __future__ import annotations

import logging

from .domain import MediaItem, SortBy, UserGroup


def _newest_first(items):
    return sorted(items, key=lambda i: i.created_at, reverse=True)


def group_by_user(items: list[MediaItem]) -> list[UserGroup]:
    """Groups in first-seen order of the newest-first list, each newest-first.

    So the group of whoever posted most recently comes first.
    """
    order: list[str] = []
    buckets: dict[str, list[MediaItem]] = {}
    for item in _newest_first(items):
        if item.user_id not in buckets:
            order.append(item.user_id)
            buckets[item.user_id] = []
        buckets[item.user_id].append(item)
    return [UserGroup(uid, buckets[uid][0].display_name, tuple(buckets[uid])) for uid in order]


def apply_sort_filter(
    items: list[MediaItem],
    sort_by: SortBy = SortBy.NEWEST,
    only_mine: bool = False,
    principal_id: str | None = None,
) -> list[MediaItem]:
    out = list(items or [])
    if only_mine:
        out = [i for i in out if principal_id is not None and i.user_id == principal_id]

    if sort_by is SortBy.OLDEST:
        return sorted(out, key=lambda i: i.created_at)
    if sort_by is SortBy.MOST_LIKES:
        # Two stable passes: newest-first, then likes descending
        return sorted(_newest_first(out), key=lambda i: i.likes_count, reverse=True)
    if sort_by is SortBy.BY_USER:
        return [item for group in group_by_user(out) for item in group.items]
    return _newest_first(out)


class FilterController:
    def __init__(self, sort_by: SortBy = SortBy.NEWEST, only_mine: bool = False):
        self.sort_by: SortBy = sort_by
        self.only_mine: bool = only_mine

    def active(self) -> bool:
        return self.only_mine or self.sort_by is not SortBy.NEWEST

    def apply(self, items: list[MediaItem], principal_id: str | None) -> list[MediaItem]:
        out = apply_sort_filter(items, self.sort_by, self.only_mine, principal_id)
        logging.debug(
            "[filters] applied sort=%s only_mine=%s -> %d/%d",
            self.sort_by.value,
            self.only_mine,
            len(out),
            len(items or []),
        )
        return out

    def groups(self, items: list[MediaItem], principal_id: str | None) -> list[UserGroup]:
        if self.sort_by is not SortBy.BY_USER:
            return []
        return group_by_user(apply_sort_filter(items, SortBy.NEWEST, self.only_mine, principal_id))

    def set_sort(self, sort_by) -> bool:
        sort_by = SortBy(sort_by)
        if sort_by is self.sort_by:
            return False
        self.sort_by = sort_by
        return True

    def set_only_mine(self, only_mine: bool) -> bool:
        only_mine = bool(only_mine)
        if only_mine == self.only_mine:
            return False
        self.only_mine = only_mine
        return True

    def clear(self) -> bool:
        if not self.active():
            return False
        self.sort_by = SortBy.NEWEST
        self.only_mine = False
        return True


__all__ = ["FilterController", "apply_sort_filter", "group_by_user"]
