"""Display-name resolution for uploaders.

Uploader identity lives in three independently writable places (event row,
participation row, profile row) because row-level policies forbid a plain
join for every viewer. Names are resolved through a fixed priority chain so
one stale or hidden source does not blank the gallery:

1. event creator name stored on the event row
2. participation row snapshot for this event
3. profile table
4. privileged RPC lookup
5. the current session (metadata name, else email local-part)
6. ``User <id prefix>``
"""

from __future__ import annotations

import logging

from .backend import IdentityProvider, RowStore
from .constants import DISPLAY_NAME_PREFIX_LEN, DISPLAY_NAME_RPC, PARTICIPANTS_TABLE, PROFILE_TABLE
from .domain import EventContext


def synthetic_display_name(user_id: str) -> str:
    return f"User {str(user_id)[:DISPLAY_NAME_PREFIX_LEN]}"


def _clean(name) -> str:
    return name.strip() if isinstance(name, str) else ""


class IdentityResolver:
    def __init__(self, rows: RowStore, identity: IdentityProvider):
        self._rows = rows
        self._identity = identity

    async def resolve(self, user_id: str, event: EventContext) -> str:
        names = await self.resolve_many([user_id], event)
        return names[user_id]

    async def resolve_many(self, user_ids, event: EventContext) -> dict[str, str]:
        """Resolve every distinct id once. The result has an entry for each id."""
        pending: list[str] = []
        for uid in user_ids:
            if uid and uid not in pending:
                pending.append(uid)
        names: dict[str, str] = {}

        creator_name = _clean(event.creator_display_name)
        if creator_name and event.created_by in pending:
            names[event.created_by] = creator_name

        unresolved = [u for u in pending if u not in names]
        if unresolved:
            names.update(await self._from_table(
                PARTICIPANTS_TABLE, "user_id", unresolved, eq={"event_id": event.id}
            ))

        unresolved = [u for u in pending if u not in names]
        if unresolved:
            names.update(await self._from_table(PROFILE_TABLE, "id", unresolved))

        for uid in [u for u in pending if u not in names]:
            name = await self._from_rpc(uid)
            if name:
                names[uid] = name

        unresolved = [u for u in pending if u not in names]
        if unresolved:
            principal = self._identity.current_principal()
            if principal is not None and principal.id in unresolved:
                session_name = _clean(principal.display_name) or _clean((principal.email or "").split("@")[0])
                if session_name:
                    names[principal.id] = session_name

        for uid in pending:
            if uid not in names:
                names[uid] = synthetic_display_name(uid)
        logging.debug("[identity] resolved %d display names for event %s", len(names), event.id)
        return names

    async def _from_table(self, table: str, id_column: str, user_ids: list[str], eq=None) -> dict[str, str]:
        try:
            rows = await self._rows.select(
                table, eq=eq, in_={id_column: list(user_ids)}, columns=f"{id_column},display_name"
            )
        except Exception as e:
            logging.debug(f"[identity] {table} lookup failed, skipping source: {e}")
            return {}
        found: dict[str, str] = {}
        for row in rows or []:
            uid = str(row.get(id_column) or "")
            name = _clean(row.get("display_name"))
            if uid and name and uid not in found:
                found[uid] = name
        return found

    async def _from_rpc(self, user_id: str) -> str:
        try:
            result = await self._rows.rpc(DISPLAY_NAME_RPC, {"user_id": user_id})
        except Exception as e:
            logging.debug(f"[identity] {DISPLAY_NAME_RPC}({user_id}) failed: {e}")
            return ""
        # The function may return a bare string or a row-shaped payload
        if isinstance(result, list):
            result = result[0] if result else None
        if isinstance(result, dict):
            result = result.get("display_name")
        return _clean(result)
