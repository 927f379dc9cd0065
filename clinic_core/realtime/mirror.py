# clinic_core/realtime/mirror.py
"""
Client-side mirror of the live queue and encounters.

Rows are stored in a flat arena (list of slots) addressed through an index
`(table, id) -> slot`. A snapshot fills the arena; change events patch it one
row at a time instead of reloading everything. Freed slots are reused.

Delivery is at-least-once, so an event whose row_version is not newer than the
one already held is ignored. `seq` only orders events; the mirror does not
check it for gaps. After a subscription overflow or a reconnect that cannot
resume from `cursor`, call `load_snapshot` again.
"""
from __future__ import annotations

from typing import Any, Iterator, Mapping, Optional

DELETE = "delete"


class ResyncRequired(Exception):
    """The event stream can no longer be trusted; reload a snapshot."""


class RealtimeMirror:
    def __init__(self, tables: tuple[str, ...] = ("patient_queue", "encounters")):
        self.tables = tables
        self._arena: list[Optional[dict[str, Any]]] = []
        self._versions: list[int] = []
        self._index: dict[tuple[str, str], int] = {}
        self._free: list[int] = []
        self.cursor: int = 0
        self.stale = True

    # -------------------------
    # Arena plumbing
    # -------------------------
    def _alloc(self, row: dict[str, Any], version: int) -> int:
        if self._free:
            slot = self._free.pop()
            self._arena[slot] = row
            self._versions[slot] = version
            return slot
        self._arena.append(row)
        self._versions.append(version)
        return len(self._arena) - 1

    def _release(self, slot: int) -> None:
        self._arena[slot] = None
        self._versions[slot] = 0
        self._free.append(slot)

    def _clear(self) -> None:
        self._arena.clear()
        self._versions.clear()
        self._index.clear()
        self._free.clear()

    # -------------------------
    # Public API
    # -------------------------
    def load_snapshot(self, payload: Mapping[str, Any]) -> None:
        self._clear()
        for table in self.tables:
            for row in payload.get(table, []):
                key = (table, str(row["id"]))
                self._index[key] = self._alloc(dict(row), int(row.get("version") or 1))
        self.cursor = int(payload.get("cursor") or 0)
        self.stale = False

    def apply(self, event: Mapping[str, Any]) -> bool:
        """
        Apply one change event. Returns True if the mirror changed.
        """
        if self.stale:
            raise ResyncRequired("Mirror has no snapshot loaded.")

        table = event["table"]
        seq = event.get("seq")
        if seq is not None and int(seq) > self.cursor:
            self.cursor = int(seq)

        if table not in self.tables:
            return False

        row = event.get("row") or {}
        row_id = str(event.get("row_id") or row.get("id"))
        version = int(event.get("row_version") or row.get("version") or 1)
        key = (table, row_id)
        slot = self._index.get(key)

        if slot is not None and version <= self._versions[slot]:
            return False

        if event["op"] == DELETE:
            if slot is None:
                return False
            del self._index[key]
            self._release(slot)
            return True

        if slot is None:
            self._index[key] = self._alloc(dict(row), version)
        else:
            self._arena[slot] = dict(row)
            self._versions[slot] = version
        return True

    def apply_many(self, events) -> int:
        return sum(1 for e in events if self.apply(e))

    def invalidate(self) -> None:
        """Mark the mirror stale (e.g. the subscription overflowed)."""
        self.stale = True

    def get(self, table: str, row_id) -> Optional[dict[str, Any]]:
        slot = self._index.get((table, str(row_id)))
        return None if slot is None else self._arena[slot]

    def rows(self, table: str) -> Iterator[dict[str, Any]]:
        for (t, _), slot in self._index.items():
            if t == table:
                yield self._arena[slot]

    def __len__(self) -> int:
        return len(self._index)

    def __contains__(self, key: tuple[str, Any]) -> bool:
        table, row_id = key
        return (table, str(row_id)) in self._index
