from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Hashable

from .constants import DEFAULT_USERNAME_PREFIX, U_CONNECTED_AT, U_ID, U_IP, U_USERNAME
from .envelope import iso_ts

Handle = Hashable


@dataclass
class ConnectionRecord:
    """Per-connection state. ``id``, ``ip`` and ``connected_at`` never change."""

    id: int
    username: str
    ip: str
    connected_at: datetime
    alive: bool = True

    def to_user_entry(self) -> dict[str, Any]:
        return {
            U_ID: self.id,
            U_USERNAME: self.username,
            U_CONNECTED_AT: iso_ts(self.connected_at),
            U_IP: self.ip,
        }


class Registry:
    """
    Authoritative store of live connections.

    This class is responsible for:
    - Allocating client ids (strictly increasing from 1, never reused)
    - Mapping transport handles to ConnectionRecords
    - Id and username indexes for lookups
    - Point-in-time snapshots for listing

    None of the methods lock; callers must hold the service state lock.
    """

    def __init__(self, username_prefix: str = DEFAULT_USERNAME_PREFIX) -> None:
        self.log = logging.getLogger("wsrelayd.registry")
        self.username_prefix = username_prefix
        self._next_id = 1
        self._records: dict[Handle, ConnectionRecord] = {}
        self._index_by_id: dict[int, Handle] = {}
        self._index_by_name: dict[str, set[Handle]] = {}

    def register(self, handle: Handle, peer_address: str, now: datetime) -> int:
        client_id = self._next_id
        self._next_id += 1

        rec = ConnectionRecord(
            id=client_id,
            username=f"{self.username_prefix}{client_id}",
            ip=str(peer_address),
            connected_at=now,
        )
        self._records[handle] = rec
        self._index_by_id[client_id] = handle
        self._update_name_index(handle, None, rec.username)

        self.log.debug("Registered client_id=%s ip=%s", client_id, rec.ip)
        return client_id

    def unregister(self, handle: Handle) -> ConnectionRecord | None:
        """Remove ``handle``; returns the removed record, or None if already gone."""
        rec = self._records.pop(handle, None)
        if rec is None:
            return None

        self._index_by_id.pop(rec.id, None)
        self._update_name_index(handle, rec.username, None)
        return rec

    def rename(self, handle: Handle, new_username: str) -> str | None:
        """Set the display name; returns the previous one, or None if not registered."""
        rec = self._records.get(handle)
        if rec is None:
            return None

        old = rec.username
        rec.username = new_username
        self._update_name_index(handle, old, new_username)
        return old

    def mark_alive(self, handle: Handle, alive: bool = True) -> bool:
        rec = self._records.get(handle)
        if rec is None:
            return False
        rec.alive = alive
        return True

    def lookup_by_handle(self, handle: Handle) -> ConnectionRecord | None:
        return self._records.get(handle)

    def lookup_by_id(self, client_id: int) -> tuple[Handle, ConnectionRecord] | None:
        handle = self._index_by_id.get(client_id)
        if handle is None:
            return None
        rec = self._records.get(handle)
        if rec is None:
            return None
        return handle, rec

    def lookup_by_name(self, username: str) -> list[tuple[Handle, ConnectionRecord]]:
        """Case-insensitive display name lookup. Names are not unique."""
        handles = self._index_by_name.get(username.strip().lower(), set())
        found = [(h, self._records[h]) for h in handles if h in self._records]
        found.sort(key=lambda item: item[1].id)
        return found

    def items(self) -> list[tuple[Handle, ConnectionRecord]]:
        """Live (handle, record) pairs in registration order."""
        return list(self._records.items())

    def handles(self) -> list[Handle]:
        return list(self._records.keys())

    def snapshot(self) -> list[ConnectionRecord]:
        """Copies of all records in registration order."""
        return [replace(rec) for rec in self._records.values()]

    def size(self) -> int:
        return len(self._records)

    def __contains__(self, handle: Handle) -> bool:
        return handle in self._records

    def clear_all(self) -> list[Handle]:
        """Drop every record and return the handles for teardown."""
        handles = list(self._records.keys())
        self._records.clear()
        self._index_by_id.clear()
        self._index_by_name.clear()
        return handles

    def get_stats(self) -> dict[str, Any]:
        return {
            "total": len(self._records),
            "pending_check": sum(1 for r in self._records.values() if not r.alive),
            "next_id": self._next_id,
            "indexed_by_name": len(self._index_by_name),
        }

    def _update_name_index(
        self, handle: Handle, old_name: str | None, new_name: str | None
    ) -> None:
        if old_name:
            old_key = old_name.strip().lower()
            members = self._index_by_name.get(old_key)
            if members is not None:
                members.discard(handle)
                if not members:
                    self._index_by_name.pop(old_key, None)

        if new_name:
            new_key = new_name.strip().lower()
            self._index_by_name.setdefault(new_key, set()).add(handle)
