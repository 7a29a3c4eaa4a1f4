from __future__ import annotations

import dataclasses
import time
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Callable

MIN_INACTIVE_TTL_SEC = 30.0
DEFAULT_INACTIVE_TTL_SEC = 900.0


@dataclass
class RoomEntry:
    controller: Any
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    active: bool = True

    def idle_for(self, now: float) -> float:
        return now - self.updated_at


class SessionRegistry:
    """Interview rooms served by this process, keyed by session id."""

    def __init__(self):
        self._lock = Lock()
        self._rooms: dict[str, RoomEntry] = {}

    def register(self, session_id: str, controller) -> None:
        with self._lock:
            self._rooms[session_id] = RoomEntry(controller=controller)

    def touch(self, session_id: str) -> None:
        with self._lock:
            entry = self._rooms.get(session_id)
            if entry is not None:
                entry.updated_at = time.time()

    def mark_active(self, session_id: str) -> None:
        with self._lock:
            entry = self._rooms.get(session_id)
            if entry is not None:
                entry.active = True
                entry.updated_at = time.time()

    def mark_inactive(self, session_id: str) -> None:
        with self._lock:
            entry = self._rooms.get(session_id)
            if entry is not None:
                entry.active = False
                entry.updated_at = time.time()

    def get(self, session_id: str) -> RoomEntry | None:
        with self._lock:
            entry = self._rooms.get(session_id)
            return dataclasses.replace(entry) if entry is not None else None

    def get_controller(self, session_id: str):
        entry = self.get(session_id)
        return entry.controller if entry is not None else None

    def controllers(self) -> list:
        with self._lock:
            return [entry.controller for entry in self._rooms.values()]

    def active_count(self) -> int:
        with self._lock:
            return sum(1 for entry in self._rooms.values() if entry.active)

    def expire_unattended(self, ttl_sec: float, can_expire: Callable[[Any], bool]) -> int:
        """Mark active rooms idle for longer than ttl_sec inactive when can_expire(controller) allows."""
        window = max(MIN_INACTIVE_TTL_SEC, float(ttl_sec or DEFAULT_INACTIVE_TTL_SEC))
        now = time.time()
        expired = 0
        with self._lock:
            for entry in self._rooms.values():
                if entry.active and entry.idle_for(now) >= window and can_expire(entry.controller):
                    entry.active = False
                    entry.updated_at = now
                    expired += 1
        return expired

    def cleanup_inactive(self, ttl_sec: float) -> list:
        """Evict rooms closed for longer than ttl_sec; returns their controllers."""
        window = max(MIN_INACTIVE_TTL_SEC, float(ttl_sec or DEFAULT_INACTIVE_TTL_SEC))
        now = time.time()
        with self._lock:
            expired = [
                session_id
                for session_id, entry in self._rooms.items()
                if not entry.active and entry.idle_for(now) >= window
            ]
            return [self._rooms.pop(session_id).controller for session_id in expired]


session_registry = SessionRegistry()
