"""In-memory billing snapshot cache."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from threading import Lock

from ..domain.billing import BillingSnapshot


@dataclass(frozen=True, slots=True)
class SnapshotEntry:
    """Cached snapshot plus the last time the authority was consulted for it."""

    snapshot: BillingSnapshot
    checked_at: datetime


class InMemorySnapshotCache:
    """Thread-safe per-process snapshot cache."""

    def __init__(self) -> None:
        self._entries: dict[str, SnapshotEntry] = {}
        self._lock = Lock()

    def get(self, team_id: str) -> SnapshotEntry | None:
        with self._lock:
            return self._entries.get(team_id)

    def set(self, team_id: str, entry: SnapshotEntry) -> None:
        with self._lock:
            self._entries[team_id] = entry
