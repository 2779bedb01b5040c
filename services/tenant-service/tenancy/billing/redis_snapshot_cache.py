"""Redis-backed billing snapshot cache shared across service replicas."""

from __future__ import annotations

import json
import logging
from datetime import datetime

from redis import Redis
from redis.exceptions import RedisError

from .snapshot_cache import SnapshotEntry
from ..domain.billing import BillingSnapshot, SubscriptionStatus

logger = logging.getLogger(__name__)


class RedisSnapshotCache:
    """Snapshot cache stored as JSON strings keyed by team.

    Entries expire after ``ttl_seconds`` so that a snapshot older than the
    staleness bound is never served from Redis. While Redis is unreachable
    reads behave as misses and writes are dropped, leaving the billing
    authority as the only source.
    """

    def __init__(self, client: Redis, *, ttl_seconds: int, key_prefix: str = "billing-snapshot") -> None:
        self._client = client
        self._ttl_seconds = ttl_seconds
        self._key_prefix = key_prefix

    def _key(self, team_id: str) -> str:
        return f"{self._key_prefix}:{team_id}"

    def get(self, team_id: str) -> SnapshotEntry | None:
        try:
            raw = self._client.get(self._key(team_id))
        except RedisError as exc:
            logger.warning("snapshot cache read failed for team %s: %s", team_id, exc)
            return None
        if raw is None:
            return None
        data = json.loads(raw)
        as_of = data.get("as_of")
        snapshot = BillingSnapshot(
            status=SubscriptionStatus.parse(data["status"]),
            seat_count=int(data["seat_count"]),
            active_member_count=int(data["active_member_count"]),
            fetched_at=datetime.fromisoformat(data["fetched_at"]),
            stale=bool(data["stale"]),
            as_of=datetime.fromisoformat(as_of) if as_of else None,
        )
        return SnapshotEntry(snapshot=snapshot, checked_at=datetime.fromisoformat(data["checked_at"]))

    def set(self, team_id: str, entry: SnapshotEntry) -> None:
        snapshot = entry.snapshot
        payload = json.dumps(
            {
                "status": snapshot.status.value if snapshot.status else None,
                "seat_count": snapshot.seat_count,
                "active_member_count": snapshot.active_member_count,
                "fetched_at": snapshot.fetched_at.isoformat(),
                "stale": snapshot.stale,
                "as_of": snapshot.as_of.isoformat() if snapshot.as_of else None,
                "checked_at": entry.checked_at.isoformat(),
            }
        )
        try:
            self._client.set(self._key(team_id), payload, ex=self._ttl_seconds)
        except RedisError as exc:
            logger.warning("snapshot cache write failed for team %s: %s", team_id, exc)
