"""Billing state synchronizer keeping per-team snapshots fresh enough.

Reads are served from the cache while inside the re-use window. Refreshes are
single-flight per team. When the authority fails, the last known snapshot is
served marked ``stale`` until it is older than the staleness bound; after that,
or when nothing was ever fetched, :class:`BillingUnavailable` is raised and
callers treat billing as not yet determined.
"""

from __future__ import annotations

import logging
import weakref
from collections import defaultdict
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from threading import Lock, RLock
from typing import Callable, Iterable, Protocol

from tenancy_schemas import BillingUpdated

from .authority import BillingAuthority
from .snapshot_cache import SnapshotEntry
from ..domain.billing import BillingSnapshot, SubscriptionStatus
from ..domain.errors import BillingUnavailable
from ..metrics import SNAPSHOT_READS

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[str, BillingSnapshot], None]

FOUNDER_SEAT_COUNT = 999


class SnapshotCache(Protocol):
    def get(self, team_id: str) -> SnapshotEntry | None: ...

    def set(self, team_id: str, entry: SnapshotEntry) -> None: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BillingStateSynchronizer:
    """Serve per-team billing snapshots from cache, refreshing on demand."""

    def __init__(
        self,
        authority: BillingAuthority,
        cache: SnapshotCache,
        *,
        reuse_window_seconds: int,
        max_staleness_seconds: int,
        founder_team_ids: Iterable[str] = (),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._authority = authority
        self._cache = cache
        self._reuse_window = timedelta(seconds=reuse_window_seconds)
        self._max_staleness = timedelta(seconds=max_staleness_seconds)
        self._founder_team_ids = frozenset(founder_team_ids)
        self._clock = clock
        self._team_locks: weakref.WeakValueDictionary[str, RLock] = weakref.WeakValueDictionary()
        self._locks_guard = Lock()
        self._listeners: defaultdict[str, list[SnapshotListener]] = defaultdict(list)
        self._listeners_guard = Lock()

    def get_billing_snapshot(self, team_id: str) -> BillingSnapshot:
        """Return the latest usable snapshot for ``team_id``.

        Raises
        ------
        BillingUnavailable
            Nothing was ever fetched for the team, or the last known snapshot
            exceeded the staleness bound while the authority is failing.
        """
        if team_id in self._founder_team_ids:
            SNAPSHOT_READS.labels(source="founder").inc()
            return BillingSnapshot(
                status=SubscriptionStatus.active,
                seat_count=FOUNDER_SEAT_COUNT,
                active_member_count=0,
                fetched_at=self._clock(),
            )

        entry = self._cache.get(team_id)
        if self._reusable(entry):
            SNAPSHOT_READS.labels(source="cached").inc()
            return entry.snapshot

        with self._lock_for(team_id):
            # another request may have refreshed while we waited
            entry = self._cache.get(team_id)
            if self._reusable(entry):
                SNAPSHOT_READS.labels(source="cached").inc()
                return entry.snapshot
            return self._refresh(team_id, entry)

    def apply_update(self, event: BillingUpdated) -> BillingSnapshot | None:
        """Merge a pushed billing update onto the last known snapshot.

        Returns ``None`` without storing anything when the event occurred
        before the state already known for the team.
        """
        with self._lock_for(event.team_id):
            entry = self._cache.get(event.team_id)
            previous = entry.snapshot if entry else None
            if (
                previous is not None
                and event.occurred_at is not None
                and event.occurred_at < previous.state_time
            ):
                logger.info(
                    "ignoring billing update for team %s from %s, state known as of %s",
                    event.team_id,
                    event.occurred_at.isoformat(),
                    previous.state_time.isoformat(),
                )
                return None
            now = self._clock()
            status = (
                SubscriptionStatus.parse(event.subscription_status)
                if event.subscription_status is not None
                else (previous.status if previous else None)
            )
            snapshot = BillingSnapshot(
                status=status,
                seat_count=_pick(event.seat_count, previous.seat_count if previous else 0),
                active_member_count=_pick(
                    event.active_member_count, previous.active_member_count if previous else 0
                ),
                fetched_at=now,
                as_of=event.occurred_at or now,
            )
            self._store(event.team_id, snapshot)
        logger.info(
            "billing update applied for team %s: status=%s seats=%d members=%d",
            event.team_id,
            status.value if status else None,
            snapshot.seat_count,
            snapshot.active_member_count,
        )
        return snapshot

    def subscribe(self, team_id: str, listener: SnapshotListener) -> Callable[[], None]:
        """Register ``listener`` for snapshots stored for ``team_id``.

        Returns a callable that removes the registration.
        """
        with self._listeners_guard:
            self._listeners[team_id].append(listener)

        def unsubscribe() -> None:
            with self._listeners_guard:
                listeners = self._listeners.get(team_id, [])
                if listener in listeners:
                    listeners.remove(listener)
                if not listeners:
                    self._listeners.pop(team_id, None)

        return unsubscribe

    def _refresh(self, team_id: str, entry: SnapshotEntry | None) -> BillingSnapshot:
        try:
            snapshot = self._authority.fetch(team_id)
        except BillingUnavailable as exc:
            return self._serve_stale(team_id, entry, exc)
        SNAPSHOT_READS.labels(source="fetched").inc()
        self._store(team_id, snapshot)
        return snapshot

    def _serve_stale(
        self, team_id: str, entry: SnapshotEntry | None, exc: BillingUnavailable
    ) -> BillingSnapshot:
        now = self._clock()
        if entry is None:
            SNAPSHOT_READS.labels(source="unavailable").inc()
            logger.warning("billing state for team %s never fetched and authority failed: %s", team_id, exc)
            raise BillingUnavailable(f"no billing snapshot known for team {team_id}") from exc
        if now - entry.snapshot.fetched_at > self._max_staleness:
            SNAPSHOT_READS.labels(source="unavailable").inc()
            logger.warning(
                "billing snapshot for team %s is older than %s and authority failed: %s",
                team_id,
                self._max_staleness,
                exc,
            )
            raise BillingUnavailable(f"billing snapshot for team {team_id} too stale") from exc

        SNAPSHOT_READS.labels(source="stale").inc()
        logger.warning("serving stale billing snapshot for team %s: %s", team_id, exc)
        snapshot = entry.snapshot if entry.snapshot.stale else replace(entry.snapshot, stale=True)
        self._store(team_id, snapshot)
        return snapshot

    def _store(self, team_id: str, snapshot: BillingSnapshot) -> None:
        self._cache.set(team_id, SnapshotEntry(snapshot=snapshot, checked_at=self._clock()))
        with self._listeners_guard:
            listeners = list(self._listeners.get(team_id, ()))
        for listener in listeners:
            listener(team_id, snapshot)

    def _reusable(self, entry: SnapshotEntry | None) -> bool:
        if entry is None:
            return False
        now = self._clock()
        if entry.snapshot.stale and now - entry.snapshot.fetched_at > self._max_staleness:
            return False
        return now - entry.checked_at < self._reuse_window

    def _lock_for(self, team_id: str) -> RLock:
        # locks live only while some caller holds them
        with self._locks_guard:
            lock = self._team_locks.get(team_id)
            if lock is None:
                lock = RLock()
                self._team_locks[team_id] = lock
            return lock


def _pick(value: int | None, fallback: int) -> int:
    return fallback if value is None else value
