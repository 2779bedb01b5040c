"""Tests for the Redis-backed billing snapshot cache."""

from __future__ import annotations

from datetime import datetime, timezone

import fakeredis
import pytest

from fakes import FakeBillingAuthority, FakeClock
from tenancy.billing.redis_snapshot_cache import RedisSnapshotCache
from tenancy.billing.snapshot_cache import SnapshotEntry
from tenancy.billing.synchronizer import BillingStateSynchronizer
from tenancy.domain.billing import BillingSnapshot, SubscriptionStatus
from tenancy.domain.errors import BillingUnavailable


@pytest.fixture()
def redis_client() -> fakeredis.FakeStrictRedis:
    client = fakeredis.FakeStrictRedis()
    client.flushall()
    return client


def test_redis_cache_round_trips_entry(redis_client):
    cache = RedisSnapshotCache(redis_client, ttl_seconds=900, key_prefix="test")
    fetched_at = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    entry = SnapshotEntry(
        snapshot=BillingSnapshot(
            status=SubscriptionStatus.trialing,
            seat_count=4,
            active_member_count=5,
            fetched_at=fetched_at,
            stale=True,
        ),
        checked_at=fetched_at,
    )

    cache.set("team-1", entry)

    assert cache.get("team-1") == entry
    assert cache.get("team-2") is None
    assert 0 < redis_client.ttl("test:team-1") <= 900


def test_redis_cache_keeps_absent_status(redis_client):
    cache = RedisSnapshotCache(redis_client, ttl_seconds=60)
    now = datetime.now(timezone.utc)
    cache.set(
        "team-1",
        SnapshotEntry(
            snapshot=BillingSnapshot(status=None, seat_count=0, active_member_count=0, fetched_at=now),
            checked_at=now,
        ),
    )

    assert cache.get("team-1").snapshot.status is None


def test_replicas_share_snapshots_through_redis(redis_client):
    clock = FakeClock()
    authority = FakeBillingAuthority(clock)
    authority.set_state("team-1", SubscriptionStatus.active, 2, 1)

    def replica() -> BillingStateSynchronizer:
        return BillingStateSynchronizer(
            authority,
            RedisSnapshotCache(redis_client, ttl_seconds=900),
            reuse_window_seconds=30,
            max_staleness_seconds=900,
            clock=clock,
        )

    first = replica().get_billing_snapshot("team-1")
    second = replica().get_billing_snapshot("team-1")

    assert first == second
    assert authority.calls == 1


def test_unreachable_redis_reads_as_miss_and_drops_writes():
    server = fakeredis.FakeServer()
    server.connected = False
    cache = RedisSnapshotCache(fakeredis.FakeStrictRedis(server=server), ttl_seconds=900)
    now = datetime.now(timezone.utc)
    entry = SnapshotEntry(
        snapshot=BillingSnapshot(
            status=SubscriptionStatus.active, seat_count=1, active_member_count=1, fetched_at=now
        ),
        checked_at=now,
    )

    cache.set("team-1", entry)

    assert cache.get("team-1") is None


def test_redis_outage_leaves_billing_undetermined_when_authority_fails():
    server = fakeredis.FakeServer()
    server.connected = False
    clock = FakeClock()
    authority = FakeBillingAuthority(clock)
    authority.failing = True
    synchronizer = BillingStateSynchronizer(
        authority,
        RedisSnapshotCache(fakeredis.FakeStrictRedis(server=server), ttl_seconds=900),
        reuse_window_seconds=30,
        max_staleness_seconds=900,
        clock=clock,
    )

    with pytest.raises(BillingUnavailable):
        synchronizer.get_billing_snapshot("team-1")


def test_redis_cache_keeps_event_time(redis_client):
    cache = RedisSnapshotCache(redis_client, ttl_seconds=60)
    now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    occurred_at = datetime(2026, 3, 1, 11, 58, tzinfo=timezone.utc)
    entry = SnapshotEntry(
        snapshot=BillingSnapshot(
            status=SubscriptionStatus.past_due,
            seat_count=2,
            active_member_count=2,
            fetched_at=now,
            as_of=occurred_at,
        ),
        checked_at=now,
    )

    cache.set("team-1", entry)

    assert cache.get("team-1").snapshot.state_time == occurred_at
