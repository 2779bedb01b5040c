from __future__ import annotations

from dataclasses import replace

from fastapi.testclient import TestClient

from tenancy.billing.snapshot_cache import InMemorySnapshotCache
from tenancy.config import get_settings
from tenancy.main import _build_snapshot_cache, app


def test_healthz_and_metrics_do_not_need_the_database():
    # no context manager: the lifespan (and its Postgres pool) is not started
    client = TestClient(app)

    assert client.get("/healthz").json() == {"status": "ok"}
    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert "tenancy_provisioning" in metrics.text


def test_snapshot_cache_defaults_to_memory():
    settings = replace(get_settings(), snapshot_cache_backend="memory")
    assert isinstance(_build_snapshot_cache(settings), InMemorySnapshotCache)


def test_redis_backend_without_url_falls_back_to_memory():
    settings = replace(get_settings(), snapshot_cache_backend="redis", redis_url="")
    assert isinstance(_build_snapshot_cache(settings), InMemorySnapshotCache)
