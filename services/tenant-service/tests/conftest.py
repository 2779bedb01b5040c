"""Shared fixtures for the tenant service tests."""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from fakes import FakeBillingAuthority, FakeClock, FakeTenantRepository
from tenancy.api import routes
from tenancy.billing.snapshot_cache import InMemorySnapshotCache
from tenancy.billing.synchronizer import BillingStateSynchronizer
from tenancy.domain.identity import IdentityResolver
from tenancy.domain.service import TenantService
from tenancy.routing import RouteProtection


@pytest.fixture
def repository() -> FakeTenantRepository:
    return FakeTenantRepository()


@pytest.fixture
def service(repository: FakeTenantRepository) -> TenantService:
    return TenantService(repository)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def authority(clock: FakeClock) -> FakeBillingAuthority:
    return FakeBillingAuthority(clock)


@pytest.fixture
def synchronizer(authority: FakeBillingAuthority, clock: FakeClock) -> BillingStateSynchronizer:
    return BillingStateSynchronizer(
        authority,
        InMemorySnapshotCache(),
        reuse_window_seconds=30,
        max_staleness_seconds=900,
        founder_team_ids=["founder-team"],
        clock=clock,
    )


@pytest.fixture
def api_client(repository, service, synchronizer, authority):
    """Provide a FastAPI test client with isolated state."""
    app = FastAPI()
    app.include_router(routes.router)
    app.state.tenant_service = service
    app.state.identity_resolver = IdentityResolver(repository)
    app.state.billing_synchronizer = synchronizer
    app.state.route_protection = RouteProtection(
        ["/dashboard", "/team", "/billing", "/settings", "/calls"],
        ["/api/webhooks", "/v1/webhooks"],
    )

    with TestClient(app) as client:
        yield client
