"""FastAPI application wiring for the tenant service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from psycopg_pool import ConnectionPool

from .api.routes import router as v1_router
from .billing.authority import HttpBillingAuthority
from .billing.redis_snapshot_cache import RedisSnapshotCache
from .billing.snapshot_cache import InMemorySnapshotCache
from .billing.synchronizer import BillingStateSynchronizer
from .config import Settings, get_settings
from .domain.identity import IdentityResolver
from .domain.service import TenantService
from .repository import TenantRepository
from .routing import RouteProtection

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)


def _build_snapshot_cache(settings: Settings) -> InMemorySnapshotCache | RedisSnapshotCache:
    """Instantiate the configured snapshot cache, preferring Redis when available."""
    if settings.snapshot_cache_backend == "redis" and settings.redis_url:
        try:
            import redis

            client = redis.from_url(settings.redis_url)
            # ensure connectivity early to fail fast and fall back
            client.ping()
            logger.info("billing snapshot cache configured for redis backend at %s", settings.redis_url)
            return RedisSnapshotCache(client, ttl_seconds=settings.billing_max_staleness_seconds)
        except Exception as exc:  # pragma: no cover - depends on redis availability
            logger.warning("redis snapshot cache unavailable, falling back to in-memory: %s", exc)

    logger.info("billing snapshot cache using in-memory backend")
    return InMemorySnapshotCache()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise shared resources (Postgres pool, billing client, services) for the app lifecycle."""
    pool = ConnectionPool(settings.database_url, open=False)
    pool.open()
    billing_client = httpx.Client(
        base_url=settings.billing_authority_url,
        timeout=settings.billing_timeout_seconds,
    )
    repository = TenantRepository(pool)
    if settings.auto_migrate:
        repository.apply_schema()
        logger.info("tenant schema applied")

    app.state.pool = pool
    app.state.tenant_service = TenantService(repository)
    app.state.identity_resolver = IdentityResolver(repository)
    app.state.billing_synchronizer = BillingStateSynchronizer(
        HttpBillingAuthority(billing_client),
        _build_snapshot_cache(settings),
        reuse_window_seconds=settings.billing_reuse_window_seconds,
        max_staleness_seconds=settings.billing_max_staleness_seconds,
        founder_team_ids=settings.founder_team_ids,
    )
    app.state.route_protection = RouteProtection(
        settings.protected_path_prefixes, settings.exempt_path_prefixes
    )
    try:
        yield
    finally:
        billing_client.close()
        pool.close()


app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)

# CORS for local frontend dev
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=600,
)


@app.get("/healthz", tags=["health"])
def healthz() -> dict[str, str]:
    """Return a minimal readiness indicator used by orchestration systems."""
    return {"status": "ok"}


@app.get("/metrics", include_in_schema=False)
def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(v1_router)
