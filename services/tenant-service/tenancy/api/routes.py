"""HTTP route definitions for the tenant service."""

from __future__ import annotations

import hmac
import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response, status
from pydantic import BaseModel, EmailStr, Field

from tenancy_schemas import BillingUpdated

from ..billing.synchronizer import BillingStateSynchronizer
from ..config import get_settings
from ..domain.billing import BillingSnapshot, exceeds_seats, has_billing_issue
from ..domain.contracts import EnsureTenantInput
from ..domain.errors import (
    BillingUnavailable,
    InvalidInput,
    PermissionDenied,
    StoreUnavailable,
    TenancyError,
)
from ..domain.gate import AccessGate, GateState
from ..domain.identity import IdentityResolver, IdentityResult
from ..domain.service import TenantService
from ..domain.tenant import Team, User
from ..metrics import GATE_DECISIONS
from ..routing import RouteClass, RouteProtection
from ..security.tokens import issue_access_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1")

IDENTITY_HEADER = "X-External-Identity"


class TeamResponse(BaseModel):
    """Serialised representation of a `Team`."""

    team_id: str
    name: str
    plan: str
    created_at: datetime

    @classmethod
    def from_domain(cls, team: Team) -> "TeamResponse":
        return cls(team_id=team.team_id, name=team.name, plan=team.plan, created_at=team.created_at)


class UserResponse(BaseModel):
    user_id: str
    external_id: str
    email: str
    name: str | None
    role: str
    team_id: str
    created_at: datetime

    @classmethod
    def from_domain(cls, user: User) -> "UserResponse":
        return cls(
            user_id=user.user_id,
            external_id=user.external_id,
            email=user.email,
            name=user.name,
            role=user.role.value,
            team_id=user.team_id,
            created_at=user.created_at,
        )


class IdentityResponse(BaseModel):
    user: UserResponse
    team: TeamResponse | None


class SessionRequest(BaseModel):
    """Claims of an identity already verified by the upstream identity provider."""

    external_id: str
    email: EmailStr
    display_name: str | None = None
    team_name: str | None = None


class SessionResponse(BaseModel):
    """Tenant resolved for the login plus a tenant-scoped bearer token."""

    team_id: str
    user_id: str
    created: bool
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class RenameTeamRequest(BaseModel):
    name: str = Field(..., max_length=200)


class BillingResponse(BaseModel):
    subscription_status: str | None
    seat_count: int
    active_member_count: int
    fetched_at: datetime
    stale: bool
    has_billing_issue: bool
    exceeds_seats: bool

    @classmethod
    def from_domain(cls, snapshot: BillingSnapshot) -> "BillingResponse":
        return cls(
            subscription_status=snapshot.status.value if snapshot.status else None,
            seat_count=snapshot.seat_count,
            active_member_count=snapshot.active_member_count,
            fetched_at=snapshot.fetched_at,
            stale=snapshot.stale,
            has_billing_issue=has_billing_issue(snapshot),
            exceeds_seats=exceeds_seats(snapshot),
        )


class AccessResponse(BaseModel):
    """Gate decision for navigating to ``path``."""

    path: str
    route: RouteClass
    state: GateState
    redirect_to: str | None = None
    reason: str | None = None


class WebhookAck(BaseModel):
    """Acknowledgement of a webhook; ``applied`` is false for outdated events."""

    received: bool = True
    applied: bool = True
    billing: BillingResponse | None = None


def get_service(request: Request) -> TenantService:
    """Resolve the `TenantService` stored on the FastAPI application state."""
    service: TenantService = request.app.state.tenant_service
    return service


def get_resolver(request: Request) -> IdentityResolver:
    resolver: IdentityResolver = request.app.state.identity_resolver
    return resolver


def get_synchronizer(request: Request) -> BillingStateSynchronizer:
    synchronizer: BillingStateSynchronizer = request.app.state.billing_synchronizer
    return synchronizer


def get_route_protection(request: Request) -> RouteProtection:
    protection: RouteProtection = request.app.state.route_protection
    return protection


def _resolve_user(resolver: IdentityResolver, external_id: str) -> User:
    try:
        identity = resolver.resolve(external_id)
    except StoreUnavailable as exc:
        raise _http_error_from_domain_error(exc) from exc
    if identity.user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="identity not found")
    return identity.user


@router.post("/sessions", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
def create_session(
    response: Response,
    payload: SessionRequest,
    service: TenantService = Depends(get_service),
    resolver: IdentityResolver = Depends(get_resolver),
) -> SessionResponse:
    """Ensure the tenant for a freshly authenticated identity exists."""
    try:
        tenant, created = service.ensure_tenant(
            EnsureTenantInput(
                external_id=payload.external_id,
                email=payload.email,
                display_name=payload.display_name,
                team_name_hint=payload.team_name,
            )
        )
    except TenancyError as exc:
        raise _http_error_from_domain_error(exc) from exc

    user = _resolve_user(resolver, payload.external_id)
    access_token, expires_in = issue_access_token(
        subject=tenant.user_id, tenant_id=tenant.team_id, role=user.role
    )
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return SessionResponse(
        team_id=tenant.team_id,
        user_id=tenant.user_id,
        created=created,
        access_token=access_token,
        expires_in=expires_in,
    )


@router.get("/identity", response_model=IdentityResponse)
def get_identity(
    external_id: str = Header(..., alias=IDENTITY_HEADER),
    service: TenantService = Depends(get_service),
    resolver: IdentityResolver = Depends(get_resolver),
) -> IdentityResponse:
    """Return the user and team bound to the caller's external identity."""
    user = _resolve_user(resolver, external_id)
    try:
        team = service.get_team(user.team_id)
    except StoreUnavailable as exc:
        raise _http_error_from_domain_error(exc) from exc
    return IdentityResponse(
        user=UserResponse.from_domain(user),
        team=TeamResponse.from_domain(team) if team else None,
    )


@router.get("/teams/me", response_model=TeamResponse)
def get_my_team(
    external_id: str = Header(..., alias=IDENTITY_HEADER),
    service: TenantService = Depends(get_service),
    resolver: IdentityResolver = Depends(get_resolver),
) -> TeamResponse:
    user = _resolve_user(resolver, external_id)
    try:
        team = service.get_team(user.team_id)
    except StoreUnavailable as exc:
        raise _http_error_from_domain_error(exc) from exc
    if team is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="team not found")
    return TeamResponse.from_domain(team)


@router.patch("/teams/me", response_model=TeamResponse)
def rename_my_team(
    payload: RenameTeamRequest,
    external_id: str = Header(..., alias=IDENTITY_HEADER),
    service: TenantService = Depends(get_service),
) -> TeamResponse:
    """Rename the caller's team; restricted to team admins."""
    try:
        team = service.rename_team(external_id, payload.name)
    except TenancyError as exc:
        raise _http_error_from_domain_error(exc) from exc
    return TeamResponse.from_domain(team)


@router.get("/billing", response_model=BillingResponse)
def get_billing(
    external_id: str = Header(..., alias=IDENTITY_HEADER),
    resolver: IdentityResolver = Depends(get_resolver),
    synchronizer: BillingStateSynchronizer = Depends(get_synchronizer),
) -> BillingResponse:
    """Return the caller's billing snapshot with derived warnings."""
    user = _resolve_user(resolver, external_id)
    try:
        snapshot = synchronizer.get_billing_snapshot(user.team_id)
    except BillingUnavailable as exc:
        raise _http_error_from_domain_error(exc) from exc
    return BillingResponse.from_domain(snapshot)


@router.get("/access", response_model=AccessResponse)
def check_access(
    path: str = Query(..., min_length=1),
    external_id: str | None = Header(default=None, alias=IDENTITY_HEADER),
    resolver: IdentityResolver = Depends(get_resolver),
    synchronizer: BillingStateSynchronizer = Depends(get_synchronizer),
    protection: RouteProtection = Depends(get_route_protection),
) -> AccessResponse:
    """Evaluate the access gate for a navigation to ``path``.

    Transient failures of the store or the billing authority keep the decision
    in ``loading``; they never produce a denial.
    """
    route = protection.classify(path)
    if route is not RouteClass.protected:
        return AccessResponse(path=path, route=route, state=GateState.granted)
    if not external_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="identity required")

    settings = get_settings()
    gate = AccessGate(
        subscribe_redirect=settings.subscribe_redirect,
        onboarding_redirect=settings.onboarding_redirect,
    )
    identity = _load_identity(resolver, external_id)
    decision = gate.observe_identity(identity)
    if identity is not None and identity.user is not None:
        decision = gate.observe_billing(_load_snapshot(synchronizer, identity.user.team_id))

    GATE_DECISIONS.labels(state=decision.state.value).inc()
    return AccessResponse(
        path=path,
        route=route,
        state=decision.state,
        redirect_to=decision.redirect_to,
        reason=decision.reason,
    )


@router.post("/webhooks/billing", response_model=WebhookAck)
def billing_webhook(
    event: BillingUpdated,
    webhook_token: str | None = Header(default=None, alias="X-Webhook-Token"),
    service: TenantService = Depends(get_service),
    synchronizer: BillingStateSynchronizer = Depends(get_synchronizer),
) -> WebhookAck:
    """Apply a billing update pushed by the billing authority.

    Only callers presenting the shared webhook token may write billing state;
    without a configured token the endpoint refuses every update.
    """
    expected = get_settings().billing_webhook_token
    if not expected:
        logger.error("billing webhook rejected: BILLING_WEBHOOK_TOKEN is not configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="billing webhook not configured"
        )
    if not hmac.compare_digest(webhook_token or "", expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid webhook token")

    snapshot = synchronizer.apply_update(event)
    if snapshot is None:
        return WebhookAck(applied=False)
    if event.plan:
        try:
            service.update_plan(event.team_id, event.plan)
        except StoreUnavailable as exc:
            raise _http_error_from_domain_error(exc) from exc
    return WebhookAck(billing=BillingResponse.from_domain(snapshot))


def _load_identity(resolver: IdentityResolver, external_id: str) -> IdentityResult | None:
    try:
        return resolver.resolve(external_id)
    except StoreUnavailable:
        logger.warning("identity lookup unavailable, access gate stays loading")
        return None


def _load_snapshot(synchronizer: BillingStateSynchronizer, team_id: str) -> BillingSnapshot | None:
    try:
        return synchronizer.get_billing_snapshot(team_id)
    except BillingUnavailable:
        return None


def _http_error_from_domain_error(exc: TenancyError) -> HTTPException:
    if isinstance(exc, InvalidInput):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, PermissionDenied):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    if isinstance(exc, (StoreUnavailable, BillingUnavailable)):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
            headers={"Retry-After": "1"},
        )
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="internal error")
