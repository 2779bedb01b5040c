"""Tenant service orchestrating provisioning and team management."""

from __future__ import annotations

import logging
from typing import Tuple

from tenancy_schemas import TenantProvisioned

from .contracts import EnsureTenantInput
from .errors import InvalidInput, PermissionDenied, ProvisioningConflict, StoreUnavailable
from .tenant import Role, Team, TenantRef
from ..metrics import PROVISIONING_OUTCOMES
from ..repository import TenantRepository

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("tenancy.audit")

DEFAULT_PLAN = "active"
MAX_PROVISIONING_ATTEMPTS = 3


def default_team_name(display_name: str | None, team_name_hint: str | None) -> str:
    """Pick the name of a freshly provisioned team."""
    if team_name_hint and team_name_hint.strip():
        return team_name_hint.strip()
    if display_name and display_name.strip():
        return f"{display_name.strip()}'s Team"
    return "My Team"


class TenantService:
    """Tenant workflows backed by Postgres storage."""

    def __init__(self, repository: TenantRepository) -> None:
        self._repository = repository

    def ensure_tenant(self, payload: EnsureTenantInput) -> Tuple[TenantRef, bool]:
        """Return the tenant for an external identity, creating it on first sight.

        Returns a tuple of ``(TenantRef, created)``. Concurrent first logins for
        one identity race on the store's unique constraint; losers re-read and
        return the winner's pair, so every caller observes the same team.

        Raises
        ------
        InvalidInput
            The identity or email is blank or malformed.
        StoreUnavailable
            The store is unreachable; the call may be retried.
        """
        external_id = (payload.external_id or "").strip()
        email = (payload.email or "").strip()
        if not external_id:
            raise InvalidInput("external_id must not be empty")
        if not email or "@" not in email:
            raise InvalidInput("email must be a valid address")

        for attempt in range(1, MAX_PROVISIONING_ATTEMPTS + 1):
            existing = self._repository.find_user_by_external_id(external_id)
            if existing is not None:
                PROVISIONING_OUTCOMES.labels(outcome="existing").inc()
                return TenantRef(team_id=existing.team_id, user_id=existing.user_id), False

            try:
                team, user = self._repository.create_team_with_admin(
                    external_id=external_id,
                    email=email,
                    display_name=payload.display_name,
                    team_name=default_team_name(payload.display_name, payload.team_name_hint),
                    plan=DEFAULT_PLAN,
                )
            except ProvisioningConflict:
                PROVISIONING_OUTCOMES.labels(outcome="conflict_retry").inc()
                logger.info(
                    "concurrent provisioning for %s detected on attempt %d, re-reading",
                    external_id,
                    attempt,
                )
                continue

            PROVISIONING_OUTCOMES.labels(outcome="created").inc()
            audit_logger.info(
                "tenant.provisioned %s",
                TenantProvisioned(
                    team_id=team.team_id,
                    user_id=user.user_id,
                    external_id=external_id,
                    email=email,
                    team_name=team.name,
                    created_at=team.created_at,
                ).model_dump_json(),
            )
            return TenantRef(team_id=team.team_id, user_id=user.user_id), True

        logger.error(
            "user for %s still missing after %d provisioning attempts",
            external_id,
            MAX_PROVISIONING_ATTEMPTS,
        )
        raise StoreUnavailable("tenant provisioning did not converge")

    def get_team(self, team_id: str) -> Team | None:
        return self._repository.get_team(team_id)

    def rename_team(self, external_id: str, name: str) -> Team:
        """Rename the team of the user bound to ``external_id``. Admins only."""
        cleaned = (name or "").strip()
        if not cleaned:
            raise InvalidInput("team name must not be empty")
        user = self._repository.find_user_by_external_id(external_id)
        if user is None:
            raise InvalidInput("unknown external identity")
        if user.role is not Role.admin:
            raise PermissionDenied("only team admins can rename the team")
        team = self._repository.rename_team(user.team_id, cleaned)
        if team is None:
            raise StoreUnavailable(f"team {user.team_id} vanished during rename")
        audit_logger.info("team.renamed team_id=%s actor=%s", team.team_id, user.user_id)
        return team

    def update_plan(self, team_id: str, plan: str) -> Team | None:
        """Record the plan tag reported by the billing authority."""
        team = self._repository.update_plan(team_id, plan)
        if team is None:
            logger.warning("plan update for unknown team %s ignored", team_id)
            return None
        audit_logger.info("team.plan_updated team_id=%s plan=%s", team_id, plan)
        return team
