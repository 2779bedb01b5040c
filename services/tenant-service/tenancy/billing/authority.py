"""HTTP client for the external billing authority."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Protocol

import httpx
from pydantic import ValidationError

from tenancy_schemas import BillingState

from ..domain.billing import BillingSnapshot, SubscriptionStatus
from ..domain.errors import BillingUnavailable

logger = logging.getLogger(__name__)


class BillingAuthority(Protocol):
    def fetch(self, team_id: str) -> BillingSnapshot:
        """Return the authoritative snapshot or raise ``BillingUnavailable``."""
        ...


class HttpBillingAuthority:
    """Read-only view of team subscriptions served over HTTP.

    A ``404`` means the authority has no subscription for the team, which is a
    valid answer (status absent); anything else unexpected is an outage.
    """

    def __init__(self, client: httpx.Client) -> None:
        self._client = client

    def fetch(self, team_id: str) -> BillingSnapshot:
        now = datetime.now(timezone.utc)
        try:
            response = self._client.get(f"/v1/teams/{team_id}/billing")
        except httpx.HTTPError as exc:
            raise BillingUnavailable(f"billing authority request failed: {exc}") from exc

        if response.status_code == httpx.codes.NOT_FOUND:
            return BillingSnapshot(status=None, seat_count=0, active_member_count=0, fetched_at=now)
        if not response.is_success:
            raise BillingUnavailable(f"billing authority returned {response.status_code}")

        try:
            state = BillingState.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            logger.warning("malformed billing state for team %s: %s", team_id, exc)
            raise BillingUnavailable("billing authority returned a malformed body") from exc

        return BillingSnapshot(
            status=SubscriptionStatus.parse(state.subscription_status),
            seat_count=state.seat_count,
            active_member_count=state.active_member_count,
            fetched_at=now,
        )
