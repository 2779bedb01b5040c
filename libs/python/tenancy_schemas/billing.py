"""Billing authority contracts consumed by the tenant service."""

from __future__ import annotations

from pydantic import AwareDatetime, BaseModel, Field


class BillingState(BaseModel):
    """Per-team billing state as served by the billing authority."""

    subscription_status: str | None = None
    seat_count: int = Field(default=0, ge=0)
    active_member_count: int = Field(default=0, ge=0)


class BillingUpdated(BaseModel):
    """Webhook event pushed when a team's subscription changes.

    Fields left unset keep their last known value. Events older than the
    state already known for the team are ignored.
    """

    team_id: str = Field(..., min_length=1)
    subscription_status: str | None = None
    seat_count: int | None = Field(default=None, ge=0)
    active_member_count: int | None = Field(default=None, ge=0)
    plan: str | None = None
    occurred_at: AwareDatetime | None = None
