"""Billing snapshot model and the predicates derived from it."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

logger = logging.getLogger(__name__)


class SubscriptionStatus(str, Enum):
    active = "active"
    trialing = "trialing"
    past_due = "past_due"
    unpaid = "unpaid"
    canceled = "canceled"

    @classmethod
    def parse(cls, value: str | None) -> "SubscriptionStatus | None":
        """Map a raw status string to a member, or ``None`` when absent or unknown."""
        if not value:
            return None
        try:
            return cls(value)
        except ValueError:
            logger.warning("unknown subscription status %r treated as absent", value)
            return None


ALLOWED_STATUSES = frozenset({SubscriptionStatus.active, SubscriptionStatus.trialing})
BILLING_ISSUE_STATUSES = frozenset({SubscriptionStatus.past_due, SubscriptionStatus.unpaid})

# Members allowed above the purchased seat count before a team counts as over
# capacity. Absorbs the lag between adding a member and the seat update.
SEAT_TOLERANCE = 1


@dataclass(frozen=True, slots=True)
class BillingSnapshot:
    """Cached projection of a team's state at the external billing authority."""

    status: SubscriptionStatus | None
    seat_count: int
    active_member_count: int
    fetched_at: datetime
    stale: bool = False
    # time at the billing authority the state reflects; fetched_at when unset
    as_of: datetime | None = None

    @property
    def allows_access(self) -> bool:
        return self.status in ALLOWED_STATUSES

    @property
    def state_time(self) -> datetime:
        return self.as_of or self.fetched_at


def has_billing_issue(snapshot: BillingSnapshot | None) -> bool:
    """Return ``True`` when payment for the subscription is failing."""
    if snapshot is None:
        return False
    return snapshot.status in BILLING_ISSUE_STATUSES


def exceeds_seats(snapshot: BillingSnapshot | None) -> bool:
    """Return ``True`` when an active team uses more seats than it pays for.

    Only ``active`` subscriptions are evaluated, and one member above the
    purchased seat count is tolerated.
    """
    if snapshot is None or snapshot.status is not SubscriptionStatus.active:
        return False
    return snapshot.active_member_count > snapshot.seat_count + SEAT_TOLERANCE
