from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    admin = "admin"
    member = "member"


@dataclass(slots=True)
class Team:
    """Billing and ownership tenant."""

    team_id: str
    name: str
    plan: str
    created_at: datetime


@dataclass(slots=True)
class User:
    """Internal user bound to exactly one external identity and one team."""

    user_id: str
    external_id: str
    email: str
    team_id: str
    role: Role
    created_at: datetime
    name: str | None = None


@dataclass(frozen=True, slots=True)
class TenantRef:
    """Stable ``(team_id, user_id)`` pair returned by provisioning."""

    team_id: str
    user_id: str
