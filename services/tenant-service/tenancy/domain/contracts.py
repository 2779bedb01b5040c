"""Domain-level request contracts shared by multiple layers."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class EnsureTenantInput:
    """Claims read from an upstream-verified external identity at login time."""

    external_id: str
    email: str
    display_name: str | None = None
    team_name_hint: str | None = None
