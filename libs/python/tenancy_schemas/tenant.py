"""Tenant lifecycle event contracts."""

from __future__ import annotations

from datetime import datetime
from pydantic import BaseModel


class TenantProvisioned(BaseModel):
    team_id: str
    user_id: str
    external_id: str
    email: str
    team_name: str
    created_at: datetime
    version: str = "v1"
