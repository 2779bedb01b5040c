"""Shared schema exports."""

from .billing import BillingState, BillingUpdated
from .tenant import TenantProvisioned

__all__ = [
    "BillingState",
    "BillingUpdated",
    "TenantProvisioned",
]
