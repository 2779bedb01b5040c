"""Error taxonomy for tenant resolution, provisioning and billing reads."""

from __future__ import annotations


class TenancyError(Exception):
    """Base class for errors raised by the tenancy domain."""


class StoreUnavailable(TenancyError):
    """The tenant store could not be reached. Safe to retry."""


class BillingUnavailable(TenancyError):
    """No usable billing snapshot is known and the billing authority failed."""


class InvalidInput(TenancyError, ValueError):
    """Caller supplied a malformed identity, email or name."""


class PermissionDenied(TenancyError):
    """The resolved user is not allowed to perform the operation."""


class ProvisioningConflict(TenancyError):
    """Another writer created the user for this external identity first.

    Raised by the store on a uniqueness violation and consumed by the
    provisioner, which re-reads instead of surfacing it.
    """
