"""Resolution of upstream-verified external identities to internal users."""

from __future__ import annotations

from dataclasses import dataclass

from .tenant import User
from ..repository import TenantRepository


@dataclass(frozen=True, slots=True)
class IdentityResult:
    """Outcome of an identity lookup: ``found(user)`` or ``not_found``."""

    user: User | None = None

    @property
    def found(self) -> bool:
        return self.user is not None

    @classmethod
    def not_found(cls) -> "IdentityResult":
        return cls(user=None)


class IdentityResolver:
    """Read-only lookup of users by external identity.

    Store failures propagate as ``StoreUnavailable`` so that callers never
    confuse an outage with an unknown identity.
    """

    def __init__(self, repository: TenantRepository) -> None:
        self._repository = repository

    def resolve(self, external_id: str) -> IdentityResult:
        if not external_id or not external_id.strip():
            return IdentityResult.not_found()
        user = self._repository.find_user_by_external_id(external_id.strip())
        if user is None:
            return IdentityResult.not_found()
        return IdentityResult(user=user)
