"""Utilities for issuing and validating tenant-scoped JWTs."""

from __future__ import annotations

import time
from typing import Any

import jwt

from ..config import get_settings
from ..domain.tenant import Role


def issue_access_token(*, subject: str, tenant_id: str, role: Role) -> tuple[str, int]:
    """Create a signed JWT binding a user to its team for downstream services.

    Parameters
    ----------
    subject:
        Internal user identifier embedded in the ``sub`` claim.
    tenant_id:
        Team the user belongs to.
    role:
        The user's role within the team.

    Returns
    -------
    tuple[str, int]
        The encoded JWT string and its TTL in seconds.
    """

    settings = get_settings()
    now = int(time.time())
    expires_in = settings.jwt_ttl_seconds
    payload: dict[str, Any] = {
        "iss": settings.jwt_issuer,
        "sub": subject,
        "tenant_id": tenant_id,
        "role": role.value,
        "iat": now,
        "exp": now + expires_in,
    }

    token = jwt.encode(payload, settings.jwt_secret, algorithm="HS256")
    return token, expires_in


def decode_access_token(token: str) -> dict[str, Any]:
    """Decode and verify a JWT issued by :func:`issue_access_token`.

    Raises
    ------
    jwt.PyJWTError
        Propagated when the token is invalid, expired, or signed by another issuer.
    """

    settings = get_settings()
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=["HS256"],
        issuer=settings.jwt_issuer,
    )
