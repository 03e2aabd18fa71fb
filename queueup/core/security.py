"""
Bearer token helpers.

Tokens are issued by the identity service; this backend only verifies them
and reads the actor out of the claims:

  - ``sub``  -- the user's UUID
  - ``role`` -- ``customer``, ``mechanic`` or ``admin``
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import jwt

from queueup.core.config import settings

ACCESS_TOKEN_EXPIRE_MINUTES = 60


def create_access_token(
    user_id: uuid.UUID,
    role: str,
    expires_minutes: int = ACCESS_TOKEN_EXPIRE_MINUTES,
) -> str:
    """Mint a signed access token (local development and tests)."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "role": role,
        "type": "access",
        "iat": now,
        "exp": now + timedelta(minutes=expires_minutes),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict:
    """Decode and verify a JWT token.

    Raises:
        jwt.ExpiredSignatureError: If the token has expired.
        jwt.InvalidTokenError: If the token is otherwise invalid.
    """
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
    )
