"""JWT token creation and verification.

Learn: Access tokens are short-lived and carry the account id (`sub`)
plus the email for display. Refresh tokens only carry `sub`; the
`type` claim stops one being used in place of the other.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from payrelay.config import settings

ACCESS = "access"
REFRESH = "refresh"


class TokenError(Exception):
    """Raised when token creation/verification fails."""


def _encode(claims: dict, lifetime: timedelta) -> str:
    now = datetime.now(timezone.utc)
    payload = {**claims, "iat": now, "exp": now + lifetime}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def create_access_token(
    account_id: str,
    email: Optional[str] = None,
    expires_minutes: Optional[int] = None,
) -> str:
    claims = {"sub": account_id, "type": ACCESS}
    if email:
        claims["email"] = email
    return _encode(
        claims,
        timedelta(minutes=expires_minutes or settings.access_token_expire_minutes),
    )


def create_refresh_token(account_id: str, expires_days: Optional[int] = None) -> str:
    return _encode(
        {"sub": account_id, "type": REFRESH},
        timedelta(days=expires_days or settings.refresh_token_expire_days),
    )


def verify_token(token: str, expected_type: str = ACCESS) -> dict:
    """Decode a token and check its type. Raises TokenError."""
    try:
        payload = jwt.decode(
            token, settings.jwt_secret, algorithms=[settings.jwt_algorithm]
        )
    except jwt.ExpiredSignatureError:
        raise TokenError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise TokenError(f"Invalid token: {e}")

    if payload.get("type") != expected_type:
        raise TokenError(f"Expected a {expected_type} token")
    if not payload.get("sub"):
        raise TokenError("Token has no subject")
    return payload
