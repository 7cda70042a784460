"""JWT token creation and verification.

Learn: JWT (JSON Web Token) provides stateless authentication.
- Access token: used for API calls and the WebSocket handshake
- Refresh token: long-lived (30 days), used to get new access tokens
- OAuth state token: 10-minute token that round-trips through Google's
  consent screen to prove the callback belongs to a login we started

Verification produces the account id (`sub`). Callers thread that id
explicitly — there is no global session serializer.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from techflow.config import settings

OAUTH_STATE_MINUTES = 10


class TokenError(Exception):
    """Raised when token creation/verification fails."""


def _encode(payload: dict, expires: datetime) -> str:
    payload = {
        **payload,
        "exp": expires,
        "iat": datetime.now(timezone.utc),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def create_access_token(
    account_id: str,
    role: Optional[str] = None,
    expires_minutes: Optional[int] = None,
) -> str:
    """Create a JWT access token."""
    expires = datetime.now(timezone.utc) + timedelta(
        minutes=expires_minutes or settings.access_token_expire_minutes
    )
    payload = {"sub": account_id, "type": "access"}
    if role:
        payload["role"] = role
    return _encode(payload, expires)


def create_refresh_token(
    account_id: str,
    expires_days: Optional[int] = None,
) -> str:
    """Create a JWT refresh token."""
    expires = datetime.now(timezone.utc) + timedelta(
        days=expires_days or settings.refresh_token_expire_days
    )
    return _encode({"sub": account_id, "type": "refresh"}, expires)


def create_state_token(nonce: str) -> str:
    expires = datetime.now(timezone.utc) + timedelta(minutes=OAUTH_STATE_MINUTES)
    return _encode({"sub": nonce, "type": "oauth_state"}, expires)


def verify_token(token: str, expected_type: Optional[str] = None) -> dict:
    """Verify and decode a JWT token.

    Returns the payload dict on success.
    Raises TokenError on failure (including a wrong token type).
    """
    try:
        payload = jwt.decode(
            token, settings.jwt_secret, algorithms=[settings.jwt_algorithm]
        )
    except jwt.ExpiredSignatureError:
        raise TokenError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise TokenError(f"Invalid token: {e}")

    if expected_type and payload.get("type") != expected_type:
        raise TokenError(f"Wrong token type (expected {expected_type})")
    return payload
