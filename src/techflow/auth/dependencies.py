"""FastAPI auth dependencies.

Learn: These are used as Depends() in route handlers to extract and
validate the current account from the request. The token comes from
either:
1. Authorization: Bearer <jwt>
2. the `jwt` cookie (set by the Google OAuth callback)

Verification yields an account id; the account row is then loaded so
deactivated accounts are rejected even while their tokens are unexpired.
"""

import uuid
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from techflow.auth.jwt import TokenError, verify_token
from techflow.config import settings
from techflow.db.engine import get_db
from techflow.db.models import Account


class CurrentAccount:
    """The authenticated account making the request.

    Learn: This is the unified auth context threaded into every
    owner-scoped query (account_id) and admin check (role).
    """

    def __init__(
        self,
        account_id: uuid.UUID,
        role: str = "user",
        email: Optional[str] = None,
        name: Optional[str] = None,
    ):
        self.account_id = account_id
        self.role = role
        self.email = email
        self.name = name

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=401,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def extract_token(request: Request, authorization: Optional[str]) -> Optional[str]:
    if authorization and authorization.startswith("Bearer "):
        return authorization[7:]
    return request.cookies.get(settings.jwt_cookie_name)


async def get_current_account_optional(
    request: Request,
    authorization: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
) -> Optional[CurrentAccount]:
    """Extract the current account (optional — returns None if no token).

    Learn: This is the "soft" auth dependency, used by the public contact
    form: a signed-in submitter owns the contact, an anonymous one doesn't.
    A token that is present but invalid is still a 401.
    """
    token = extract_token(request, authorization)
    if not token:
        return None
    return await _authenticate_jwt(token, db)


async def get_current_account(
    identity: Optional[CurrentAccount] = Depends(get_current_account_optional),
) -> CurrentAccount:
    """Extract the current account (required — 401 if no auth)."""
    if not identity:
        raise _unauthorized("Authentication required")
    return identity


async def require_admin(
    identity: CurrentAccount = Depends(get_current_account),
) -> CurrentAccount:
    """Admin-only routes — 403 for everyone else."""
    if not identity.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return identity


async def _authenticate_jwt(token: str, db: AsyncSession) -> CurrentAccount:
    try:
        payload = verify_token(token, expected_type="access")
        account_id = uuid.UUID(payload["sub"])
    except TokenError as e:
        raise _unauthorized(str(e))
    except (KeyError, ValueError):
        raise _unauthorized("Invalid token subject")

    account = await db.get(Account, account_id)
    if not account or not account.is_active:
        raise _unauthorized("Account not found or inactive")

    return CurrentAccount(
        account_id=account.id,
        role=account.role,
        email=account.email,
        name=account.name,
    )
