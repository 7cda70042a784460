"""Auth API — registration, login, tokens, Google sign-in.

Learn: Routes for account authentication:
- POST /auth/register → create a password account
- POST /auth/login → email/password → JWT tokens
- POST /auth/refresh → refresh token → new token pair
- GET /auth/me → current account info
- POST /auth/logout → clear the `jwt` cookie
- GET /auth/google → redirect to Google's consent screen
- GET /auth/google/callback → code exchange, account upsert, redirect to
  the client with a token

Tokens are stateless, so logout only clears the cookie; a bearer token
held by a client stays valid until it expires.
"""

import secrets
import uuid
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from techflow.auth.dependencies import CurrentAccount, get_current_account
from techflow.auth.jwt import (
    TokenError,
    create_access_token,
    create_refresh_token,
    create_state_token,
    verify_token,
)
from techflow.auth.oauth import GoogleOAuthClient, OAuthError, get_google_client
from techflow.config import settings
from techflow.db.engine import get_db
from techflow.db.models import Account
from techflow.schemas.account import (
    AccountRead,
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    TokenResponse,
)
from techflow.services import account_service
from techflow.services.account_service import (
    DuplicateEmailError,
    InactiveAccountError,
    InvalidCredentialsError,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/auth")

STATE_COOKIE = "oauth_state"


def _token_pair(account: Account) -> TokenResponse:
    return TokenResponse(
        access_token=create_access_token(str(account.id), role=account.role),
        refresh_token=create_refresh_token(str(account.id)),
    )


# ─── Register ────────────────────────────────────────────


@router.post("/register", response_model=AccountRead, status_code=201)
async def register(body: RegisterRequest, db: AsyncSession = Depends(get_db)):
    """Create a new password account."""
    try:
        return await account_service.register_account(
            db, email=body.email, name=body.name, password=body.password
        )
    except DuplicateEmailError:
        raise HTTPException(status_code=409, detail="Email already registered")


# ─── Login ───────────────────────────────────────────────


@router.post("/login", response_model=TokenResponse)
async def login(body: LoginRequest, db: AsyncSession = Depends(get_db)):
    """Login with email and password → JWT tokens."""
    try:
        account = await account_service.authenticate(db, body.email, body.password)
    except InvalidCredentialsError:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    except InactiveAccountError:
        raise HTTPException(status_code=403, detail="Account is deactivated")

    logger.info("auth.login", account_id=str(account.id))
    return _token_pair(account)


# ─── Refresh ────────────────────────────────────────────


@router.post("/refresh", response_model=TokenResponse)
async def refresh(body: RefreshRequest, db: AsyncSession = Depends(get_db)):
    """Exchange a refresh token for a new token pair."""
    try:
        payload = verify_token(body.refresh_token, expected_type="refresh")
        account_id = uuid.UUID(payload["sub"])
    except TokenError as e:
        raise HTTPException(status_code=401, detail=str(e))
    except (KeyError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token subject")

    account = await account_service.get_account(db, account_id)
    if not account or not account.is_active:
        raise HTTPException(status_code=401, detail="Account not found or inactive")
    return _token_pair(account)


# ─── Current account ────────────────────────────────────


@router.get("/me", response_model=AccountRead)
async def get_me(
    identity: CurrentAccount = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    """Get the current authenticated account's info."""
    account = await account_service.get_account(db, identity.account_id)
    if not account:
        raise HTTPException(status_code=404, detail="Account not found")
    return account


@router.post("/logout")
async def logout():
    """Clear the auth cookie set by the Google callback."""
    response = JSONResponse({"message": "Logged out"})
    response.delete_cookie(settings.jwt_cookie_name, path="/")
    return response


# ─── Google OAuth ───────────────────────────────────────


@router.get("/google")
async def google_login(google: GoogleOAuthClient = Depends(get_google_client)):
    """Redirect to Google. The state token is echoed back on the callback."""
    nonce = secrets.token_urlsafe(16)
    response = RedirectResponse(google.authorization_url(create_state_token(nonce)))
    response.set_cookie(
        STATE_COOKIE,
        nonce,
        max_age=600,
        httponly=True,
        samesite="lax",
        secure=settings.environment == "production",
    )
    return response


@router.get("/google/callback")
async def google_callback(
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    google: GoogleOAuthClient = Depends(get_google_client),
    db: AsyncSession = Depends(get_db),
):
    """Finish Google sign-in and hand the client a token.

    Success redirects to {client_url}/auth/callback?token=... and also sets
    the `jwt` cookie. Any failure redirects to {client_url}/login?error=auth_failed.
    """
    failed = RedirectResponse(f"{settings.client_url}/login?error=auth_failed")
    failed.delete_cookie(STATE_COOKIE)

    if error or not code or not _state_matches(state, request.cookies.get(STATE_COOKIE)):
        logger.warning("auth.google_rejected", error=error, has_code=bool(code))
        return failed

    try:
        profile = await google.fetch_profile(code)
        account = await account_service.upsert_google_account(db, profile)
    except OAuthError as e:
        logger.warning("auth.google_failed", error=str(e))
        return failed
    except InactiveAccountError:
        logger.warning("auth.google_inactive", google_id=profile.google_id)
        return failed

    token = create_access_token(str(account.id), role=account.role)
    response = RedirectResponse(f"{settings.client_url}/auth/callback?token={token}")
    response.delete_cookie(STATE_COOKIE)
    response.set_cookie(
        settings.jwt_cookie_name,
        token,
        max_age=settings.access_token_expire_minutes * 60,
        httponly=True,
        samesite="lax",
        secure=settings.environment == "production",
    )
    logger.info("auth.google_login", account_id=str(account.id))
    return response


def _state_matches(state: Optional[str], nonce: Optional[str]) -> bool:
    if not state or not nonce:
        return False
    try:
        payload = verify_token(state, expected_type="oauth_state")
    except TokenError:
        return False
    return secrets.compare_digest(payload.get("sub", ""), nonce)
