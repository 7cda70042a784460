"""Google OAuth 2.0 (authorization code flow) over httpx.

Learn: Three steps:
1. /auth/google redirects to Google's consent screen with a signed state
2. Google redirects back to /auth/google/callback?code=...&state=...
3. We exchange the code for an access token, read the OpenID userinfo,
   and upsert the account (see services.account_service).

The httpx transport is injectable so tests can answer Google's endpoints
with httpx.MockTransport instead of the network.
"""

from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

import httpx
from fastapi import HTTPException

from techflow.config import settings

AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"
SCOPES = "openid email profile"


class OAuthError(Exception):
    """Raised when the code exchange or profile lookup fails."""


@dataclass
class GoogleProfile:
    google_id: str
    email: str
    name: str
    avatar: Optional[str] = None


class GoogleOAuthClient:
    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self._transport = transport

    def authorization_url(self, state: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": SCOPES,
            "state": state,
            "prompt": "select_account",
        }
        return f"{AUTHORIZE_URL}?{urlencode(params)}"

    async def fetch_profile(self, code: str) -> GoogleProfile:
        async with httpx.AsyncClient(transport=self._transport, timeout=10.0) as client:
            try:
                r = await client.post(
                    TOKEN_URL,
                    data={
                        "code": code,
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "redirect_uri": self.redirect_uri,
                        "grant_type": "authorization_code",
                    },
                )
                if r.status_code != 200:
                    raise OAuthError(f"Token exchange failed ({r.status_code})")
                access_token = r.json().get("access_token")
                if not access_token:
                    raise OAuthError("Token response had no access_token")

                r = await client.get(
                    USERINFO_URL,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
                if r.status_code != 200:
                    raise OAuthError(f"Userinfo request failed ({r.status_code})")
                info = r.json()
            except httpx.HTTPError as e:
                raise OAuthError(f"Google unreachable: {e}")

        email = info.get("email")
        if not email:
            raise OAuthError("No email found in Google profile")

        name = info.get("name") or " ".join(
            part for part in (info.get("given_name"), info.get("family_name")) if part
        )
        return GoogleProfile(
            google_id=str(info["sub"]),
            email=email.lower(),
            name=name or email.split("@")[0],
            avatar=info.get("picture"),
        )


def get_google_client() -> GoogleOAuthClient:
    """FastAPI dependency — 503 when Google OAuth isn't configured."""
    if not settings.google_oauth_enabled:
        raise HTTPException(status_code=503, detail="Google sign-in is not configured")
    return GoogleOAuthClient(
        client_id=settings.google_client_id,
        client_secret=settings.google_client_secret,
        redirect_uri=settings.google_callback_url,
    )
