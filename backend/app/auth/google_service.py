"""Google OAuth 2.0 authorization-code flow service.

Implements the browser redirect flow:
1. Send the user to Google's consent screen
2. Exchange the returned ``code`` for an access token
3. Use the access token to fetch user identity from Google's userinfo endpoint
"""
import logging
from urllib.parse import urlencode

import httpx

logger = logging.getLogger(__name__)


class GoogleOAuthService:
    """Handles Google OAuth 2.0 authorization and identity resolution."""

    AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
    TOKEN_URL = "https://oauth2.googleapis.com/token"
    USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
    SCOPES = "openid email profile"

    def __init__(self, client_id: str, client_secret: str, redirect_uri: str):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri

    def authorization_url(self, state: str = "") -> str:
        """URL of the consent screen the browser is redirected to."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": self.SCOPES,
            "access_type": "online",
            "prompt": "select_account",
        }
        if state:
            params["state"] = state
        return f"{self.AUTHORIZE_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> str:
        """Exchange an authorization code for an access token.

        Raises:
            RuntimeError: If Google refuses the code.
        """
        async with httpx.AsyncClient(timeout=10.0) as client:
            resp = await client.post(
                self.TOKEN_URL,
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "code": code,
                    "grant_type": "authorization_code",
                    "redirect_uri": self.redirect_uri,
                },
            )
        data = resp.json()
        if resp.status_code != 200 or "access_token" not in data:
            error = data.get("error_description") or data.get("error") or resp.status_code
            raise RuntimeError(f"Google token exchange failed: {error}")
        return data["access_token"]

    async def get_identity(self, access_token: str) -> dict:
        """Fetch user identity from Google's userinfo endpoint.

        Returns:
            Dict with google_id, email, name and avatar.
        """
        async with httpx.AsyncClient(timeout=10.0) as client:
            resp = await client.get(
                self.USERINFO_URL,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        resp.raise_for_status()
        data = resp.json()

        return {
            "google_id": data["id"],
            "email": data.get("email", ""),
            "name": data.get("name") or data.get("email", ""),
            "avatar": data.get("picture", ""),
        }
