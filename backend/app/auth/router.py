"""Auth router for Google OAuth login and token verification.

Endpoints:
    GET  /auth/google            - Redirect to Google's consent screen
    GET  /auth/google/callback   - Exchange code, upsert user, redirect with token
    POST /auth/verify            - Return the user behind a bearer token
    POST /auth/logout            - Acknowledge logout (tokens are dropped client-side)
    GET  /auth/providers         - List enabled auth providers
"""
import logging
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import RedirectResponse

from app.config import get_config
from app.storage import Storage
from app.storage.schemas import User

from .dependencies import get_current_user, get_storage
from .google_service import GoogleOAuthService
from .service import create_access_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def _google_service() -> GoogleOAuthService:
    config = get_config()
    if not config.google.enabled:
        raise HTTPException(status_code=400, detail="Google login is not enabled")
    if not config.secrets.google.client_id:
        raise HTTPException(status_code=400, detail="Google client_id is not configured")
    return GoogleOAuthService(
        client_id=config.secrets.google.client_id,
        client_secret=config.secrets.google.client_secret or "",
        redirect_uri=config.google.resolve_callback_url(config.server.backend_url),
    )


def _frontend_redirect(**params: str) -> RedirectResponse:
    frontend_url = get_config().server.frontend_url
    return RedirectResponse(f"{frontend_url}?{urlencode(params)}")


@router.get("/google")
async def google_login() -> RedirectResponse:
    """Start the Google OAuth flow."""
    return RedirectResponse(_google_service().authorization_url())


@router.get("/google/callback")
async def google_callback(
    code: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    storage: Storage = Depends(get_storage),
) -> RedirectResponse:
    """Finish the Google OAuth flow.

    On success the browser is sent back to the frontend with ``?token=<jwt>``;
    any failure redirects with ``?error=auth_failed``.
    """
    if error or not code:
        logger.warning("Google callback without code (error=%s)", error)
        return _frontend_redirect(error="auth_failed")

    try:
        service = _google_service()
        access_token = await service.exchange_code(code)
        identity = await service.get_identity(access_token)
    except Exception as e:
        logger.error("Google login failed: %s", e)
        return _frontend_redirect(error="auth_failed")

    user = await storage.users.upsert_google_user(
        google_id=identity["google_id"],
        email=identity["email"],
        name=identity["name"],
        avatar=identity["avatar"],
    )
    logger.info("User %s (%s) logged in via Google", user.id, user.email)
    return _frontend_redirect(token=create_access_token(user))


@router.post("/verify")
async def verify(user: User = Depends(get_current_user)) -> dict:
    """Return the authenticated user's public profile."""
    return {"success": True, "user": user.public_profile().model_dump(mode="json")}


@router.post("/logout")
async def logout() -> dict:
    return {"success": True, "message": "Logout acknowledged."}


@router.get("/providers")
async def auth_providers() -> dict:
    """List authentication providers that are both enabled and configured."""
    config = get_config()
    return {"google": config.google.enabled and bool(config.secrets.google.client_id)}
