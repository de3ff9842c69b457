"""Bearer token issuance and the connection-time identity verifier.

Tokens are short-lived HS256 JWTs carrying the user's id and display
profile. Verification is stateless apart from one storage lookup: a token
whose user no longer exists is rejected like a forged one.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt

from app.config import get_config
from app.errors import AuthenticationError
from app.storage import UserRepository
from app.storage.schemas import User

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


def create_access_token(user: User, expires_delta: Optional[timedelta] = None) -> str:
    """Create a signed access token for ``user``.

    Args:
        user: The authenticated user.
        expires_delta: Optional lifetime; defaults to ``auth.token_expire_minutes``.

    Returns:
        str: The encoded JWT.
    """
    config = get_config()
    if expires_delta is None:
        expires_delta = timedelta(minutes=config.auth.token_expire_minutes)

    payload = {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "avatar": user.avatar,
        "exp": datetime.now(timezone.utc) + expires_delta,
    }
    return jwt.encode(
        payload,
        config.secrets.jwt.secret_key,
        algorithm=config.secrets.jwt.algorithm,
    )


def decode_access_token(token: str) -> Dict[str, Any]:
    """Decode and verify a token's signature and expiry.

    Raises:
        AuthenticationError: If the token is malformed, forged or expired.
    """
    config = get_config()
    try:
        return jwt.decode(
            token,
            config.secrets.jwt.secret_key,
            algorithms=[config.secrets.jwt.algorithm],
        )
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token has expired")
    except jwt.PyJWTError as e:
        logger.debug("Token rejected: %s", e)
        raise AuthenticationError("Token is not valid")


def extract_bearer(authorization: Optional[str]) -> Optional[str]:
    """Return the token from an ``Authorization: Bearer ...`` header value."""
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        return None
    token = authorization[len(BEARER_PREFIX):].strip()
    return token or None


class IdentityVerifier:
    """Resolves a bearer token to a persisted user or refuses it."""

    def __init__(self, users: UserRepository) -> None:
        self._users = users

    async def verify(self, token: Optional[str]) -> User:
        """Validate ``token`` and load its user.

        Raises:
            AuthenticationError: Missing/invalid/expired token or unknown user.
        """
        if not token:
            raise AuthenticationError("No token provided")

        claims = decode_access_token(token)
        user_id = claims.get("id")
        if not user_id:
            raise AuthenticationError("Token is not valid")

        user = await self._users.get(user_id)
        if user is None:
            logger.warning("Token for unknown user %s rejected", user_id)
            raise AuthenticationError("Token is not valid, user not found")
        return user
