"""FastAPI dependencies shared by the HTTP routers."""
from typing import Optional

from fastapi import Depends, Header

from app.config import get_config
from app.errors import AuthenticationError
from app.storage import Storage
from app.storage.schemas import User

from .service import IdentityVerifier, extract_bearer


def get_storage() -> Storage:
    return Storage.get_instance(get_config().storage.db_path)


async def get_current_user(
    authorization: Optional[str] = Header(None),
    storage: Storage = Depends(get_storage),
) -> User:
    """Resolve the ``Authorization: Bearer`` header to a user or fail with 401."""
    token = extract_bearer(authorization)
    if token is None:
        raise AuthenticationError("No token provided, authorization denied")
    return await IdentityVerifier(storage.users).verify(token)
