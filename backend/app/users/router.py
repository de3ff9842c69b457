"""Users router: directory, online list, status and private-chat start."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.auth.dependencies import get_current_user
from app.chat.manager import ChatHub, get_hub
from app.errors import NotFound, ValidationError
from app.storage.schemas import User

from .schemas import StartChatRequest, StatusUpdateRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])


def _live_profile(hub: ChatHub, user: User) -> dict:
    profile = user.public_profile()
    profile.isOnline = hub.presence.is_online(user.id)
    return profile.model_dump(mode="json")


@router.get("")
async def list_users(
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    hub: ChatHub = Depends(get_hub),
) -> dict:
    """Other users, online first, optionally filtered by name or email.

    Args:
        search: Case-insensitive substring of the name or email.
        page: 1-based page number.
        limit: Page size.
    """
    users = await hub.storage.users.search(user.id, search=search, page=page, limit=limit)
    total = await hub.storage.users.count_search(user.id, search=search)
    return {
        "success": True,
        "users": [_live_profile(hub, u) for u in users],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit,
        },
    }


@router.get("/online")
async def online_users(
    user: User = Depends(get_current_user),
    hub: ChatHub = Depends(get_hub),
) -> dict:
    """Users with a live connection right now, excluding the caller."""
    profiles = [p for p in hub.presence.snapshot() if p.id != user.id]
    return {"success": True, "users": [p.model_dump(mode="json") for p in profiles]}


@router.get("/stats/overview")
async def stats_overview(
    user: User = Depends(get_current_user),
    hub: ChatHub = Depends(get_hub),
) -> dict:
    """Directory totals plus the caller's own chat count and sign-up date."""
    return {
        "success": True,
        "stats": {
            "totalUsers": await hub.storage.users.count(),
            "onlineUsers": len(hub.presence),
            "userChats": await hub.storage.chats.count_for_user(user.id),
            "registrationDate": user.createdAt.isoformat(),
        },
    }


@router.post("/start-chat")
async def start_chat(
    body: StartChatRequest,
    user: User = Depends(get_current_user),
    hub: ChatHub = Depends(get_hub),
) -> dict:
    """Find or create the private chat with another user."""
    if body.userId == user.id:
        raise ValidationError("Cannot start chat with yourself")

    chat = await hub.fanout.start_private_chat(user, body.userId)
    logger.info("[Users] %s opened private chat %s with %s", user.id, chat.id, body.userId)
    return {"success": True, "chat": chat.model_dump(mode="json")}


@router.put("/status")
async def update_status(
    body: StatusUpdateRequest,
    user: User = Depends(get_current_user),
    hub: ChatHub = Depends(get_hub),
) -> dict:
    """Change the caller's status line."""
    updated = await hub.storage.users.update_status(user.id, body.status.strip())
    return {
        "success": True,
        "user": _live_profile(hub, updated),
        "message": "Status updated successfully",
    }


@router.get("/{user_id}")
async def get_user(
    user_id: str,
    user: User = Depends(get_current_user),
    hub: ChatHub = Depends(get_hub),
) -> dict:
    found = await hub.storage.users.get(user_id)
    if found is None:
        raise NotFound("User not found")
    return {"success": True, "user": _live_profile(hub, found)}
