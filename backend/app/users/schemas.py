"""Request bodies for the users HTTP API."""
from pydantic import BaseModel, Field


class StartChatRequest(BaseModel):
    userId: str = Field(..., min_length=1)


class StatusUpdateRequest(BaseModel):
    status: str = Field(..., max_length=140)
