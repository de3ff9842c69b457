"""Error taxonomy shared by the realtime core and the HTTP API.

Every error carries a human-readable ``message`` (sent verbatim to the
client in an ``error`` frame) and the HTTP ``status_code`` used when the
same error surfaces through a REST endpoint.
"""


class ChatError(Exception):
    """Base exception for chat errors."""
    def __init__(self, message: str, status_code: int = 500):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class AuthenticationError(ChatError):
    """Raised for a missing, malformed, expired or orphaned credential."""
    def __init__(self, message: str = "Authentication error"):
        super().__init__(message, status_code=401)


class AccessDenied(ChatError):
    """Raised when an authenticated user is not allowed to touch a chat or message."""
    def __init__(self, message: str = "Chat not found or access denied"):
        super().__init__(message, status_code=403)


class NotFound(ChatError):
    """Raised when a referenced chat, message or user does not exist."""
    def __init__(self, message: str = "Not found"):
        super().__init__(message, status_code=404)


class ValidationError(ChatError):
    """Raised for empty content, bad file types or missing fields."""
    def __init__(self, message: str):
        super().__init__(message, status_code=400)


class InternalError(ChatError):
    """Raised when storage fails or something unexpected happens."""
    def __init__(self, message: str = "Internal server error"):
        super().__init__(message, status_code=500)
