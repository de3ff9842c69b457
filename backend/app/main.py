"""Chat backend application.

This is the main entry point for the realtime chat service: Google sign-in,
private and group conversations, and live presence, typing and message
delivery over a WebSocket.

Modules:
    - auth: Google OAuth login and bearer token verification
    - chat: realtime core (presence, rooms, fan-out, lifecycle) and chat HTTP API
    - users: user directory and private chat start
    - files: attachment uploads
    - storage: DuckDB persistence for users, chats and messages
"""
import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from app.auth.router import router as auth_router
from app.chat.api import router as chat_api_router
from app.chat.manager import get_hub
from app.chat.router import router as chat_router
from app.config import get_config
from app.errors import ChatError
from app.users.router import router as users_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
# httpx/httpcore log every TCP connection and TLS handshake.
for _noisy in (
    "httpx",
    "httpcore",
    "httpcore.http11",
    "httpcore.connection",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in chat.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    Path(config.uploads.upload_dir).mkdir(parents=True, exist_ok=True)

    hub = get_hub()
    await hub.start()
    logger.info(
        f"Chat server running on http://{config.server.host}:{config.server.port}"
    )

    yield  # Application runs here

    # Shutdown
    await hub.stop()
    logger.info("Application shutdown complete")


# Create FastAPI application with metadata
app = FastAPI(
    title="Chat API",
    description="Realtime chat backend - presence, rooms and message delivery",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().server.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        {"success": False, "message": exc.message},
        status_code=exc.status_code,
    )


# Register all routers
app.include_router(chat_router)
app.include_router(chat_api_router)
app.include_router(users_router)
app.include_router(auth_router)

app.mount(
    "/uploads",
    StaticFiles(directory=get_config().uploads.upload_dir, check_dir=False),
    name="uploads",
)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object with the number of connected users.
    """
    return {"status": "ok", "onlineUsers": len(get_hub().presence)}
