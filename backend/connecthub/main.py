"""ConnectHub Chat Backend Application.

This is the main entry point for the ConnectHub real-time chat service: direct
messaging between members of the ConnectHub professional network.

Modules:
    - auth: JWT access/refresh tokens and the bearer-token dependency
    - presence: In-process registry of online identities
    - conversations: DuckDB-based message store
    - cache: Redis cache of recent messages per conversation
    - chat: WebSocket gateway (/ws/chat) and HTTP chat API (/api/chat)
    - autoreply: Simulated replies from synthetic demo accounts
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from connecthub.auth.dependencies import set_token_verifier
from connecthub.auth.tokens import TokenVerifier
from connecthub.autoreply.service import AutoResponder
from connecthub.cache.recent import RecentMessageCache
from connecthub.chat.gateway import ChatGateway, set_gateway
from connecthub.chat.messages_router import router as messages_router
from connecthub.chat.router import router as chat_router
from connecthub.config import get_config
from connecthub.conversations.store import ConversationStore
from connecthub.errors import ChatError, ValidationError
from connecthub.presence.registry import PresenceRegistry

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
# httpx/httpcore log every connection; uvicorn.access logs every request.
for _noisy in (
    "redis",
    "httpx",
    "httpcore",
    "uvicorn.access",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


def build_gateway(config) -> ChatGateway:
    """Wire the chat services together from settings."""
    verifier = TokenVerifier.from_settings(config)
    store = ConversationStore(
        db_path=config.database.path,
        max_page_size=config.chat.max_page_size,
    )
    cache = RecentMessageCache.from_settings(config)
    gateway = ChatGateway(
        verifier=verifier,
        presence=PresenceRegistry(),
        store=store,
        cache=cache,
        max_content_length=config.chat.max_content_length,
    )
    gateway.auto_responder = AutoResponder(
        store,
        settings=config.autoreply,
        listener=gateway.deliver_reply,
    )
    return gateway


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in connecthub.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    gateway = build_gateway(config)
    set_token_verifier(gateway.verifier)
    set_gateway(gateway)
    logger.info(
        f"Chat gateway ready on http://{config.server.host}:{config.server.port} "
        f"(store={config.database.path}, cache={'on' if gateway.cache.enabled else 'off'})"
    )

    yield  # Application runs here

    # Shutdown
    await gateway.auto_responder.shutdown()
    await gateway.cache.close()
    gateway.store.close()
    set_gateway(None)
    logger.info("Application shutdown complete")


# Create FastAPI application with metadata
app = FastAPI(
    title="ConnectHub Chat API",
    description="Real-time direct messaging for the ConnectHub professional network",
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
    """Render service errors as ``{"success": false, "message": ...}``."""
    body = {"success": False, "message": exc.message}
    if isinstance(exc, ValidationError) and exc.errors:
        body["errors"] = exc.errors
    if exc.status_code >= 500:
        logger.error(f"[API] {request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(body, status_code=exc.status_code)


# Register all routers
app.include_router(chat_router)
app.include_router(messages_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object indicating the server is running.
    """
    return {"status": "ok"}
