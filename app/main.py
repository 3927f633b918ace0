"""FastAPI entry point for the SocialBridge Telegram bridge."""
import os
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse, Response
from fastapi.staticfiles import StaticFiles
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from app.logging_config import setup_logging
from app.services.firestore_store import FirestoreBridgeStore
from app.telegram_handler import TelegramBotHandler
from socialbridge.constants import (
    DEFAULT_DATABASE,
    DEFAULT_LANGUAGE,
    DEFAULT_MEDIA_TIMEOUT,
    DEFAULT_STORE_TIMEOUT,
    MEDIA_MIRROR_ROUTE,
    RATE_LIMIT_RETRY_AFTER,
    RATE_LIMIT_WEBHOOK,
    TELEGRAM_MODE_POLLING,
    TELEGRAM_MODE_WEBHOOK,
)

setup_logging()
logger = logging.getLogger(__name__)

TELEGRAM_BOT_TOKEN = os.environ.get("TELEGRAM_BOT_TOKEN", "")
JWT_SECRET = os.environ.get("JWT_SECRET", "")
APP_ENV = os.environ.get("APP_ENV", "production").lower()
TELEGRAM_MODE = os.environ.get("TELEGRAM_MODE", TELEGRAM_MODE_WEBHOOK).lower()
BRIDGE_LANGUAGE = os.environ.get("BRIDGE_LANGUAGE", DEFAULT_LANGUAGE)
MEDIA_MIRROR_DIR = os.environ.get("MEDIA_MIRROR_DIR") or None
MEDIA_PUBLIC_BASE_URL = os.environ.get("MEDIA_PUBLIC_BASE_URL") or None
MEDIA_TIMEOUT_SECONDS = float(os.environ.get("MEDIA_TIMEOUT_SECONDS", DEFAULT_MEDIA_TIMEOUT))
STORE_TIMEOUT_SECONDS = float(os.environ.get("STORE_TIMEOUT_SECONDS", DEFAULT_STORE_TIMEOUT))

telegram_handler = None

# Validate required environment variables early.
_required_env = ["GOOGLE_CLOUD_PROJECT", "JWT_SECRET"]
if TELEGRAM_BOT_TOKEN:
    _required_env.append("TELEGRAM_BOT_TOKEN")

_missing_env = [key for key in _required_env if not os.environ.get(key)]
if _missing_env:
    logger.error(f"Missing required environment variables: {_missing_env}")
    if APP_ENV == "production":
        raise RuntimeError("Missing required environment variables")

if TELEGRAM_MODE not in (TELEGRAM_MODE_WEBHOOK, TELEGRAM_MODE_POLLING):
    logger.warning(f"Unknown TELEGRAM_MODE '{TELEGRAM_MODE}', falling back to webhook")
    TELEGRAM_MODE = TELEGRAM_MODE_WEBHOOK

if TELEGRAM_BOT_TOKEN:
    logger.info(f"TELEGRAM_BOT_TOKEN found, mode: {TELEGRAM_MODE}")
else:
    logger.warning("TELEGRAM_BOT_TOKEN not set - Telegram integration disabled")


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_telegram()
    yield
    if telegram_handler:
        await telegram_handler.shutdown()

app = FastAPI(lifespan=lifespan)

# Rate limiting configuration
limiter = Limiter(key_func=get_remote_address)
app.state.limiter = limiter

# Mirrored media is served from here; the relay returns URLs under this path.
if MEDIA_MIRROR_DIR and MEDIA_PUBLIC_BASE_URL:
    os.makedirs(MEDIA_MIRROR_DIR, exist_ok=True)
    app.mount(MEDIA_MIRROR_ROUTE, StaticFiles(directory=MEDIA_MIRROR_DIR), name="uploads")


@app.exception_handler(RateLimitExceeded)
async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    """Handle rate limit exceeded errors.

    Returns JSONResponse instead of raising exception.
    """
    logger.warning(f"Rate limit exceeded for {request.client.host}")
    return JSONResponse(
        status_code=429,
        content={
            "error": "Rate limit exceeded",
            "detail": "Too many requests. Please try again later.",
            "retry_after": f"{RATE_LIMIT_RETRY_AFTER} seconds"
        }
    )


async def init_telegram():
    """Initialize the Telegram bot and the bridge."""
    global telegram_handler
    if TELEGRAM_BOT_TOKEN and telegram_handler is None:
        try:
            logger.info("Initializing Telegram bridge...")

            store = FirestoreBridgeStore(
                project=os.environ.get("GOOGLE_CLOUD_PROJECT"),
                database=os.environ.get("FIRESTORE_DATABASE", DEFAULT_DATABASE),
                timeout=STORE_TIMEOUT_SECONDS,
            )

            handler = TelegramBotHandler(
                bot_token=TELEGRAM_BOT_TOKEN,
                jwt_secret=JWT_SECRET,
                store=store,
                language=BRIDGE_LANGUAGE,
                mode=TELEGRAM_MODE,
                media_timeout=MEDIA_TIMEOUT_SECONDS,
                media_mirror_dir=MEDIA_MIRROR_DIR,
                media_public_base_url=MEDIA_PUBLIC_BASE_URL,
            )
            await handler.initialize()
            telegram_handler = handler
            logger.info("Telegram bridge initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize Telegram bot: {e}")
            import traceback
            logger.error(traceback.format_exc())


@app.post("/webhook/telegram")
@limiter.limit(RATE_LIMIT_WEBHOOK)
async def telegram_webhook(request: Request):
    """Webhook endpoint for Telegram bot updates.

    Endpoint: POST /webhook/telegram
    """
    # Lazy initialization on first webhook call
    if telegram_handler is None and TELEGRAM_BOT_TOKEN:
        await init_telegram()

    if not telegram_handler:
        raise HTTPException(
            status_code=503, detail="Telegram bot not configured"
        )

    try:
        update_data = await request.json()
        await telegram_handler.handle_webhook(update_data)
        return {"ok": True}
    except Exception as e:
        logger.error(f"Error processing Telegram webhook: {e}")
        raise HTTPException(status_code=400, detail="Failed to process update")


@app.get("/telegram/webhook-status")
async def telegram_webhook_status():
    """Get Telegram bot status."""
    if telegram_handler is None and TELEGRAM_BOT_TOKEN:
        await init_telegram()

    if not telegram_handler or not telegram_handler.app:
        return {
            "status": "disabled",
            "message": "Telegram bot not configured",
            "token_present": bool(TELEGRAM_BOT_TOKEN),
        }

    try:
        bot_info = await telegram_handler.app.bot.get_me()
        return {
            "status": "active",
            "mode": telegram_handler.mode,
            "bot_username": bot_info.username,
            "bot_name": bot_info.first_name,
            "linked_chats": len(telegram_handler.identity_map),
        }
    except Exception as e:
        logger.error(f"Error getting bot info: {e}")
        return {"status": "error", "message": str(e)}


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/healthz")
async def healthz():
    """Basic health check."""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.environ.get("PORT", 8080)))
