"""Telegram bot handler for the SocialBridge message bridge.

This module is the bridge between Telegram and the web app's conversation
and call records.  It receives updates from Telegram (via webhook or long
polling), hands every message to the MessageDispatcher, and records metrics
about what happened.

Architecture overview:
  Telegram Cloud  ──webhook POST──►  FastAPI (app/main.py)
        │                                 │
        └──── long polling (optional) ────┤
                                          ▼
                            TelegramBotHandler.handle_message()
                                          │  (serialized per chat)
                                          ▼
                              MessageDispatcher.dispatch()
                                          │
              ┌───────────────┬───────────┴───────┬───────────────┐
              ▼               ▼                   ▼               ▼
      /start <token>     unlinked chat      text/photo/video    other
      LinkingHandshake   (silent drop)      /voice handlers     (drop)
              │                                   │
              ▼                                   ▼
      users/{id} update              MediaRelay -> messages/ (+ calls/)
              │                                   │
              └──────────────► one reply ◄────────┘

Key design decisions:
  - The chat -> user map lives in memory and is warmed from Firestore
    (users.telegram_chat_id) on a miss, so a restart does not unlink chats.
  - Unlinked chats get no reply at all, to avoid revealing whether an
    account exists.
  - Messages from one chat are handled one at a time, in arrival order.
    Telegram may deliver webhook updates concurrently, so ordering is
    enforced here with a per-chat asyncio.Lock.
  - Record ids are derived from the Telegram message id, so a redelivered
    update does not create a second record.
"""
import asyncio
import logging
import time
import traceback
from typing import Dict, Optional

from telegram import Update
from telegram.ext import (
    Application,
    ContextTypes,
    MessageHandler,
    filters,
)

from socialbridge.constants import (
    DEFAULT_LANGUAGE,
    DEFAULT_MEDIA_TIMEOUT,
    TELEGRAM_MAX_MESSAGE_LENGTH,
    TELEGRAM_MODE_POLLING,
    TELEGRAM_MODE_WEBHOOK,
)
from socialbridge.dispatcher import (
    STATUS_ERROR,
    STATUS_SAVED,
    DispatchOutcome,
    MessageDispatcher,
    PayloadKind,
)
from socialbridge.identity_map import IdentityMap
from socialbridge.linking import LinkingHandshake
from socialbridge.media_relay import MediaRelay
from socialbridge.replies import normalize_language
from app.metrics import (
    DISPATCH_ERRORS,
    DISPATCH_LATENCY,
    DROPPED_TOTAL,
    LINK_TOTAL,
    MEDIA_LATENCY,
    MESSAGE_TOTAL,
    SAVED_TOTAL,
)

logger = logging.getLogger(__name__)


class TelegramBotHandler:
    """Handler for Telegram bot integration with the message bridge."""

    def __init__(
        self,
        bot_token: str,
        jwt_secret: str,
        store,
        language: str = DEFAULT_LANGUAGE,
        mode: str = TELEGRAM_MODE_WEBHOOK,
        media_timeout: float = DEFAULT_MEDIA_TIMEOUT,
        media_mirror_dir: Optional[str] = None,
        media_public_base_url: Optional[str] = None,
    ):
        """Initialize Telegram bot handler.

        Note: This only stores references.  The Telegram Application and the
        dispatcher are created later in initialize() because they require
        async setup.

        Args:
            bot_token: Telegram bot token (from @BotFather).
            jwt_secret: Secret the web app signs link tokens with.
            store: FirestoreBridgeStore (or anything with the same methods).
            language: Reply language ("ar" or "en").
            mode: "webhook" (updates pushed to app/main.py) or "polling".
            media_timeout: Seconds allowed for resolving one media file.
            media_mirror_dir: Optional directory to copy media into.
            media_public_base_url: Public URL of media_mirror_dir.
        """
        self.bot_token = bot_token
        self.jwt_secret = jwt_secret
        self.store = store
        self.language = normalize_language(language)
        self.mode = mode
        self.media_timeout = media_timeout
        self.media_mirror_dir = media_mirror_dir
        self.media_public_base_url = media_public_base_url
        self.app = None         # python-telegram-bot Application (created in initialize)
        self.dispatcher = None  # MessageDispatcher (created in initialize)
        self.identity_map = IdentityMap()
        # One lock per chat keeps that chat's messages in delivery order.
        # A lock is dropped once no message for its chat is in flight.
        self._chat_locks: Dict[int, asyncio.Lock] = {}
        self._chat_lock_users: Dict[int, int] = {}

    async def initialize(self):
        """Initialize the Telegram application and the bridge components.

        Called once at startup (from main.py).  Sets up:
          1. The python-telegram-bot Application (manages bot API connection).
          2. The MediaRelay, LinkingHandshake and MessageDispatcher.
          3. A single message handler that feeds the dispatcher.
          4. In polling mode, starts fetching updates.
        """
        self.app = Application.builder().token(self.bot_token).build()
        self.dispatcher = self._build_dispatcher(self.app.bot)

        # Every new message goes through the dispatcher; it does its own
        # classification so unknown payloads are an explicit, tested branch.
        self.app.add_handler(
            MessageHandler(filters.UpdateType.MESSAGE, self.handle_message)
        )
        self.app.add_error_handler(self.handle_error)

        await self.app.initialize()

        if self.mode == TELEGRAM_MODE_POLLING:
            await self.app.start()
            await self.app.updater.start_polling()
            logger.info("Telegram bot started in polling mode")
        else:
            logger.info("Telegram bot ready for webhook updates")

    def _build_dispatcher(self, bot) -> MessageDispatcher:
        media_relay = MediaRelay(
            bot=bot,
            bot_token=self.bot_token,
            timeout=self.media_timeout,
            mirror_dir=self.media_mirror_dir,
            public_base_url=self.media_public_base_url,
            observe_latency=self._observe_media_latency,
        )
        handshake = LinkingHandshake(
            identity_map=self.identity_map,
            store=self.store,
            secret=self.jwt_secret,
            send_reply=self.send_reply,
            language=self.language,
        )
        return MessageDispatcher(
            identity_map=self.identity_map,
            store=self.store,
            media_relay=media_relay,
            handshake=handshake,
            send_reply=self.send_reply,
            language=self.language,
        )

    async def shutdown(self):
        """Stop fetching updates and release resources.

        In-flight messages are not waited for.
        """
        if not self.app:
            return
        if self.app.updater and self.app.updater.running:
            await self.app.updater.stop()
        if self.app.running:
            await self.app.stop()
        await self.app.shutdown()

    # ------------------------------------------------------------------
    # Outbound replies
    # ------------------------------------------------------------------

    async def send_reply(self, chat_id: int, text: str):
        """Send a reply text to a chat (replies are always short)."""
        return await self.app.bot.send_message(
            chat_id=chat_id, text=text[:TELEGRAM_MAX_MESSAGE_LENGTH]
        )

    # ------------------------------------------------------------------
    # Inbound messages
    # ------------------------------------------------------------------

    def _acquire_chat_lock(self, chat_id: int) -> asyncio.Lock:
        lock = self._chat_locks.get(chat_id)
        if lock is None:
            lock = asyncio.Lock()
            self._chat_locks[chat_id] = lock
        self._chat_lock_users[chat_id] = self._chat_lock_users.get(chat_id, 0) + 1
        return lock

    def _release_chat_lock(self, chat_id: int) -> None:
        remaining = self._chat_lock_users[chat_id] - 1
        if remaining:
            self._chat_lock_users[chat_id] = remaining
        else:
            del self._chat_lock_users[chat_id]
            del self._chat_locks[chat_id]

    async def handle_message(
        self, update: Update, _context: ContextTypes.DEFAULT_TYPE
    ) -> Optional[DispatchOutcome]:
        """Handle every new message: dispatch it and record metrics."""
        message = update.message
        if not message:
            logger.warning("Received update without message payload")
            return None

        start_time = time.monotonic()
        lock = self._acquire_chat_lock(message.chat_id)
        try:
            async with lock:
                outcome = await self.dispatcher.dispatch(message)
        finally:
            self._release_chat_lock(message.chat_id)
        elapsed = time.monotonic() - start_time

        self._record_outcome(outcome, elapsed)
        logger.info(
            f"Handled {outcome.kind.value} message {message.message_id} "
            f"from chat {message.chat_id}: {outcome.status} ({elapsed * 1000:.0f}ms)"
        )
        return outcome

    def _record_outcome(self, outcome: DispatchOutcome, elapsed: float) -> None:
        kind = outcome.kind.value
        MESSAGE_TOTAL.labels(type=kind).inc()
        DISPATCH_LATENCY.labels(type=kind).observe(elapsed)

        if outcome.kind is PayloadKind.LINK:
            LINK_TOTAL.labels(outcome=outcome.status).inc()
        elif outcome.status == STATUS_SAVED:
            SAVED_TOTAL.labels(type=kind).inc()

        if outcome.dropped:
            DROPPED_TOTAL.labels(reason=outcome.status).inc()
        if outcome.status == STATUS_ERROR:
            DISPATCH_ERRORS.inc()

    def _observe_media_latency(self, seconds: float, outcome: str) -> None:
        MEDIA_LATENCY.labels(outcome=outcome).observe(seconds)

    async def handle_error(
        self, update: object, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Log errors that escaped a handler; the application keeps running."""
        update_id = getattr(update, "update_id", None)
        logger.error(f"Unhandled error while processing update {update_id}: {context.error}")
        if context.error is not None:
            logger.error(
                "".join(
                    traceback.format_exception(
                        type(context.error), context.error, context.error.__traceback__
                    )
                )
            )

    # ------------------------------------------------------------------
    # Webhook entry point (called by main.py's FastAPI route)
    # ------------------------------------------------------------------

    async def handle_webhook(self, update_data: dict):
        """Handle an incoming webhook POST from Telegram.

        The python-telegram-bot library deserializes the raw dict into an
        Update object and dispatches it to handle_message().

        Args:
            update_data: Raw JSON dict from Telegram's webhook POST body.
        """
        try:
            update = Update.de_json(update_data, self.app.bot)
            await self.app.process_update(update)
        except Exception as e:
            logger.error(f"Error processing webhook update: {e}")
            raise
