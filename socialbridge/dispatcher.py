"""Route one inbound Telegram message to the right handler.

Flow per message:
  1. /start <token>            -> LinkingHandshake (done)
  2. sender chat not linked    -> dropped silently, no reply
  3. text / photo / video / voice -> one handler each:
        resolve media (MediaRelay) -> save MessageRecord
        -> voice only: save CallRecord -> send one acknowledgement
  4. anything else             -> dropped silently

Errors never escape dispatch(): media and persistence failures are logged and
suppress the acknowledgement, anything unexpected is logged with its
traceback so the next update is still processed.
"""
import enum
import logging
import time
import traceback
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, Optional, Tuple

from .call_synthesizer import synthesize_call
from .constants import (
    LINK_COMMAND,
    MEDIA_TYPE_IMAGE,
    MEDIA_TYPE_VIDEO,
    MEDIA_TYPE_VOICE,
    RECORD_ID_PREFIX,
)
from .errors import MediaUnavailable, PersistenceFailure, UnresolvedIdentity
from .identity_map import IdentityMap
from .linking import LinkingHandshake, SendReply
from .media_relay import MediaRelay, pick_largest_photo
from .records import MessageRecord
from .replies import (
    KIND_PHOTO,
    KIND_TEXT,
    KIND_VIDEO,
    KIND_VOICE,
    OUTCOME_SAVED,
    reply_text,
)

logger = logging.getLogger(__name__)

# Skip the store lookup for chats that were recently found unlinked.
_UNLINKED_CACHE_TTL = 60  # seconds


class PayloadKind(enum.Enum):
    LINK = "link"
    TEXT = "text"
    PHOTO = "photo"
    VIDEO = "video"
    VOICE = "voice"
    UNKNOWN = "unknown"


# Dispatch statuses (also used as metric labels by app/telegram_handler.py).
STATUS_LINKED = "linked"
STATUS_LINK_FAILED = "link_failed"
STATUS_SAVED = "saved"
STATUS_UNLINKED = "unlinked"
STATUS_UNCLASSIFIED = "unclassified"
STATUS_MEDIA_UNAVAILABLE = "media_unavailable"
STATUS_PERSISTENCE_FAILURE = "persistence_failure"
STATUS_ERROR = "error"

DROP_STATUSES = {
    STATUS_UNLINKED,
    STATUS_UNCLASSIFIED,
    STATUS_MEDIA_UNAVAILABLE,
    STATUS_PERSISTENCE_FAILURE,
    STATUS_ERROR,
}


@dataclass(frozen=True)
class DispatchOutcome:
    kind: PayloadKind
    status: str

    @property
    def dropped(self) -> bool:
        return self.status in DROP_STATUSES


def parse_command(text: str) -> Tuple[str, str]:
    """Split "/cmd@Bot arg ..." into ("cmd", "arg ...")."""
    parts = text.strip().split(maxsplit=1)
    command = parts[0][1:].split("@", 1)[0].lower()
    argument = parts[1].strip() if len(parts) > 1 else ""
    return command, argument


def classify(message) -> Tuple[PayloadKind, Optional[str]]:
    """Classify a Telegram message. Returns (kind, link token or None).

    Priority: link command, plain text, photo, video, voice. Other commands
    and every other payload (stickers, documents, locations...) are UNKNOWN.
    """
    text = getattr(message, "text", None)
    if text:
        if text.startswith("/"):
            command, argument = parse_command(text)
            if command == LINK_COMMAND and argument:
                return PayloadKind.LINK, argument
            return PayloadKind.UNKNOWN, None
        return PayloadKind.TEXT, None
    if getattr(message, "photo", None):
        return PayloadKind.PHOTO, None
    if getattr(message, "video", None):
        return PayloadKind.VIDEO, None
    if getattr(message, "voice", None):
        return PayloadKind.VOICE, None
    return PayloadKind.UNKNOWN, None


def record_id(message) -> str:
    """Stable record id for a Telegram message (idempotent on redelivery)."""
    return f"{RECORD_ID_PREFIX}_{message.chat_id}_{message.message_id}"


class MessageDispatcher:
    """Entry point for every inbound message of the bridge."""

    def __init__(
        self,
        identity_map: IdentityMap,
        store,
        media_relay: MediaRelay,
        handshake: LinkingHandshake,
        send_reply: SendReply,
        language: str,
    ):
        self.identity_map = identity_map
        self.store = store
        self.media_relay = media_relay
        self.handshake = handshake
        self.send_reply = send_reply
        self.language = language
        # Negative cache: chat_id -> last time the store said "not linked".
        self._unlinked_chats: Dict[int, float] = {}
        self._handlers: Dict[PayloadKind, Callable[..., Awaitable[None]]] = {
            PayloadKind.TEXT: self._handle_text,
            PayloadKind.PHOTO: self._handle_photo,
            PayloadKind.VIDEO: self._handle_video,
            PayloadKind.VOICE: self._handle_voice,
        }

    async def dispatch(self, message) -> DispatchOutcome:
        """Handle one message. Never raises."""
        received_at = datetime.now(timezone.utc)
        chat_id = message.chat_id
        kind = PayloadKind.UNKNOWN

        try:
            kind, token = classify(message)

            if kind is PayloadKind.LINK:
                linked = await self.handshake.run(chat_id, token)
                if linked:
                    self._unlinked_chats.pop(chat_id, None)
                return DispatchOutcome(kind, STATUS_LINKED if linked else STATUS_LINK_FAILED)

            user_id = await self._resolve_sender(chat_id)

            handler = self._handlers.get(kind)
            if handler is None:
                logger.debug(f"Ignoring unsupported message {message.message_id} from chat {chat_id}")
                return DispatchOutcome(kind, STATUS_UNCLASSIFIED)

            await handler(message, user_id, received_at)
            return DispatchOutcome(kind, STATUS_SAVED)

        except UnresolvedIdentity:
            logger.debug(f"Ignoring message from unlinked chat {chat_id}")
            return DispatchOutcome(kind, STATUS_UNLINKED)
        except MediaUnavailable as e:
            logger.error(f"Dropping {kind.value} message from chat {chat_id}: {e}")
            return DispatchOutcome(kind, STATUS_MEDIA_UNAVAILABLE)
        except PersistenceFailure as e:
            logger.error(f"Failed to save {kind.value} message from chat {chat_id}: {e}")
            return DispatchOutcome(kind, STATUS_PERSISTENCE_FAILURE)
        except Exception as e:
            logger.error(f"Error dispatching message from chat {chat_id}: {e}")
            logger.error(traceback.format_exc())
            return DispatchOutcome(kind, STATUS_ERROR)

    async def _resolve_sender(self, chat_id: int) -> str:
        """Find the user linked to ``chat_id``, warming the map from the store.

        Raises:
            UnresolvedIdentity: The chat is not linked.
            PersistenceFailure: The store lookup failed.
        """
        user_id = self.identity_map.resolve(chat_id)
        if user_id is not None:
            return user_id

        last_checked = self._unlinked_chats.get(chat_id)
        if last_checked and (time.time() - last_checked) < _UNLINKED_CACHE_TTL:
            raise UnresolvedIdentity(chat_id)

        stored_user_id = await self.store.find_user_by_chat_id(chat_id)
        if stored_user_id is None:
            self._unlinked_chats[chat_id] = time.time()
            raise UnresolvedIdentity(chat_id)

        self._unlinked_chats.pop(chat_id, None)
        user_id = self.identity_map.link_if_absent(chat_id, stored_user_id)
        logger.info(f"Restored link for chat {chat_id} -> user {user_id} from store")
        return user_id

    # ------------------------------------------------------------------
    # Per-kind handlers
    # ------------------------------------------------------------------

    async def _handle_text(self, message, user_id: str, received_at: datetime) -> None:
        record = MessageRecord(
            record_id=record_id(message),
            sender=user_id,
            content=message.text,
            timestamp=received_at,
        )
        await self.store.save_message(record)
        await self._acknowledge(message.chat_id, KIND_TEXT)

    async def _handle_photo(self, message, user_id: str, received_at: datetime) -> None:
        largest = pick_largest_photo(message.photo)
        media_url = await self.media_relay.resolve(largest.file_id)
        record = MessageRecord(
            record_id=record_id(message),
            sender=user_id,
            content=message.caption or "",
            media=media_url,
            media_type=MEDIA_TYPE_IMAGE,
            timestamp=received_at,
        )
        await self._save_media_message(record)
        await self._acknowledge(message.chat_id, KIND_PHOTO)

    async def _handle_video(self, message, user_id: str, received_at: datetime) -> None:
        media_url = await self.media_relay.resolve(message.video.file_id)
        record = MessageRecord(
            record_id=record_id(message),
            sender=user_id,
            content=message.caption or "",
            media=media_url,
            media_type=MEDIA_TYPE_VIDEO,
            timestamp=received_at,
        )
        await self._save_media_message(record)
        await self._acknowledge(message.chat_id, KIND_VIDEO)

    async def _handle_voice(self, message, user_id: str, received_at: datetime) -> None:
        media_url = await self.media_relay.resolve(message.voice.file_id)
        rid = record_id(message)
        record = MessageRecord(
            record_id=rid,
            sender=user_id,
            content=message.caption or "",
            media=media_url,
            media_type=MEDIA_TYPE_VOICE,
            timestamp=received_at,
        )
        await self._save_media_message(record)

        call = synthesize_call(
            record_id=rid,
            sender=user_id,
            media_url=media_url,
            duration=message.voice.duration,
            timestamp=received_at,
        )
        await self.store.save_call(call)
        await self._acknowledge(message.chat_id, KIND_VOICE)

    async def _save_media_message(self, record: MessageRecord) -> None:
        """Save a media message, discarding the mirrored file if the save fails."""
        try:
            await self.store.save_message(record)
        except Exception:
            self.media_relay.discard(record.media)
            raise

    async def _acknowledge(self, chat_id: int, kind: str) -> None:
        await self.send_reply(chat_id, reply_text(kind, OUTCOME_SAVED, self.language))
