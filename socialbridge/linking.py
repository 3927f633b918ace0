"""The /start <token> handshake that links a Telegram chat to an account."""
import logging
import traceback
from typing import Awaitable, Callable

from .errors import Expired, InvalidSignature, PersistenceFailure
from .identity_map import IdentityMap
from .link_token import verify_link_token
from .replies import KIND_LINK, OUTCOME_FAILURE, OUTCOME_SUCCESS, reply_text

logger = logging.getLogger(__name__)

SendReply = Callable[[int, str], Awaitable[object]]


class LinkingHandshake:
    """Verify a link token, record the link, and tell the user how it went.

    Exactly one reply goes out per attempt. The in-memory link is only kept
    if the user document was updated too; otherwise it is rolled back so
    memory and Firestore agree.
    """

    def __init__(
        self,
        identity_map: IdentityMap,
        store,
        secret: str,
        send_reply: SendReply,
        language: str,
    ):
        self.identity_map = identity_map
        self.store = store
        self.secret = secret
        self.send_reply = send_reply
        self.language = language

    async def run(self, chat_id: int, token: str) -> bool:
        """Run the handshake for ``chat_id``. Returns True if the chat is now linked."""
        try:
            user_id = verify_link_token(token, self.secret)
        except Expired:
            logger.info(f"Expired link token from chat {chat_id}")
            await self._reply(chat_id, OUTCOME_FAILURE)
            return False
        except InvalidSignature as e:
            logger.warning(f"Invalid link token from chat {chat_id}: {e}")
            await self._reply(chat_id, OUTCOME_FAILURE)
            return False

        previous = self.identity_map.link(chat_id, user_id)
        try:
            await self.store.mark_user_connected(user_id, chat_id)
        except PersistenceFailure as e:
            rolled_back = self.identity_map.restore(chat_id, user_id, previous)
            logger.error(
                f"Failed to mark user {user_id} connected for chat {chat_id}: {e} "
                f"(in-memory link rolled back: {rolled_back})"
            )
            await self._reply(chat_id, OUTCOME_FAILURE)
            return False
        except Exception as e:
            rolled_back = self.identity_map.restore(chat_id, user_id, previous)
            logger.error(
                f"Unexpected error marking user {user_id} connected for chat {chat_id}: {e} "
                f"(in-memory link rolled back: {rolled_back})"
            )
            logger.error(traceback.format_exc())
            await self._reply(chat_id, OUTCOME_FAILURE)
            return False

        logger.info(f"Chat {chat_id} linked to user {user_id}")
        await self._reply(chat_id, OUTCOME_SUCCESS)
        return True

    async def _reply(self, chat_id: int, outcome: str) -> None:
        await self.send_reply(chat_id, reply_text(KIND_LINK, outcome, self.language))
