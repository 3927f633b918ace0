"""In-memory map from Telegram chat ids to application user ids."""
import logging
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


class IdentityMap:
    """Chat id -> user id, last link wins.

    A user may link several chats (phone and desktop), so many chat ids can
    point at the same user id. Each method below completes without awaiting,
    so callers running on the event loop never observe a half-applied update.
    """

    def __init__(self):
        self._links: Dict[int, str] = {}

    def resolve(self, chat_id: int) -> Optional[str]:
        """Return the user id linked to ``chat_id``, or None."""
        return self._links.get(chat_id)

    def link(self, chat_id: int, user_id: str) -> Optional[str]:
        """Link ``chat_id`` to ``user_id`` and return the user id it replaced."""
        previous = self._links.get(chat_id)
        self._links[chat_id] = user_id
        if previous is not None and previous != user_id:
            logger.info(f"Chat {chat_id} relinked from user {previous} to {user_id}")
        return previous

    def link_if_absent(self, chat_id: int, user_id: str) -> str:
        """Insert a link only if the chat has none; return the effective user id.

        Used when warming the map from the store, so a handshake that
        completed while the store lookup was in flight is not overwritten.
        """
        return self._links.setdefault(chat_id, user_id)

    def restore(
        self, chat_id: int, linked_user_id: str, previous: Optional[str]
    ) -> bool:
        """Undo a link(chat_id, linked_user_id) whose persistence failed.

        Only acts if the chat still points at ``linked_user_id``. Returns
        True when the map was changed.
        """
        if self._links.get(chat_id) != linked_user_id:
            return False
        if previous is None:
            del self._links[chat_id]
        else:
            self._links[chat_id] = previous
        return True

    def chats_for(self, user_id: str) -> List[int]:
        """All chat ids currently linked to ``user_id``."""
        return [chat_id for chat_id, uid in self._links.items() if uid == user_id]

    def __contains__(self, chat_id: int) -> bool:
        return chat_id in self._links

    def __len__(self) -> int:
        return len(self._links)
