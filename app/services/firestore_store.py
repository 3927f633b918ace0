"""Firestore access for the Telegram bridge.

The web app owns these collections; the bridge only ever:
  - updates users/{user_id} when a chat is linked, clearing the chat id
    from any other user that still holds it,
  - looks up the user linked to a chat id (to warm the in-memory map),
  - creates documents in messages/ and calls/.

Firestore document layout:
  users/{user_id}
      └── telegram_chat_id, telegram_connected, telegram_linked_at
  messages/tg_{chat_id}_{message_id}
      └── sender, content, media, media_type, timestamp
  calls/tg_{chat_id}_{message_id}
      └── caller, receiver, duration, media_url, call_type, timestamp

Record ids come from the Telegram message, so a redelivered update hits
AlreadyExists instead of writing a duplicate.
"""
import asyncio
import logging
from typing import Any, Dict, Optional

from google.api_core import exceptions as api_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import firestore
from google.cloud.firestore_v1.async_client import AsyncClient

from socialbridge.constants import (
    COLLECTION_CALLS,
    COLLECTION_MESSAGES,
    COLLECTION_USERS,
    DEFAULT_DATABASE,
    DEFAULT_STORE_TIMEOUT,
    FIELD_TELEGRAM_CHAT_ID,
    FIELD_TELEGRAM_CONNECTED,
    FIELD_TELEGRAM_LINKED_AT,
)
from socialbridge.errors import PersistenceFailure
from socialbridge.records import CallRecord, MessageRecord

logger = logging.getLogger(__name__)


class FirestoreBridgeStore:
    """Reads and writes the bridge's records in Firestore."""

    def __init__(
        self,
        project: Optional[str] = None,
        database: str = DEFAULT_DATABASE,
        timeout: float = DEFAULT_STORE_TIMEOUT,
    ):
        """The Firestore client is created lazily on first use.

        Args:
            project: Google Cloud project id, None to use GOOGLE_CLOUD_PROJECT.
            database: Firestore database id.
            timeout: Seconds allowed for each Firestore call.
        """
        self._project = project
        self._database = database
        self._timeout = timeout
        self._client: Optional[AsyncClient] = None
        self._client_lock = asyncio.Lock()

    async def _get_client(self) -> AsyncClient:
        if self._client is None:
            async with self._client_lock:
                if self._client is None:
                    try:
                        self._client = AsyncClient(
                            project=self._project,
                            database=self._database,
                        )
                    except (auth_exceptions.GoogleAuthError, api_exceptions.GoogleAPIError) as e:
                        raise PersistenceFailure(f"Could not create Firestore client: {e}") from e
        return self._client

    async def _call(self, what: str, coro):
        """Await a Firestore call with the store timeout, mapping failures."""
        try:
            return await asyncio.wait_for(coro, timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise PersistenceFailure(f"Timed out after {self._timeout}s: {what}") from e
        except api_exceptions.GoogleAPIError as e:
            raise PersistenceFailure(f"Firestore error during {what}: {e}") from e
        except auth_exceptions.GoogleAuthError as e:
            raise PersistenceFailure(f"Credentials error during {what}: {e}") from e

    async def mark_user_connected(self, user_id: str, chat_id: int) -> None:
        """Flag the user as connected to Telegram and store the chat id.

        A chat belongs to one user at a time, so any other user document that
        still carries this chat id is disconnected in the same batch.

        Raises:
            PersistenceFailure: The user document does not exist or the write
                failed.
        """
        client = await self._get_client()
        users = client.collection(COLLECTION_USERS)
        holders = await self._call(
            f"lookup chat {chat_id}",
            users.where(FIELD_TELEGRAM_CHAT_ID, "==", chat_id).get(),
        )

        batch = client.batch()
        previous = [doc for doc in holders if doc.id != user_id]
        for doc in previous:
            batch.update(doc.reference, {
                FIELD_TELEGRAM_CHAT_ID: firestore.DELETE_FIELD,
                FIELD_TELEGRAM_CONNECTED: False,
            })
        batch.update(users.document(user_id), {
            FIELD_TELEGRAM_CHAT_ID: chat_id,
            FIELD_TELEGRAM_CONNECTED: True,
            FIELD_TELEGRAM_LINKED_AT: firestore.SERVER_TIMESTAMP,
        })
        await self._call(f"link {COLLECTION_USERS}/{user_id}", batch.commit())

        if previous:
            logger.info(f"Chat {chat_id} moved to user {user_id}, disconnected {[doc.id for doc in previous]}")
        else:
            logger.info(f"User {user_id} marked connected to chat {chat_id}")

    async def find_user_by_chat_id(self, chat_id: int) -> Optional[str]:
        """Return the id of the connected user linked to ``chat_id``, if any."""
        client = await self._get_client()
        query = (
            client.collection(COLLECTION_USERS)
            .where(FIELD_TELEGRAM_CHAT_ID, "==", chat_id)
            .where(FIELD_TELEGRAM_CONNECTED, "==", True)
            .limit(1)
        )
        docs = await self._call(f"lookup chat {chat_id}", query.get())
        if not docs:
            return None
        return docs[0].id

    async def save_message(self, record: MessageRecord) -> bool:
        """Create the message document. Returns False if it already existed."""
        return await self._create(COLLECTION_MESSAGES, record.record_id, record.to_document())

    async def save_call(self, record: CallRecord) -> bool:
        """Create the call document. Returns False if it already existed."""
        return await self._create(COLLECTION_CALLS, record.record_id, record.to_document())

    async def _create(self, collection: str, doc_id: str, data: Dict[str, Any]) -> bool:
        client = await self._get_client()
        doc_ref = client.collection(collection).document(doc_id)
        try:
            await self._call(f"create {collection}/{doc_id}", doc_ref.create(data))
        except PersistenceFailure as e:
            if isinstance(e.__cause__, api_exceptions.AlreadyExists):
                logger.info(f"{collection}/{doc_id} already exists, treating as saved")
                return False
            raise
        return True
