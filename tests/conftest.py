"""Shared fakes for the bridge tests (no Telegram or Firestore involved)."""
from types import SimpleNamespace

import pytest

from socialbridge.constants import LANGUAGE_ENGLISH
from socialbridge.dispatcher import MessageDispatcher
from socialbridge.errors import MediaUnavailable, PersistenceFailure
from socialbridge.identity_map import IdentityMap
from socialbridge.linking import LinkingHandshake

SECRET = "test-secret-that-is-long-enough-for-hs256"


class FakeStore:
    """In-memory stand-in for FirestoreBridgeStore."""

    def __init__(self):
        self.messages = {}
        self.calls = {}
        self.connected = {}
        self.chat_owners = {}
        self.lookups = 0
        self.fail_on = set()

    def _maybe_fail(self, op):
        if op in self.fail_on:
            raise PersistenceFailure(f"{op} failed")

    async def mark_user_connected(self, user_id, chat_id):
        self._maybe_fail("mark_user_connected")
        self.connected.setdefault(user_id, set()).add(chat_id)

    async def find_user_by_chat_id(self, chat_id):
        self.lookups += 1
        self._maybe_fail("find_user_by_chat_id")
        return self.chat_owners.get(chat_id)

    async def save_message(self, record):
        self._maybe_fail("save_message")
        if record.record_id in self.messages:
            return False
        self.messages[record.record_id] = record
        return True

    async def save_call(self, record):
        self._maybe_fail("save_call")
        if record.record_id in self.calls:
            return False
        self.calls[record.record_id] = record
        return True


class FakeRelay:
    """Resolves file ids from a dict; unknown ids are unavailable."""

    def __init__(self, urls=None):
        self.urls = dict(urls or {})
        self.requested = []
        self.discarded = []

    async def resolve(self, file_id):
        self.requested.append(file_id)
        if file_id not in self.urls:
            raise MediaUnavailable(f"no such file {file_id}")
        return self.urls[file_id]

    def discard(self, url):
        self.discarded.append(url)


class ReplyRecorder:
    def __init__(self):
        self.sent = []

    async def __call__(self, chat_id, text):
        self.sent.append((chat_id, text))


def make_message(chat_id=1001, message_id=1, text=None, caption=None,
                 photo=(), video=None, voice=None):
    """Build an object shaped like telegram.Message for the dispatcher."""
    return SimpleNamespace(
        chat_id=chat_id,
        message_id=message_id,
        text=text,
        caption=caption,
        photo=photo,
        video=video,
        voice=voice,
    )


def photo_size(file_id, width, height, file_size=None):
    return SimpleNamespace(file_id=file_id, width=width, height=height, file_size=file_size)


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def replies():
    return ReplyRecorder()


@pytest.fixture
def identity_map():
    return IdentityMap()


@pytest.fixture
def relay():
    return FakeRelay()


@pytest.fixture
def handshake(identity_map, store, replies):
    return LinkingHandshake(
        identity_map=identity_map,
        store=store,
        secret=SECRET,
        send_reply=replies,
        language=LANGUAGE_ENGLISH,
    )


@pytest.fixture
def dispatcher(identity_map, store, relay, handshake, replies):
    return MessageDispatcher(
        identity_map=identity_map,
        store=store,
        media_relay=relay,
        handshake=handshake,
        send_reply=replies,
        language=LANGUAGE_ENGLISH,
    )
