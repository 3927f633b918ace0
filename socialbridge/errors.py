"""Exception types raised inside the bridge."""


class BridgeError(Exception):
    """Base class for every error the bridge raises on purpose."""
    pass


class LinkTokenError(BridgeError):
    """A link token could not be accepted."""
    pass


class InvalidSignature(LinkTokenError):
    """Token is malformed, signed with another secret, or has no user id."""
    pass


class Expired(LinkTokenError):
    """Token signature is fine but its validity window has passed."""
    pass


class MediaUnavailable(BridgeError):
    """Telegram could not give us a retrievable reference for a file."""
    pass


class PersistenceFailure(BridgeError):
    """A write to (or read from) the application store did not go through."""
    pass


class UnresolvedIdentity(BridgeError):
    """The chat has never been linked to an application user.

    This is the normal state of any chat that did not run /start, so the
    dispatcher drops such events without logging them as errors.
    """

    def __init__(self, chat_id: int):
        super().__init__(f"Chat {chat_id} is not linked")
        self.chat_id = chat_id
