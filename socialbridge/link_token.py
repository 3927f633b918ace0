"""Signed, short-lived tokens that prove ownership of an application account.

The web app signs a token for the logged-in user and shows it as a
``t.me/<bot>?start=<token>`` deep link. Telegram then delivers
``/start <token>`` to the bot, and the linking handshake calls
verify_link_token() to find out which account the chat belongs to.
"""
import logging
import time
from typing import Any, Dict

import jwt

from .constants import (
    LINK_TOKEN_ALGORITHM,
    LINK_TOKEN_DEFAULT_TTL,
    LINK_TOKEN_USER_CLAIM,
)
from .errors import Expired, InvalidSignature

logger = logging.getLogger(__name__)


def issue_link_token(
    user_id: str, secret: str, expires_in: int = LINK_TOKEN_DEFAULT_TTL
) -> str:
    """Sign a link token for ``user_id`` valid for ``expires_in`` seconds."""
    now = int(time.time())
    payload: Dict[str, Any] = {
        LINK_TOKEN_USER_CLAIM: str(user_id),
        "iat": now,
        "exp": now + expires_in,
    }
    return jwt.encode(payload, secret, algorithm=LINK_TOKEN_ALGORITHM)


def verify_link_token(token: str, secret: str) -> str:
    """Verify a link token and return the application user id it carries.

    Args:
        token: The raw argument of the /start command.
        secret: Shared secret the web app signs tokens with.

    Returns:
        The user id from the token's ``userId`` claim.

    Raises:
        Expired: The signature is valid but ``exp`` is in the past.
        InvalidSignature: Anything else (bad signature, garbage input,
            missing ``exp`` or missing user id).
    """
    if not token or not token.strip():
        raise InvalidSignature("Empty link token")

    try:
        payload = jwt.decode(
            token.strip(),
            secret,
            algorithms=[LINK_TOKEN_ALGORITHM],
            options={"require": ["exp"]},
        )
    except jwt.ExpiredSignatureError as e:
        raise Expired("Link token has expired") from e
    except jwt.InvalidTokenError as e:
        raise InvalidSignature(f"Link token rejected: {e}") from e

    user_id = payload.get(LINK_TOKEN_USER_CLAIM)
    if user_id is None or not str(user_id).strip():
        raise InvalidSignature(f"Link token has no {LINK_TOKEN_USER_CLAIM} claim")

    return str(user_id).strip()
