"""Resolve Telegram file ids into URLs the web app can load.

By default the relay hands back Telegram's own download URL. When a mirror
directory is configured the file is downloaded there and the URL of the
local copy (served by app/main.py under /uploads) is returned instead.
"""
import asyncio
import logging
import os
import time
from pathlib import Path
from typing import Callable, Optional, Sequence

from telegram.error import TelegramError

from .constants import DEFAULT_MEDIA_TIMEOUT, TELEGRAM_FILE_URL
from .errors import MediaUnavailable

logger = logging.getLogger(__name__)

# Called with (seconds, outcome) after every resolve; outcome is one of
# "resolved", "timeout", "failed".
LatencyObserver = Callable[[float, str], None]


def pick_largest_photo(sizes: Sequence):
    """Return the highest-resolution PhotoSize Telegram offered.

    Telegram usually lists sizes smallest first, but we compare pixel area
    (then file size) rather than relying on the order.
    """
    if not sizes:
        raise MediaUnavailable("Photo message carries no sizes")
    return max(
        sizes,
        key=lambda s: (
            (getattr(s, "width", 0) or 0) * (getattr(s, "height", 0) or 0),
            getattr(s, "file_size", 0) or 0,
        ),
    )


class MediaRelay:
    """Turns a Telegram ``file_id`` into a durable URL."""

    def __init__(
        self,
        bot,
        bot_token: str,
        timeout: float = DEFAULT_MEDIA_TIMEOUT,
        mirror_dir: Optional[str] = None,
        public_base_url: Optional[str] = None,
        observe_latency: Optional[LatencyObserver] = None,
    ):
        """
        Args:
            bot: telegram.Bot used for getFile / downloads.
            bot_token: Needed to build download URLs when Telegram returns a
                relative file_path.
            timeout: Seconds allowed for getFile plus the optional download.
            mirror_dir: If set together with public_base_url, files are
                copied here.
            public_base_url: Base URL under which mirror_dir is served.
            observe_latency: Optional callback timing each resolve.
        """
        self.bot = bot
        self.bot_token = bot_token
        self.timeout = timeout
        self.mirror_dir = Path(mirror_dir) if mirror_dir else None
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None
        self.observe_latency = observe_latency
        if self.mirror_dir and not self.public_base_url:
            logger.warning("MEDIA_MIRROR_DIR set without MEDIA_PUBLIC_BASE_URL - mirroring disabled")
            self.mirror_dir = None
        if self.mirror_dir:
            self.mirror_dir.mkdir(parents=True, exist_ok=True)

    @property
    def mirroring(self) -> bool:
        return self.mirror_dir is not None

    async def resolve(self, file_id: str) -> str:
        """Resolve ``file_id`` to a URL.

        Raises:
            MediaUnavailable: getFile failed, timed out, returned no path, or
                the mirror download failed.
        """
        start_time = time.monotonic()
        outcome = "failed"
        try:
            url = await asyncio.wait_for(self._resolve(file_id), timeout=self.timeout)
            outcome = "resolved"
            return url
        except MediaUnavailable:
            raise
        except asyncio.TimeoutError as e:
            outcome = "timeout"
            raise MediaUnavailable(
                f"Timed out after {self.timeout}s resolving file {file_id}"
            ) from e
        except (TelegramError, OSError) as e:
            raise MediaUnavailable(f"Could not resolve file {file_id}: {e}") from e
        finally:
            if self.observe_latency is not None:
                self.observe_latency(time.monotonic() - start_time, outcome)

    def discard(self, url: str) -> None:
        """Delete the mirrored copy behind ``url``, if it is one of ours.

        Used when the record that would have referenced the file was not
        saved. Telegram transport URLs are left alone.
        """
        if self.mirror_dir is None or not url.startswith(f"{self.public_base_url}/"):
            return
        target = self.mirror_dir / os.path.basename(url)
        try:
            target.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not remove unreferenced mirror file {target}: {e}")
            return
        logger.info(f"Removed unreferenced mirror file {target}")

    async def _resolve(self, file_id: str) -> str:
        tg_file = await self.bot.get_file(file_id)
        file_path = getattr(tg_file, "file_path", None)
        if not file_path:
            raise MediaUnavailable(f"Telegram returned no file_path for {file_id}")

        if self.mirror_dir is None:
            return self._transport_url(file_path)

        # Same naming scheme the web app uses for its own uploads.
        name = f"{int(time.time() * 1000)}-{os.path.basename(file_path)}"
        target = self.mirror_dir / name
        try:
            await tg_file.download_to_drive(custom_path=target)
        except (Exception, asyncio.CancelledError):
            # Failed or timed-out downloads must not leave partial files.
            target.unlink(missing_ok=True)
            raise
        logger.info(f"Mirrored Telegram file {file_id} to {target}")
        return f"{self.public_base_url}/{name}"

    def _transport_url(self, file_path: str) -> str:
        # python-telegram-bot already returns absolute URLs; older Bot API
        # servers hand back the bare path.
        if file_path.startswith(("http://", "https://")):
            return file_path
        return TELEGRAM_FILE_URL.format(token=self.bot_token, file_path=file_path.lstrip("/"))
