"""Tests for resolving Telegram file ids into URLs."""
import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from telegram.error import NetworkError

from conftest import photo_size
from socialbridge.errors import MediaUnavailable
from socialbridge.media_relay import MediaRelay, pick_largest_photo


def _make_bot(file_path="photos/file_1.jpg"):
    tg_file = SimpleNamespace(file_path=file_path, download_to_drive=AsyncMock())
    bot = MagicMock()
    bot.get_file = AsyncMock(return_value=tg_file)
    return bot, tg_file


class TestPickLargestPhoto:
    def test_picks_largest_area(self):
        sizes = [
            photo_size("small", 90, 60),
            photo_size("large", 1280, 853),
            photo_size("medium", 320, 213),
        ]
        assert pick_largest_photo(sizes).file_id == "large"

    def test_file_size_breaks_ties(self):
        sizes = [
            photo_size("a", 800, 600, file_size=1000),
            photo_size("b", 800, 600, file_size=2000),
        ]
        assert pick_largest_photo(sizes).file_id == "b"

    def test_empty_sizes_is_unavailable(self):
        with pytest.raises(MediaUnavailable):
            pick_largest_photo([])


@pytest.mark.asyncio
async def test_relative_path_becomes_transport_url():
    bot, _ = _make_bot("photos/file_1.jpg")
    relay = MediaRelay(bot, bot_token="123:ABC")

    url = await relay.resolve("file-id")

    assert url == "https://api.telegram.org/file/bot123:ABC/photos/file_1.jpg"
    bot.get_file.assert_awaited_once_with("file-id")


@pytest.mark.asyncio
async def test_absolute_path_is_returned_unchanged():
    absolute = "https://api.telegram.org/file/bot123:ABC/voice/file_9.oga"
    bot, _ = _make_bot(absolute)
    relay = MediaRelay(bot, bot_token="123:ABC")

    assert await relay.resolve("file-id") == absolute


@pytest.mark.asyncio
async def test_missing_file_path_is_unavailable():
    bot, _ = _make_bot(None)
    relay = MediaRelay(bot, bot_token="123:ABC")

    with pytest.raises(MediaUnavailable, match="no file_path"):
        await relay.resolve("file-id")


@pytest.mark.asyncio
async def test_telegram_error_is_unavailable():
    bot = MagicMock()
    bot.get_file = AsyncMock(side_effect=NetworkError("connection reset"))
    relay = MediaRelay(bot, bot_token="123:ABC")

    with pytest.raises(MediaUnavailable, match="connection reset"):
        await relay.resolve("file-id")


@pytest.mark.asyncio
async def test_timeout_is_unavailable():
    async def slow_get_file(_file_id):
        await asyncio.sleep(1)

    bot = MagicMock()
    bot.get_file = slow_get_file
    relay = MediaRelay(bot, bot_token="123:ABC", timeout=0.01)

    with pytest.raises(MediaUnavailable, match="Timed out"):
        await relay.resolve("file-id")


@pytest.mark.asyncio
async def test_mirror_downloads_and_returns_public_url(tmp_path):
    bot, tg_file = _make_bot("videos/file_3.mp4")
    relay = MediaRelay(
        bot,
        bot_token="123:ABC",
        mirror_dir=str(tmp_path),
        public_base_url="https://example.com/uploads/",
    )
    assert relay.mirroring

    url = await relay.resolve("file-id")

    assert url.startswith("https://example.com/uploads/")
    assert url.endswith("-file_3.mp4")
    target = tg_file.download_to_drive.await_args.kwargs["custom_path"]
    assert target.parent == tmp_path
    assert url.endswith(target.name)


@pytest.mark.asyncio
async def test_mirror_download_failure_is_unavailable(tmp_path):
    bot, tg_file = _make_bot("videos/file_3.mp4")
    tg_file.download_to_drive.side_effect = OSError("disk full")
    relay = MediaRelay(
        bot,
        bot_token="123:ABC",
        mirror_dir=str(tmp_path),
        public_base_url="https://example.com/uploads",
    )

    with pytest.raises(MediaUnavailable, match="disk full"):
        await relay.resolve("file-id")


def test_mirror_without_public_url_is_disabled(tmp_path):
    bot, _ = _make_bot()
    relay = MediaRelay(bot, bot_token="123:ABC", mirror_dir=str(tmp_path / "media"))
    assert not relay.mirroring


def _mirror_relay(bot, tmp_path, **kwargs):
    return MediaRelay(
        bot,
        bot_token="123:ABC",
        mirror_dir=str(tmp_path),
        public_base_url="https://example.com/uploads",
        **kwargs,
    )


@pytest.mark.asyncio
async def test_failed_download_leaves_no_partial_file(tmp_path):
    bot, tg_file = _make_bot("videos/file_3.mp4")

    async def partial_download(custom_path):
        custom_path.write_bytes(b"half a video")
        raise OSError("connection dropped")

    tg_file.download_to_drive = partial_download
    relay = _mirror_relay(bot, tmp_path)

    with pytest.raises(MediaUnavailable, match="connection dropped"):
        await relay.resolve("file-id")

    assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio
async def test_timed_out_download_leaves_no_partial_file(tmp_path):
    bot, tg_file = _make_bot("videos/file_3.mp4")

    async def slow_download(custom_path):
        custom_path.write_bytes(b"first chunk")
        await asyncio.sleep(1)

    tg_file.download_to_drive = slow_download
    relay = _mirror_relay(bot, tmp_path, timeout=0.05)

    with pytest.raises(MediaUnavailable, match="Timed out"):
        await relay.resolve("file-id")

    assert list(tmp_path.iterdir()) == []


def test_discard_removes_mirrored_file(tmp_path):
    bot, _ = _make_bot()
    relay = _mirror_relay(bot, tmp_path)
    (tmp_path / "1700000000000-file_3.mp4").write_bytes(b"video")
    (tmp_path / "keep.mp4").write_bytes(b"other")

    relay.discard("https://example.com/uploads/1700000000000-file_3.mp4")

    assert [p.name for p in tmp_path.iterdir()] == ["keep.mp4"]


def test_discard_ignores_transport_urls(tmp_path):
    bot, _ = _make_bot()
    relay = _mirror_relay(bot, tmp_path)
    (tmp_path / "file_3.mp4").write_bytes(b"video")

    relay.discard("https://api.telegram.org/file/bot123:ABC/videos/file_3.mp4")

    assert [p.name for p in tmp_path.iterdir()] == ["file_3.mp4"]


@pytest.mark.asyncio
async def test_resolve_latency_is_observed_with_outcome():
    observed = []
    bot, _ = _make_bot()
    relay = MediaRelay(bot, bot_token="123:ABC", observe_latency=lambda s, o: observed.append((s, o)))

    await relay.resolve("file-id")
    bot.get_file.side_effect = NetworkError("connection reset")
    with pytest.raises(MediaUnavailable):
        await relay.resolve("file-id")

    assert [o for _, o in observed] == ["resolved", "failed"]
    assert all(seconds >= 0 for seconds, _ in observed)


@pytest.mark.asyncio
async def test_resolve_timeout_is_observed():
    observed = []

    async def slow_get_file(_file_id):
        await asyncio.sleep(1)

    bot = MagicMock()
    bot.get_file = slow_get_file
    relay = MediaRelay(
        bot, bot_token="123:ABC", timeout=0.01,
        observe_latency=lambda s, o: observed.append(o),
    )

    with pytest.raises(MediaUnavailable):
        await relay.resolve("file-id")

    assert observed == ["timeout"]
