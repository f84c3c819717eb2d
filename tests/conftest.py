"""Shared test fixtures for livewatch tests."""

import asyncio
from datetime import datetime, timezone

import pytest

from livewatch.api.base import BaseApiClient
from livewatch.chat.errors import EmoteFetchFailed
from livewatch.chat.models import EmoteDescriptor
from livewatch.chat.transports.base import BaseChatTransport, TransportClosed
from livewatch.core.models import StreamInfo
from livewatch.core.settings import Settings


class FakeTransport(BaseChatTransport):
    """Records join/part signalling and replays canned frames."""

    def __init__(self, frames=None, fail_on=None):
        super().__init__()
        self.sent: list[str] = []
        self.opened = 0
        self.closed = 0
        self.fail_on = fail_on  # "open", "join" or "part"
        self.join_gate: asyncio.Event | None = None
        self._frames = list(frames or [])

    async def open(self):
        if self.fail_on == "open":
            raise ConnectionRefusedError("refused")
        self.opened += 1
        self._set_open()

    async def close(self):
        self.closed += 1
        self._set_closed()

    async def join(self, channel):
        if self.fail_on == "join":
            raise TransportClosed("socket gone")
        if self.join_gate is not None:
            await self.join_gate.wait()
        self.sent.append(f"JOIN {channel}")

    async def part(self, channel):
        if self.fail_on == "part":
            raise TransportClosed("socket gone")
        self.sent.append(f"PART {channel}")

    async def frames(self):
        for frame in self._frames:
            yield frame


class FakeMetadata(BaseApiClient):
    """Metadata client backed by a dict; unknown channels are not found."""

    def __init__(self, streams=None):
        super().__init__()
        self.streams = {k.casefold(): v for k, v in (streams or {}).items()}
        self.gates: dict[str, asyncio.Event] = {}
        self.errors: dict[str, Exception] = {}
        self.calls: list[str] = []
        self.live_lookups: list[list[str]] = []
        self.live_error: Exception | None = None

    @property
    def name(self):
        return "Fake"

    async def get_stream(self, channel):
        self.calls.append(channel)
        gate = self.gates.get(channel.casefold())
        if gate is not None:
            await gate.wait()
        error = self.errors.get(channel.casefold())
        if error is not None:
            raise error
        return self.streams.get(channel.casefold())

    async def get_live_channels(self, channels):
        self.live_lookups.append(list(channels))
        if self.live_error is not None:
            raise self.live_error
        live = []
        for channel in channels:
            stream = self.streams.get(channel.casefold())
            if stream is not None and stream.live:
                live.append(stream.username)
        return live


class FakeEmoteSource:
    """Emote source backed by a dict, counting fetches per channel."""

    def __init__(self, emotes=None, failing=()):
        self.emotes = {k.casefold(): v for k, v in (emotes or {}).items()}
        self.failing = {c.casefold() for c in failing}
        self.calls: list[str] = []

    async def get_emotes(self, channel):
        self.calls.append(channel)
        if channel.casefold() in self.failing:
            raise EmoteFetchFailed(f"all providers failed for {channel}")
        return list(self.emotes.get(channel.casefold(), []))


@pytest.fixture
def settings():
    s = Settings()
    s.api.metadata_timeout = 1
    s.emotes.emote_timeout = 1
    return s


@pytest.fixture
def kappa():
    return EmoteDescriptor(name="Kappa", url="https://example.com/kappa.png")


@pytest.fixture
def pog():
    return EmoteDescriptor(name="PogU", url="https://example.com/pogu.webp", width=32, height=32)


@pytest.fixture
def live_stream():
    return StreamInfo(
        username="Bob",
        live=True,
        title="Test Stream",
        game="Just Chatting",
        viewer_count=1234,
        started_at=datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc),
        playback_url="https://example.com/bob.m3u8",
        avatar="https://example.com/bob.png",
    )
