"""WebSocket chat transports: Twitch IRC and the backend's line protocol."""

import logging
import time
from collections.abc import AsyncIterator

import aiohttp

from .base import BaseChatTransport, TransportClosed

logger = logging.getLogger(__name__)

TWITCH_IRC_WS_URL = "wss://irc-ws.chat.twitch.tv:443"
DEFAULT_LINE_WS_URL = "ws://127.0.0.1:3030/ws"

# IRC capabilities to request
IRC_CAPS = [
    "twitch.tv/tags",
]


class LineWebSocketTransport(BaseChatTransport):
    """WebSocket transport where each text message is one frame.

    Channel signalling is plain ``JOIN <channel>`` / ``PART <channel>``
    lines. Subclasses adjust the handshake, the join/part lines and how
    a message is split into frames.
    """

    def __init__(self, url: str = DEFAULT_LINE_WS_URL, parent=None):
        super().__init__(parent)
        self._url = url
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._session: aiohttp.ClientSession | None = None

    def _handshake_lines(self) -> list[str]:
        return []

    def join_line(self, channel: str) -> str:
        return f"JOIN {channel}"

    def part_line(self, channel: str) -> str:
        return f"PART {channel}"

    def split_frames(self, data: str) -> list[str]:
        return [data] if data else []

    async def _handle_keepalive(self, frame: str) -> None:
        """Answer server keep-alives. Default: nothing to answer."""

    async def open(self) -> None:
        self._should_reconnect = True
        await self._connect()

    async def _connect(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        self._ws = await self._session.ws_connect(self._url)
        for line in self._handshake_lines():
            await self._ws.send_str(line)
        logger.info(f"{self.__class__.__name__}: connected to {self._url}")
        self._set_open()
        self._reset_backoff()

    async def send(self, line: str) -> None:
        """Send one line; raises TransportClosed if the socket is gone."""
        if not self._ws or self._ws.closed:
            raise TransportClosed(f"{self.__class__.__name__} is not open")
        await self._ws.send_str(line)

    async def join(self, channel: str) -> None:
        await self.send(self.join_line(channel))

    async def part(self, channel: str) -> None:
        await self.send(self.part_line(channel))

    async def frames(self) -> AsyncIterator[str]:
        attempts = 0
        while True:
            if self._ws is not None:
                async for msg in self._ws:
                    if msg.type == aiohttp.WSMsgType.TEXT:
                        for frame in self.split_frames(msg.data):
                            await self._handle_keepalive(frame)
                            yield frame
                    elif msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                        break
            self._set_closed()

            if not self._should_reconnect:
                return
            attempts += 1
            if self._max_reconnect_attempts and attempts > self._max_reconnect_attempts:
                self._emit_error(f"Giving up after {attempts - 1} reconnect attempts")
                return

            await self._sleep_with_backoff()
            if not self._should_reconnect:
                return
            try:
                await self._connect()
            except (aiohttp.ClientError, OSError) as e:
                logger.warning(f"{self.__class__.__name__}: reconnect failed: {e}")
                self._ws = None
                continue
            attempts = 0
            await self._on_reconnected()

    async def close(self) -> None:
        self._should_reconnect = False
        if self._ws and not self._ws.closed:
            await self._ws.close()
        self._ws = None
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None
        self._set_closed()


class IrcWebSocketTransport(LineWebSocketTransport):
    """Anonymous read-only Twitch IRC over WebSocket."""

    def __init__(self, url: str = TWITCH_IRC_WS_URL, parent=None):
        super().__init__(url, parent)
        self._nick = ""

    def _handshake_lines(self) -> list[str]:
        self._nick = f"justinfan{int(time.time()) % 100000}"
        lines = [f"CAP REQ :{cap}" for cap in IRC_CAPS]
        lines += ["PASS SCHMOOPIIE", f"NICK {self._nick}"]
        return lines

    def join_line(self, channel: str) -> str:
        return f"JOIN #{channel.lower()}"

    def part_line(self, channel: str) -> str:
        return f"PART #{channel.lower()}"

    def split_frames(self, data: str) -> list[str]:
        return [line for line in data.split("\r\n") if line]

    async def _handle_keepalive(self, frame: str) -> None:
        if frame.startswith("PING"):
            if self._ws and not self._ws.closed:
                await self._ws.send_str(f"PONG {frame[5:]}")
