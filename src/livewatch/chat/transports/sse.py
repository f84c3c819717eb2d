"""Server-sent events chat transport for the local backend."""

import asyncio
import logging
from collections.abc import AsyncIterator

import aiohttp

from ...core.settings import DEFAULT_BACKEND_URL
from .base import BaseChatTransport, TransportClosed

logger = logging.getLogger(__name__)


class SseParser:
    """Incremental parser for a text/event-stream body.

    Feed it one line at a time (without the line terminator); it returns
    the event's data once a blank line closes the event.
    """

    def __init__(self) -> None:
        self._data: list[str] = []

    def feed(self, line: str) -> str | None:
        if not line:
            if not self._data:
                return None
            payload = "\n".join(self._data)
            self._data = []
            return payload

        # Comment lines are keep-alives
        if line.startswith(":"):
            return None

        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "data":
            self._data.append(value)
        return None


class SseTransport(BaseChatTransport):
    """One SSE stream per joined channel, at ``{base_url}/chat/{channel}``.

    Joining opens the stream and parting cancels it, so there is no
    separate join/part line. A dropped stream is re-opened with back-off
    for as long as the channel stays joined.
    """

    def __init__(self, base_url: str = DEFAULT_BACKEND_URL, parent=None):
        super().__init__(parent)
        self.base_url = base_url.rstrip("/")
        self._session: aiohttp.ClientSession | None = None
        self._streams: dict[str, asyncio.Task] = {}
        # (channel key, payload); None ends frames()
        self._queue: asyncio.Queue[tuple[str, str] | None] = asyncio.Queue()

    async def open(self) -> None:
        self._should_reconnect = True
        if self._session is None or self._session.closed:
            # No total timeout: the stream stays open indefinitely
            timeout = aiohttp.ClientTimeout(total=None, sock_connect=15)
            self._session = aiohttp.ClientSession(timeout=timeout)
        self._set_open()

    async def join(self, channel: str) -> None:
        if not self.is_open:
            raise TransportClosed("SSE transport is not open")
        key = channel.casefold()
        if key in self._streams:
            return
        self._streams[key] = asyncio.create_task(self._stream(channel))

    async def part(self, channel: str) -> None:
        if not self.is_open:
            raise TransportClosed("SSE transport is not open")
        task = self._streams.pop(channel.casefold(), None)
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _stream(self, channel: str) -> None:
        url = f"{self.base_url}/chat/{channel}"
        while self._should_reconnect:
            try:
                async with self._session.get(
                    url, headers={"Accept": "text/event-stream"}
                ) as resp:
                    if resp.status != 200:
                        raise aiohttp.ClientResponseError(
                            resp.request_info, resp.history, status=resp.status
                        )
                    logger.info(f"SSE: streaming chat for {channel}")
                    self._reset_backoff()
                    parser = SseParser()
                    async for raw in resp.content:
                        payload = parser.feed(raw.decode("utf-8", errors="replace").rstrip("\r\n"))
                        if payload is not None:
                            await self._queue.put((channel.casefold(), payload))
                logger.info(f"SSE: stream for {channel} ended")
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.warning(f"SSE: stream for {channel} failed: {e}")
            if not self._should_reconnect:
                break
            await self._sleep_with_backoff()

    async def frames(self) -> AsyncIterator[str]:
        """Yield payloads of joined channels; anything queued before a part is dropped."""
        while True:
            item = await self._queue.get()
            if item is None:
                return
            key, payload = item
            if key not in self._streams:
                logger.debug(f"SSE: dropping payload for parted channel {key}")
                continue
            yield payload

    async def close(self) -> None:
        self._should_reconnect = False
        for channel in list(self._streams):
            task = self._streams.pop(channel)
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None
        self._queue.put_nowait(None)
        self._set_closed()
