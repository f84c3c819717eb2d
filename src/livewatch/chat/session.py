"""Channel session - keeps the chat transport joined to exactly one channel."""

import asyncio
import logging
from enum import Enum

import aiohttp

from .emotes.rules import channel_key
from .errors import NotConnected, SwitchFailed
from .transports.base import BaseChatTransport

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    """Join state of the chat session."""

    IDLE = "idle"
    JOINING = "joining"
    JOINED = "joined"


class ChannelSession:
    """Owns a chat transport and the single channel joined on it.

    Switches are serialized by a lock. Every switch request bumps a
    sequence number, and a switch that is still waiting for the lock when
    a newer one arrives does nothing: the newest request wins.
    """

    def __init__(self, transport: BaseChatTransport):
        self.transport = transport
        self._state = SessionState.IDLE
        self._channel: str | None = None
        self._lock = asyncio.Lock()
        self._opened = False
        self._request_seq = 0
        transport.set_reconnect_handler(self.rejoin)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def channel(self) -> str | None:
        """The joined (or joining) channel, or None when idle."""
        return self._channel

    @property
    def is_open(self) -> bool:
        return self._opened

    async def open(self) -> None:
        """Open the transport once; later calls are no-ops."""
        if self._opened:
            return
        try:
            await self.transport.open()
        except (aiohttp.ClientError, OSError) as e:
            raise NotConnected(f"Could not open chat transport: {e}") from e
        self._opened = True
        logger.info(f"Chat session opened ({self.transport.__class__.__name__})")

    async def switch(self, channel: str) -> bool:
        """Leave the current channel and join ``channel``.

        Returns False when a newer switch superseded this one before it ran,
        True once the session is joined to ``channel``.

        Raises:
            NotConnected: open() has not succeeded.
            SwitchFailed: the transport failed during part or join.
        """
        self._request_seq += 1
        seq = self._request_seq

        async with self._lock:
            if seq != self._request_seq:
                logger.debug(f"Switch to {channel} superseded before it ran")
                return False
            if not self._opened:
                raise NotConnected("Chat session is not open")

            if (
                self._state is SessionState.JOINED
                and self._channel is not None
                and channel_key(self._channel) == channel_key(channel)
            ):
                return True

            previous = self._channel
            try:
                if previous is not None:
                    await self.transport.part(previous)
                    logger.info(f"Parted {previous}")
                self._state = SessionState.IDLE
                self._channel = None

                self._state = SessionState.JOINING
                self._channel = channel
                await self.transport.join(channel)
            except (aiohttp.ClientError, OSError) as e:
                self._state = SessionState.IDLE
                self._channel = None
                raise SwitchFailed(f"Could not switch to {channel}: {e}") from e

            self._state = SessionState.JOINED
            logger.info(f"Joined {channel}")
            return True

    async def leave(self) -> None:
        """Part the current channel and go idle."""
        self._request_seq += 1
        async with self._lock:
            channel = self._channel
            if channel is None:
                return
            self._state = SessionState.IDLE
            self._channel = None
            if not self._opened:
                return
            try:
                await self.transport.part(channel)
            except (aiohttp.ClientError, OSError) as e:
                raise SwitchFailed(f"Could not leave {channel}: {e}") from e
            logger.info(f"Left {channel}")

    async def rejoin(self) -> None:
        """Join the current channel again after the transport reconnected."""
        async with self._lock:
            if self._state is not SessionState.JOINED or self._channel is None:
                return
            try:
                await self.transport.join(self._channel)
            except (aiohttp.ClientError, OSError) as e:
                logger.warning(f"Rejoin of {self._channel} failed: {e}")
                self._state = SessionState.IDLE
                self._channel = None
                return
            logger.info(f"Rejoined {self._channel} after reconnect")

    async def close(self) -> None:
        """Go idle and close the transport."""
        self._request_seq += 1
        async with self._lock:
            self._state = SessionState.IDLE
            self._channel = None
            self._opened = False
            await self.transport.close()
