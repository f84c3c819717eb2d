"""Base chat transport abstract class."""

import asyncio
import logging
import random
from abc import abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable

from PySide6.QtCore import QObject, Signal

logger = logging.getLogger(__name__)

# Exponential backoff constants for reconnection
INITIAL_RECONNECT_DELAY = 1.0  # seconds
MAX_RECONNECT_DELAY = 60.0  # seconds
RECONNECT_BACKOFF_FACTOR = 2.0
RECONNECT_JITTER = 0.1  # 10% jitter to prevent thundering herd


class TransportClosed(ConnectionError):
    """Raised when sending on a transport that is not open."""


class BaseChatTransport(QObject):
    """Abstract base class for inbound chat transports.

    A transport owns one connection, delivers raw frames through
    ``frames()`` and carries the join/part signalling for a channel.
    It knows nothing about which channel is current; that belongs to
    the ChannelSession that owns the transport.
    """

    # Connection state signals
    connected = Signal()
    disconnected = Signal()
    error = Signal(str)

    def __init__(self, parent: QObject | None = None):
        super().__init__(parent)
        self._is_open: bool = False
        self._reconnect_delay: float = INITIAL_RECONNECT_DELAY
        self._should_reconnect: bool = True  # Set to False for intentional close
        self._max_reconnect_attempts: int = 10  # 0 = unlimited
        self._reconnect_handler: Callable[[], Awaitable[None]] | None = None

    @property
    def is_open(self) -> bool:
        """Whether the transport is open."""
        return self._is_open

    @abstractmethod
    async def open(self) -> None:
        """Open the connection and perform any login handshake."""

    @abstractmethod
    async def close(self) -> None:
        """Close the connection for good."""

    @abstractmethod
    async def join(self, channel: str) -> None:
        """Subscribe to a channel's chat."""

    @abstractmethod
    async def part(self, channel: str) -> None:
        """Unsubscribe from a channel's chat."""

    @abstractmethod
    def frames(self) -> AsyncIterator[str]:
        """Iterate over raw inbound frames until the transport closes."""

    def set_reconnect_handler(self, handler: Callable[[], Awaitable[None]] | None) -> None:
        """Register a coroutine to run after the connection was re-established."""
        self._reconnect_handler = handler

    async def _on_reconnected(self) -> None:
        if self._reconnect_handler is not None:
            await self._reconnect_handler()

    def _set_open(self) -> None:
        """Mark as open and emit signal."""
        self._is_open = True
        self.connected.emit()

    def _set_closed(self) -> None:
        """Mark as closed and emit signal."""
        was_open = self._is_open
        self._is_open = False
        if was_open:
            self.disconnected.emit()

    def _emit_error(self, message: str) -> None:
        """Emit an error."""
        logger.error(f"Chat transport error ({self.__class__.__name__}): {message}")
        self.error.emit(message)

    def _reset_backoff(self) -> None:
        """Reset reconnection backoff delay after successful connection."""
        self._reconnect_delay = INITIAL_RECONNECT_DELAY

    def _get_next_backoff(self) -> float:
        """Get the next backoff delay with jitter and update for next call."""
        delay = self._reconnect_delay
        # Add jitter (±10%)
        jitter = delay * RECONNECT_JITTER * (2 * random.random() - 1)
        delay_with_jitter = delay + jitter

        # Increase delay for next time with exponential backoff
        self._reconnect_delay = min(
            self._reconnect_delay * RECONNECT_BACKOFF_FACTOR,
            MAX_RECONNECT_DELAY,
        )

        return delay_with_jitter

    async def _sleep_with_backoff(self) -> None:
        """Sleep for the current backoff delay before reconnecting."""
        delay = self._get_next_backoff()
        logger.info(
            f"{self.__class__.__name__}: reconnecting in {delay:.1f}s "
            f"(next delay: {self._reconnect_delay:.1f}s)"
        )
        await asyncio.sleep(delay)
