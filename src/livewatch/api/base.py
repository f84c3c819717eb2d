"""Base API client interface."""

import asyncio
import json
import logging
from abc import ABC, abstractmethod

import aiohttp

from ..core.models import StreamInfo

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 30  # seconds


async def safe_json(resp: aiohttp.ClientResponse) -> dict | list | None:
    """Safely parse JSON from response, returning None on error.

    This handles common error cases:
    - HTML error pages (ContentTypeError)
    - Malformed JSON (JSONDecodeError)
    - Empty responses

    Args:
        resp: aiohttp response object

    Returns:
        Parsed JSON data or None if parsing failed
    """
    try:
        return await resp.json()
    except (aiohttp.ContentTypeError, json.JSONDecodeError) as e:
        logger.warning(f"Failed to parse JSON response: {e}")
        return None


class BaseApiClient(ABC):
    """Abstract base class for stream metadata clients."""

    def __init__(self) -> None:
        self._session: aiohttp.ClientSession | None = None

    @property
    @abstractmethod
    def name(self) -> str:
        """Get the display name for this client."""
        ...

    @property
    def session(self) -> aiohttp.ClientSession:
        """Get or create the HTTP session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=DEFAULT_REQUEST_TIMEOUT)
            connector = aiohttp.TCPConnector(limit=20)
            self._session = aiohttp.ClientSession(timeout=timeout, connector=connector)
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            try:
                await self._session.close()
                # Let underlying connections finish closing
                await asyncio.sleep(0.1)
            except RuntimeError as e:
                # Session may be attached to a different event loop
                if "attached to a different loop" in str(e):
                    logger.debug(f"Session attached to different loop, skipping close: {e}")
                else:
                    raise
            finally:
                self._session = None

    @abstractmethod
    async def get_stream(self, channel: str) -> StreamInfo | None:
        """
        Get stream metadata for a channel.
        Returns None if the channel doesn't exist.
        Offline channels return a StreamInfo with live=False.
        """
        ...

    @abstractmethod
    async def get_live_channels(self, channels: list[str]) -> list[str] | None:
        """
        Get which of the given channels are currently live.
        Returns None if the lookup failed.
        """
        ...
