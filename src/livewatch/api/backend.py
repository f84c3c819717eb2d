"""Client for the local companion backend's HTTP API."""

import logging

import aiohttp

from ..core.models import StreamInfo, parse_timestamp
from ..core.settings import DEFAULT_BACKEND_URL
from .base import BaseApiClient, safe_json

logger = logging.getLogger(__name__)


def parse_stream_response(channel: str, data: dict) -> StreamInfo | None:
    """Convert a /stream or /user response into StreamInfo.

    The backend nests live data under "stream" in newer revisions and
    flattens it in older ones; both shapes are accepted.
    """
    if not isinstance(data, dict):
        return None

    stream = data.get("stream")
    flat = stream if isinstance(stream, dict) else data
    live = bool(data.get("live", isinstance(stream, dict)))

    viewers = flat.get("view_count", flat.get("viewer_count", 0))
    try:
        viewer_count = int(viewers or 0)
    except (TypeError, ValueError):
        viewer_count = 0

    return StreamInfo(
        username=data.get("username") or channel,
        live=live,
        title=flat.get("title") or "",
        game=flat.get("game") or "",
        viewer_count=viewer_count,
        started_at=parse_timestamp(flat.get("started_at")),
        playback_url=flat.get("url") or None,
        avatar=data.get("avatar") or "",
    )


class BackendApiClient(BaseApiClient):
    """Client for the companion backend on localhost."""

    def __init__(self, base_url: str = DEFAULT_BACKEND_URL) -> None:
        super().__init__()
        self.base_url = base_url.rstrip("/")

    @property
    def name(self) -> str:
        return "Backend"

    async def get_stream(self, channel: str) -> StreamInfo | None:
        """Get stream metadata; a 404 means the channel is unknown."""
        async with self.session.get(f"{self.base_url}/stream/{channel}") as resp:
            if resp.status == 404:
                logger.info(f"Backend: channel {channel} not found")
                return None
            if resp.status != 200:
                body = await safe_json(resp)
                logger.warning(f"Backend: stream lookup for {channel} failed ({resp.status}): {body}")
                return None
            data = await safe_json(resp)

        return parse_stream_response(channel, data)

    async def get_live_channels(self, channels: list[str]) -> list[str] | None:
        """Get which of the given channels are live."""
        usernames = [c for c in channels if c]
        if not usernames:
            return []

        try:
            async with self.session.get(
                f"{self.base_url}/live",
                params={"usernames": ",".join(usernames)},
            ) as resp:
                if resp.status != 200:
                    logger.warning(f"Backend: live lookup failed ({resp.status})")
                    return None
                data = await safe_json(resp)
        except aiohttp.ClientError as e:
            logger.warning(f"Backend: live lookup error: {e}")
            return None

        return parse_live_response(data)


def parse_live_response(data) -> list[str] | None:
    """Extract live usernames from a /live response.

    Older revisions answer with a list, newer ones with {username: info}.
    """
    if isinstance(data, (dict, list)):
        return [name for name in data if isinstance(name, str)]
    return None
