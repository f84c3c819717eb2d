"""Channel emote providers for 7TV, BTTV and the local backend."""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable

import aiohttp

from ..errors import EmoteFetchFailed
from ..models import EmoteDescriptor

logger = logging.getLogger(__name__)

DEFAULT_EMOTE_SIZE = 28
PROVIDER_TIMEOUT = 15  # seconds

# 7TV file formats by preference (lower is better)
SEVENTV_FORMAT_PRIORITY = {"AVIF": 0, "WEBP": 1, "PNG": 2, "GIF": 3}


class BaseEmoteProvider(ABC):
    """Base class for emote providers.

    Providers raise EmoteFetchFailed when the service cannot be reached or
    answers with an error. A channel that simply has no emotes on the
    service yields an empty list.
    """

    # Whether channel lookups need the numeric Twitch user ID
    needs_user_id: bool = True

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name."""

    @abstractmethod
    async def get_channel_emotes(self, channel_id: str) -> list[EmoteDescriptor]:
        """Fetch channel-specific emotes."""

    async def _get_json(self, url: str):
        """GET a JSON document; 404 yields None."""
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(
                    url, timeout=aiohttp.ClientTimeout(total=PROVIDER_TIMEOUT)
                ) as resp:
                    if resp.status == 404:
                        return None
                    if resp.status != 200:
                        raise EmoteFetchFailed(f"{self.name}: HTTP {resp.status}")
                    return await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise EmoteFetchFailed(f"{self.name}: {e}") from e


class SevenTVProvider(BaseEmoteProvider):
    """7TV emote provider."""

    BASE_URL = "https://7tv.io/v3"

    @property
    def name(self) -> str:
        return "7tv"

    async def get_channel_emotes(self, channel_id: str) -> list[EmoteDescriptor]:
        """Fetch 7TV channel emotes."""
        data = await self._get_json(f"{self.BASE_URL}/users/twitch/{channel_id}")
        if not isinstance(data, dict):
            return []

        emote_set = data.get("emote_set") or {}
        emotes: list[EmoteDescriptor] = []
        for emote_data in emote_set.get("emotes") or []:
            emote = parse_seventv_emote(emote_data)
            if emote:
                emotes.append(emote)
        return emotes


def parse_seventv_emote(data: dict) -> EmoteDescriptor | None:
    """Parse a 7TV emote, picking the best 1x file."""
    if not isinstance(data, dict):
        return None
    name = data.get("name", "")
    host = (data.get("data") or {}).get("host") or {}
    base_url = host.get("url", "")
    if not name or not base_url:
        return None

    best = None
    best_priority = len(SEVENTV_FORMAT_PRIORITY)
    for file in host.get("files") or []:
        if not isinstance(file, dict) or not str(file.get("name", "")).startswith("1"):
            continue
        priority = SEVENTV_FORMAT_PRIORITY.get(str(file.get("format", "")).upper())
        if priority is not None and priority < best_priority:
            best, best_priority = file, priority

    if best is None:
        return None

    if base_url.startswith("//"):
        base_url = "https:" + base_url
    return EmoteDescriptor(
        name=name,
        url=f"{base_url}/{best['name']}",
        width=_dimension(best.get("width")),
        height=_dimension(best.get("height")),
    )


def _dimension(value) -> int:
    """Coerce a width or height from an API payload, falling back to the default."""
    try:
        size = int(value or 0)
    except (TypeError, ValueError):
        return DEFAULT_EMOTE_SIZE
    return size if size > 0 else DEFAULT_EMOTE_SIZE


class BTTVProvider(BaseEmoteProvider):
    """BetterTTV emote provider."""

    BASE_URL = "https://api.betterttv.net/3"

    @property
    def name(self) -> str:
        return "bttv"

    async def get_channel_emotes(self, channel_id: str) -> list[EmoteDescriptor]:
        """Fetch BTTV channel and shared emotes."""
        data = await self._get_json(f"{self.BASE_URL}/cached/users/twitch/{channel_id}")
        if not isinstance(data, dict):
            return []

        emotes: list[EmoteDescriptor] = []
        for emote_data in (data.get("channelEmotes") or []) + (data.get("sharedEmotes") or []):
            emote = parse_bttv_emote(emote_data)
            if emote:
                emotes.append(emote)
        return emotes


def parse_bttv_emote(data: dict) -> EmoteDescriptor | None:
    """Parse a BTTV emote from API data."""
    if not isinstance(data, dict):
        return None
    emote_id = data.get("id", "")
    code = data.get("code", "")
    if not emote_id or not code:
        return None

    return EmoteDescriptor(
        name=code,
        url=f"https://cdn.betterttv.net/emote/{emote_id}/1x",
        width=_dimension(data.get("width")),
        height=_dimension(data.get("height")),
    )


class BackendEmoteProvider(BaseEmoteProvider):
    """Emotes served by the local backend, keyed by channel login."""

    needs_user_id = False

    def __init__(self, base_url: str) -> None:
        self.base_url = base_url.rstrip("/")

    @property
    def name(self) -> str:
        return "backend"

    async def get_channel_emotes(self, channel_id: str) -> list[EmoteDescriptor]:
        data = await self._get_json(f"{self.base_url}/emotes/{channel_id}")
        return parse_backend_emotes(data)


def parse_backend_emotes(data) -> list[EmoteDescriptor]:
    """Parse the backend's emote payload.

    Accepts either a list of {n, u, w, h} objects or a mapping of
    name -> {n, u, w, h}.
    """
    if isinstance(data, dict):
        items = list(data.values())
    elif isinstance(data, list):
        items = data
    else:
        return []

    emotes: list[EmoteDescriptor] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        name = item.get("n") or item.get("name")
        url = item.get("u") or item.get("url")
        if not name or not url:
            continue
        emotes.append(
            EmoteDescriptor(
                name=name,
                url=url,
                width=_dimension(item.get("w", item.get("width"))),
                height=_dimension(item.get("h", item.get("height"))),
            )
        )
    return emotes


class CompositeEmoteSource:
    """Fetches a channel's emotes from several providers and merges them.

    Providers that fail are skipped; EmoteFetchFailed is raised only when
    every provider failed.
    """

    def __init__(
        self,
        providers: list[BaseEmoteProvider],
        resolve_user_id: Callable[[str], Awaitable[str | None]] | None = None,
    ) -> None:
        self.providers = providers
        self._resolve_user_id = resolve_user_id

    async def get_emotes(self, channel: str) -> list[EmoteDescriptor]:
        """Fetch the merged emote list for a channel login."""
        if not self.providers:
            return []

        user_id: str | None = None
        if self._resolve_user_id and any(p.needs_user_id for p in self.providers):
            try:
                user_id = await self._resolve_user_id(channel)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.debug(f"Could not resolve user ID for {channel}: {e}")

        all_emotes: list[EmoteDescriptor] = []
        failures: list[str] = []
        for provider in self.providers:
            if provider.needs_user_id and not user_id:
                failures.append(f"{provider.name}: no user ID")
                continue
            try:
                emotes = await provider.get_channel_emotes(
                    user_id if provider.needs_user_id else channel
                )
            except EmoteFetchFailed as e:
                logger.debug(f"Failed to fetch channel emotes from {provider.name}: {e}")
                failures.append(str(e))
                continue
            except (TypeError, ValueError, KeyError, AttributeError) as e:
                logger.warning(f"Unexpected emote payload from {provider.name}: {e}")
                failures.append(f"{provider.name}: malformed payload ({e})")
                continue
            all_emotes.extend(emotes)
            logger.debug(f"Fetched {len(emotes)} channel emotes from {provider.name}")

        if len(failures) == len(self.providers):
            raise EmoteFetchFailed("; ".join(failures))
        return all_emotes
