"""Twitch GraphQL client (public data, no auth required)."""

import asyncio
import logging
from typing import Any, Optional

import aiohttp

from ..core.models import StreamInfo, StreamPlatform, parse_timestamp
from .base import BaseApiClient, safe_json

logger = logging.getLogger(__name__)

# For GraphQL queries (no auth required)
GQL_CLIENT_ID = "kimne78kx3ncx6brgo4mv6wki5h1ko"

STREAM_QUERY = """
query GetStream($login: String!) {
    user(login: $login) {
        id
        login
        displayName
        profileImageURL(width: 70)
        stream {
            id
            title
            viewersCount
            createdAt
            game {
                name
            }
        }
    }
}
"""


def parse_gql_user(channel: str, user_data: Optional[dict[str, Any]]) -> Optional[StreamInfo]:
    """Convert a GraphQL user object into StreamInfo."""
    if not user_data:
        return None

    stream = user_data.get("stream")
    if not stream:
        return StreamInfo(
            username=user_data.get("login") or channel,
            live=False,
            avatar=user_data.get("profileImageURL") or "",
            platform=StreamPlatform.TWITCH,
        )

    game = stream.get("game") or {}
    return StreamInfo(
        username=user_data.get("login") or channel,
        live=True,
        title=stream.get("title") or "",
        game=game.get("name") or "",
        viewer_count=stream.get("viewersCount") or 0,
        started_at=parse_timestamp(stream.get("createdAt")),
        avatar=user_data.get("profileImageURL") or "",
        platform=StreamPlatform.TWITCH,
    )


class TwitchApiClient(BaseApiClient):
    """Client for Twitch's public GraphQL endpoint."""

    GQL_URL = "https://gql.twitch.tv/gql"

    def __init__(self) -> None:
        super().__init__()
        self._user_ids: dict[str, str] = {}

    @property
    def name(self) -> str:
        return "Twitch"

    def _get_gql_headers(self) -> dict[str, str]:
        """Get headers for GraphQL requests (no auth required for public data)."""
        return {
            "Client-ID": GQL_CLIENT_ID,
            "Content-Type": "application/json",
        }

    async def _query_user(self, login: str) -> Optional[dict[str, Any]]:
        async with self.session.post(
            self.GQL_URL,
            headers=self._get_gql_headers(),
            json={"query": STREAM_QUERY, "variables": {"login": login}},
        ) as resp:
            if resp.status != 200:
                logger.warning(f"Twitch GraphQL query for {login} failed ({resp.status})")
                return None
            data = await safe_json(resp)

        if not isinstance(data, dict):
            return None
        user = (data.get("data") or {}).get("user")
        if user and user.get("id"):
            self._user_ids[login.lower()] = user["id"]
        return user

    async def get_stream(self, channel: str) -> Optional[StreamInfo]:
        """Get stream metadata via GraphQL."""
        user = await self._query_user(channel)
        return parse_gql_user(channel, user)

    async def get_live_channels(self, channels: list[str]) -> Optional[list[str]]:
        """Get which channels are live, one GraphQL query per channel."""
        logins = [c for c in channels if c]
        if not logins:
            return []

        results = await asyncio.gather(
            *(self._query_user(login) for login in logins), return_exceptions=True
        )
        live: list[str] = []
        failed = 0
        for login, result in zip(logins, results):
            if isinstance(result, Exception):
                logger.debug(f"Twitch live lookup for {login} failed: {result}")
                failed += 1
                continue
            if result and result.get("stream"):
                live.append(result.get("login") or login)

        if failed == len(logins):
            return None
        return live

    async def resolve_user_id(self, login: str) -> Optional[str]:
        """Resolve a Twitch login name to its numeric user ID."""
        if login.isdigit():
            return login
        cached = self._user_ids.get(login.lower())
        if cached:
            return cached
        try:
            await self._query_user(login)
        except aiohttp.ClientError as e:
            logger.debug(f"Could not resolve Twitch user ID for {login}: {e}")
            return None
        return self._user_ids.get(login.lower())
