#!/usr/bin/env python3
"""Main entry point for livewatch."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from .__version__ import __version__
from .api.backend import BackendApiClient
from .api.base import BaseApiClient
from .api.twitch import TwitchApiClient
from .chat.coordinator import SessionCoordinator
from .chat.emotes.provider import (
    BackendEmoteProvider,
    BaseEmoteProvider,
    BTTVProvider,
    CompositeEmoteSource,
    SevenTVProvider,
)
from .chat.errors import ChatError
from .chat.session import ChannelSession
from .chat.transports.base import BaseChatTransport
from .chat.transports.sse import SseTransport
from .chat.transports.websocket import IrcWebSocketTransport, LineWebSocketTransport
from .core.settings import MetadataSource, Settings, TransportKind
from .core.users import UserDirectory

logger = logging.getLogger(__name__)

SNAPSHOT_REFRESH_INTERVAL = 30  # seconds


def setup_logging(level: str = "INFO") -> None:
    """Set up logging configuration."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )

    # Suppress noisy third-party loggers
    logging.getLogger("aiohttp").setLevel(logging.WARNING)


def build_metadata_client(settings: Settings) -> BaseApiClient:
    if settings.api.metadata_source is MetadataSource.BACKEND:
        return BackendApiClient(settings.api.backend_url)
    return TwitchApiClient()


def build_emote_providers(settings: Settings) -> list[BaseEmoteProvider]:
    providers: list[BaseEmoteProvider] = []
    for name in settings.emotes.providers:
        key = name.lower()
        if key == "7tv":
            providers.append(SevenTVProvider())
        elif key == "bttv":
            providers.append(BTTVProvider())
        elif key == "backend":
            providers.append(BackendEmoteProvider(settings.api.backend_url))
        else:
            logger.warning(f"Unknown emote provider in settings: {name}")
    return providers


def build_transport(settings: Settings) -> BaseChatTransport:
    kind = settings.chat.transport
    if kind is TransportKind.SSE:
        return SseTransport(settings.api.backend_url)
    if kind is TransportKind.WEBSOCKET:
        return LineWebSocketTransport(settings.line_websocket_url)
    return IrcWebSocketTransport()


async def _print_events(coordinator: SessionCoordinator) -> None:
    while True:
        event = await coordinator.events.get()
        print(f"{event.sender_name}: {event.text}", flush=True)


async def _refresh_periodically(coordinator: SessionCoordinator) -> None:
    while True:
        await asyncio.sleep(SNAPSHOT_REFRESH_INTERVAL)
        await coordinator.refresh_snapshot()
        await coordinator.refresh_users()


async def run(channel: str, settings: Settings, users_path: Path | None = None) -> int:
    """Watch one channel and print its chat until cancelled."""
    metadata = build_metadata_client(settings)
    id_resolver = metadata if isinstance(metadata, TwitchApiClient) else TwitchApiClient()
    emote_source = CompositeEmoteSource(
        build_emote_providers(settings), resolve_user_id=id_resolver.resolve_user_id
    )
    users = UserDirectory(users_path)
    users.load()

    coordinator = SessionCoordinator(
        settings,
        metadata,
        ChannelSession(build_transport(settings)),
        emote_source=emote_source,
        users=users,
    )

    tasks: list[asyncio.Task] = []
    try:
        await coordinator.start()
        await coordinator.watch(channel)
        tasks = [
            asyncio.create_task(_print_events(coordinator)),
            asyncio.create_task(_refresh_periodically(coordinator)),
        ]
        await asyncio.gather(*tasks)
    except ChatError as e:
        logger.error(f"Could not watch {channel}: {e}")
        return 1
    finally:
        for task in tasks:
            task.cancel()
        await coordinator.close()
        await metadata.close()
        if id_resolver is not metadata:
            await id_resolver.close()
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(prog="livewatch", description="Watch a channel's live chat.")
    parser.add_argument("channel", help="channel login to watch")
    parser.add_argument("--settings", type=Path, help="path to settings.json")
    parser.add_argument("--users", type=Path, help="path to users.json")
    parser.add_argument("--debug", action="store_true", help="enable debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    args = parser.parse_args(argv)

    settings = Settings.load(args.settings)
    setup_logging("DEBUG" if args.debug else settings.log_level)

    try:
        return asyncio.run(run(args.channel, settings, args.users))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
