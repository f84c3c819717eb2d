"""Session coordinator - turns watch requests into one published snapshot each."""

import asyncio
import logging
from datetime import datetime

import aiohttp
from PySide6.QtCore import QObject, Signal

from ..api.base import BaseApiClient
from ..core.models import StreamInfo, UserRecord, WatchSnapshot
from ..core.settings import Settings
from ..core.users import UserDirectory
from .emotes.provider import CompositeEmoteSource
from .emotes.rules import EmoteRuleCache, EmoteRuleSet, build_rule_set, channel_key, fragment_text
from .errors import EmoteFetchFailed, MetadataUnavailable, NotConnected, SwitchFailed
from .models import ChatEvent, Reject
from .protocol import decode
from .session import ChannelSession

logger = logging.getLogger(__name__)

MAX_PENDING_EVENTS = 5000


class SessionCoordinator(QObject):
    """Coordinates metadata, the chat session and emote rules for one viewer.

    Every watch() takes a new request token. The token is re-checked after
    each await, and a watch that has been overtaken by a newer one returns
    None without publishing anything.
    """

    snapshot_published = Signal(object)  # WatchSnapshot
    chat_error = Signal(str, str)  # channel, message

    def __init__(
        self,
        settings: Settings,
        metadata: BaseApiClient,
        session: ChannelSession,
        emote_source: CompositeEmoteSource | None = None,
        rule_cache: EmoteRuleCache | None = None,
        users: UserDirectory | None = None,
        parent: QObject | None = None,
    ):
        super().__init__(parent)
        self.settings = settings
        self.metadata = metadata
        self.session = session
        self.emote_source = emote_source
        self.rule_cache = rule_cache if rule_cache is not None else EmoteRuleCache()
        self.users = users
        self.protocol = settings.chat.protocol
        self.events: asyncio.Queue[ChatEvent] = asyncio.Queue(maxsize=MAX_PENDING_EVENTS)
        self.rejected_frames = 0
        self.dropped_events = 0

        self._token = 0
        self._lock = asyncio.Lock()
        self._snapshot: WatchSnapshot | None = None
        self._reader_task: asyncio.Task | None = None

        session.transport.error.connect(self._on_transport_error)

    @property
    def snapshot(self) -> WatchSnapshot | None:
        """The most recently published snapshot."""
        return self._snapshot

    @property
    def request_token(self) -> int:
        return self._token

    def _is_current(self, token: int) -> bool:
        return token == self._token

    def _on_transport_error(self, message: str) -> None:
        self.chat_error.emit(self.session.channel or "", message)

    async def start(self) -> None:
        """Open the chat transport and start reading frames."""
        await self.session.open()
        if self._reader_task is None or self._reader_task.done():
            self._reader_task = asyncio.create_task(self._read_loop())

    async def watch(self, channel: str) -> WatchSnapshot | None:
        """Switch to ``channel`` and publish a fresh snapshot for it.

        Returns None when a newer watch() superseded this one.

        Chat is switched even when metadata is unavailable, and the channel
        is published as offline. Joining only after a successful lookup
        would leave the previous channel's chat under the new snapshot.

        Raises:
            NotConnected: start() has not opened the session.
            SwitchFailed: the transport failed while switching.
        """
        self._token += 1
        token = self._token
        logger.info(f"Watch {channel} (request {token})")

        try:
            stream = await self._fetch_metadata(channel)
        except MetadataUnavailable as e:
            logger.warning(f"Metadata unavailable for {channel}, showing it offline: {e}")
            stream = None
        if not self._is_current(token):
            logger.debug(f"Watch {channel} (request {token}) superseded after metadata")
            return None

        async with self._lock:
            if not self._is_current(token):
                return None
            self._record_user(channel, stream)

            previous = self.session.channel
            try:
                switched = await self.session.switch(channel)
            except (NotConnected, SwitchFailed) as e:
                logger.error(f"Watch {channel} failed: {e}")
                raise
            if not switched or not self._is_current(token):
                logger.debug(f"Watch {channel} (request {token}) superseded during switch")
                return None
            if previous is not None and channel_key(previous) != channel_key(channel):
                self.rule_cache.invalidate(previous)

            rules = await self._emote_rules(channel)
            if not self._is_current(token):
                logger.debug(f"Watch {channel} (request {token}) superseded during emote fetch")
                return None
            if rules is None:
                rules = build_rule_set(channel, [])

            snapshot = WatchSnapshot.from_stream(channel, stream, rules, token)
            self._publish(snapshot)
            return snapshot

    async def _fetch_metadata(self, channel: str) -> StreamInfo:
        timeout = self.settings.api.metadata_timeout
        try:
            stream = await asyncio.wait_for(self.metadata.get_stream(channel), timeout)
        except asyncio.TimeoutError as e:
            raise MetadataUnavailable(f"{self.metadata.name} timed out after {timeout}s") from e
        except aiohttp.ClientError as e:
            raise MetadataUnavailable(f"{self.metadata.name}: {e}") from e
        if stream is None:
            raise MetadataUnavailable(f"{channel} not found")
        return stream

    async def _emote_rules(self, channel: str) -> EmoteRuleSet | None:
        """Get the channel's rule set, fetching and caching it if needed.

        A failed fetch returns an uncached empty set so the next watch retries.
        """
        cached = self.rule_cache.get(channel)
        if cached is not None:
            return cached
        if self.emote_source is None:
            return None

        timeout = self.settings.emotes.emote_timeout
        try:
            emotes = await asyncio.wait_for(self.emote_source.get_emotes(channel), timeout)
        except EmoteFetchFailed as e:
            logger.warning(f"Emotes unavailable for {channel}: {e}")
            return None
        except asyncio.TimeoutError:
            logger.warning(f"Emote fetch for {channel} timed out after {timeout}s")
            return None
        return self.rule_cache.prime(channel, emotes)

    def _record_user(self, channel: str, stream: StreamInfo | None) -> None:
        if self.users is None:
            return
        if stream is not None:
            self.users.set_user(
                UserRecord(username=stream.username, avatar=stream.avatar, live=stream.live)
            )
        elif self.users.get(channel) is None:
            self.users.set_user(UserRecord(username=channel))
        else:
            return
        try:
            self.users.save()
        except OSError as e:
            logger.error(f"Error saving users: {e}")

    def _publish(self, snapshot: WatchSnapshot) -> None:
        self._snapshot = snapshot
        logger.info(
            f"Now watching {snapshot.channel}: live={snapshot.live} "
            f"elapsed={snapshot.elapsed_formatted} title={snapshot.title!r}"
        )
        self.snapshot_published.emit(snapshot)

    async def refresh_snapshot(self, now: datetime | None = None) -> WatchSnapshot | None:
        """Republish the current snapshot with its elapsed time recomputed."""
        async with self._lock:
            if self._snapshot is None:
                return None
            snapshot = self._snapshot.refreshed(now)
            self._publish(snapshot)
            return snapshot

    def process_frame(self, frame: str) -> list[ChatEvent]:
        """Decode one frame and fragment its messages with the current emote rules.

        Messages tagged with a channel other than the joined one are dropped.
        """
        result = decode(frame, self.protocol)
        if isinstance(result, Reject):
            self.rejected_frames += 1
            logger.debug(f"Rejected frame ({result.detail}): {result.frame[:200]!r}")
            return []

        current = self.session.channel
        rules = self._snapshot.emote_rules if self._snapshot is not None else None
        if rules is not None and current is not None and not _same(rules.channel, current):
            rules = None

        events: list[ChatEvent] = []
        for event in result:
            if event.channel and (current is None or not _same(event.channel, current)):
                continue
            if event.is_plain_text:
                event.fragments = fragment_text(event.text, rules)
            events.append(event)
        return events

    def _enqueue(self, event: ChatEvent) -> None:
        """Queue an event without blocking; past the limit the oldest is dropped."""
        try:
            self.events.put_nowait(event)
        except asyncio.QueueFull:
            self.events.get_nowait()
            self.dropped_events += 1
            self.events.put_nowait(event)

    async def _read_loop(self) -> None:
        try:
            async for frame in self.session.transport.frames():
                for event in self.process_frame(frame):
                    self._enqueue(event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Chat reader failed: {e}")
            self.chat_error.emit(self.session.channel or "", f"Chat reader failed: {e}")
            return
        logger.info("Chat frame stream ended")

    async def refresh_users(self) -> list[str] | None:
        """Refresh the live flag of every known user and save the directory.

        Returns the live usernames, or None when the lookup failed and the
        directory was left untouched.
        """
        if self.users is None or not len(self.users):
            return []

        usernames = [record.username for record in self.users.all()]
        timeout = self.settings.api.metadata_timeout
        try:
            live = await asyncio.wait_for(self.metadata.get_live_channels(usernames), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Live lookup timed out after {timeout}s")
            return None
        except aiohttp.ClientError as e:
            logger.warning(f"Live lookup failed: {e}")
            return None
        if live is None:
            return None

        self.users.set_live(live)
        try:
            self.users.save()
        except OSError as e:
            logger.error(f"Error saving users: {e}")
        logger.debug(f"{len(live)} of {len(usernames)} users live")
        return live

    async def close(self) -> None:
        """Stop reading and close the chat session."""
        self._token += 1
        await self.session.close()
        if self._reader_task is not None:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            self._reader_task = None


def _same(a: str, b: str) -> bool:
    return channel_key(a) == channel_key(b)
