"""Tests for SessionCoordinator watch flow."""

import asyncio
from datetime import timedelta

import aiohttp
import pytest

from conftest import FakeEmoteSource, FakeMetadata, FakeTransport
from livewatch.chat import coordinator as coordinator_module
from livewatch.chat.coordinator import SessionCoordinator
from livewatch.chat.emotes.provider import BTTVProvider, CompositeEmoteSource
from livewatch.chat.errors import NotConnected, SwitchFailed
from livewatch.chat.models import FragmentKind
from livewatch.chat.protocol import ProtocolVersion
from livewatch.chat.session import ChannelSession
from livewatch.core.models import UserRecord
from livewatch.core.users import UserDirectory


def _make(settings, metadata=None, emotes=None, transport=None, users=None):
    transport = transport or FakeTransport()
    coordinator = SessionCoordinator(
        settings,
        metadata or FakeMetadata(),
        ChannelSession(transport),
        emote_source=emotes,
        users=users,
    )
    published = []
    coordinator.snapshot_published.connect(lambda snap: published.append(snap))
    return coordinator, transport, published


# --- watch ---


def test_watch_live_channel(settings, live_stream, kappa, tmp_path):
    users = UserDirectory(tmp_path / "users.json")

    async def scenario():
        coordinator, transport, published = _make(
            settings,
            metadata=FakeMetadata({"bob": live_stream}),
            emotes=FakeEmoteSource({"bob": [kappa]}),
            users=users,
        )
        await coordinator.start()
        snap = await coordinator.watch("bob")
        return coordinator, transport, published, snap

    coordinator, transport, published, snap = asyncio.run(scenario())
    assert snap.channel == "bob"
    assert snap.title == "Test Stream"
    assert snap.live is True
    assert snap.playback_url == "https://example.com/bob.m3u8"
    assert "Kappa" in snap.emote_rules.by_name
    assert published == [snap]
    assert coordinator.snapshot is snap
    assert transport.sent == ["JOIN bob"]
    assert "bob" in coordinator.rule_cache

    record = users.get("bob")
    assert record.avatar == "https://example.com/bob.png"
    assert record.live is True
    assert (tmp_path / "users.json").exists()


def test_watch_offline_channel_degrades(settings, tmp_path):
    users = UserDirectory(tmp_path / "users.json")

    async def scenario():
        coordinator, transport, published = _make(settings, users=users)
        await coordinator.start()
        snap = await coordinator.watch("offlineChannel")
        return transport, published, snap

    transport, published, snap = asyncio.run(scenario())
    assert snap.channel == "offlineChannel"
    assert snap.title == ""
    assert snap.playback_url is None
    assert snap.live is False
    assert published == [snap]
    # Offline channels still have chat
    assert transport.sent == ["JOIN offlineChannel"]
    assert users.get("offlinechannel").live is False


@pytest.mark.parametrize(
    "error", [asyncio.TimeoutError(), aiohttp.ClientConnectionError("backend down")]
)
def test_watch_metadata_errors_degrade(settings, error):
    metadata = FakeMetadata()
    metadata.errors["bob"] = error

    async def scenario():
        coordinator, _, published = _make(settings, metadata=metadata)
        await coordinator.start()
        snap = await coordinator.watch("bob")
        return published, snap

    published, snap = asyncio.run(scenario())
    assert snap.channel == "bob"
    assert snap.title == ""
    assert published == [snap]


def test_watch_keeps_known_user_record_when_degraded(settings, tmp_path):
    users = UserDirectory(tmp_path / "users.json")
    users.set_user(UserRecord(username="Bob", avatar="https://example.com/bob.png", live=True))

    async def scenario():
        coordinator, _, _ = _make(settings, users=users)
        await coordinator.start()
        await coordinator.watch("bob")

    asyncio.run(scenario())
    assert users.get("bob").avatar == "https://example.com/bob.png"


def test_watch_before_start_raises(settings):
    async def scenario():
        coordinator, _, published = _make(settings)
        with pytest.raises(NotConnected):
            await coordinator.watch("bob")
        return published

    assert asyncio.run(scenario()) == []


def test_watch_switch_failure_publishes_nothing(settings, live_stream):
    async def scenario():
        coordinator, _, published = _make(
            settings,
            metadata=FakeMetadata({"bob": live_stream}),
            transport=FakeTransport(fail_on="join"),
        )
        await coordinator.start()
        with pytest.raises(SwitchFailed):
            await coordinator.watch("bob")
        return coordinator, published

    coordinator, published = asyncio.run(scenario())
    assert published == []
    assert coordinator.snapshot is None


def test_later_watch_wins_over_slow_metadata(settings, live_stream):
    metadata = FakeMetadata({"a": live_stream})

    async def scenario():
        coordinator, transport, published = _make(settings, metadata=metadata)
        await coordinator.start()
        metadata.gates["a"] = asyncio.Event()

        task_a = asyncio.create_task(coordinator.watch("a"))
        await asyncio.sleep(0)  # "a" is now waiting on its metadata
        snap_b = await coordinator.watch("b")
        metadata.gates["a"].set()
        snap_a = await task_a
        return coordinator, transport, published, snap_a, snap_b

    coordinator, transport, published, snap_a, snap_b = asyncio.run(scenario())
    assert snap_a is None
    assert snap_b.channel == "b"
    assert published == [snap_b]
    assert coordinator.snapshot.channel == "b"
    assert transport.sent == ["JOIN b"]


# --- emote rules ---


def test_cached_rules_are_reused(settings, kappa):
    emotes = FakeEmoteSource({"bob": [kappa]})

    async def scenario():
        coordinator, _, _ = _make(settings, emotes=emotes)
        await coordinator.start()
        first = await coordinator.watch("bob")
        second = await coordinator.watch("Bob")
        return first, second

    first, second = asyncio.run(scenario())
    assert emotes.calls == ["bob"]
    assert second.emote_rules is first.emote_rules


def test_emote_failure_uses_uncached_empty_rules(settings, kappa):
    emotes = FakeEmoteSource({"bob": [kappa]}, failing=["bob"])

    async def scenario():
        coordinator, _, published = _make(settings, emotes=emotes)
        await coordinator.start()
        degraded = await coordinator.watch("bob")
        cached_after_failure = "bob" in coordinator.rule_cache
        emotes.failing.clear()
        retried = await coordinator.watch("bob")
        return published, degraded, cached_after_failure, retried

    published, degraded, cached_after_failure, retried = asyncio.run(scenario())
    assert degraded.emote_rules.is_empty
    assert not cached_after_failure
    assert "Kappa" in retried.emote_rules.by_name
    assert emotes.calls == ["bob", "bob"]
    assert len(published) == 2


def test_switching_away_invalidates_previous_rules(settings, kappa, pog):
    emotes = FakeEmoteSource({"bob": [kappa], "alice": [pog]})

    async def scenario():
        coordinator, transport, _ = _make(settings, emotes=emotes)
        await coordinator.start()
        await coordinator.watch("bob")
        await coordinator.watch("alice")
        return coordinator, transport

    coordinator, transport = asyncio.run(scenario())
    assert "bob" not in coordinator.rule_cache
    assert "alice" in coordinator.rule_cache
    assert transport.sent == ["JOIN bob", "PART bob", "JOIN alice"]


def test_malformed_provider_payload_degrades_to_empty_rules(settings):
    class NullListsBTTV(BTTVProvider):
        async def _get_json(self, url):
            return {"channelEmotes": None, "sharedEmotes": []}

    class BrokenShapeBTTV(BTTVProvider):
        async def _get_json(self, url):
            return {"channelEmotes": {"id": "abc"}, "sharedEmotes": []}

    async def resolve(login):
        return "123"

    async def scenario(provider):
        coordinator, _, published = _make(
            settings, emotes=CompositeEmoteSource([provider], resolve_user_id=resolve)
        )
        await coordinator.start()
        snap = await coordinator.watch("bob")
        return published, snap

    for provider in (NullListsBTTV(), BrokenShapeBTTV()):
        published, snap = asyncio.run(scenario(provider))
        assert published == [snap]
        assert snap.emote_rules.is_empty


# --- refresh_snapshot ---


def test_refresh_snapshot_recomputes_elapsed(settings, live_stream):
    async def scenario():
        coordinator, _, published = _make(settings, metadata=FakeMetadata({"bob": live_stream}))
        await coordinator.start()
        await coordinator.watch("bob")
        later = live_stream.started_at + timedelta(hours=1, minutes=2, seconds=3)
        refreshed = await coordinator.refresh_snapshot(later)
        return published, refreshed

    published, refreshed = asyncio.run(scenario())
    assert refreshed.elapsed_formatted == "1:02:03"
    assert published[-1] is refreshed
    assert len(published) == 2


def test_refresh_without_snapshot(settings):
    async def scenario():
        coordinator, _, published = _make(settings)
        return await coordinator.refresh_snapshot(), published

    snap, published = asyncio.run(scenario())
    assert snap is None
    assert published == []


# --- inbound frames ---


def test_process_frame_fragments_with_channel_emotes(settings, kappa):
    async def scenario():
        coordinator, _, _ = _make(settings, emotes=FakeEmoteSource({"bob": [kappa]}))
        await coordinator.start()
        await coordinator.watch("bob")
        return (
            coordinator.process_frame(":alice!a@a PRIVMSG #bob :hi Kappa"),
            coordinator.process_frame(":alice!a@a PRIVMSG #other :stale"),
            coordinator.process_frame("PING :tmi.twitch.tv"),
            coordinator.process_frame("garbage"),
            coordinator.rejected_frames,
        )

    events, stale, ping, garbage, rejected = asyncio.run(scenario())
    [msg] = events
    assert [f.kind for f in msg.fragments] == [FragmentKind.TEXT, FragmentKind.EMOTE]
    assert msg.fragments[1].emote == kappa
    assert stale == []
    assert ping == []
    assert garbage == []
    assert rejected == 1


def test_reader_queues_decoded_events(settings):
    settings.chat.protocol = ProtocolVersion.DELIMITED
    frames = [
        "$TIMESTAMP:1$COLOR:$FIRST_MSG:0$NAME:alice$MESSAGE:one"
        "$TIMESTAMP:2$COLOR:$FIRST_MSG:1$NAME:bob$MESSAGE:two",
        "PING",
        "not a record",
    ]

    async def scenario():
        coordinator, _, _ = _make(settings, transport=FakeTransport(frames=frames))
        await coordinator.start()
        await coordinator._reader_task
        events = []
        while not coordinator.events.empty():
            events.append(coordinator.events.get_nowait())
        return coordinator, events

    coordinator, events = asyncio.run(scenario())
    assert [(e.sender_name, e.text) for e in events] == [("alice", "one"), ("bob", "two")]
    assert events[1].is_first_message
    assert coordinator.rejected_frames == 1


def test_transport_errors_are_forwarded(settings):
    async def scenario():
        coordinator, transport, _ = _make(settings)
        errors = []
        coordinator.chat_error.connect(lambda channel, message: errors.append((channel, message)))
        await coordinator.start()
        await coordinator.watch("bob")
        transport._emit_error("socket reset")
        return errors

    assert asyncio.run(scenario()) == [("bob", "socket reset")]


def test_close_closes_session(settings):
    async def scenario():
        coordinator, transport, _ = _make(settings)
        await coordinator.start()
        await coordinator.watch("bob")
        await coordinator.close()
        return transport

    transport = asyncio.run(scenario())
    assert transport.closed == 1
    assert not transport.is_open


def test_reader_drops_oldest_events_when_queue_is_full(settings, monkeypatch):
    monkeypatch.setattr(coordinator_module, "MAX_PENDING_EVENTS", 3)
    settings.chat.protocol = ProtocolVersion.DELIMITED
    frames = [f"$TIMESTAMP:{i}$COLOR:$FIRST_MSG:0$NAME:alice$MESSAGE:m{i}" for i in range(5)]

    async def scenario():
        coordinator, _, _ = _make(settings, transport=FakeTransport(frames=frames))
        await coordinator.start()
        await asyncio.wait_for(coordinator._reader_task, 1)
        texts = []
        while not coordinator.events.empty():
            texts.append(coordinator.events.get_nowait().text)
        return coordinator, texts

    coordinator, texts = asyncio.run(scenario())
    assert texts == ["m2", "m3", "m4"]
    assert coordinator.dropped_events == 2


class _FailingFramesTransport(FakeTransport):
    async def frames(self):
        yield "PING :tmi.twitch.tv"
        raise ConnectionResetError("connection reset by peer")


def test_reader_failure_is_reported_and_close_succeeds(settings):
    async def scenario():
        coordinator, _, _ = _make(settings, transport=_FailingFramesTransport())
        errors = []
        coordinator.chat_error.connect(lambda channel, message: errors.append(message))
        await coordinator.start()
        await coordinator._reader_task
        await coordinator.close()
        return errors

    [error] = asyncio.run(scenario())
    assert "connection reset by peer" in error


# --- refresh_users ---


def test_refresh_users_updates_live_flags(settings, live_stream, tmp_path):
    users = UserDirectory(tmp_path / "users.json")
    users.set_user(UserRecord(username="Bob", live=False))
    users.set_user(UserRecord(username="Alice", live=True))
    metadata = FakeMetadata({"bob": live_stream})

    async def scenario():
        coordinator, _, _ = _make(settings, metadata=metadata, users=users)
        return await coordinator.refresh_users()

    assert asyncio.run(scenario()) == ["Bob"]
    assert metadata.live_lookups == [["Bob", "Alice"]]
    assert users.get("bob").live is True
    assert users.get("alice").live is False

    reloaded = UserDirectory(tmp_path / "users.json")
    reloaded.load()
    assert reloaded.get("bob").live is True


def test_refresh_users_failure_keeps_flags(settings, tmp_path):
    users = UserDirectory(tmp_path / "users.json")
    users.set_user(UserRecord(username="Alice", live=True))
    metadata = FakeMetadata()
    metadata.live_error = aiohttp.ClientConnectionError("backend down")

    async def scenario():
        coordinator, _, _ = _make(settings, metadata=metadata, users=users)
        return await coordinator.refresh_users()

    assert asyncio.run(scenario()) is None
    assert users.get("alice").live is True
    assert not (tmp_path / "users.json").exists()


def test_refresh_users_without_users(settings, tmp_path):
    metadata = FakeMetadata()

    async def scenario():
        coordinator, _, _ = _make(
            settings, metadata=metadata, users=UserDirectory(tmp_path / "users.json")
        )
        return await coordinator.refresh_users()

    assert asyncio.run(scenario()) == []
    assert metadata.live_lookups == []
