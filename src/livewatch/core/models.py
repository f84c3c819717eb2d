"""Core data models for livewatch."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from ..chat.emotes.rules import EmoteRuleSet


class StreamPlatform(str, Enum):
    """Supported streaming platforms."""

    TWITCH = "twitch"


def parse_timestamp(value) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (accepts a trailing "Z")."""
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def format_elapsed(started_at: Optional[datetime], now: Optional[datetime] = None) -> str:
    """Format the time since started_at as H:MM:SS.

    Hours are not padded and may exceed 24. Missing or future start times
    format as 0:00:00.
    """
    if started_at is None:
        return "0:00:00"
    if now is None:
        now = datetime.now(timezone.utc) if started_at.tzinfo else datetime.now()
    total_seconds = max(int((now - started_at).total_seconds()), 0)
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours}:{minutes:02d}:{seconds:02d}"


@dataclass
class StreamInfo:
    """Stream metadata for a channel, as returned by a metadata client."""

    username: str
    live: bool = False
    title: str = ""
    game: str = ""
    viewer_count: int = 0
    started_at: Optional[datetime] = None
    playback_url: Optional[str] = None
    avatar: str = ""
    platform: StreamPlatform = StreamPlatform.TWITCH


@dataclass
class UserRecord:
    """A persisted entry of the user directory."""

    username: str
    avatar: str = ""
    live: bool = False

    def to_dict(self) -> dict:
        return {"username": self.username, "avatar": self.avatar, "live": self.live}

    @classmethod
    def from_dict(cls, data: dict) -> Optional["UserRecord"]:
        username = data.get("username")
        if not isinstance(username, str) or not username:
            return None
        avatar = data.get("avatar", "")
        return cls(
            username=username,
            avatar=avatar if isinstance(avatar, str) else "",
            live=bool(data.get("live", False)),
        )


@dataclass(frozen=True)
class WatchSnapshot:
    """The published view of what is currently being watched.

    Snapshots are replaced wholesale, never mutated field by field.
    """

    channel: str
    title: str = ""
    game: str = ""
    viewer_count: int = 0
    live: bool = False
    started_at: Optional[datetime] = None
    elapsed_formatted: str = "0:00:00"
    playback_url: Optional[str] = None
    emote_rules: Optional["EmoteRuleSet"] = None
    request_token: int = 0
    captured_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_stream(
        cls,
        channel: str,
        stream: Optional[StreamInfo],
        emote_rules: Optional["EmoteRuleSet"] = None,
        request_token: int = 0,
        now: Optional[datetime] = None,
    ) -> "WatchSnapshot":
        """Build a snapshot; a missing stream yields an offline snapshot."""
        now = now or datetime.now(timezone.utc)
        if stream is None:
            return cls(
                channel=channel,
                emote_rules=emote_rules,
                request_token=request_token,
                captured_at=now,
            )
        started_at = stream.started_at if stream.live else None
        return cls(
            channel=channel,
            title=stream.title,
            game=stream.game,
            viewer_count=stream.viewer_count,
            live=stream.live,
            started_at=started_at,
            elapsed_formatted=format_elapsed(started_at, now),
            playback_url=stream.playback_url,
            emote_rules=emote_rules,
            request_token=request_token,
            captured_at=now,
        )

    def refreshed(self, now: Optional[datetime] = None) -> "WatchSnapshot":
        """Return a copy with the elapsed time recomputed from started_at."""
        now = now or datetime.now(timezone.utc)
        return replace(
            self,
            elapsed_formatted=format_elapsed(self.started_at, now),
            captured_at=now,
        )
