"""Settings management for livewatch."""

import json
import os
import tempfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from appdirs import user_config_dir, user_data_dir

from ..chat.protocol import ProtocolVersion

APP_NAME = "livewatch"
APP_AUTHOR = "livewatch"

DEFAULT_BACKEND_URL = "http://127.0.0.1:3030"


def get_config_dir() -> Path:
    """Get the configuration directory."""
    path = Path(user_config_dir(APP_NAME, APP_AUTHOR))
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Get the data directory."""
    path = Path(user_data_dir(APP_NAME, APP_AUTHOR))
    path.mkdir(parents=True, exist_ok=True)
    return path


class TransportKind(str, Enum):
    """Which inbound chat transport to use."""

    IRC = "irc"  # Twitch IRC over WebSocket
    WEBSOCKET = "websocket"  # Backend line protocol over WebSocket
    SSE = "sse"  # Backend server-sent events


class MetadataSource(str, Enum):
    """Where stream metadata comes from."""

    BACKEND = "backend"
    TWITCH = "twitch"


@dataclass
class ChatSettings:
    """Chat-related settings."""

    transport: TransportKind = TransportKind.IRC
    # Wire format of inbound frames; must match the transport's server
    protocol: ProtocolVersion = ProtocolVersion.IRC
    websocket_url: str = ""  # empty = derive from backend_url


@dataclass
class ApiSettings:
    """Metadata API settings."""

    metadata_source: MetadataSource = MetadataSource.TWITCH
    backend_url: str = DEFAULT_BACKEND_URL
    metadata_timeout: int = 10  # seconds


@dataclass
class EmoteSettings:
    """Third-party emote settings."""

    providers: list[str] = field(default_factory=lambda: ["7tv", "bttv"])
    emote_timeout: int = 10  # seconds


@dataclass
class Settings:
    """Application settings."""

    log_level: str = "INFO"
    chat: ChatSettings = field(default_factory=ChatSettings)
    api: ApiSettings = field(default_factory=ApiSettings)
    emotes: EmoteSettings = field(default_factory=EmoteSettings)

    @classmethod
    def load(cls, path: Path | None = None) -> "Settings":
        """Load settings from file."""
        if path is None:
            path = get_config_dir() / "settings.json"

        if not path.exists():
            return cls()

        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
            return cls._from_dict(data)
        except (json.JSONDecodeError, KeyError, TypeError, AttributeError):
            return cls()

    def save(self, path: Path | None = None) -> None:
        """Save settings to file."""
        if path is None:
            path = get_config_dir() / "settings.json"

        path.parent.mkdir(parents=True, exist_ok=True)

        # Atomic write: write to temp file then rename to prevent corruption on crash
        fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp", prefix="settings_")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._to_dict(), f, indent=2)
            os.replace(tmp_path, path)  # Atomic on POSIX
        except Exception:
            # Clean up temp file on error
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    @property
    def line_websocket_url(self) -> str:
        """URL for the backend's line-protocol WebSocket."""
        if self.chat.websocket_url:
            return self.chat.websocket_url
        base = self.api.backend_url.rstrip("/")
        if base.startswith("https://"):
            return "wss://" + base[len("https://") :] + "/ws"
        if base.startswith("http://"):
            return "ws://" + base[len("http://") :] + "/ws"
        return base + "/ws"

    @staticmethod
    def _validate_int(value, default: int, min_val: int = 0, max_val: int | None = None) -> int:
        """Validate and constrain an integer value."""
        if not isinstance(value, int) or isinstance(value, bool):
            return default
        if value < min_val:
            return min_val
        if max_val is not None and value > max_val:
            return max_val
        return value

    @classmethod
    def _from_dict(cls, data: dict) -> "Settings":
        """Create Settings from a dictionary with validation."""
        settings = cls()

        log_level = data.get("log_level", settings.log_level)
        if isinstance(log_level, str) and log_level.upper() in (
            "DEBUG",
            "INFO",
            "WARNING",
            "ERROR",
        ):
            settings.log_level = log_level.upper()

        # Chat
        if "chat" in data:
            c = data["chat"]
            try:
                transport = TransportKind(c.get("transport", "irc"))
            except ValueError:
                transport = TransportKind.IRC
            try:
                protocol = ProtocolVersion(c.get("protocol", "irc"))
            except ValueError:
                protocol = ProtocolVersion.IRC
            settings.chat = ChatSettings(
                transport=transport,
                protocol=protocol,
                websocket_url=c.get("websocket_url", ""),
            )

        # Metadata API
        if "api" in data:
            a = data["api"]
            try:
                source = MetadataSource(a.get("metadata_source", "twitch"))
            except ValueError:
                source = MetadataSource.TWITCH
            settings.api = ApiSettings(
                metadata_source=source,
                backend_url=a.get("backend_url", DEFAULT_BACKEND_URL),
                metadata_timeout=cls._validate_int(
                    a.get("metadata_timeout"), 10, min_val=1, max_val=120
                ),
            )

        # Emotes
        if "emotes" in data:
            e = data["emotes"]
            providers = e.get("providers", ["7tv", "bttv"])
            settings.emotes = EmoteSettings(
                providers=[p for p in providers if isinstance(p, str)]
                if isinstance(providers, list)
                else ["7tv", "bttv"],
                emote_timeout=cls._validate_int(e.get("emote_timeout"), 10, min_val=1, max_val=120),
            )

        return settings

    def _to_dict(self) -> dict:
        """Convert Settings to a dictionary."""
        return {
            "log_level": self.log_level,
            "chat": {
                "transport": self.chat.transport.value,
                "protocol": self.chat.protocol.value,
                "websocket_url": self.chat.websocket_url,
            },
            "api": {
                "metadata_source": self.api.metadata_source.value,
                "backend_url": self.api.backend_url,
                "metadata_timeout": self.api.metadata_timeout,
            },
            "emotes": {
                "providers": self.emotes.providers,
                "emote_timeout": self.emotes.emote_timeout,
            },
        }
