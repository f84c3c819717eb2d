"""Core models, settings and persistence for livewatch."""

from .models import StreamInfo, StreamPlatform, UserRecord, WatchSnapshot
from .settings import Settings
from .users import UserDirectory

__all__ = [
    "StreamInfo",
    "StreamPlatform",
    "UserRecord",
    "WatchSnapshot",
    "Settings",
    "UserDirectory",
]
