"""Stream metadata clients."""

from .backend import BackendApiClient
from .base import BaseApiClient
from .twitch import TwitchApiClient

__all__ = [
    "BaseApiClient",
    "BackendApiClient",
    "TwitchApiClient",
]
