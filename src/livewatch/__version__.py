"""Version information for livewatch."""

__version__ = "0.4.0"
