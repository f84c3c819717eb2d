"""Error taxonomy for the chat session coordinator."""


class ChatError(Exception):
    """Base class for chat session errors."""


class NotConnected(ChatError):
    """A channel switch was requested before the transport was opened."""


class SwitchFailed(ChatError):
    """The transport failed while parting or joining a channel."""


class MetadataUnavailable(ChatError):
    """Stream metadata could not be fetched (unknown channel, offline, timeout)."""


class EmoteFetchFailed(ChatError):
    """No emote provider returned a usable emote set."""
