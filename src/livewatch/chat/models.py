"""Data models for the chat session."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum


@dataclass(frozen=True)
class EmoteDescriptor:
    """Represents a chat emote from any provider."""

    name: str  # Literal text token (e.g., "KEKW")
    url: str
    width: int = 28
    height: int = 28


class FragmentKind(IntEnum):
    """Fragment kinds. Values match the "t" field of the JSON feed."""

    TEXT = 0
    EMOTE = 1
    URL = 2


@dataclass
class Fragment:
    """A typed slice of a chat message body."""

    kind: FragmentKind
    content: str
    emote: EmoteDescriptor | None = None  # Set only for EMOTE fragments

    @classmethod
    def text(cls, content: str) -> "Fragment":
        return cls(FragmentKind.TEXT, content)

    @classmethod
    def url(cls, content: str) -> "Fragment":
        return cls(FragmentKind.URL, content)

    @classmethod
    def for_emote(cls, emote: EmoteDescriptor) -> "Fragment":
        return cls(FragmentKind.EMOTE, emote.name, emote)


@dataclass
class ChatMessage:
    """Represents a single chat message."""

    sender_name: str
    fragments: list[Fragment] = field(default_factory=list)
    id: int | None = None
    color: str | None = None  # None when the sender has no color set
    is_first_message: bool = False
    timestamp: datetime | None = None
    channel: str | None = None  # Only known for IRC frames

    @property
    def text(self) -> str:
        """The message body as plain text."""
        return " ".join(frag.content for frag in self.fragments)

    @property
    def is_plain_text(self) -> bool:
        """Whether the message still needs client-side fragmenting."""
        return len(self.fragments) == 1 and self.fragments[0].kind == FragmentKind.TEXT


# Only one event variant is currently defined.
ChatEvent = ChatMessage


class RejectReason(str, Enum):
    """Why a frame was rejected by the decoder."""

    MALFORMED_FRAME = "malformed_frame"


@dataclass(frozen=True)
class Reject:
    """A frame that did not match the active wire grammar."""

    frame: str
    detail: str = ""
    reason: RejectReason = RejectReason.MALFORMED_FRAME
