"""Chat wire protocol decoding.

Three wire shapes are supported. The active one is picked from settings
(``ProtocolVersion``) and never auto-detected:

* ``IRC``: Twitch IRC lines, ``[@tags ]:nick!user@host PRIVMSG #channel :text``
* ``DELIMITED``: key-value records such as
  ``$TIMESTAMP:1700000000000$COLOR:#FF0000$FIRST_MSG:0$NAME:alice$MESSAGE:hi``,
  possibly several per frame
* ``JSON``: one event object per frame, as sent by the local backend's
  server-sent-event feed

Decoding is a pure function of one frame. Control lines (keep-alives,
membership notices) decode to an empty list; anything else that does not
fit the grammar decodes to a ``Reject``.
"""

import json
import re
from datetime import datetime, timezone
from enum import Enum

from .models import ChatEvent, ChatMessage, EmoteDescriptor, Fragment, FragmentKind, Reject


class ProtocolVersion(str, Enum):
    """Wire shape selector."""

    IRC = "irc"
    DELIMITED = "delimited"
    JSON = "json"


DecodeResult = list[ChatEvent] | Reject

# IRC commands that carry no chat message and are dropped silently
IRC_CONTROL_COMMANDS = frozenset(
    {
        "PING",
        "PONG",
        "CAP",
        "JOIN",
        "PART",
        "NOTICE",
        "ROOMSTATE",
        "USERSTATE",
        "GLOBALUSERSTATE",
        "CLEARCHAT",
        "CLEARMSG",
        "USERNOTICE",
        "HOSTTARGET",
        "RECONNECT",
        "WHISPER",
    }
)

IRC_PRIVMSG_RE = re.compile(
    r"^(?:(?P<tags>@\S*) )?:(?P<nick>[^!\s]+)!\S* PRIVMSG (?P<channel>\S+) :(?P<text>.+)$"
)

DELIMITED_RECORD_RE = re.compile(
    r"\$TIMESTAMP:(?P<timestamp>[^$]*)"
    r"\$COLOR:(?P<color>[^$]*)"
    r"\$FIRST_MSG:(?P<first_msg>[^$]*)"
    r"\$NAME:(?P<name>[^$]*)"
    r"\$MESSAGE:(?P<message>.*?)(?=\$TIMESTAMP:|\Z)",
    re.DOTALL,
)
DELIMITED_MARKER = "$TIMESTAMP:"

JSON_KEEPALIVE_EVENTS = frozenset({"ping", "keepalive"})


def parse_irc_tags(tag_string: str) -> dict[str, str]:
    """Parse IRC tags string into a dictionary.

    Tags format: @key1=value1;key2=value2;...
    """
    tags: dict[str, str] = {}
    if not tag_string:
        return tags

    # Remove leading '@' if present
    if tag_string.startswith("@"):
        tag_string = tag_string[1:]

    for pair in tag_string.split(";"):
        if not pair:
            continue
        if "=" in pair:
            key, value = pair.split("=", 1)
            value = (
                value.replace("\\:", ";")
                .replace("\\s", " ")
                .replace("\\\\", "\\")
                .replace("\\r", "\r")
                .replace("\\n", "\n")
            )
            tags[key] = value
        else:
            tags[pair] = ""

    return tags


def parse_irc_message(raw: str) -> dict:
    """Parse a raw IRC line into components.

    Returns dict with keys: tags, prefix, command, params, trailing
    """
    result: dict = {"tags": {}, "prefix": "", "command": "", "params": [], "trailing": ""}

    pos = 0

    if raw.startswith("@"):
        space_idx = raw.find(" ")
        if space_idx < 0:
            return result
        result["tags"] = parse_irc_tags(raw[:space_idx])
        pos = space_idx + 1

    if pos >= len(raw):
        return result

    if raw[pos] == ":":
        space_idx = raw.find(" ", pos)
        if space_idx < 0:
            return result
        result["prefix"] = raw[pos + 1 : space_idx]
        pos = space_idx + 1

    trailing_idx = raw.find(" :", pos)
    if trailing_idx >= 0:
        result["trailing"] = raw[trailing_idx + 2 :]
        remaining = raw[pos:trailing_idx]
    else:
        remaining = raw[pos:]

    parts = remaining.split(" ")
    result["command"] = parts[0]
    result["params"] = parts[1:] if len(parts) > 1 else []

    return result


def is_irc_control_line(raw: str) -> bool:
    """Whether an IRC line is a keep-alive or server notice rather than chat."""
    command = parse_irc_message(raw)["command"]
    if command in IRC_CONTROL_COMMANDS:
        return True
    return len(command) == 3 and command.isdigit()


def _timestamp_from_millis(value: str) -> datetime | None:
    try:
        return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
    except (ValueError, OverflowError, OSError):
        return None


def decode_irc(raw: str) -> DecodeResult:
    """Decode a single IRC line."""
    line = raw.rstrip("\r\n")
    if not line.strip():
        return []

    match = IRC_PRIVMSG_RE.match(line)
    if not match:
        if is_irc_control_line(line):
            return []
        return Reject(raw, "not a PRIVMSG line")

    text = match.group("text").rstrip()
    if not text:
        return Reject(raw, "empty message text")

    tags = parse_irc_tags(match.group("tags") or "")
    msg_id = tags.get("id", "")
    timestamp = None
    if tags.get("tmi-sent-ts"):
        timestamp = _timestamp_from_millis(tags["tmi-sent-ts"])

    message = ChatMessage(
        sender_name=tags.get("display-name") or match.group("nick"),
        fragments=[Fragment.text(text)],
        id=int(msg_id) if msg_id.isdigit() else None,
        color=tags.get("color") or None,
        is_first_message=tags.get("first-msg", "0") != "0",
        timestamp=timestamp,
        channel=match.group("channel").lstrip("#"),
    )
    return [message]


def decode_delimited(raw: str) -> DecodeResult:
    """Decode a frame of one or more delimited key-value records."""
    if not raw.strip() or raw.strip() == "PING":
        return []

    if DELIMITED_MARKER not in raw:
        return Reject(raw, "no record marker")

    # Every record marker must start a well-formed record
    starts = [m.start() for m in re.finditer(re.escape(DELIMITED_MARKER), raw)]
    if raw[: starts[0]].strip():
        return Reject(raw, "garbage before first record")

    events: list[ChatEvent] = []
    for start in starts:
        match = DELIMITED_RECORD_RE.match(raw, start)
        if not match:
            return Reject(raw, f"malformed record at offset {start}")

        name = match.group("name").strip()
        text = match.group("message").strip()
        if not name or not text:
            return Reject(raw, "record without name or message")

        ts_value = match.group("timestamp").strip()
        timestamp = None
        if ts_value:
            if not ts_value.isdigit():
                return Reject(raw, f"bad timestamp {ts_value!r}")
            timestamp = _timestamp_from_millis(ts_value)

        first_msg = match.group("first_msg").strip()
        if first_msg not in ("", "0", "1"):
            return Reject(raw, f"bad first-message flag {first_msg!r}")

        events.append(
            ChatMessage(
                sender_name=name,
                fragments=[Fragment.text(text)],
                color=match.group("color").strip() or None,
                is_first_message=first_msg == "1",
                timestamp=timestamp,
            )
        )

    return events


def _parse_json_emote(data) -> EmoteDescriptor | None:
    if not isinstance(data, dict):
        return None
    name, url = data.get("n"), data.get("u")
    width, height = data.get("w"), data.get("h")
    if not isinstance(name, str) or not name or not isinstance(url, str):
        return None
    if not isinstance(width, int) or not isinstance(height, int):
        return None
    if isinstance(width, bool) or isinstance(height, bool):
        return None
    return EmoteDescriptor(name=name, url=url, width=width, height=height)


def _parse_json_fragment(data) -> Fragment | None:
    if not isinstance(data, dict):
        return None
    kind, content = data.get("t"), data.get("c")
    if not isinstance(content, str) or isinstance(kind, bool):
        return None
    try:
        kind = FragmentKind(kind)
    except ValueError:
        return None

    if kind == FragmentKind.EMOTE:
        emote = _parse_json_emote(data.get("e"))
        if emote is None:
            return None
        return Fragment(kind, content, emote)
    return Fragment(kind, content)


def decode_json(raw: str) -> DecodeResult:
    """Decode one JSON chat event frame."""
    if not raw.strip():
        return []

    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        return Reject(raw, f"invalid JSON: {e}")

    if not isinstance(payload, dict):
        return Reject(raw, "event is not an object")

    if "event" in payload:
        event = payload.get("event")
        if event in JSON_KEEPALIVE_EVENTS:
            return []
        if event != "message":
            return Reject(raw, f"unknown event {event!r}")
        payload = payload.get("data")
        if not isinstance(payload, dict):
            return Reject(raw, "message event without data")

    name = payload.get("n")
    if not isinstance(name, str) or not name:
        return Reject(raw, "missing sender name")

    color = payload.get("c", "")
    if color is not None and not isinstance(color, str):
        return Reject(raw, "bad color")

    first_msg = payload.get("f", False)
    if not isinstance(first_msg, bool):
        return Reject(raw, "bad first-message flag")

    msg_id = payload.get("id")
    if msg_id is not None and (not isinstance(msg_id, int) or isinstance(msg_id, bool)):
        return Reject(raw, "bad message id")

    raw_fragments = payload.get("m")
    if not isinstance(raw_fragments, list) or not raw_fragments:
        return Reject(raw, "missing fragments")

    fragments: list[Fragment] = []
    for item in raw_fragments:
        fragment = _parse_json_fragment(item)
        if fragment is None:
            return Reject(raw, "malformed fragment")
        fragments.append(fragment)

    return [
        ChatMessage(
            sender_name=name,
            fragments=fragments,
            id=msg_id,
            color=color or None,
            is_first_message=first_msg,
        )
    ]


_DECODERS = {
    ProtocolVersion.IRC: decode_irc,
    ProtocolVersion.DELIMITED: decode_delimited,
    ProtocolVersion.JSON: decode_json,
}


def decode(frame: str, version: ProtocolVersion = ProtocolVersion.IRC) -> DecodeResult:
    """Decode one frame with the given wire shape.

    Returns a (possibly empty) list of events, or a Reject.
    """
    return _DECODERS[ProtocolVersion(version)](frame)
