"""Per-channel emote rules: compiled emote matchers and the cache that owns them."""

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field

from ..models import EmoteDescriptor, Fragment, FragmentKind

logger = logging.getLogger(__name__)

# Characters with a meaning outside a character class in Python's re
_EMOTE_META_RE = re.compile(r"[.*+?^${}()|\[\]\\]")

URL_RE = re.compile(r"(https?://)?(www\.)?([a-zA-Z0-9-]{1,256})\.[a-zA-Z0-9]{2,}(/\S*)?")


def escape_emote_name(name: str) -> str:
    """Escape an emote name so it matches literally inside a pattern."""
    return _EMOTE_META_RE.sub(lambda m: "\\" + m.group(0), name)


def channel_key(channel: str) -> str:
    """Cache key for a channel name (comparison is case-insensitive)."""
    return channel.casefold()


@dataclass(frozen=True)
class EmoteRuleSet:
    """Emotes of one channel and the compiled matcher for them.

    A matcher of None means the channel has no emotes and nothing ever matches.
    """

    channel: str
    by_name: dict[str, EmoteDescriptor] = field(default_factory=dict)
    matcher: re.Pattern | None = None

    @property
    def is_empty(self) -> bool:
        return self.matcher is None

    def find(self, text: str) -> list[tuple[int, int, EmoteDescriptor]]:
        """Return (start, end, emote) for every emote occurrence in text."""
        if self.matcher is None or not text:
            return []
        positions: list[tuple[int, int, EmoteDescriptor]] = []
        for match in self.matcher.finditer(text):
            emote = self.by_name.get(match.group(0))
            if emote:
                positions.append((match.start(), match.end(), emote))
        return positions


def build_rule_set(channel: str, emotes: Iterable[EmoteDescriptor]) -> EmoteRuleSet:
    """Build the rule set for a channel.

    Duplicate names keep their first position in the alternation; the last
    descriptor seen for a name wins.
    """
    by_name: dict[str, EmoteDescriptor] = {}
    for emote in emotes:
        if emote.name:
            by_name[emote.name] = emote

    if not by_name:
        return EmoteRuleSet(channel=channel)

    alternation = "|".join(escape_emote_name(name) for name in by_name)
    matcher = re.compile(rf"\b({alternation})\b")
    return EmoteRuleSet(channel=channel, by_name=by_name, matcher=matcher)


def fragment_text(text: str, rules: EmoteRuleSet | None = None) -> list[Fragment]:
    """Split plain message text into text, emote and URL fragments.

    URLs are detected per whitespace-separated token; emotes are located with
    the channel matcher inside the remaining text. Adjacent text is merged.
    """
    fragments: list[Fragment] = []

    def add_text(content: str) -> None:
        if not content:
            return
        if fragments and fragments[-1].kind == FragmentKind.TEXT:
            fragments[-1].content += content
        else:
            fragments.append(Fragment.text(content))

    def add_plain(segment: str) -> None:
        pos = 0
        positions = rules.find(segment) if rules is not None else []
        for start, end, emote in positions:
            add_text(segment[pos:start])
            fragments.append(Fragment.for_emote(emote))
            pos = end
        add_text(segment[pos:])

    pending = ""
    for token in re.split(r"(\s+)", text):
        if token and not token.isspace() and URL_RE.fullmatch(token):
            add_plain(pending)
            pending = ""
            fragments.append(Fragment.url(token))
        else:
            pending += token
    add_plain(pending)

    # Whitespace-only text between other fragments carries no content
    trimmed = [f for f in fragments if f.kind != FragmentKind.TEXT or f.content.strip()]
    for frag in trimmed:
        if frag.kind == FragmentKind.TEXT:
            frag.content = frag.content.strip()
    return trimmed


class EmoteRuleCache:
    """Per-channel cache of emote rule sets.

    Priming is first-write-wins: a channel that is already cached keeps its
    rule set until invalidated.
    """

    def __init__(self) -> None:
        self._rules: dict[str, EmoteRuleSet] = {}

    def prime(self, channel: str, emotes: Iterable[EmoteDescriptor]) -> EmoteRuleSet:
        """Build and cache the rule set for a channel unless already cached."""
        key = channel_key(channel)
        existing = self._rules.get(key)
        if existing is not None:
            logger.debug(f"Emote rules for {channel} already cached")
            return existing

        rules = build_rule_set(channel, emotes)
        self._rules[key] = rules
        logger.info(f"Compiled {len(rules.by_name)} emote rules for {channel}")
        return rules

    def get(self, channel: str) -> EmoteRuleSet | None:
        """Get the cached rule set, or None if the channel is not primed."""
        return self._rules.get(channel_key(channel))

    def invalidate(self, channel: str) -> None:
        """Drop the cached rule set so the next prime rebuilds it."""
        if self._rules.pop(channel_key(channel), None) is not None:
            logger.debug(f"Invalidated emote rules for {channel}")

    def primed_channels(self) -> list[str]:
        return [rules.channel for rules in self._rules.values()]

    def __contains__(self, channel: str) -> bool:
        return channel_key(channel) in self._rules

    def __len__(self) -> int:
        return len(self._rules)
