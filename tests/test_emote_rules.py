from livewatch.chat.emotes.rules import (
    EmoteRuleCache,
    build_rule_set,
    escape_emote_name,
    fragment_text,
)
from livewatch.chat.models import EmoteDescriptor, Fragment, FragmentKind


def _emote(name: str) -> EmoteDescriptor:
    return EmoteDescriptor(name=name, url=f"https://example.com/{name}")


def _positions(text: str, emote_names: list[str]):
    rules = build_rule_set("chan", [_emote(name) for name in emote_names])
    return [(start, end, emote.name) for start, end, emote in rules.find(text)]


# --- escape_emote_name ---


def test_escape_plain_name_unchanged():
    assert escape_emote_name("Kappa") == "Kappa"


def test_escape_metacharacters():
    assert escape_emote_name("C++Fan") == r"C\+\+Fan"
    assert escape_emote_name("(ditto)") == r"\(ditto\)"
    assert escape_emote_name("a.b|c$") == r"a\.b\|c\$"
    assert escape_emote_name("[x]{2}^*?\\") == r"\[x\]\{2\}\^\*\?\\"


# --- matching ---


def test_match_simple_word():
    assert _positions("hello Kappa world", ["Kappa"]) == [(6, 11, "Kappa")]


def test_match_punct_wrapped():
    assert _positions("(Kappa)!", ["Kappa"]) == [(1, 6, "Kappa")]


def test_match_brackets():
    assert _positions("[Kappa]", ["Kappa"]) == [(1, 6, "Kappa")]


def test_metacharacters_match_literally():
    assert _positions("I am a C++Fan today", ["C++Fan"]) == [(7, 13, "C++Fan")]


def test_dot_does_not_match_any_character():
    assert _positions("aXb", ["a.b"]) == []


def test_no_match_inside_word():
    assert _positions("Kappacino", ["Kappa"]) == []


def test_multiple_in_single_token():
    assert _positions("Kappa,Kappa", ["Kappa"]) == [(0, 5, "Kappa"), (6, 11, "Kappa")]


def test_zero_emotes_never_match():
    rules = build_rule_set("chan", [])
    assert rules.is_empty
    assert rules.matcher is None
    assert rules.find("") == []
    assert rules.find("Kappa anything at all") == []


def test_overlapping_names_follow_alternation_order():
    # Leftmost alternative wins where both could match at the same position
    assert _positions("Pog", ["Pog", "PogU"]) == [(0, 3, "Pog")]
    assert _positions("PogU", ["Pog", "PogU"]) == [(0, 4, "PogU")]


def test_duplicate_names_last_descriptor_wins():
    first = EmoteDescriptor(name="Kappa", url="https://old")
    second = EmoteDescriptor(name="Kappa", url="https://new")
    rules = build_rule_set("chan", [first, second])
    assert list(rules.by_name) == ["Kappa"]
    assert rules.find("Kappa")[0][2].url == "https://new"


# --- EmoteRuleCache ---


def test_prime_first_write_wins():
    cache = EmoteRuleCache()
    first = cache.prime("chan", [_emote("Kappa")])
    second = cache.prime("chan", [_emote("PogU")])
    assert second is first
    assert "Kappa" in second.by_name
    assert "PogU" not in second.by_name


def test_prime_after_invalidate_rebuilds():
    cache = EmoteRuleCache()
    first = cache.prime("chan", [_emote("Kappa")])
    cache.invalidate("chan")
    second = cache.prime("chan", [_emote("PogU")])
    assert second is not first
    assert "PogU" in second.by_name


def test_get_unprimed_returns_none():
    cache = EmoteRuleCache()
    assert cache.get("chan") is None
    assert "chan" not in cache
    assert len(cache) == 0


def test_cache_keys_are_case_insensitive():
    cache = EmoteRuleCache()
    rules = cache.prime("Bob", [_emote("Kappa")])
    assert cache.get("bob") is rules
    assert "BOB" in cache
    assert cache.primed_channels() == ["Bob"]


def test_invalidate_unknown_channel_is_harmless():
    cache = EmoteRuleCache()
    cache.invalidate("nobody")
    assert len(cache) == 0


# --- fragment_text ---


def test_fragment_text_without_rules():
    assert fragment_text("just some words") == [Fragment.text("just some words")]


def test_fragment_text_with_emote():
    rules = build_rule_set("chan", [_emote("Kappa")])
    frags = fragment_text("hello Kappa world", rules)
    assert [f.kind for f in frags] == [FragmentKind.TEXT, FragmentKind.EMOTE, FragmentKind.TEXT]
    assert frags[0].content == "hello"
    assert frags[1].emote.name == "Kappa"
    assert frags[2].content == "world"


def test_fragment_text_url():
    frags = fragment_text("see https://example.com/clip now")
    assert frags == [
        Fragment.text("see"),
        Fragment.url("https://example.com/clip"),
        Fragment.text("now"),
    ]


def test_fragment_text_emote_inside_url_is_not_an_emote():
    rules = build_rule_set("chan", [_emote("Kappa")])
    frags = fragment_text("https://example.com/Kappa", rules)
    assert frags == [Fragment.url("https://example.com/Kappa")]


def test_fragment_text_only_emotes():
    rules = build_rule_set("chan", [_emote("Kappa"), _emote("PogU")])
    frags = fragment_text("Kappa PogU", rules)
    assert [f.content for f in frags] == ["Kappa", "PogU"]
    assert all(f.kind == FragmentKind.EMOTE for f in frags)
