import pytest

from chatwarden.moderation.content_filter import ContentFilter, MAX_WORD_LENGTH, evaluate_banned_words
from chatwarden.moderation.models import GroupConfig, Severity, ViolationReason
from chatwarden.moderation.scripts import (
    SCRIPT_RANGES,
    detect_scripts,
    evaluate_banned_scripts,
    normalize_script_name,
)
from chatwarden.moderation.spam import (
    evaluate_adult,
    evaluate_links,
    evaluate_username,
    extract_links,
    is_suspicious_username,
    link_host,
)

ALL_SCRIPTS = list(SCRIPT_RANGES)


def make_settings(**overrides) -> GroupConfig:
    return GroupConfig(chat_id=1, **overrides)


# ----------------------------------------------------------------------------
# links
# ----------------------------------------------------------------------------

@pytest.mark.parametrize("text", [
    "check https://example.com/page",
    "old school http://example.org",
    "go to www.example.net now",
    "join t.me/cheap_followers",
    "short bit.ly/abc123",
    "invite discord.gg/xyz",
])
def test_link_detected(text):
    violation = evaluate_links(text, make_settings())

    assert violation is not None
    assert violation.reason == ViolationReason.LINK
    assert violation.reason.value == "link sharing not allowed"
    assert violation.severity == Severity.LOW


def test_plain_text_has_no_links():
    assert evaluate_links("just talking about example dot com", make_settings()) is None
    assert extract_links("") == []


def test_link_filter_can_be_disabled():
    assert evaluate_links("https://example.com", make_settings(link_filter_enabled=False)) is None


def test_whitelisted_domain_is_ignored():
    settings = make_settings(link_whitelist=["github.com"])

    assert evaluate_links("see https://github.com/org/repo", settings) is None
    assert evaluate_links("see https://github.com/org/repo and https://spam.biz", settings) is not None


@pytest.mark.parametrize("text", [
    "join https://scam.example/?r=youtube.com",
    "join https://youtube.com.scam.example/watch",
    "join https://notyoutube.com/watch",
    "join https://scam.example/youtube.com/",
])
def test_whitelisted_domain_must_be_the_host(text):
    assert evaluate_links(text, make_settings(link_whitelist=["youtube.com"])) is not None


@pytest.mark.parametrize("text", [
    "watch https://www.youtube.com/watch?v=1",
    "watch https://m.YouTube.com/watch?v=1",
    "watch www.youtube.com/watch?v=1",
])
def test_whitelisted_subdomains_pass(text):
    assert evaluate_links(text, make_settings(link_whitelist=["youtube.com"])) is None


def test_link_host_parses_schemeless_links():
    assert link_host("t.me/cheap_followers") == "t.me"
    assert link_host("https://User@Example.COM:8443/x") == "example.com"
    assert link_host("http://[broken") == ""


def test_bare_mentions_only_when_enabled():
    text = "write to @promo_channel for deals"

    assert evaluate_links(text, make_settings()) is None
    violation = evaluate_links(text, make_settings(block_mentions=True))
    assert violation is not None
    assert violation.detail == "@promo_channel"


def test_email_is_not_a_mention():
    assert evaluate_links("mail me: john@example.com", make_settings(block_mentions=True)) is None


# ----------------------------------------------------------------------------
# banned words
# ----------------------------------------------------------------------------

def test_banned_words_case_insensitive_substring():
    settings = make_settings(banned_words=["casino", "scam"])

    violation = evaluate_banned_words("Best CASINOS and no ScAm here", settings)

    assert violation.reason == ViolationReason.BANNED_WORDS
    assert violation.detail == "casino, scam"


def test_no_banned_words_configured():
    assert evaluate_banned_words("anything goes", make_settings()) is None


def test_content_filter_add_and_remove():
    settings = make_settings()
    content_filter = ContentFilter(settings)

    assert content_filter.add_word("  Casino ")
    assert not content_filter.add_word("casino")
    assert not content_filter.add_word("")
    assert not content_filter.add_word("x" * (MAX_WORD_LENGTH + 1))
    assert settings.banned_words == ["casino"]

    assert content_filter.remove_word("CASINO")
    assert not content_filter.remove_word("casino")
    assert content_filter.get_words() == []


# ----------------------------------------------------------------------------
# scripts
# ----------------------------------------------------------------------------

@pytest.mark.parametrize("text", [
    "plain ascii text 123 !?",
    "café naïve façade",
    "emoji only 😀🚀",
    "",
])
def test_no_banned_code_points_means_no_scripts(text):
    assert detect_scripts(text, ALL_SCRIPTS) == []


def test_cjk_reports_every_overlapping_script():
    assert detect_scripts("你好", ["chinese", "japanese", "korean"]) == ["chinese", "japanese"]


def test_distinct_scripts_not_occurrences():
    assert detect_scripts("Привет, как дела? Всё хорошо", ["cyrillic"]) == ["cyrillic"]


def test_supplementary_plane_character_is_one_code_point():
    # U+20000 is CJK Extension B, outside the BMP
    assert detect_scripts("a\U00020000b", ["chinese"]) == ["chinese"]


def test_aliases_are_normalised():
    assert normalize_script_name("Russian") == "cyrillic"
    assert normalize_script_name("hindi") == "devanagari"
    assert normalize_script_name("klingon") is None
    assert detect_scripts("नमस्ते", ["hindi"]) == ["devanagari"]


def test_only_configured_scripts_are_reported():
    assert detect_scripts("Привет 你好", ["chinese"]) == ["chinese"]
    assert detect_scripts("Привет 你好", []) == []


def test_banned_script_violation_names_scripts():
    violation = evaluate_banned_scripts("مرحبا Привет", make_settings(banned_scripts=["arabic", "cyrillic"]))

    assert violation.reason == ViolationReason.BANNED_SCRIPT
    assert violation.detail == "cyrillic, arabic"


def test_script_round_trip_restores_behaviour():
    settings = make_settings()
    text = "안녕하세요"
    assert evaluate_banned_scripts(text, settings) is None

    settings.banned_scripts.append("korean")
    assert evaluate_banned_scripts(text, settings) is not None

    settings.banned_scripts.remove("korean")
    assert evaluate_banned_scripts(text, settings) is None


# ----------------------------------------------------------------------------
# usernames
# ----------------------------------------------------------------------------

@pytest.mark.parametrize("handle", [
    "user1234567",
    "crypto_king",
    "@FreeMoneyNow",
    "hey___there",
    "a_b_c_d",
    "anna48213",
])
def test_suspicious_usernames(handle):
    assert is_suspicious_username(handle)


@pytest.mark.parametrize("handle", [None, "", "alice", "john_doe", "maria2001"])
def test_regular_usernames(handle):
    assert not is_suspicious_username(handle)


def test_username_violation_respects_toggle():
    assert evaluate_username("crypto_king", make_settings()).reason == ViolationReason.SUSPICIOUS_USERNAME
    assert evaluate_username("crypto_king", make_settings(username_filter_enabled=False)) is None


# ----------------------------------------------------------------------------
# adult content
# ----------------------------------------------------------------------------

def test_adult_keywords():
    violation = evaluate_adult("Subscribe to my OnlyFans", make_settings())

    assert violation.reason == ViolationReason.ADULT_CONTENT
    assert violation.severity == Severity.HIGH
    assert evaluate_adult("a perfectly normal message", make_settings()) is None
    assert evaluate_adult("OnlyFans", make_settings(adult_filter_enabled=False)) is None
