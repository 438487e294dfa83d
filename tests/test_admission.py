import asyncio
import random
import time

import pytest

from chatwarden.moderation.actions import Enforcer
from chatwarden.moderation.captcha import (
    AdmissionGate,
    CaptchaChallenge,
    CaptchaProvider,
    GateOutcome,
    JoinOutcome,
    parse_answer,
)
from chatwarden.moderation.controller import ModerationAction, ModerationController
from chatwarden.moderation.models import GlobalConfig, GroupConfig, IncomingMessage, NewMember
from chatwarden.moderation.welcome import format_welcome_message
from tests.conftest import CHAT_ID

USER = 11


class FixedProvider(CaptchaProvider):
    """Always asks 2 + 3."""

    def generate(self, difficulty="easy"):
        return CaptchaChallenge(question="2 + 3 = ?", answer=5)


def challenge_settings(**overrides) -> GroupConfig:
    overrides.setdefault("require_challenge_on_join", True)
    overrides.setdefault("notice_auto_delete_sec", 0)
    return GroupConfig(chat_id=CHAT_ID, **overrides)


def make_gate(platform, grace_sec=5.0):
    return AdmissionGate(Enforcer(platform), provider=FixedProvider(), grace_sec=grace_sec)


def member(user_id=USER, **kwargs):
    return NewMember(chat_id=CHAT_ID, user_id=user_id, handle="newbie", chat_title="Test chat", **kwargs)


def answer(text, message_id=500, user_id=USER):
    return IncomingMessage(chat_id=CHAT_ID, user_id=user_id, message_id=message_id, text=text, handle="newbie")


# ----------------------------------------------------------------------------
# captcha generation
# ----------------------------------------------------------------------------

@pytest.mark.parametrize("difficulty, low, high", [
    ("easy", 2, 18),
    ("medium", 11, 50),
    ("hard", 20, 270),
])
def test_provider_ranges(difficulty, low, high):
    provider = CaptchaProvider(random.Random(1234))

    for _ in range(50):
        challenge = provider.generate(difficulty)
        assert low <= challenge.answer <= high
        assert challenge.question.endswith("= ?")


def test_hard_questions_are_multiplication():
    assert "×" in CaptchaProvider(random.Random(1)).generate("HARD").question


@pytest.mark.parametrize("text, expected", [
    ("5", 5),
    (" 12 ", 12),
    ("-3", -3),
    ("five", None),
    ("5.0", None),
    ("", None),
    (None, None),
])
def test_parse_answer(text, expected):
    assert parse_answer(text) == expected


# ----------------------------------------------------------------------------
# join
# ----------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_join_restricts_and_sends_prompt(fake_redis, platform):
    gate = make_gate(platform)
    try:
        outcome = await gate.on_join(member(), challenge_settings(), GlobalConfig())

        assert outcome == JoinOutcome.CHALLENGED
        assert gate.has_challenge(CHAT_ID, USER)
        assert platform.permissions == [(CHAT_ID, USER, False, None)]
        assert len(platform.sent) == 1
        assert "2 + 3 = ?" in platform.sent[0][1]
        assert gate.registry.get(CHAT_ID, USER).prompt_message_id == 1001
    finally:
        await gate.close()


@pytest.mark.asyncio
async def test_bot_is_kicked_on_join(fake_redis, platform):
    gate = make_gate(platform)

    outcome = await gate.on_join(member(is_bot=True), challenge_settings(), GlobalConfig())

    assert outcome == JoinOutcome.BOT_KICKED
    assert platform.kicked(CHAT_ID, USER)
    assert not gate.has_challenge(CHAT_ID, USER)


@pytest.mark.asyncio
async def test_blacklisted_user_is_banned_on_join(fake_redis, platform):
    gate = make_gate(platform)

    outcome = await gate.on_join(member(), challenge_settings(), GlobalConfig(blacklist=[USER]))

    assert outcome == JoinOutcome.BANNED
    assert (CHAT_ID, USER) in platform.banned
    assert platform.unbanned == []


@pytest.mark.asyncio
async def test_whitelisted_user_is_admitted_and_welcomed(fake_redis, platform):
    gate = make_gate(platform)
    settings = challenge_settings(whitelist=[USER], welcome_text="Привет, {username}! Это {chatname}.")

    outcome = await gate.on_join(member(), settings, GlobalConfig())

    assert outcome == JoinOutcome.ADMITTED
    assert platform.permissions == [(CHAT_ID, USER, True, None)]
    assert platform.sent[0][1] == "Привет, @newbie! Это Test chat."


@pytest.mark.asyncio
async def test_challenge_disabled_admits_without_welcome_text(fake_redis, platform):
    gate = make_gate(platform)

    outcome = await gate.on_join(member(), challenge_settings(require_challenge_on_join=False), GlobalConfig())

    assert outcome == JoinOutcome.ADMITTED
    assert platform.permissions == [(CHAT_ID, USER, True, None)]
    assert platform.sent == []


# ----------------------------------------------------------------------------
# answers
# ----------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_correct_answer_resolves_exactly_once(fake_redis, platform):
    gate = make_gate(platform)
    settings = challenge_settings()
    try:
        await gate.on_join(member(), settings, GlobalConfig())
        prompt_id = gate.registry.get(CHAT_ID, USER).prompt_message_id

        assert await gate.handle_answer(answer("5"), settings) == GateOutcome.RESOLVED
        assert await gate.handle_answer(answer("5", message_id=501), settings) == GateOutcome.NOT_CHALLENGED

        assert (CHAT_ID, 500) in platform.deleted
        assert (CHAT_ID, prompt_id) in platform.deleted
        assert platform.permissions[-1] == (CHAT_ID, USER, True, None)
        assert len(gate.registry) == 0
        assert gate.registry._timers == {}
    finally:
        await gate.close()


@pytest.mark.asyncio
async def test_wrong_answers_until_attempts_run_out(fake_redis, platform):
    gate = make_gate(platform)
    settings = challenge_settings(challenge_max_attempts=3)
    try:
        await gate.on_join(member(), settings, GlobalConfig())

        outcomes = [
            await gate.handle_answer(answer(text, message_id=600 + i), settings)
            for i, text in enumerate(["4", "not a number", "6"])
        ]

        assert outcomes == [GateOutcome.RETRY, GateOutcome.RETRY, GateOutcome.FAILED]
        assert platform.kicked(CHAT_ID, USER)
        assert "Осталось попыток: 2" in platform.sent[1][1]
        assert not gate.has_challenge(CHAT_ID, USER)
    finally:
        await gate.close()


@pytest.mark.asyncio
async def test_unanswered_challenge_expires(fake_redis, platform):
    gate = make_gate(platform, grace_sec=0.05)
    try:
        await gate.on_join(member(), challenge_settings(challenge_timeout_sec=0), GlobalConfig())

        await asyncio.sleep(0.2)

        assert platform.banned.count((CHAT_ID, USER)) == 1
        assert platform.kicked(CHAT_ID, USER)
        assert not gate.has_challenge(CHAT_ID, USER)
    finally:
        await gate.close()


@pytest.mark.asyncio
async def test_resolved_challenge_is_never_kicked_by_timer(fake_redis, platform):
    gate = make_gate(platform, grace_sec=0.05)
    settings = challenge_settings(challenge_timeout_sec=0)
    try:
        await gate.on_join(member(), settings, GlobalConfig())
        # Keep the answer in time while the timer is still due in 50ms
        gate.registry.get(CHAT_ID, USER).expires_at = time.time() + 60

        assert await gate.handle_answer(answer("5"), settings) == GateOutcome.RESOLVED
        await asyncio.sleep(0.2)

        assert platform.banned == []
        assert platform.permissions[-1] == (CHAT_ID, USER, True, None)
    finally:
        await gate.close()


@pytest.mark.asyncio
async def test_late_answer_is_expired(fake_redis, platform):
    gate = make_gate(platform, grace_sec=10)
    settings = challenge_settings(challenge_timeout_sec=0)
    try:
        await gate.on_join(member(), settings, GlobalConfig())
        await asyncio.sleep(0.02)

        assert await gate.handle_answer(answer("5"), settings) == GateOutcome.EXPIRED
        assert platform.kicked(CHAT_ID, USER)
        assert gate.registry._timers == {}
    finally:
        await gate.close()


@pytest.mark.asyncio
async def test_rejoin_replaces_entry_and_cancels_old_timer(fake_redis, platform):
    gate = make_gate(platform)
    settings = challenge_settings()
    try:
        await gate.on_join(member(), settings, GlobalConfig())
        first = gate.registry.get(CHAT_ID, USER)
        first_timer = gate.registry._timers[(CHAT_ID, USER)]

        await gate.on_join(member(), settings, GlobalConfig())
        await asyncio.sleep(0)

        second = gate.registry.get(CHAT_ID, USER)
        assert second.id != first.id
        assert len(gate.registry) == 1
        assert first_timer.cancelled()
        assert (CHAT_ID, first.prompt_message_id) in platform.deleted
    finally:
        await gate.close()


# ----------------------------------------------------------------------------
# controller integration
# ----------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_messages_from_challenged_user_go_to_the_gate(seed_settings, platform):
    seed_settings(require_challenge_on_join=True)
    controller = ModerationController(platform)
    controller.gate.provider = FixedProvider()
    try:
        assert await controller.on_user_join(member()) == JoinOutcome.CHALLENGED

        # A link would normally be a violation, here it is just a wrong answer
        result = await controller.on_message(answer("https://spam.example"))
        assert result.action == ModerationAction.GATE
        assert result.gate_outcome == GateOutcome.RETRY
        assert controller.flood.count(CHAT_ID, USER) == 0

        result = await controller.on_message(answer("5", message_id=501))
        assert result.gate_outcome == GateOutcome.RESOLVED

        result = await controller.on_message(answer("hello again", message_id=502))
        assert result.action == ModerationAction.NONE
    finally:
        await controller.close()


def test_welcome_placeholders_are_escaped():
    text = format_welcome_message(
        "Hi {username} in {chatname}",
        NewMember(chat_id=1, user_id=2, display_name="<b>Eve</b>", chat_title="A & B"),
    )

    assert text == "Hi &lt;b&gt;Eve&lt;/b&gt; in A &amp; B"
