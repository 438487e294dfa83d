import asyncio

import pytest

from chatwarden.moderation.models import GroupConfig
from chatwarden.moderation.warns import WarnEscalation, WarnSystem, determine_escalation

CHAT = -1
USER = 5


def test_determine_escalation_policy():
    quiet = GroupConfig(chat_id=CHAT, warn_threshold=3)
    strict = GroupConfig(chat_id=CHAT, warn_threshold=3, auto_ban_on_violation=True)

    assert determine_escalation(2, quiet) == WarnEscalation.NONE
    assert determine_escalation(3, quiet) == WarnEscalation.MUTE
    assert determine_escalation(3, strict) == WarnEscalation.BAN


@pytest.mark.asyncio
async def test_count_grows_until_threshold_then_resets(fake_redis):
    settings = GroupConfig(chat_id=CHAT, warn_threshold=3, mute_duration_min=60)
    warns = WarnSystem()

    first = await warns.add_violation(CHAT, USER, "flooding", settings)
    second = await warns.add_violation(CHAT, USER, "flooding", settings)
    third = await warns.add_violation(CHAT, USER, "link sharing not allowed", settings)

    assert (first.count, first.escalation) == (1, WarnEscalation.NONE)
    assert (second.count, second.escalation) == (2, WarnEscalation.NONE)
    assert (third.count, third.escalation) == (3, WarnEscalation.MUTE)
    assert third.mute_duration_min == 60

    record = await warns.get_record(CHAT, USER)
    assert record.count == 0
    assert record.last_reason == "link sharing not allowed"

    fourth = await warns.add_violation(CHAT, USER, "flooding", settings)
    assert fourth.count == 1


@pytest.mark.asyncio
async def test_auto_ban_policy(fake_redis):
    settings = GroupConfig(chat_id=CHAT, warn_threshold=1, auto_ban_on_violation=True)

    result = await WarnSystem().add_violation(CHAT, USER, "adult content", settings)

    assert result.escalation == WarnEscalation.BAN
    assert result.mute_duration_min == 0


@pytest.mark.asyncio
async def test_concurrent_violations_escalate_once(fake_redis):
    settings = GroupConfig(chat_id=CHAT, warn_threshold=3)
    warns = WarnSystem()

    results = await asyncio.gather(*[
        warns.add_violation(CHAT, USER, "flooding", settings) for _ in range(3)
    ])

    assert sorted(r.count for r in results) == [1, 2, 3]
    assert sum(1 for r in results if r.escalated) == 1


@pytest.mark.asyncio
async def test_reset_deletes_record(fake_redis):
    settings = GroupConfig(chat_id=CHAT, warn_threshold=5)
    warns = WarnSystem()
    await warns.add_violation(CHAT, USER, "flooding", settings)
    await warns.add_violation(CHAT, USER, "flooding", settings)

    assert await warns.reset(CHAT, USER) == 2

    record = await warns.get_record(CHAT, USER)
    assert record.count == 0
    assert record.last_reason == ""
    assert await warns.reset(CHAT, USER) == 0


@pytest.mark.asyncio
async def test_counters_are_per_chat(fake_redis):
    settings = GroupConfig(chat_id=CHAT, warn_threshold=5)
    warns = WarnSystem()
    await warns.add_violation(CHAT, USER, "flooding", settings)
    await warns.add_violation(CHAT - 1, USER, "flooding", settings)

    assert (await warns.get_record(CHAT, USER)).count == 1
    assert (await warns.get_record(CHAT - 1, USER)).count == 1
