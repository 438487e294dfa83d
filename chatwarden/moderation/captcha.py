# Copyright (c) 2025 sprowii
"""Captcha для новых участников (admission gate).

Состояния: NONE -> CHALLENGED -> {RESOLVED, EXPIRED, FAILED}.

На (chat_id, user_id) живёт не более одной записи ChallengeEntry.
Переход состояния (проверка ответа, изменение/удаление записи)
выполняется синхронно до первого await, поэтому два сообщения одного
пользователя не могут обработать одну и ту же запись дважды.
Таймер истечения привязан к id записи: если к моменту срабатывания
запись решена или заменена новой, таймер ничего не делает.
"""
import asyncio
import html
import random
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

from chatwarden import config
from chatwarden.logging_config import log
from chatwarden.moderation.actions import Enforcer
from chatwarden.moderation.models import (
    ChallengeEntry,
    GlobalConfig,
    GroupConfig,
    IncomingMessage,
    NewMember,
    ViolationReason,
)
from chatwarden.moderation.welcome import WelcomeManager
from chatwarden.security.data_protection import pseudonymize_chat_id, pseudonymize_id

ChallengeKey = Tuple[int, int]


class CaptchaDifficulty(str, Enum):
    """Уровни сложности captcha."""
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


@dataclass
class CaptchaChallenge:
    """Сгенерированный вопрос с целочисленным ответом."""
    question: str
    answer: int


class CaptchaProvider:
    """Генератор арифметических задач.

    Сложность:
    - Easy: простое сложение (2+3)
    - Medium: сложение двузначных чисел (12+7)
    - Hard: умножение (23*4)
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def generate(self, difficulty: str = "easy") -> CaptchaChallenge:
        difficulty = difficulty.lower()

        if difficulty == CaptchaDifficulty.HARD.value:
            a = self.rng.randint(10, 30)
            b = self.rng.randint(2, 9)
            return CaptchaChallenge(question=f"{a} × {b} = ?", answer=a * b)

        if difficulty == CaptchaDifficulty.MEDIUM.value:
            a = self.rng.randint(10, 30)
            b = self.rng.randint(1, 20)
        else:
            a = self.rng.randint(1, 9)
            b = self.rng.randint(1, 9)
        return CaptchaChallenge(question=f"{a} + {b} = ?", answer=a + b)


def parse_answer(text: Optional[str]) -> Optional[int]:
    """Разобрать ответ как целое число. None - ответ некорректен."""
    if not text:
        return None
    try:
        return int(text.strip())
    except ValueError:
        return None


class ChallengeRegistry:
    """Живые captcha и их таймеры истечения в памяти процесса."""

    def __init__(self):
        self._entries: Dict[ChallengeKey, ChallengeEntry] = {}
        self._timers: Dict[ChallengeKey, asyncio.Task] = {}

    def get(self, chat_id: int, user_id: int) -> Optional[ChallengeEntry]:
        return self._entries.get((chat_id, user_id))

    def install(self, entry: ChallengeEntry, timer: Optional[asyncio.Task] = None) -> Optional[ChallengeEntry]:
        """Поставить запись на место предыдущей. Старый таймер отменяется.

        Returns:
            Заменённая запись или None
        """
        key = (entry.chat_id, entry.user_id)
        old_timer = self._timers.pop(key, None)
        if old_timer is not None:
            old_timer.cancel()

        previous = self._entries.get(key)
        self._entries[key] = entry
        if timer is not None:
            self._timers[key] = timer
        return previous

    def pop_if_current(
        self,
        chat_id: int,
        user_id: int,
        entry_id: str,
        cancel_timer: bool = True
    ) -> Optional[ChallengeEntry]:
        """Удалить запись, только если это та самая запись (по id)."""
        key = (chat_id, user_id)
        entry = self._entries.get(key)
        if entry is None or entry.id != entry_id:
            return None

        del self._entries[key]
        timer = self._timers.pop(key, None)
        if timer is not None and cancel_timer:
            timer.cancel()
        return entry

    async def close(self) -> None:
        """Отменить все таймеры (при остановке бота)."""
        timers = list(self._timers.values())
        for timer in timers:
            timer.cancel()
        await asyncio.gather(*timers, return_exceptions=True)
        self._timers.clear()
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class JoinOutcome(str, Enum):
    BOT_KICKED = "bot_kicked"
    BANNED = "banned"
    ADMITTED = "admitted"
    CHALLENGED = "challenged"


class GateOutcome(str, Enum):
    NOT_CHALLENGED = "not_challenged"
    RESOLVED = "resolved"
    RETRY = "retry"
    FAILED = "failed"
    EXPIRED = "expired"


class AdmissionGate:
    """Проверка новых участников арифметической captcha."""

    def __init__(
        self,
        enforcer: Enforcer,
        registry: Optional[ChallengeRegistry] = None,
        provider: Optional[CaptchaProvider] = None,
        welcome: Optional[WelcomeManager] = None,
        grace_sec: float = config.CHALLENGE_GRACE_SEC
    ):
        self.enforcer = enforcer
        self.registry = registry or ChallengeRegistry()
        self.provider = provider or CaptchaProvider()
        self.welcome = welcome or WelcomeManager(enforcer)
        self.grace_sec = grace_sec

    def has_challenge(self, chat_id: int, user_id: int) -> bool:
        return self.registry.get(chat_id, user_id) is not None

    # ========================================================================
    # JOIN
    # ========================================================================

    async def on_join(
        self,
        member: NewMember,
        settings: GroupConfig,
        global_config: GlobalConfig
    ) -> JoinOutcome:
        chat_id, user_id = member.chat_id, member.user_id

        if member.is_bot:
            await self.enforcer.kick(chat_id, user_id, "Боты не допускаются", settings)
            return JoinOutcome.BOT_KICKED

        if user_id in global_config.blacklist or user_id in settings.blacklist:
            await self.enforcer.ban(chat_id, user_id, ViolationReason.BLACKLISTED.value, settings)
            return JoinOutcome.BANNED

        whitelisted = user_id in global_config.whitelist or user_id in settings.whitelist
        if whitelisted or not settings.require_challenge_on_join:
            await self.enforcer.grant(chat_id, user_id, settings=settings)
            await self.welcome.send_welcome(member, settings)
            return JoinOutcome.ADMITTED

        await self._challenge(member, settings)
        return JoinOutcome.CHALLENGED

    async def _challenge(self, member: NewMember, settings: GroupConfig) -> None:
        challenge = self.provider.generate(settings.challenge_difficulty)
        entry = ChallengeEntry.create(
            chat_id=member.chat_id,
            user_id=member.user_id,
            question=challenge.question,
            expected_answer=challenge.answer,
            timeout_sec=settings.challenge_timeout_sec,
        )
        timer = asyncio.create_task(
            self._expire_later(entry, settings, settings.challenge_timeout_sec + self.grace_sec)
        )
        previous = self.registry.install(entry, timer)

        if previous is not None:
            await self.enforcer.cleanup_message(previous.chat_id, previous.prompt_message_id)

        await self.enforcer.restrict(member.chat_id, member.user_id)

        prompt = (
            f"👋 {html.escape(member.mention)}, для входа в чат реши задачу:\n\n"
            f"<b>{challenge.question}</b>\n\n"
            f"⏱ Время: {settings.challenge_timeout_sec} сек., попыток: {settings.challenge_max_attempts}."
        )
        entry.prompt_message_id = await self.enforcer.notify(member.chat_id, prompt)

        if self.registry.get(member.chat_id, member.user_id) is not entry:
            # Пока отправляли, запись уже решена или заменена
            await self.enforcer.cleanup_message(member.chat_id, entry.prompt_message_id)

        log.info(
            f"Captcha отправлена пользователю {pseudonymize_id(member.user_id)} "
            f"в чате {pseudonymize_chat_id(member.chat_id)}"
        )

    async def _expire_later(self, entry: ChallengeEntry, settings: GroupConfig, delay: float) -> None:
        """Кикнуть пользователя, если к моменту срабатывания запись ещё жива."""
        await asyncio.sleep(delay)

        if self.registry.pop_if_current(entry.chat_id, entry.user_id, entry.id, cancel_timer=False) is None:
            return

        log.info(
            f"Captcha таймаут для пользователя {pseudonymize_id(entry.user_id)} "
            f"в чате {pseudonymize_chat_id(entry.chat_id)}"
        )
        await self.enforcer.cleanup_message(entry.chat_id, entry.prompt_message_id)
        await self.enforcer.kick(entry.chat_id, entry.user_id, "Провал captcha (таймаут)", settings)

    # ========================================================================
    # ANSWER
    # ========================================================================

    def _transition(self, message: IncomingMessage, settings: GroupConfig) -> Tuple[GateOutcome, Optional[ChallengeEntry]]:
        """Синхронный переход состояния по ответу."""
        entry = self.registry.get(message.chat_id, message.user_id)
        if entry is None:
            return GateOutcome.NOT_CHALLENGED, None

        if entry.is_expired():
            self.registry.pop_if_current(entry.chat_id, entry.user_id, entry.id)
            return GateOutcome.EXPIRED, entry

        if parse_answer(message.text) == entry.expected_answer:
            self.registry.pop_if_current(entry.chat_id, entry.user_id, entry.id)
            return GateOutcome.RESOLVED, entry

        entry.attempts_used += 1
        if entry.attempts_used >= settings.challenge_max_attempts:
            self.registry.pop_if_current(entry.chat_id, entry.user_id, entry.id)
            return GateOutcome.FAILED, entry
        return GateOutcome.RETRY, entry

    async def handle_answer(self, message: IncomingMessage, settings: GroupConfig) -> GateOutcome:
        """Обработать сообщение пользователя, проходящего captcha.

        Сообщение целиком поглощается captcha и удаляется.
        """
        outcome, entry = self._transition(message, settings)
        if entry is None:
            return outcome

        chat_id, user_id = message.chat_id, message.user_id
        await self.enforcer.cleanup_message(chat_id, message.message_id)
        mention = html.escape(message.mention)

        if outcome == GateOutcome.RESOLVED:
            await self.enforcer.cleanup_message(chat_id, entry.prompt_message_id)
            await self.enforcer.grant(chat_id, user_id, "Captcha пройдена", settings)
            await self.enforcer.notify(
                chat_id,
                f"✅ {mention}, проверка пройдена. Добро пожаловать!",
                auto_delete_sec=settings.notice_auto_delete_sec,
            )
            await self.welcome.send_welcome(
                NewMember(
                    chat_id=chat_id,
                    user_id=user_id,
                    handle=message.handle,
                    display_name=message.display_name,
                    chat_title=message.chat_title,
                ),
                settings,
            )
            log.info(f"Пользователь {pseudonymize_id(user_id)} прошёл captcha в чате {pseudonymize_chat_id(chat_id)}")

        elif outcome == GateOutcome.RETRY:
            remaining = settings.challenge_max_attempts - entry.attempts_used
            await self.enforcer.notify(
                chat_id,
                f"❌ {mention}, неверно. Осталось попыток: {remaining}",
                auto_delete_sec=settings.notice_auto_delete_sec,
            )

        else:
            reason = "Провал captcha (таймаут)" if outcome == GateOutcome.EXPIRED else "Провал captcha (попытки исчерпаны)"
            await self.enforcer.cleanup_message(chat_id, entry.prompt_message_id)
            await self.enforcer.kick(chat_id, user_id, reason, settings)

        return outcome

    async def close(self) -> None:
        await self.registry.close()
