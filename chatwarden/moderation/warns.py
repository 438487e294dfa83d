# Copyright (c) 2025 sprowii
"""Система предупреждений (warns) с эскалацией.

Каждое нарушение увеличивает счётчик пользователя в чате на 1.
Когда счётчик достигает warn_threshold, счётчик обнуляется, а
пользователь банится (auto_ban_on_violation) или получает мут.
"""
from dataclasses import dataclass
from enum import Enum

from chatwarden.logging_config import log
from chatwarden.moderation.locks import KeyedLocks
from chatwarden.moderation.models import GroupConfig, WarningRecord
from chatwarden.moderation.storage import (
    clear_warns_async,
    increment_warning_async,
    load_warning_async,
    reset_warning_count_async,
)
from chatwarden.security.data_protection import pseudonymize_chat_id, pseudonymize_id


class WarnEscalation(Enum):
    """Результат эскалации после добавления предупреждения."""
    NONE = "none"
    MUTE = "mute"
    BAN = "ban"


@dataclass
class WarnResult:
    """Результат добавления предупреждения.

    Attributes:
        count: Значение счётчика после нарушения (до обнуления при эскалации)
        escalation: Тип эскалации (none/mute/ban)
        mute_duration_min: Длительность мута в минутах (если escalation == MUTE)
    """
    count: int
    escalation: WarnEscalation
    mute_duration_min: int = 0

    @property
    def escalated(self) -> bool:
        return self.escalation != WarnEscalation.NONE


def determine_escalation(count: int, settings: GroupConfig) -> WarnEscalation:
    """Определить эскалацию по значению счётчика."""
    if count < settings.warn_threshold:
        return WarnEscalation.NONE
    return WarnEscalation.BAN if settings.auto_ban_on_violation else WarnEscalation.MUTE


class WarnSystem:
    """Счётчики предупреждений на (chat_id, user_id).

    Инкремент атомарен в Redis (HINCRBY), а последовательность
    инкремент -> решение -> обнуление выполняется под блокировкой ключа,
    чтобы два одновременных нарушения не эскалировали дважды.
    """

    def __init__(self):
        self._locks = KeyedLocks()

    async def add_violation(
        self,
        chat_id: int,
        user_id: int,
        reason: str,
        settings: GroupConfig
    ) -> WarnResult:
        async with self._locks.hold((chat_id, user_id)):
            count = await increment_warning_async(chat_id, user_id, reason)
            escalation = determine_escalation(count, settings)
            if escalation != WarnEscalation.NONE:
                await reset_warning_count_async(chat_id, user_id)

        log.info(
            f"Warn: chat={pseudonymize_chat_id(chat_id)} user={pseudonymize_id(user_id)} "
            f"count={count} escalation={escalation.value}"
        )
        return WarnResult(
            count=count,
            escalation=escalation,
            mute_duration_min=settings.mute_duration_min if escalation == WarnEscalation.MUTE else 0
        )

    async def get_record(self, chat_id: int, user_id: int) -> WarningRecord:
        return await load_warning_async(chat_id, user_id)

    async def reset(self, chat_id: int, user_id: int) -> int:
        """Удалить запись предупреждений. Возвращает счётчик до сброса."""
        async with self._locks.hold((chat_id, user_id)):
            count = await clear_warns_async(chat_id, user_id)
        log.info(f"Cleared {count} warns for user {pseudonymize_id(user_id)} in chat {pseudonymize_chat_id(chat_id)}")
        return count


def format_warning_notice(mention: str, violation_text: str, result: WarnResult, threshold: int) -> str:
    """Текст предупреждения в чат."""
    return (
        f"⚠️ {mention}, {violation_text}\n"
        f"Предупреждение {result.count}/{threshold}"
    )
