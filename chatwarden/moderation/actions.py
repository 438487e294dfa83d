# Copyright (c) 2025 sprowii
"""Действия модерации поверх PlatformClient.

Все действия best effort: ошибка API логируется и возвращается False/None,
но не прерывает обработку события. Решение модерации (счётчик
предупреждений) к этому моменту уже принято и не откатывается.
"""
import asyncio
from typing import Optional, Set

import redis
from telegram.error import TelegramError

from chatwarden.logging_config import log
from chatwarden.moderation.logger import ModLogger
from chatwarden.moderation.models import GroupConfig, ModAction
from chatwarden.moderation.platform import PlatformClient, mute_until
from chatwarden.moderation.storage import increment_stat_async
from chatwarden.security.data_protection import pseudonymize_chat_id, pseudonymize_id


class Enforcer:
    """Исполнитель действий: удаление, бан, кик, мут, допуск, уведомления."""

    def __init__(self, platform: PlatformClient, mod_logger: Optional[ModLogger] = None):
        self.platform = platform
        self.mod_logger = mod_logger or ModLogger(platform)
        self._cleanup_tasks: Set[asyncio.Task] = set()

    async def _bump_stat(self, chat_id: int, stat: str) -> None:
        try:
            await increment_stat_async(chat_id, stat)
        except redis.RedisError as exc:
            log.error(f"Не удалось обновить статистику {stat} для чата {pseudonymize_chat_id(chat_id)}: {exc}")

    async def record(
        self,
        chat_id: int,
        action_type: str,
        user_id: int,
        reason: str,
        settings: Optional[GroupConfig],
        admin_id: Optional[int] = None
    ) -> None:
        """Записать действие в лог модерации (без admin_id - автоматическое)."""
        action = ModAction.create(
            chat_id=chat_id,
            action_type=action_type,
            target_user_id=user_id,
            reason=reason,
            admin_id=admin_id,
            auto=admin_id is None
        )
        await self.mod_logger.log_action(action, settings.log_channel_id if settings else None)

    # ========================================================================
    # MESSAGES
    # ========================================================================

    async def delete(
        self,
        chat_id: int,
        user_id: int,
        message_id: int,
        reason: str,
        settings: Optional[GroupConfig] = None
    ) -> bool:
        """Удалить нарушающее сообщение (считается в статистике)."""
        if not await self.cleanup_message(chat_id, message_id):
            return False
        await self._bump_stat(chat_id, "deleted")
        await self.record(chat_id, "delete", user_id, reason, settings)
        return True

    async def cleanup_message(self, chat_id: int, message_id: Optional[int]) -> bool:
        """Удалить служебное сообщение без записи в статистику."""
        if not message_id:
            return False
        try:
            await self.platform.delete_message(chat_id, message_id)
            return True
        except TelegramError as exc:
            # Сообщение могли уже удалить
            log.warning(f"Не удалось удалить сообщение {message_id} в чате {pseudonymize_chat_id(chat_id)}: {exc}")
            return False

    async def notify(
        self,
        chat_id: int,
        text: str,
        reply_to: Optional[int] = None,
        auto_delete_sec: int = 0
    ) -> Optional[int]:
        """Отправить уведомление в чат. Возвращает message_id или None."""
        try:
            message_id = await self.platform.send_message(chat_id, text, reply_to=reply_to)
        except TelegramError as exc:
            log.warning(f"Не удалось отправить уведомление в чат {pseudonymize_chat_id(chat_id)}: {exc}")
            return None

        if auto_delete_sec > 0:
            task = asyncio.create_task(self._auto_delete(chat_id, message_id, auto_delete_sec))
            self._cleanup_tasks.add(task)
            task.add_done_callback(self._cleanup_tasks.discard)
        return message_id

    async def _auto_delete(self, chat_id: int, message_id: int, delay_sec: int) -> None:
        """Удалить уведомление после задержки."""
        await asyncio.sleep(delay_sec)
        await self.cleanup_message(chat_id, message_id)

    # ========================================================================
    # MEMBERS
    # ========================================================================

    async def ban(
        self,
        chat_id: int,
        user_id: int,
        reason: str,
        settings: Optional[GroupConfig] = None,
        admin_id: Optional[int] = None
    ) -> bool:
        try:
            await self.platform.ban(chat_id, user_id)
        except TelegramError as exc:
            log.error(f"Не удалось забанить пользователя {pseudonymize_id(user_id)}: {exc}")
            return False

        await self._bump_stat(chat_id, "banned")
        await self.record(chat_id, "ban", user_id, reason, settings, admin_id)
        return True

    async def kick(
        self,
        chat_id: int,
        user_id: int,
        reason: str,
        settings: Optional[GroupConfig] = None
    ) -> bool:
        """Кикнуть без бана: бан и сразу разбан, чтобы можно было вернуться."""
        try:
            await self.platform.ban(chat_id, user_id)
        except TelegramError as exc:
            log.error(f"Не удалось кикнуть пользователя {pseudonymize_id(user_id)}: {exc}")
            return False

        try:
            await self.platform.unban(chat_id, user_id)
        except TelegramError as exc:
            log.warning(f"Не удалось разбанить пользователя {pseudonymize_id(user_id)} после кика: {exc}")

        await self._bump_stat(chat_id, "kicked")
        await self.record(chat_id, "kick", user_id, reason, settings)
        return True

    async def mute(
        self,
        chat_id: int,
        user_id: int,
        duration_min: int,
        reason: str,
        settings: Optional[GroupConfig] = None
    ) -> bool:
        try:
            await self.platform.set_send_permission(chat_id, user_id, False, until=mute_until(duration_min))
        except TelegramError as exc:
            log.error(f"Не удалось замутить пользователя {pseudonymize_id(user_id)}: {exc}")
            return False

        await self.record(chat_id, "mute", user_id, f"{reason} ({duration_min} мин)", settings)
        return True

    async def restrict(self, chat_id: int, user_id: int) -> bool:
        """Запретить отправку сообщений до прохождения captcha."""
        try:
            await self.platform.set_send_permission(chat_id, user_id, False)
            return True
        except TelegramError as exc:
            log.error(f"Не удалось ограничить пользователя {pseudonymize_id(user_id)}: {exc}")
            return False

    async def grant(
        self,
        chat_id: int,
        user_id: int,
        reason: str = "",
        settings: Optional[GroupConfig] = None
    ) -> bool:
        """Выдать полные права отправки.

        Без причины действие не пишется в лог модерации (обычный вход в чат).
        """
        try:
            await self.platform.set_send_permission(chat_id, user_id, True)
        except TelegramError as exc:
            log.error(f"Не удалось выдать права пользователю {pseudonymize_id(user_id)}: {exc}")
            return False

        if reason:
            await self.record(chat_id, "grant", user_id, reason, settings)
        return True

    async def close(self) -> None:
        """Отменить отложенные удаления уведомлений (при остановке бота)."""
        tasks = list(self._cleanup_tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._cleanup_tasks.clear()
