# Copyright (c) 2025 sprowii
"""Логирование действий модерации.

БЕЗОПАСНОСТЬ:
- В application logs используются псевдонимы ID
- В Redis и в лог-канал чата попадают реальные ID (для работы модераторов)
"""
import html
from datetime import datetime
from typing import Optional

import redis
from telegram.error import TelegramError

from chatwarden.logging_config import log
from chatwarden.moderation.models import ModAction
from chatwarden.moderation.platform import PlatformClient
from chatwarden.moderation.storage import save_mod_action_async
from chatwarden.security.data_protection import safe_log_action

# Иконки для типов действий
ACTION_ICONS = {
    "warn": "⚠️",
    "mute": "🔇",
    "ban": "🚫",
    "kick": "👢",
    "delete": "🗑",
    "grant": "✅",
    "clearwarns": "🧹",
    "settings": "⚙️",
}

# Названия действий
ACTION_NAMES = {
    "warn": "Предупреждение",
    "mute": "Мут",
    "ban": "Бан",
    "kick": "Кик",
    "delete": "Удаление",
    "grant": "Допуск в чат",
    "clearwarns": "Очистка варнов",
    "settings": "Настройки",
}


class ModLogger:
    """Логгер действий модерации с записью в Redis и пересылкой в лог-канал."""

    def __init__(self, platform: PlatformClient):
        self.platform = platform

    async def log_action(self, action: ModAction, log_channel_id: Optional[int] = None) -> None:
        """Записать действие модерации в лог и отправить в лог-канал.

        Ошибки записи не прерывают модерацию: решение уже принято.
        """
        log.info(safe_log_action(
            action.action_type,
            action.target_user_id,
            action.chat_id,
            action.admin_id if not action.auto else None,
            action.reason
        ))

        try:
            await save_mod_action_async(action)
        except redis.RedisError as exc:
            log.error(f"Failed to save mod action to Redis: {exc}")

        if log_channel_id:
            await self._forward_to_log_channel(action, log_channel_id)

    async def _forward_to_log_channel(self, action: ModAction, log_channel_id: int) -> None:
        """Переслать действие в лог-канал."""
        try:
            await self.platform.send_message(log_channel_id, format_log_message(action))
        except TelegramError as exc:
            log.warning(f"Failed to forward mod action to log channel: {exc}")


def format_log_message(action: ModAction) -> str:
    """Форматировать действие модерации для отправки в лог-канал."""
    icon = ACTION_ICONS.get(action.action_type, "📋")
    action_name = ACTION_NAMES.get(action.action_type, action.action_type)

    time_str = datetime.fromtimestamp(action.timestamp).strftime("%d.%m.%Y %H:%M:%S")

    lines = [
        f"{icon} <b>{action_name}</b>",
        "",
        f"👤 Пользователь: <code>{action.target_user_id}</code>",
    ]

    if action.auto:
        lines.append("🤖 Автоматическое действие")
    elif action.admin_id:
        lines.append(f"👮 Админ: <code>{action.admin_id}</code>")

    # Экранируем причину: она может содержать текст пользователя
    safe_reason = html.escape(action.reason) if action.reason else "Не указана"

    lines.extend([
        f"📝 Причина: {safe_reason}",
        f"🕐 Время: {time_str}",
        f"💬 Чат: <code>{action.chat_id}</code>",
    ])

    return "\n".join(lines)


def format_mod_log_entry(action: ModAction, include_chat: bool = False) -> str:
    """Форматировать запись лога модерации для отображения списком."""
    icon = ACTION_ICONS.get(action.action_type, "📋")
    time_str = datetime.fromtimestamp(action.timestamp).strftime("%d.%m %H:%M")
    admin_str = "🤖" if action.auto else f"👮{action.admin_id}"

    result = f"{icon} [{time_str}] 👤{action.target_user_id} {admin_str}"

    if action.reason:
        # Обрезаем длинные причины
        reason = action.reason[:50] + "..." if len(action.reason) > 50 else action.reason
        result += f"\n   └ {reason}"

    if include_chat:
        result += f"\n   └ Чат: {action.chat_id}"

    return result
