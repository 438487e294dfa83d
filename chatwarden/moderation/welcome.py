# Copyright (c) 2025 sprowii
"""Приветствие участников после допуска в чат.

Шаблон берётся из GroupConfig.welcome_text и поддерживает
плейсхолдеры {username} и {chatname}.
"""
import html
from typing import Optional

from chatwarden.logging_config import log
from chatwarden.moderation.actions import Enforcer
from chatwarden.moderation.models import GroupConfig, NewMember
from chatwarden.security.data_protection import pseudonymize_chat_id, pseudonymize_id


def format_welcome_message(template: str, member: NewMember) -> str:
    """Форматирует шаблон приветствия с подстановкой плейсхолдеров.

    Значения экранируются: сообщения отправляются с parse_mode=HTML.
    """
    username_safe = html.escape(member.mention or "Участник")
    chatname_safe = html.escape(member.chat_title or "Чат")

    result = template
    result = result.replace("{username}", username_safe)
    result = result.replace("{chatname}", chatname_safe)
    return result


class WelcomeManager:
    """Отправка приветствий."""

    def __init__(self, enforcer: Enforcer):
        self.enforcer = enforcer

    async def send_welcome(self, member: NewMember, settings: GroupConfig) -> Optional[int]:
        """Отправить приветствие, если оно настроено. Возвращает message_id."""
        if not settings.welcome_text:
            return None

        message_id = await self.enforcer.notify(
            member.chat_id,
            format_welcome_message(settings.welcome_text, member),
            auto_delete_sec=settings.notice_auto_delete_sec,
        )
        if message_id is not None:
            log.info(
                f"Приветствие отправлено пользователю {pseudonymize_id(member.user_id)} "
                f"в чате {pseudonymize_chat_id(member.chat_id)}"
            )
        return message_id
