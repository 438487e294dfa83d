# Copyright (c) 2025 sprowii
"""Клиент мессенджера, которым пользуется модерация.

Методы поднимают telegram.error.TelegramError при ошибке API;
best-effort обработка - в chatwarden.moderation.actions.
"""
import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional

from telegram import Bot, ChatMember, ChatPermissions
from telegram.constants import ParseMode


class Role(str, Enum):
    MEMBER = "member"
    ADMINISTRATOR = "administrator"
    CREATOR = "creator"

    @property
    def is_admin(self) -> bool:
        return self in (Role.ADMINISTRATOR, Role.CREATOR)


class PlatformClient(ABC):
    """Операции над чатом, нужные модерации."""

    @abstractmethod
    async def get_member_role(self, chat_id: int, user_id: int) -> Role:
        ...

    @abstractmethod
    async def delete_message(self, chat_id: int, message_id: int) -> None:
        ...

    @abstractmethod
    async def ban(self, chat_id: int, user_id: int) -> None:
        ...

    @abstractmethod
    async def unban(self, chat_id: int, user_id: int) -> None:
        ...

    @abstractmethod
    async def set_send_permission(
        self,
        chat_id: int,
        user_id: int,
        allowed: bool,
        until: Optional[int] = None
    ) -> None:
        """Разрешить/запретить отправку сообщений (until - unix time для мута)."""

    @abstractmethod
    async def send_message(self, chat_id: int, text: str, reply_to: Optional[int] = None) -> int:
        """Отправить сообщение и вернуть его message_id."""


# Полные права участника после прохождения captcha / размута
FULL_PERMISSIONS = ChatPermissions(
    can_send_messages=True,
    can_send_audios=True,
    can_send_documents=True,
    can_send_photos=True,
    can_send_videos=True,
    can_send_video_notes=True,
    can_send_voice_notes=True,
    can_send_polls=True,
    can_send_other_messages=True,
    can_add_web_page_previews=True,
    can_invite_users=True,
)

NO_PERMISSIONS = ChatPermissions.no_permissions()


class TelegramPlatform(PlatformClient):
    """PlatformClient поверх telegram.Bot."""

    def __init__(self, bot: Bot):
        self.bot = bot

    async def get_member_role(self, chat_id: int, user_id: int) -> Role:
        member = await self.bot.get_chat_member(chat_id, user_id)
        if member.status == ChatMember.OWNER:
            return Role.CREATOR
        if member.status == ChatMember.ADMINISTRATOR:
            return Role.ADMINISTRATOR
        return Role.MEMBER

    async def delete_message(self, chat_id: int, message_id: int) -> None:
        await self.bot.delete_message(chat_id=chat_id, message_id=message_id)

    async def ban(self, chat_id: int, user_id: int) -> None:
        await self.bot.ban_chat_member(chat_id=chat_id, user_id=user_id)

    async def unban(self, chat_id: int, user_id: int) -> None:
        await self.bot.unban_chat_member(chat_id=chat_id, user_id=user_id, only_if_banned=True)

    async def set_send_permission(
        self,
        chat_id: int,
        user_id: int,
        allowed: bool,
        until: Optional[int] = None
    ) -> None:
        await self.bot.restrict_chat_member(
            chat_id=chat_id,
            user_id=user_id,
            permissions=FULL_PERMISSIONS if allowed else NO_PERMISSIONS,
            until_date=until if not allowed else None,
        )

    async def send_message(self, chat_id: int, text: str, reply_to: Optional[int] = None) -> int:
        message = await self.bot.send_message(
            chat_id=chat_id,
            text=text,
            parse_mode=ParseMode.HTML,
            reply_to_message_id=reply_to,
        )
        return message.message_id


def mute_until(duration_min: int) -> int:
    """Unix time окончания мута."""
    return int(time.time()) + duration_min * 60
