# Copyright (c) 2025 sprowii
"""Обработчики Telegram: перевод Update в события модерации."""
from typing import List, Optional

from telegram import Update
from telegram.ext import ContextTypes

from chatwarden.logging_config import log
from chatwarden.moderation.controller import get_moderation_controller
from chatwarden.moderation.models import IncomingMessage, NewMember


def message_from_update(update: Update) -> Optional[IncomingMessage]:
    message = update.effective_message
    user = update.effective_user
    chat = update.effective_chat
    if message is None or user is None or chat is None:
        return None

    return IncomingMessage(
        chat_id=chat.id,
        user_id=user.id,
        message_id=message.message_id,
        text=message.text or message.caption or "",
        handle=user.username,
        display_name=user.full_name,
        chat_title=chat.title or "",
    )


def members_from_update(update: Update) -> List[NewMember]:
    message = update.effective_message
    chat = update.effective_chat
    if message is None or chat is None:
        return []

    return [
        NewMember(
            chat_id=chat.id,
            user_id=user.id,
            handle=user.username,
            display_name=user.full_name,
            is_bot=user.is_bot,
            chat_title=chat.title or "",
        )
        for user in message.new_chat_members or []
    ]


async def group_message_handler(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    incoming = message_from_update(update)
    if incoming is None:
        return
    await get_moderation_controller().on_message(incoming)


async def new_members_handler(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    controller = get_moderation_controller()
    for member in members_from_update(update):
        if member.user_id == context.bot.id:
            continue
        await controller.on_user_join(member)


async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Логировать необработанные ошибки. Пользователям ничего не отправляем."""
    log.error("Unhandled error while processing update", exc_info=context.error)
