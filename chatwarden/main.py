# Copyright (c) 2025 sprowii
"""Точка входа: запуск бота модерации в режиме polling."""
from telegram import Update
from telegram.ext import Application, MessageHandler, filters

from chatwarden import config
from chatwarden.bot.handlers import error_handler, group_message_handler, new_members_handler
from chatwarden.logging_config import log
from chatwarden.moderation.controller import get_moderation_controller, init_moderation_controller
from chatwarden.moderation.oracle import build_spam_oracle
from chatwarden.moderation.platform import TelegramPlatform


async def post_init(application: Application) -> None:
    controller = init_moderation_controller(TelegramPlatform(application.bot), oracle=build_spam_oracle())
    global_config = await controller.reload_global_config()
    log.info(
        f"Global lists loaded: whitelist={len(global_config.whitelist)}, "
        f"blacklist={len(global_config.blacklist)}"
    )


async def post_shutdown(application: Application) -> None:
    await get_moderation_controller().close()


def build_application() -> Application:
    if not config.TG_TOKEN:
        raise RuntimeError("TG_TOKEN is not set")

    application = (
        Application.builder()
        .token(config.TG_TOKEN)
        .post_init(post_init)
        .post_shutdown(post_shutdown)
        # Общее состояние чатов защищено KeyedLocks, апдейты обрабатываются параллельно
        .concurrent_updates(True)
        .build()
    )
    application.add_handler(
        MessageHandler(filters.ChatType.GROUPS & filters.StatusUpdate.NEW_CHAT_MEMBERS, new_members_handler)
    )
    application.add_handler(
        MessageHandler(
            filters.UpdateType.MESSAGE & filters.ChatType.GROUPS & ~filters.COMMAND & ~filters.StatusUpdate.ALL,
            group_message_handler,
        )
    )
    application.add_error_handler(error_handler)
    return application


def main() -> None:
    log.info("Starting chatwarden")
    build_application().run_polling(allowed_updates=Update.ALL_TYPES)


if __name__ == "__main__":
    main()
