# Copyright (c) 2025 sprowii
"""Проверка прав администратора с кэшированием.

Админ чата определяется по роли участника (administrator/creator).
Глобальные админы бота задаются статическим списком ADMIN_IDS.
"""
import secrets
import time
from typing import Dict, Optional, Tuple

from telegram.error import TelegramError

from chatwarden import config
from chatwarden.logging_config import log
from chatwarden.moderation.platform import PlatformClient
from chatwarden.security.data_protection import pseudonymize_chat_id, pseudonymize_id


class NotAuthorizedError(Exception):
    """Пользователь не имеет права на операцию модерации."""


# Кэш статуса админа: {(chat_id, user_id): (is_admin, timestamp)}
_admin_cache: Dict[Tuple[int, int], Tuple[bool, float]] = {}

MAX_ADMIN_CACHE_SIZE = 1000
CLEANUP_INTERVAL = 300  # Очистка устаревших записей раз в 5 минут
_last_cleanup = time.time()


def _is_cache_valid(timestamp: float) -> bool:
    """Проверить, не истёк ли кэш."""
    return time.time() - timestamp < config.ADMIN_CACHE_TTL


def clear_admin_cache(chat_id: Optional[int] = None) -> int:
    """Очистить кэш статуса админа (целиком или для одного чата).

    Returns:
        Количество удалённых записей
    """
    keys_to_remove = [key for key in _admin_cache if chat_id is None or key[0] == chat_id]
    for key in keys_to_remove:
        del _admin_cache[key]
    return len(keys_to_remove)


def get_cached_admin_status(chat_id: int, user_id: int) -> Optional[bool]:
    """Получить закэшированный статус админа.

    Returns:
        True/False если есть валидный кэш, None если кэш отсутствует или истёк
    """
    key = (chat_id, user_id)
    cached = _admin_cache.get(key)

    if cached is None:
        return None

    is_admin, timestamp = cached
    if not _is_cache_valid(timestamp):
        del _admin_cache[key]
        return None

    return is_admin


def _cleanup_admin_cache() -> None:
    """Удалить устаревшие записи и ограничить размер кэша."""
    global _last_cleanup
    now = time.time()

    expired = 0
    if now - _last_cleanup >= CLEANUP_INTERVAL:
        cutoff = now - config.ADMIN_CACHE_TTL
        to_remove = [key for key, (_, ts) in _admin_cache.items() if ts < cutoff]
        for key in to_remove:
            del _admin_cache[key]
        expired = len(to_remove)
        _last_cleanup = now

    # Кэш переполнен: удаляем самые старые записи
    if len(_admin_cache) >= MAX_ADMIN_CACHE_SIZE:
        sorted_items = sorted(_admin_cache.items(), key=lambda x: x[1][1])
        for key, _ in sorted_items[:len(_admin_cache) - MAX_ADMIN_CACHE_SIZE + 1]:
            del _admin_cache[key]

    if expired:
        log.debug(f"Cleaned up {expired} admin cache entries")


def set_cached_admin_status(chat_id: int, user_id: int, is_admin: bool) -> None:
    _cleanup_admin_cache()
    _admin_cache[(chat_id, user_id)] = (is_admin, time.time())


def is_static_admin(user_id: Optional[int]) -> bool:
    """Проверить, входит ли пользователь в ADMIN_IDS."""
    if user_id is None:
        return False
    return any(secrets.compare_digest(str(user_id), str(admin_id)) for admin_id in config.ADMIN_IDS)


async def is_chat_admin(platform: PlatformClient, chat_id: int, user_id: int) -> bool:
    """Проверить роль пользователя в чате.

    Ошибка API трактуется как "не админ" и не кэшируется.
    """
    cached_status = get_cached_admin_status(chat_id, user_id)
    if cached_status is not None:
        return cached_status

    try:
        role = await platform.get_member_role(chat_id, user_id)
    except TelegramError as exc:
        log.error(
            f"Ошибка проверки статуса админа для {pseudonymize_id(user_id)} "
            f"в чате {pseudonymize_chat_id(chat_id)}: {exc}"
        )
        return False

    set_cached_admin_status(chat_id, user_id, role.is_admin)
    return role.is_admin


async def require_chat_admin(platform: PlatformClient, chat_id: int, user_id: int) -> None:
    """Админ чата или глобальный админ бота, иначе NotAuthorizedError."""
    if is_static_admin(user_id):
        return
    if not await is_chat_admin(platform, chat_id, user_id):
        raise NotAuthorizedError(f"User {user_id} is not an admin of chat {chat_id}")


def require_static_admin(user_id: int) -> None:
    """Только глобальный админ бота, иначе NotAuthorizedError."""
    if not is_static_admin(user_id):
        raise NotAuthorizedError(f"User {user_id} is not a bot admin")
