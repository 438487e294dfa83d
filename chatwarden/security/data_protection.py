# Copyright (c) 2025 sprowii
"""Псевдонимизация идентификаторов в операционных логах.

В логи приложения попадают только HMAC-хэши user_id и chat_id.
Реальные ID остаются в Redis (лог модерации) и в лог-канале чата,
где они нужны модераторам.
"""
import hashlib
import hmac
import os
import re
import secrets
from typing import Optional

from chatwarden.logging_config import log


# Соль для хэширования ID - должна быть в переменных окружения!
# Если не задана, генерируется при запуске (псевдонимы сменятся после рестарта)
_HASH_SALT = os.getenv("DATA_HASH_SALT")
if not _HASH_SALT:
    log.warning(
        "DATA_HASH_SALT не задан! Генерирую временную соль. "
        "Задайте DATA_HASH_SALT в переменных окружения для production."
    )
    _HASH_SALT = secrets.token_hex(32)


def pseudonymize_id(user_id: int, context: str = "default") -> str:
    """Псевдонимизирует user_id через HMAC-SHA256.

    Args:
        user_id: Реальный user_id
        context: Контекст использования (для разных хэшей в разных местах)

    Returns:
        Псевдоним в формате "u_<hash[:16]>"
    """
    message = f"{context}:{user_id}".encode()
    h = hmac.new(_HASH_SALT.encode(), message, hashlib.sha256)
    return f"u_{h.hexdigest()[:16]}"


def pseudonymize_chat_id(chat_id: int) -> str:
    """Псевдонимизирует chat_id."""
    return pseudonymize_id(chat_id, context="chat")


def safe_log_action(
    action_type: str,
    target_user_id: int,
    chat_id: int,
    admin_id: Optional[int] = None,
    reason: Optional[str] = None
) -> str:
    """Формирует безопасную строку для лога действия модерации."""
    target = pseudonymize_id(target_user_id)
    chat = pseudonymize_chat_id(chat_id)
    admin = pseudonymize_id(admin_id) if admin_id else "auto"

    # Обрезаем причину и убираем @username
    safe_reason = ""
    if reason:
        safe_reason = re.sub(r"@\w+", "@***", reason)[:50]

    return f"[{action_type}] target={target} chat={chat} by={admin} reason={safe_reason}"
