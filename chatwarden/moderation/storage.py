# Copyright (c) 2025 sprowii
"""Хранилище модерации в Redis.

Ключи:
- mod_settings:{chat_id} - настройки модерации чата (JSON)
- mod_global - глобальные white/black списки (JSON)
- warns:{chat_id}:{user_id} - счётчик предупреждений (HASH)
- mod_stats:{chat_id} - счётчики banned/kicked/deleted (HASH)
- modlog:{chat_id} - лог действий модерации (LIST)

Настройки создаются при первом обращении (SET NX), поэтому при ошибке
соединения с Redis чтение не подменяется дефолтами, а пробрасывается.
"""
import asyncio
import json
import time
from dataclasses import asdict, fields
from typing import List, Optional

import redis

from chatwarden.config import REDIS_URL
from chatwarden.logging_config import log
from chatwarden.moderation.models import (
    GlobalConfig,
    GroupConfig,
    ModAction,
    StatsCounter,
    WarningRecord,
)

redis_client = redis.Redis.from_url(REDIS_URL, decode_responses=True)

# Префиксы ключей
MOD_SETTINGS_PREFIX = "mod_settings:"
GLOBAL_CONFIG_KEY = "mod_global"
WARNS_PREFIX = "warns:"
STATS_PREFIX = "mod_stats:"
MODLOG_PREFIX = "modlog:"

# Максимальное количество записей в логе модерации
MAX_MODLOG_ENTRIES = 1000

STAT_FIELDS = ("banned", "kicked", "deleted")


def _group_config_from_json(chat_id: int, raw_value: str) -> GroupConfig:
    data = json.loads(raw_value)
    # Убедимся что chat_id соответствует
    data["chat_id"] = chat_id
    # Поля, которых больше нет в модели, пропускаем
    known = {f.name for f in fields(GroupConfig)}
    settings = GroupConfig(**{k: v for k, v in data.items() if k in known})
    errors = settings.type_errors()
    if errors:
        raise TypeError("; ".join(errors))
    return settings


# ============================================================================
# SETTINGS OPERATIONS
# ============================================================================

def save_settings(settings: GroupConfig) -> None:
    """Сохранить настройки модерации в Redis."""
    key = f"{MOD_SETTINGS_PREFIX}{settings.chat_id}"
    try:
        redis_client.set(key, json.dumps(asdict(settings), ensure_ascii=False))
    except redis.RedisError as exc:
        log.error(f"Не удалось сохранить настройки модерации для чата {settings.chat_id}: {exc}")
        raise


async def save_settings_async(settings: GroupConfig) -> None:
    """Асинхронно сохранить настройки модерации."""
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, save_settings, settings)


def load_settings(chat_id: int) -> GroupConfig:
    """Загрузить настройки модерации из Redis.

    Если настроек нет, атомарно создаёт их с дефолтами (SET NX).
    Битый JSON заменяется дефолтами с предупреждением в логе.
    """
    key = f"{MOD_SETTINGS_PREFIX}{chat_id}"
    try:
        raw_value = redis_client.get(key)
        if not raw_value:
            defaults = GroupConfig(chat_id=chat_id)
            created = redis_client.set(key, json.dumps(asdict(defaults), ensure_ascii=False), nx=True)
            if created:
                return defaults
            # Кто-то успел создать настройки раньше нас
            raw_value = redis_client.get(key) or "{}"
    except redis.RedisError as exc:
        log.error(f"Ошибка загрузки настроек для чата {chat_id}: {exc}")
        raise

    try:
        return _group_config_from_json(chat_id, raw_value)
    except json.JSONDecodeError as exc:
        log.warning(f"Некорректный JSON настроек для чата {chat_id}: {exc}")
        return GroupConfig(chat_id=chat_id)
    except TypeError as exc:
        log.warning(f"Некорректные данные настроек для чата {chat_id}: {exc}")
        return GroupConfig(chat_id=chat_id)


async def load_settings_async(chat_id: int) -> GroupConfig:
    """Асинхронно загрузить настройки модерации."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, load_settings, chat_id)


def export_settings(chat_id: int) -> str:
    """Экспортировать настройки в JSON строку."""
    settings = load_settings(chat_id)
    data = asdict(settings)
    # Убираем chat_id из экспорта - он будет установлен при импорте
    del data["chat_id"]
    return json.dumps(data, ensure_ascii=False, indent=2)


def parse_settings(chat_id: int, json_str: str) -> GroupConfig:
    """Разобрать и провалидировать настройки из JSON строки.

    Raises ValueError if JSON is invalid or settings don't validate.
    """
    try:
        data = json.loads(json_str)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Некорректный JSON: {exc}")

    if not isinstance(data, dict):
        raise ValueError("Ожидался JSON-объект с настройками")

    # Устанавливаем chat_id
    data["chat_id"] = chat_id

    try:
        settings = GroupConfig(**data)
    except TypeError as exc:
        raise ValueError(f"Некорректные поля настроек: {exc}")

    errors = settings.validate()
    if errors:
        raise ValueError(f"Ошибки валидации: {'; '.join(errors)}")

    return settings


# ============================================================================
# GLOBAL CONFIG OPERATIONS
# ============================================================================

def load_global_config() -> GlobalConfig:
    """Загрузить глобальные списки (создаёт пустые при отсутствии)."""
    try:
        raw_value = redis_client.get(GLOBAL_CONFIG_KEY)
        if not raw_value:
            defaults = GlobalConfig()
            redis_client.set(GLOBAL_CONFIG_KEY, json.dumps(asdict(defaults)), nx=True)
            raw_value = redis_client.get(GLOBAL_CONFIG_KEY) or "{}"
    except redis.RedisError as exc:
        log.error(f"Ошибка загрузки глобальных настроек: {exc}")
        raise

    try:
        data = json.loads(raw_value)
        return GlobalConfig(
            whitelist=[int(uid) for uid in data.get("whitelist", [])],
            blacklist=[int(uid) for uid in data.get("blacklist", [])],
        )
    except (json.JSONDecodeError, TypeError, ValueError, AttributeError) as exc:
        log.warning(f"Некорректные глобальные настройки: {exc}")
        return GlobalConfig()


async def load_global_config_async() -> GlobalConfig:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, load_global_config)


def save_global_config(global_config: GlobalConfig) -> None:
    try:
        redis_client.set(GLOBAL_CONFIG_KEY, json.dumps(asdict(global_config)))
    except redis.RedisError as exc:
        log.error(f"Не удалось сохранить глобальные настройки: {exc}")
        raise


async def save_global_config_async(global_config: GlobalConfig) -> None:
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, save_global_config, global_config)


# ============================================================================
# WARNS OPERATIONS
# ============================================================================

def _warns_key(chat_id: int, user_id: int) -> str:
    """Получить ключ для предупреждений пользователя."""
    return f"{WARNS_PREFIX}{chat_id}:{user_id}"


def increment_warning(chat_id: int, user_id: int, reason: str) -> int:
    """Атомарно увеличить счётчик предупреждений. Возвращает новое значение."""
    key = _warns_key(chat_id, user_id)
    try:
        with redis_client.pipeline(transaction=True) as pipe:
            pipe.hincrby(key, "count", 1)
            pipe.hset(key, mapping={"last_reason": reason, "last_warned_at": str(time.time())})
            count, _ = pipe.execute()
        return int(count)
    except redis.RedisError as exc:
        log.error(f"Не удалось сохранить предупреждение: {exc}")
        raise


async def increment_warning_async(chat_id: int, user_id: int, reason: str) -> int:
    """Асинхронно увеличить счётчик предупреждений."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, increment_warning, chat_id, user_id, reason)


def reset_warning_count(chat_id: int, user_id: int) -> None:
    """Обнулить счётчик (запись с последней причиной сохраняется)."""
    key = _warns_key(chat_id, user_id)
    try:
        redis_client.hset(key, "count", 0)
    except redis.RedisError as exc:
        log.error(f"Ошибка сброса предупреждений: {exc}")
        raise


async def reset_warning_count_async(chat_id: int, user_id: int) -> None:
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, reset_warning_count, chat_id, user_id)


def load_warning(chat_id: int, user_id: int) -> WarningRecord:
    """Загрузить запись предупреждений (пустую, если её нет)."""
    key = _warns_key(chat_id, user_id)
    try:
        data = redis_client.hgetall(key)
    except redis.RedisError as exc:
        log.error(f"Ошибка загрузки предупреждений для {chat_id}:{user_id}: {exc}")
        raise

    if not data:
        return WarningRecord(chat_id=chat_id, user_id=user_id)
    return WarningRecord(
        chat_id=chat_id,
        user_id=user_id,
        count=int(data.get("count", 0)),
        last_reason=data.get("last_reason", ""),
        last_warned_at=float(data.get("last_warned_at", 0.0)),
    )


async def load_warning_async(chat_id: int, user_id: int) -> WarningRecord:
    """Асинхронно загрузить запись предупреждений."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, load_warning, chat_id, user_id)


def clear_warns(chat_id: int, user_id: int) -> int:
    """Удалить запись предупреждений. Возвращает счётчик до удаления."""
    key = _warns_key(chat_id, user_id)
    try:
        with redis_client.pipeline(transaction=True) as pipe:
            pipe.hget(key, "count")
            pipe.delete(key)
            count, _ = pipe.execute()
        return int(count or 0)
    except redis.RedisError as exc:
        log.error(f"Ошибка очистки предупреждений: {exc}")
        raise


async def clear_warns_async(chat_id: int, user_id: int) -> int:
    """Асинхронно очистить предупреждения."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, clear_warns, chat_id, user_id)


# ============================================================================
# STATS OPERATIONS
# ============================================================================

def increment_stat(chat_id: int, stat: str, amount: int = 1) -> int:
    """Атомарно увеличить счётчик статистики чата."""
    if stat not in STAT_FIELDS:
        raise ValueError(f"Неизвестный счётчик: {stat}")
    return int(redis_client.hincrby(f"{STATS_PREFIX}{chat_id}", stat, amount))


async def increment_stat_async(chat_id: int, stat: str, amount: int = 1) -> int:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, increment_stat, chat_id, stat, amount)


def load_stats(chat_id: int) -> StatsCounter:
    data = redis_client.hgetall(f"{STATS_PREFIX}{chat_id}")
    return StatsCounter(
        chat_id=chat_id,
        **{name: int(data.get(name, 0)) for name in STAT_FIELDS}
    )


async def load_stats_async(chat_id: int) -> StatsCounter:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, load_stats, chat_id)


# ============================================================================
# MODLOG OPERATIONS
# ============================================================================

def _modlog_key(chat_id: int) -> str:
    """Получить ключ для лога модерации."""
    return f"{MODLOG_PREFIX}{chat_id}"


def save_mod_action(action: ModAction) -> None:
    """Сохранить действие модерации в лог."""
    key = _modlog_key(action.chat_id)
    try:
        data = asdict(action)
        with redis_client.pipeline() as pipe:
            pipe.lpush(key, json.dumps(data, ensure_ascii=False))
            # Ограничиваем размер лога
            pipe.ltrim(key, 0, MAX_MODLOG_ENTRIES - 1)
            pipe.execute()
    except redis.RedisError as exc:
        log.error(f"Не удалось сохранить действие модерации: {exc}")
        raise


async def save_mod_action_async(action: ModAction) -> None:
    """Асинхронно сохранить действие модерации."""
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, save_mod_action, action)


def load_mod_log(
    chat_id: int,
    limit: int = 20,
    user_id: Optional[int] = None
) -> List[ModAction]:
    """Загрузить лог модерации.

    Args:
        chat_id: ID чата
        limit: Максимальное количество записей
        user_id: Если указан, фильтровать по пользователю
    """
    key = _modlog_key(chat_id)
    # Загружаем больше записей если нужна фильтрация
    fetch_limit = limit * 5 if user_id else limit
    raw_values = redis_client.lrange(key, 0, fetch_limit - 1)

    actions = []
    for raw in raw_values:
        try:
            action = ModAction(**json.loads(raw))
        except (json.JSONDecodeError, TypeError) as exc:
            log.warning(f"Некорректные данные действия модерации: {exc}")
            continue

        # Фильтрация по пользователю
        if user_id is not None and action.target_user_id != user_id:
            continue

        actions.append(action)
        if len(actions) >= limit:
            break

    return actions


async def load_mod_log_async(
    chat_id: int,
    limit: int = 20,
    user_id: Optional[int] = None
) -> List[ModAction]:
    """Асинхронно загрузить лог модерации."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, load_mod_log, chat_id, limit, user_id)
