# Copyright (c) 2025 sprowii
"""Антифлуд: скользящее окно timestamps сообщений на (chat_id, user_id).

Состояние живёт только в памяти процесса: после рестарта окна пусты,
что может лишь пропустить флуд, но не заблокировать лишнего.
"""
import time
from abc import ABC, abstractmethod
from collections import deque
from typing import Deque, Dict, Optional, Tuple

from chatwarden.logging_config import log

FloodKey = Tuple[int, int]

# Очистка неактивных окон каждые 5 минут
CLEANUP_INTERVAL = 300
# Окна без сообщений дольше этого срока удаляются целиком
IDLE_TTL = 3600


def is_flooding(count: int, flood_limit: int) -> bool:
    """Флуд - строго больше flood_limit сообщений в окне."""
    return count > flood_limit


class FloodTracker(ABC):
    """Интерфейс хранилища окон антифлуда."""

    @abstractmethod
    def record(
        self,
        chat_id: int,
        user_id: int,
        window_sec: float,
        now: Optional[float] = None
    ) -> int:
        """Записать сообщение и вернуть количество сообщений в окне."""

    @abstractmethod
    def clear(self, chat_id: int, user_id: int) -> None:
        """Очистить окно пользователя (после срабатывания)."""

    @abstractmethod
    def count(self, chat_id: int, user_id: int) -> int:
        """Текущий размер окна без записи нового сообщения."""


class InMemoryFloodTracker(FloodTracker):
    """Окна в словаре процесса.

    record() не содержит await, поэтому на event loop запись и обрезка
    окна для одного ключа выполняются атомарно.
    """

    def __init__(self):
        self._windows: Dict[FloodKey, Deque[float]] = {}
        self._last_cleanup = time.time()

    def record(
        self,
        chat_id: int,
        user_id: int,
        window_sec: float,
        now: Optional[float] = None
    ) -> int:
        if now is None:
            now = time.time()
        self._cleanup_idle(now)

        window = self._windows.setdefault((chat_id, user_id), deque())
        window.append(now)

        cutoff = now - window_sec
        while window and window[0] < cutoff:
            window.popleft()

        return len(window)

    def clear(self, chat_id: int, user_id: int) -> None:
        self._windows.pop((chat_id, user_id), None)

    def count(self, chat_id: int, user_id: int) -> int:
        window = self._windows.get((chat_id, user_id))
        return len(window) if window else 0

    def _cleanup_idle(self, now: float) -> None:
        """Удаляет окна, в которых давно не было сообщений."""
        if now - self._last_cleanup < CLEANUP_INTERVAL:
            return

        cutoff = now - IDLE_TTL
        to_remove = [key for key, window in self._windows.items() if not window or window[-1] < cutoff]
        for key in to_remove:
            del self._windows[key]

        self._last_cleanup = now
        if to_remove:
            log.debug(f"Cleaned up {len(to_remove)} idle flood windows")
