# Copyright (c) 2025 sprowii
"""Блокировки asyncio по ключу (chat_id, user_id) или chat_id."""
import asyncio
from contextlib import asynccontextmanager
from typing import Dict, Hashable, Tuple


class KeyedLocks:
    """Набор asyncio.Lock, создаваемых по требованию.

    Lock удаляется, когда его больше никто не держит и не ждёт,
    поэтому словарь не растёт с числом пользователей.
    """

    def __init__(self):
        # {key: (lock, число владельцев и ожидающих)}
        self._locks: Dict[Hashable, Tuple[asyncio.Lock, int]] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable):
        lock, users = self._locks.get(key, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._locks[key] = (lock, users + 1)

        try:
            async with lock:
                yield
        finally:
            lock, users = self._locks[key]
            if users <= 1:
                del self._locks[key]
            else:
                self._locks[key] = (lock, users - 1)

    def __len__(self) -> int:
        return len(self._locks)
