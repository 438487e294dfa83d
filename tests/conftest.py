import asyncio
from typing import Dict, List, Optional, Set, Tuple

import pytest
import redis
from telegram.error import TelegramError

from chatwarden import config
from chatwarden.moderation import storage
from chatwarden.moderation.models import GroupConfig
from chatwarden.moderation.oracle import SpamOracle
from chatwarden.moderation.permissions import clear_admin_cache
from chatwarden.moderation.platform import PlatformClient, Role

CHAT_ID = -100500
ADMIN_ID = 42
BOT_ADMIN_ID = 999


class FakePipeline:
    """Queues calls and runs them on execute(), like a redis-py pipeline."""

    def __init__(self, client: "FakeRedis"):
        self.client = client
        self.ops = []

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.ops = []
        return False

    def __getattr__(self, name):
        method = getattr(self.client, name)

        def queue(*args, **kwargs):
            self.ops.append((method, args, kwargs))
            return self

        return queue

    def execute(self):
        results = [method(*args, **kwargs) for method, args, kwargs in self.ops]
        self.ops = []
        return results


class FakeRedis:
    """In-memory subset of the redis-py API used by storage (decode_responses=True)."""

    def __init__(self):
        self.data: Dict[str, object] = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise redis.ConnectionError("redis is down")

    def get(self, key):
        self._check()
        return self.data.get(key)

    def set(self, key, value, nx=False):
        self._check()
        if nx and key in self.data:
            return None
        self.data[key] = value
        return True

    def delete(self, *keys):
        self._check()
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
        return removed

    def hincrby(self, key, field, amount=1):
        self._check()
        bucket = self.data.setdefault(key, {})
        bucket[field] = str(int(bucket.get(field, 0)) + amount)
        return int(bucket[field])

    def hset(self, key, field=None, value=None, mapping=None):
        self._check()
        bucket = self.data.setdefault(key, {})
        items = dict(mapping or {})
        if field is not None:
            items[field] = value
        for name, item in items.items():
            bucket[name] = str(item)
        return len(items)

    def hget(self, key, field):
        self._check()
        return self.data.get(key, {}).get(field)

    def hgetall(self, key):
        self._check()
        return dict(self.data.get(key, {}))

    def lpush(self, key, *values):
        self._check()
        items = self.data.setdefault(key, [])
        for value in values:
            items.insert(0, value)
        return len(items)

    def ltrim(self, key, start, end):
        self._check()
        items = self.data.get(key, [])
        self.data[key] = items[start:end + 1]
        return True

    def lrange(self, key, start, end):
        self._check()
        items = self.data.get(key, [])
        if end == -1:
            return items[start:]
        return items[start:end + 1]

    def pipeline(self, transaction=True):
        return FakePipeline(self)


class FakePlatform(PlatformClient):
    """Records every platform call; operations named in `fail` raise TelegramError."""

    def __init__(self):
        self.roles: Dict[Tuple[int, int], Role] = {}
        self.fail: Set[str] = set()
        self.deleted: List[Tuple[int, int]] = []
        self.banned: List[Tuple[int, int]] = []
        self.unbanned: List[Tuple[int, int]] = []
        self.permissions: List[Tuple[int, int, bool, Optional[int]]] = []
        self.sent: List[Tuple[int, str, Optional[int]]] = []
        self._next_message_id = 1000

    def _maybe_fail(self, operation: str):
        if operation in self.fail:
            raise TelegramError(f"{operation} failed")

    async def get_member_role(self, chat_id, user_id):
        self._maybe_fail("get_member_role")
        return self.roles.get((chat_id, user_id), Role.MEMBER)

    async def delete_message(self, chat_id, message_id):
        self._maybe_fail("delete_message")
        self.deleted.append((chat_id, message_id))

    async def ban(self, chat_id, user_id):
        self._maybe_fail("ban")
        self.banned.append((chat_id, user_id))

    async def unban(self, chat_id, user_id):
        self._maybe_fail("unban")
        self.unbanned.append((chat_id, user_id))

    async def set_send_permission(self, chat_id, user_id, allowed, until=None):
        self._maybe_fail("set_send_permission")
        self.permissions.append((chat_id, user_id, allowed, until))

    async def send_message(self, chat_id, text, reply_to=None):
        self._maybe_fail("send_message")
        self._next_message_id += 1
        self.sent.append((chat_id, text, reply_to))
        return self._next_message_id

    def kicked(self, chat_id, user_id) -> bool:
        return (chat_id, user_id) in self.banned and (chat_id, user_id) in self.unbanned


class HangingOracle(SpamOracle):
    """Spam oracle that never answers in time."""

    def __init__(self):
        self.calls = 0

    async def classify(self, text):
        self.calls += 1
        await asyncio.sleep(30)


@pytest.fixture
def fake_redis(monkeypatch):
    client = FakeRedis()
    monkeypatch.setattr(storage, "redis_client", client)
    return client


@pytest.fixture
def platform():
    return FakePlatform()


@pytest.fixture(autouse=True)
def isolated_admins(monkeypatch):
    monkeypatch.setattr(config, "ADMIN_IDS", [BOT_ADMIN_ID])
    clear_admin_cache()
    yield
    clear_admin_cache()


@pytest.fixture
def seed_settings(fake_redis):
    """Store chat settings directly; notices are not auto-deleted in tests."""

    def _seed(chat_id: int = CHAT_ID, **overrides) -> GroupConfig:
        overrides.setdefault("notice_auto_delete_sec", 0)
        settings = GroupConfig(chat_id=chat_id, **overrides)
        storage.save_settings(settings)
        return settings

    return _seed
