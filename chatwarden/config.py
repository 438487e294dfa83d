# Copyright (c) 2025 sprowii
import os
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _resolve_redis_url(raw_url: str) -> str:
    if ".upstash.io" in raw_url and raw_url.startswith("redis://"):
        return "rediss" + raw_url[len("redis") :]
    return raw_url


def _load_admin_ids() -> List[int]:
    raw = os.getenv("ADMIN_IDS") or os.getenv("ADMIN_ID") or ""
    ids: List[int] = []
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if chunk.lstrip("-").isdigit():
            ids.append(int(chunk))
    return ids


def _split_list(raw: str) -> List[str]:
    return [item.strip().lower() for item in raw.split(",") if item.strip()]


REDIS_URL = _resolve_redis_url(os.getenv("REDIS_URL", "redis://localhost:6379/0"))

TG_TOKEN = os.getenv("TG_TOKEN")
ADMIN_IDS = _load_admin_ids()

# Внешний классификатор спама: "", "http" или "gemini"
SPAM_ORACLE_BACKEND = os.getenv("SPAM_ORACLE_BACKEND", "").strip().lower()
SPAM_ORACLE_URL = os.getenv("SPAM_ORACLE_URL")
SPAM_ORACLE_TOKEN = os.getenv("SPAM_ORACLE_TOKEN")
SPAM_ORACLE_TIMEOUT_SEC = float(os.getenv("SPAM_ORACLE_TIMEOUT_SEC", 3.0))
SPAM_ORACLE_THRESHOLD = float(os.getenv("SPAM_ORACLE_THRESHOLD", 0.8))
SPAM_ORACLE_LABELS = _split_list(os.getenv("SPAM_ORACLE_LABELS", "spam,scam"))
SPAM_ORACLE_MODEL = os.getenv("SPAM_ORACLE_MODEL", "gemini-2.5-flash-lite")
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY") or os.getenv("GEMINI_API_KEY_1")

# Запас после истечения captcha, прежде чем кикнуть
CHALLENGE_GRACE_SEC = float(os.getenv("CHALLENGE_GRACE_SEC", 5))

# Кэш статуса админа (секунды)
ADMIN_CACHE_TTL = int(os.getenv("ADMIN_CACHE_TTL", 300))
