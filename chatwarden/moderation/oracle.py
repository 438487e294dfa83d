# Copyright (c) 2025 sprowii
"""Внешний классификатор спама (необязательный).

Вердикт - best effort: любая ошибка или таймаут означает "вердикта нет".
Жёсткую границу по времени ставит вызывающий (asyncio.wait_for),
у HTTP и Gemini клиентов есть собственные таймауты, а блокирующие
вызовы идут в отдельный пул потоков.
"""
import asyncio
import json
import re
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Iterable, Optional

import requests
from google import genai
from google.genai import types

from chatwarden import config
from chatwarden.logging_config import log

# Длинные тексты обрезаем: классификатору хватает начала
MAX_TEXT_LENGTH = 1024
# Слишком короткие сообщения не отправляем
MIN_TEXT_LENGTH = 10
# Потоки для блокирующих вызовов классификатора
ORACLE_MAX_WORKERS = 4

CLASSIFY_PROMPT = (
    "You are a spam filter for a group chat. Classify the message below.\n"
    'Answer with JSON only: {"label": "spam" | "scam" | "ham", "score": <0..1>}\n\n'
    "Message:\n"
)

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


@dataclass
class OracleVerdict:
    """Ответ классификатора."""
    label: str
    score: float

    def is_spam(self, threshold: float, labels: Iterable[str]) -> bool:
        return self.label.lower() in {label.lower() for label in labels} and self.score >= threshold


def parse_verdict(payload) -> Optional[OracleVerdict]:
    """Разобрать {"label": ..., "score": ...} из dict или JSON-строки."""
    if isinstance(payload, str):
        match = _JSON_OBJECT.search(payload)
        if not match:
            return None
        try:
            payload = json.loads(match.group(0))
        except json.JSONDecodeError:
            return None

    if not isinstance(payload, dict) or "label" not in payload:
        return None
    try:
        return OracleVerdict(label=str(payload["label"]), score=float(payload.get("score", 0.0)))
    except (TypeError, ValueError):
        return None


class SpamOracle(ABC):
    """Интерфейс внешнего классификатора."""

    @abstractmethod
    async def classify(self, text: str) -> Optional[OracleVerdict]:
        """Вернуть вердикт или None, если вердикта нет."""

    async def close(self) -> None:
        """Освободить ресурсы классификатора."""


class ExecutorSpamOracle(SpamOracle):
    """Классификатор с блокирующим клиентом в собственном пуле потоков.

    Зависшие запросы занимают только этот пул, а не дефолтный executor
    event loop, через который работает Redis.
    """

    def __init__(self, max_workers: int = ORACLE_MAX_WORKERS):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="spam-oracle")

    @abstractmethod
    def _classify_sync(self, text: str) -> Optional[OracleVerdict]:
        """Блокирующий вызов классификатора."""

    async def classify(self, text: str) -> Optional[OracleVerdict]:
        if not text or len(text) < MIN_TEXT_LENGTH:
            return None
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, self._classify_sync, text[:MAX_TEXT_LENGTH])

    async def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)


class HttpSpamOracle(ExecutorSpamOracle):
    """Классификатор за HTTP-эндпоинтом.

    POST {"text": ...} -> {"label": ..., "score": ...}
    """

    def __init__(
        self,
        url: str,
        token: Optional[str] = None,
        timeout: float = 3.0,
        max_workers: int = ORACLE_MAX_WORKERS
    ):
        super().__init__(max_workers)
        self.url = url
        self.token = token
        self.timeout = timeout

    def _classify_sync(self, text: str) -> Optional[OracleVerdict]:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        try:
            response = requests.post(self.url, json={"text": text}, headers=headers, timeout=self.timeout)
            response.raise_for_status()
            return parse_verdict(response.json())
        except (requests.RequestException, ValueError) as exc:
            log.warning(f"Spam oracle request failed: {exc}")
            return None


class GeminiSpamOracle(ExecutorSpamOracle):
    """Классификатор на Gemini: модель отвечает JSON-вердиктом."""

    def __init__(self, client: genai.Client, model: str, max_workers: int = ORACLE_MAX_WORKERS):
        super().__init__(max_workers)
        self.client = client
        self.model = model

    def _classify_sync(self, text: str) -> Optional[OracleVerdict]:
        try:
            response = self.client.models.generate_content(
                model=self.model,
                contents=[{"role": "user", "parts": [{"text": CLASSIFY_PROMPT + text}]}],
                config={"response_mime_type": "application/json", "temperature": 0.0},
            )
        except Exception as exc:
            # genai поднимает разные типы ошибок (сеть, квоты, валидация)
            log.warning(f"Gemini spam classification failed on {self.model}: {exc}")
            return None
        return parse_verdict(getattr(response, "text", None) or "")


def build_spam_oracle() -> Optional[SpamOracle]:
    """Создать классификатор по настройкам окружения. None если выключен."""
    backend = config.SPAM_ORACLE_BACKEND
    if not backend:
        return None

    if backend == "http":
        if not config.SPAM_ORACLE_URL:
            log.warning("SPAM_ORACLE_BACKEND=http, но SPAM_ORACLE_URL не задан. Классификатор отключен.")
            return None
        log.info("Spam oracle: HTTP classifier")
        return HttpSpamOracle(
            config.SPAM_ORACLE_URL,
            token=config.SPAM_ORACLE_TOKEN,
            timeout=config.SPAM_ORACLE_TIMEOUT_SEC,
        )

    if backend == "gemini":
        if not config.GEMINI_API_KEY:
            log.warning("SPAM_ORACLE_BACKEND=gemini, но GEMINI_API_KEY не задан. Классификатор отключен.")
            return None
        log.info(f"Spam oracle: Gemini ({config.SPAM_ORACLE_MODEL})")
        client = genai.Client(
            api_key=config.GEMINI_API_KEY,
            http_options=types.HttpOptions(timeout=int(config.SPAM_ORACLE_TIMEOUT_SEC * 1000)),
        )
        return GeminiSpamOracle(client, config.SPAM_ORACLE_MODEL)

    log.warning(f"Неизвестный SPAM_ORACLE_BACKEND: {backend}. Классификатор отключен.")
    return None
