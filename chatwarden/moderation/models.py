# Copyright (c) 2025 sprowii
"""Модели данных для системы модерации."""
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import List, Optional
import time
import uuid

_LIST_ITEM_TYPES = {List[str]: str, List[int]: int}


def _is_instance(value, expected: type) -> bool:
    # bool - подкласс int, но True не должен проходить как flood_limit
    if expected is not bool and isinstance(value, bool):
        return False
    return isinstance(value, expected)


@dataclass
class GroupConfig:
    """Настройки модерации для конкретного чата.

    Создаются лениво с дефолтами при первом обращении к чату и живут
    столько же, сколько чат. Списки хранятся как JSON-массивы, но
    ведут себя как множества (дубликаты не добавляются).
    """
    chat_id: int

    # Captcha для новых участников
    require_challenge_on_join: bool = False
    challenge_timeout_sec: int = 120
    challenge_max_attempts: int = 3
    challenge_difficulty: str = "easy"  # easy, medium, hard

    # Эскалация: после warn_threshold предупреждений - бан или мут
    auto_ban_on_violation: bool = False
    warn_threshold: int = 3
    mute_duration_min: int = 60

    # Антифлуд
    flood_limit: int = 5
    flood_window_sec: int = 7

    # Правила
    banned_words: List[str] = field(default_factory=list)
    banned_scripts: List[str] = field(default_factory=list)
    link_filter_enabled: bool = True
    block_mentions: bool = False
    link_whitelist: List[str] = field(default_factory=list)
    adult_filter_enabled: bool = True
    username_filter_enabled: bool = True
    spam_oracle_enabled: bool = True

    # Списки пользователей
    whitelist: List[int] = field(default_factory=list)
    blacklist: List[int] = field(default_factory=list)

    # Приветствие и уведомления
    welcome_text: str = ""
    notice_auto_delete_sec: int = 1800  # 0 = не удалять

    # Logging
    log_channel_id: Optional[int] = None

    def type_errors(self) -> List[str]:
        """Проверка типов полей (значения приходят из JSON импорта)."""
        errors = []
        for f in fields(self):
            value = getattr(self, f.name)
            if f.type in _LIST_ITEM_TYPES:
                item_type = _LIST_ITEM_TYPES[f.type]
                if not isinstance(value, list) or not all(_is_instance(item, item_type) for item in value):
                    errors.append(f"{f.name} должен быть списком {item_type.__name__}")
            elif f.type == Optional[int]:
                if value is not None and not _is_instance(value, int):
                    errors.append(f"{f.name} должен быть int или null")
            elif not _is_instance(value, f.type):
                errors.append(f"{f.name} должен быть {f.type.__name__}, получено: {type(value).__name__}")
        return errors

    def validate(self) -> List[str]:
        """Валидация настроек. Возвращает список ошибок."""
        errors = self.type_errors()
        if errors:
            return errors

        if self.flood_limit <= 0:
            errors.append(f"flood_limit должен быть больше 0, получено: {self.flood_limit}")
        if self.flood_window_sec <= 0:
            errors.append(f"flood_window_sec должен быть больше 0, получено: {self.flood_window_sec}")

        if not (1 <= self.warn_threshold <= 20):
            errors.append(f"warn_threshold должен быть от 1 до 20, получено: {self.warn_threshold}")
        if not (1 <= self.mute_duration_min <= 525600):
            errors.append(f"mute_duration_min должен быть от 1 до 525600, получено: {self.mute_duration_min}")

        if not (30 <= self.challenge_timeout_sec <= 600):
            errors.append(f"challenge_timeout_sec должен быть от 30 до 600, получено: {self.challenge_timeout_sec}")
        if not (1 <= self.challenge_max_attempts <= 10):
            errors.append(f"challenge_max_attempts должен быть от 1 до 10, получено: {self.challenge_max_attempts}")
        if self.challenge_difficulty not in ("easy", "medium", "hard"):
            errors.append(f"challenge_difficulty должен быть easy/medium/hard, получено: {self.challenge_difficulty}")

        if not (0 <= self.notice_auto_delete_sec <= 86400):
            errors.append(f"notice_auto_delete_sec должен быть от 0 до 86400, получено: {self.notice_auto_delete_sec}")

        return errors


@dataclass
class GlobalConfig:
    """Глобальные white/black списки, общие для всех чатов."""
    whitelist: List[int] = field(default_factory=list)
    blacklist: List[int] = field(default_factory=list)


@dataclass
class WarningRecord:
    """Счётчик предупреждений пользователя в чате."""
    chat_id: int
    user_id: int
    count: int = 0
    last_reason: str = ""
    last_warned_at: float = 0.0


@dataclass
class StatsCounter:
    """Счётчики действий модерации в чате."""
    chat_id: int
    banned: int = 0
    kicked: int = 0
    deleted: int = 0


@dataclass
class ModAction:
    """Действие модерации для логирования."""
    id: str
    chat_id: int
    action_type: str  # warn, mute, ban, kick, delete, grant, clearwarns, settings
    target_user_id: int
    admin_id: Optional[int]  # None for automatic actions
    reason: str
    timestamp: float
    auto: bool = False  # True if triggered automatically

    @classmethod
    def create(
        cls,
        chat_id: int,
        action_type: str,
        target_user_id: int,
        reason: str,
        admin_id: Optional[int] = None,
        auto: bool = False
    ) -> "ModAction":
        """Создать новое действие модерации с автоматическим ID и timestamp."""
        return cls(
            id=str(uuid.uuid4()),
            chat_id=chat_id,
            action_type=action_type,
            target_user_id=target_user_id,
            admin_id=admin_id,
            reason=reason,
            timestamp=time.time(),
            auto=auto
        )


@dataclass
class ChallengeEntry:
    """Captcha для проверки нового участника.

    `id` - идентичность записи: таймер истечения, созданный для одной
    записи, не может удалить запись, пришедшую ей на смену.
    """
    id: str
    chat_id: int
    user_id: int
    question: str
    expected_answer: int
    expires_at: float
    attempts_used: int = 0
    prompt_message_id: Optional[int] = None  # ID сообщения с captcha для удаления

    @classmethod
    def create(
        cls,
        chat_id: int,
        user_id: int,
        question: str,
        expected_answer: int,
        timeout_sec: float
    ) -> "ChallengeEntry":
        """Создать новую captcha с автоматическим ID и временем истечения."""
        return cls(
            id=str(uuid.uuid4()),
            chat_id=chat_id,
            user_id=user_id,
            question=question,
            expected_answer=expected_answer,
            expires_at=time.time() + timeout_sec
        )

    def is_expired(self, now: Optional[float] = None) -> bool:
        """Проверить, истекла ли captcha."""
        if now is None:
            now = time.time()
        return now > self.expires_at


class ViolationReason(str, Enum):
    """Причины нарушений (значения попадают в лог модерации)."""
    BLACKLISTED = "blacklisted"
    SUSPICIOUS_USERNAME = "suspicious username"
    AI_SPAM = "AI spam detected"
    BANNED_SCRIPT = "banned language/script detected"
    ADULT_CONTENT = "adult content"
    LINK = "link sharing not allowed"
    BANNED_WORDS = "banned words detected"
    FLOOD = "flooding"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class Violation:
    """Сработавшее правило."""
    reason: ViolationReason
    severity: Severity
    detail: str = ""

    def describe(self) -> str:
        if self.detail:
            return f"{self.reason.value}: {self.detail}"
        return self.reason.value


@dataclass
class IncomingMessage:
    """Входящее сообщение, не зависящее от платформы."""
    chat_id: int
    user_id: int
    message_id: int
    text: str = ""
    handle: Optional[str] = None  # @username без '@'
    display_name: str = ""
    chat_title: str = ""

    @property
    def mention(self) -> str:
        if self.handle:
            return f"@{self.handle}"
        return self.display_name or str(self.user_id)


@dataclass
class NewMember:
    """Событие входа участника в чат."""
    chat_id: int
    user_id: int
    handle: Optional[str] = None
    display_name: str = ""
    is_bot: bool = False
    chat_title: str = ""

    @property
    def mention(self) -> str:
        if self.handle:
            return f"@{self.handle}"
        return self.display_name or str(self.user_id)
