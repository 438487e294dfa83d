# Copyright (c) 2025 sprowii
from dataclasses import dataclass, field
from typing import List, Optional

from chatwarden.logging_config import log
from chatwarden.moderation.models import GroupConfig, Severity, Violation, ViolationReason

MAX_WORD_LENGTH = 100
MAX_WORDS = 500


@dataclass
class FilterCheckResult:
    """Результат проверки контента на запрещённые слова."""
    matched_words: List[str] = field(default_factory=list)

    @property
    def is_filtered(self) -> bool:
        return bool(self.matched_words)

    @property
    def reason(self) -> str:
        """Причина фильтрации для логирования."""
        if self.matched_words:
            return f"filter:{','.join(self.matched_words)}"
        return "filter"


class ContentFilter:
    """Фильтр запрещённых слов для чата.

    Проверка - регистронезависимое вхождение подстроки, поэтому
    слово ловится и внутри других слов.
    Изменения списка только мутируют настройки; сохраняет их вызывающий.
    """

    def __init__(self, settings: GroupConfig):
        """
        Args:
            settings: Настройки модерации чата
        """
        self.settings = settings
        self.chat_id = settings.chat_id

    def check(self, text: str) -> FilterCheckResult:
        """Проверить текст на наличие запрещённых слов.

        Args:
            text: Текст для проверки

        Returns:
            FilterCheckResult со всеми найденными словами
        """
        if not text or not self.settings.banned_words:
            return FilterCheckResult()

        lowered = text.casefold()
        matched = [word for word in self.settings.banned_words if word and word.casefold() in lowered]
        return FilterCheckResult(matched_words=matched)

    def add_word(self, word: str) -> bool:
        """Добавить слово в список.

        Returns:
            True если слово добавлено, False если уже есть или не прошло лимиты
        """
        word = word.strip().lower()
        if not word:
            return False

        # Ограничение длины слова для предотвращения DoS
        if len(word) > MAX_WORD_LENGTH:
            return False

        if len(self.settings.banned_words) >= MAX_WORDS:
            log.warning(f"Достигнут лимит слов в фильтре для чата {self.chat_id}")
            return False

        if word in (w.lower() for w in self.settings.banned_words):
            return False

        self.settings.banned_words.append(word)
        return True

    def remove_word(self, word: str) -> bool:
        """Удалить слово из списка.

        Returns:
            True если слово удалено, False если не найдено
        """
        word = word.strip().lower()
        if not word:
            return False

        for i, existing in enumerate(self.settings.banned_words):
            if existing.lower() == word:
                self.settings.banned_words.pop(i)
                return True

        return False

    def get_words(self) -> List[str]:
        return list(self.settings.banned_words)


def evaluate_banned_words(text: str, settings: GroupConfig) -> Optional[Violation]:
    """Правило: в тексте есть запрещённые слова."""
    result = ContentFilter(settings).check(text)
    if not result.is_filtered:
        return None
    return Violation(
        reason=ViolationReason.BANNED_WORDS,
        severity=Severity.MEDIUM,
        detail=", ".join(result.matched_words),
    )
