# Copyright (c) 2025 sprowii
"""Детектор запрещённых письменностей (языков).

Текст проверяется по кодовым точкам Unicode: строка в Python уже
индексируется по code point, поэтому символы вне BMP (например, CJK
Extension B) не распадаются на суррогатные пары.

Диапазоны разных письменностей пересекаются (китайский и японский оба
используют CJK Unified Ideographs). Для каждого символа сообщаем обо
всех совпавших письменностях, а не только о первой.
"""
from typing import Dict, Iterable, List, Optional, Tuple

from chatwarden.moderation.models import GroupConfig, Severity, Violation, ViolationReason

_CJK_IDEOGRAPHS = [
    (0x4E00, 0x9FFF),    # CJK Unified Ideographs
    (0x3400, 0x4DBF),    # CJK Extension A
    (0x20000, 0x2A6DF),  # CJK Extension B
    (0xF900, 0xFAFF),    # CJK Compatibility Ideographs
]

SCRIPT_RANGES: Dict[str, List[Tuple[int, int]]] = {
    "chinese": list(_CJK_IDEOGRAPHS),
    "japanese": [
        (0x3040, 0x309F),  # Hiragana
        (0x30A0, 0x30FF),  # Katakana
        (0x31F0, 0x31FF),  # Katakana Phonetic Extensions
    ] + _CJK_IDEOGRAPHS,
    "korean": [
        (0xAC00, 0xD7A3),  # Hangul Syllables
        (0x1100, 0x11FF),  # Hangul Jamo
        (0x3130, 0x318F),  # Hangul Compatibility Jamo
    ],
    "cyrillic": [
        (0x0400, 0x04FF),  # Cyrillic
        (0x0500, 0x052F),  # Cyrillic Supplement
    ],
    "arabic": [
        (0x0600, 0x06FF),  # Arabic
        (0x0750, 0x077F),  # Arabic Supplement
        (0xFB50, 0xFDFF),  # Arabic Presentation Forms-A
        (0xFE70, 0xFEFF),  # Arabic Presentation Forms-B
    ],
    "hebrew": [
        (0x0590, 0x05FF),
    ],
    "devanagari": [
        (0x0900, 0x097F),
    ],
    "bengali": [
        (0x0980, 0x09FF),
    ],
    "tamil": [
        (0x0B80, 0x0BFF),
    ],
    "thai": [
        (0x0E00, 0x0E7F),
    ],
    "greek": [
        (0x0370, 0x03FF),
    ],
    "armenian": [
        (0x0530, 0x058F),
    ],
    "georgian": [
        (0x10A0, 0x10FF),
    ],
    "vietnamese": [
        (0x1EA0, 0x1EFF),  # Latin Extended Additional
    ],
}

SCRIPT_ALIASES: Dict[str, str] = {
    "russian": "cyrillic",
    "ukrainian": "cyrillic",
    "hindi": "devanagari",
    "hangul": "korean",
    "kanji": "japanese",
    "persian": "arabic",
    "farsi": "arabic",
}


def normalize_script_name(name: str) -> Optional[str]:
    """Привести имя письменности к каноническому. None если неизвестно."""
    name = name.strip().lower()
    name = SCRIPT_ALIASES.get(name, name)
    return name if name in SCRIPT_RANGES else None


def detect_scripts(text: str, banned: Iterable[str]) -> List[str]:
    """Найти запрещённые письменности в тексте.

    Args:
        text: Текст сообщения
        banned: Имена запрещённых письменностей

    Returns:
        Различные совпавшие письменности в порядке SCRIPT_RANGES,
        пустой список если совпадений нет
    """
    wanted = {canonical for canonical in (normalize_script_name(name) for name in banned) if canonical}
    if not text or not wanted:
        return []

    ranges = [(script, SCRIPT_RANGES[script]) for script in SCRIPT_RANGES if script in wanted]
    found = set()
    for char in text:
        code_point = ord(char)
        if code_point < 0x0370:
            # Basic Latin / Latin-1 / IPA - ни одна письменность сюда не попадает
            continue
        for script, script_ranges in ranges:
            if script in found:
                continue
            if any(start <= code_point <= end for start, end in script_ranges):
                found.add(script)
        if len(found) == len(ranges):
            break

    return [script for script, _ in ranges if script in found]


def evaluate_banned_scripts(text: str, settings: GroupConfig) -> Optional[Violation]:
    """Правило: в тексте есть символы запрещённых письменностей."""
    matched = detect_scripts(text, settings.banned_scripts)
    if not matched:
        return None
    return Violation(
        reason=ViolationReason.BANNED_SCRIPT,
        severity=Severity.MEDIUM,
        detail=", ".join(matched),
    )
