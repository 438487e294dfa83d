# Copyright (c) 2025 sprowii
"""Эвристики спама: ссылки, adult-контент, подозрительные username.

Все функции чистые: без I/O и без изменения состояния.
"""
import re
from typing import List, Optional
from urllib.parse import urlsplit

from chatwarden.moderation.models import GroupConfig, Severity, Violation, ViolationReason


# ============================================================================
# LINKS
# ============================================================================

# Короткие домены, которые часто используют для рекламы и приглашений
SHORT_DOMAINS = [
    r"t\.me",
    r"telegram\.me",
    r"telegram\.dog",
    r"bit\.ly",
    r"tinyurl\.com",
    r"goo\.gl",
    r"cutt\.ly",
    r"clck\.ru",
    r"wa\.me",
    r"discord\.gg",
    r"discord\.com/invite",
]

URL_REGEX = re.compile(
    r"https?://[^\s<>\"']+|"
    r"\bwww\.[^\s<>\"']+|"
    r"\b(?:" + "|".join(SHORT_DOMAINS) + r")/[^\s<>\"']*",
    re.IGNORECASE
)

SCHEME_REGEX = re.compile(r"^[a-z][a-z0-9+.\-]*://", re.IGNORECASE)

# Голые @username (у Telegram 5-32 символа); e-mail не считается упоминанием
MENTION_REGEX = re.compile(r"(?<![\w.@])@[A-Za-z][A-Za-z0-9_]{4,31}\b")


def extract_links(text: str) -> List[str]:
    """Извлечь все ссылки из текста."""
    if not text:
        return []
    return URL_REGEX.findall(text)


def link_host(link: str) -> str:
    """Хост ссылки в нижнем регистре ("" если разобрать не удалось)."""
    if not SCHEME_REGEX.match(link):
        # www.example.com/..., t.me/...
        link = "http://" + link
    try:
        return (urlsplit(link).hostname or "").lower().rstrip(".")
    except ValueError:
        return ""


def is_link_whitelisted(link: str, whitelist: List[str]) -> bool:
    """Проверить, что хост ссылки - домен из whitelist или его поддомен."""
    host = link_host(link)
    if not host:
        return False
    for domain in whitelist:
        domain = domain.strip().lower().strip(".")
        if domain and (host == domain or host.endswith("." + domain)):
            return True
    return False


def evaluate_links(text: str, settings: GroupConfig) -> Optional[Violation]:
    """Правило: ссылка (или @упоминание, если включено) в тексте."""
    if not settings.link_filter_enabled or not text:
        return None

    for link in extract_links(text):
        if not is_link_whitelisted(link, settings.link_whitelist):
            return Violation(reason=ViolationReason.LINK, severity=Severity.LOW, detail=link[:64])

    if settings.block_mentions:
        mention = MENTION_REGEX.search(text)
        if mention:
            return Violation(reason=ViolationReason.LINK, severity=Severity.LOW, detail=mention.group(0))

    return None


# ============================================================================
# ADULT CONTENT
# ============================================================================

ADULT_KEYWORDS = [
    "porn",
    "xxx",
    "onlyfans",
    "nsfw",
    "nudes",
    "hentai",
    "escort",
    "sexcam",
    "sex cam",
    "xvideos",
    "chaturbate",
    "stripchat",
    "livejasmin",
    "порно",
    "интим услуги",
    "эскорт",
]


def evaluate_adult(text: str, settings: GroupConfig) -> Optional[Violation]:
    """Правило: регистронезависимое вхождение adult-ключевых слов."""
    if not settings.adult_filter_enabled or not text:
        return None

    lowered = text.casefold()
    for keyword in ADULT_KEYWORDS:
        if keyword in lowered:
            return Violation(reason=ViolationReason.ADULT_CONTENT, severity=Severity.HIGH, detail=keyword)
    return None


# ============================================================================
# USERNAME HEURISTICS
# ============================================================================

USERNAME_PATTERNS = [
    # Длинные серии цифр: user8841203
    re.compile(r"\d{7,}"),
    # Рекламные префиксы: crypto_king, promo_bot
    re.compile(
        r"^(?:promo|crypto|btc|bitcoin|earn|free|casino|bet|invest|forex|profit|bonus|airdrop|xxx|sexy)",
        re.IGNORECASE
    ),
    # Повторяющаяся пунктуация: hey___there, a...b
    re.compile(r"([_.\-])\1{2,}"),
    # Чередование буква/разделитель: a_b_c_d
    re.compile(r"^(?:[A-Za-z0-9][_.\-]){3,}[A-Za-z0-9]?$"),
    # Длинный цифровой хвост: anna48213
    re.compile(r"[A-Za-z_]\d{5,}$"),
]


def is_suspicious_username(handle: Optional[str]) -> bool:
    """Проверить username отправителя (не текст сообщения) по эвристикам."""
    if not handle:
        return False
    handle = handle.lstrip("@")
    return any(pattern.search(handle) for pattern in USERNAME_PATTERNS)


def evaluate_username(handle: Optional[str], settings: GroupConfig) -> Optional[Violation]:
    """Правило: подозрительный username."""
    if not settings.username_filter_enabled or not is_suspicious_username(handle):
        return None
    return Violation(
        reason=ViolationReason.SUSPICIOUS_USERNAME,
        severity=Severity.MEDIUM,
        detail=handle or "",
    )


# ============================================================================
# VIOLATION MESSAGES
# ============================================================================

VIOLATION_MESSAGES = {
    ViolationReason.BLACKLISTED: "🚫 Пользователь в чёрном списке",
    ViolationReason.SUSPICIOUS_USERNAME: "🚫 Подозрительное имя пользователя",
    ViolationReason.AI_SPAM: "🛡 Сообщение распознано как спам",
    ViolationReason.BANNED_SCRIPT: "🈲 Язык сообщения запрещён в этом чате",
    ViolationReason.ADULT_CONTENT: "🔞 Запрещённый контент",
    ViolationReason.LINK: "🔗 Ссылки в этом чате запрещены",
    ViolationReason.BANNED_WORDS: "🤬 Сообщение содержит запрещённые слова",
    ViolationReason.FLOOD: "🚫 Флуд: слишком много сообщений за короткое время",
}


def get_violation_message(violation: Violation) -> str:
    """Получить человекочитаемое сообщение о причине нарушения."""
    return VIOLATION_MESSAGES.get(violation.reason, f"🚫 Нарушение: {violation.reason.value}")
