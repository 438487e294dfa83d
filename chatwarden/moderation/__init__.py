# Copyright (c) 2025 sprowii
"""Модуль модерации групповых чатов.

Компоненты:
- ModerationController: Центральная точка входа для всех операций модерации
- правила: ссылки, запрещённые слова, письменности, adult, username
- FloodTracker: Антифлуд на скользящем окне
- SpamOracle: Внешний классификатор спама
- WarnSystem: Система предупреждений с эскалацией
- AdmissionGate: Captcha для новых участников
- Enforcer: Действия над чатом через PlatformClient
- ModLogger: Логирование действий модерации
"""

from chatwarden.moderation.controller import (
    ModerationController,
    ModerationAction,
    ModerationResult,
    get_moderation_controller,
    init_moderation_controller,
)
from chatwarden.moderation.models import (
    GlobalConfig,
    GroupConfig,
    IncomingMessage,
    ModAction,
    NewMember,
    Severity,
    Violation,
    ViolationReason,
    WarningRecord,
)
from chatwarden.moderation.actions import Enforcer
from chatwarden.moderation.captcha import AdmissionGate, ChallengeRegistry, GateOutcome, JoinOutcome
from chatwarden.moderation.flood import FloodTracker, InMemoryFloodTracker
from chatwarden.moderation.logger import ModLogger
from chatwarden.moderation.oracle import SpamOracle, build_spam_oracle
from chatwarden.moderation.permissions import NotAuthorizedError
from chatwarden.moderation.platform import PlatformClient, Role, TelegramPlatform
from chatwarden.moderation.warns import WarnSystem, WarnResult, WarnEscalation

__all__ = [
    # Controller
    "ModerationController",
    "ModerationAction",
    "ModerationResult",
    "get_moderation_controller",
    "init_moderation_controller",
    # Models
    "GlobalConfig",
    "GroupConfig",
    "IncomingMessage",
    "ModAction",
    "NewMember",
    "Severity",
    "Violation",
    "ViolationReason",
    "WarningRecord",
    # Components
    "Enforcer",
    "AdmissionGate",
    "ChallengeRegistry",
    "GateOutcome",
    "JoinOutcome",
    "FloodTracker",
    "InMemoryFloodTracker",
    "ModLogger",
    "SpamOracle",
    "build_spam_oracle",
    "NotAuthorizedError",
    "PlatformClient",
    "Role",
    "TelegramPlatform",
    "WarnSystem",
    "WarnResult",
    "WarnEscalation",
]
