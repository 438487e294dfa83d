# Copyright (c) 2025 sprowii
"""Центральный контроллер модерации.

Порядок проверок сообщения (первое совпадение выигрывает):
1. админ чата или whitelist -> пропустить без проверок
2. blacklist -> бан без накопления предупреждений
3. активная captcha -> сообщение считается ответом
4. username, 5. внешний классификатор, 6. письменности,
7. adult, 8. ссылки, 9. запрещённые слова, 10. флуд
"""
import asyncio
import copy
import html
from dataclasses import dataclass, fields
from enum import Enum
from typing import Callable, List, Optional, Tuple

from chatwarden import config
from chatwarden.logging_config import log
from chatwarden.moderation.actions import Enforcer
from chatwarden.moderation.captcha import AdmissionGate, GateOutcome, JoinOutcome
from chatwarden.moderation.content_filter import ContentFilter, evaluate_banned_words
from chatwarden.moderation.flood import FloodTracker, InMemoryFloodTracker, is_flooding
from chatwarden.moderation.locks import KeyedLocks
from chatwarden.moderation.models import (
    GlobalConfig,
    GroupConfig,
    IncomingMessage,
    ModAction,
    NewMember,
    Severity,
    StatsCounter,
    Violation,
    ViolationReason,
)
from chatwarden.moderation.oracle import SpamOracle
from chatwarden.moderation.permissions import (
    is_chat_admin,
    require_chat_admin,
    require_static_admin,
)
from chatwarden.moderation.platform import PlatformClient
from chatwarden.moderation.scripts import evaluate_banned_scripts, normalize_script_name
from chatwarden.moderation.spam import (
    evaluate_adult,
    evaluate_links,
    evaluate_username,
    get_violation_message,
)
from chatwarden.moderation.storage import (
    export_settings,
    load_global_config_async,
    load_mod_log_async,
    load_settings_async,
    load_stats_async,
    parse_settings,
    save_global_config_async,
    save_settings_async,
)
from chatwarden.moderation.warns import WarnEscalation, WarnSystem, format_warning_notice
from chatwarden.security.data_protection import pseudonymize_chat_id, pseudonymize_id

# Правила 6-9: чистые функции над текстом, в порядке приоритета
TEXT_RULES = (
    evaluate_banned_scripts,
    evaluate_adult,
    evaluate_links,
    evaluate_banned_words,
)

GLOBAL_LOCK_KEY = "global"


class ModerationAction(str, Enum):
    """Итог обработки сообщения."""
    NONE = "none"
    EXEMPT = "exempt"
    GATE = "gate"
    WARN = "warn"
    MUTE = "mute"
    BAN = "ban"


@dataclass
class ModerationResult:
    """Результат проверки модерации."""
    action: ModerationAction
    violation: Optional[Violation] = None
    warn_count: int = 0
    gate_outcome: Optional[GateOutcome] = None

    @property
    def allowed(self) -> bool:
        return self.action in (ModerationAction.NONE, ModerationAction.EXEMPT)


class ModerationController:
    """Центральный контроллер модерации.

    Объединяет все компоненты модерации и предоставляет
    единую точку входа для обработки событий.
    """

    def __init__(
        self,
        platform: PlatformClient,
        oracle: Optional[SpamOracle] = None,
        flood_tracker: Optional[FloodTracker] = None,
        enforcer: Optional[Enforcer] = None,
        warn_system: Optional[WarnSystem] = None,
        gate: Optional[AdmissionGate] = None,
        oracle_timeout: float = config.SPAM_ORACLE_TIMEOUT_SEC,
        oracle_threshold: float = config.SPAM_ORACLE_THRESHOLD,
        oracle_labels: Optional[List[str]] = None
    ):
        self.platform = platform
        self.oracle = oracle
        self.flood = flood_tracker or InMemoryFloodTracker()
        self.enforcer = enforcer or Enforcer(platform)
        self.warns = warn_system or WarnSystem()
        self.gate = gate or AdmissionGate(self.enforcer)
        self.oracle_timeout = oracle_timeout
        self.oracle_threshold = oracle_threshold
        self.oracle_labels = oracle_labels if oracle_labels is not None else list(config.SPAM_ORACLE_LABELS)

        self._settings_cache: dict[int, GroupConfig] = {}
        self._global_config: Optional[GlobalConfig] = None
        self._config_locks = KeyedLocks()

    # ========================================================================
    # SETTINGS MANAGEMENT
    # ========================================================================

    async def get_settings(self, chat_id: int) -> GroupConfig:
        """Получить настройки чата (создаются с дефолтами при первом обращении)."""
        if chat_id not in self._settings_cache:
            self._settings_cache[chat_id] = await load_settings_async(chat_id)
        return self._settings_cache[chat_id]

    async def get_global_config(self) -> GlobalConfig:
        if self._global_config is None:
            self._global_config = await load_global_config_async()
        return self._global_config

    async def reload_global_config(self) -> GlobalConfig:
        """Перечитать глобальные списки (вызывается при старте)."""
        self._global_config = await load_global_config_async()
        return self._global_config

    async def _mutate_settings(
        self,
        chat_id: int,
        mutate: Callable[[GroupConfig], object]
    ) -> Tuple[GroupConfig, object]:
        """Изменить копию настроек под блокировкой чата и сохранить.

        Если mutate вернул False, изменений нет и сохранение пропускается.
        Исключение из mutate оставляет настройки нетронутыми.
        """
        async with self._config_locks.hold(chat_id):
            updated = copy.deepcopy(await self.get_settings(chat_id))
            result = mutate(updated)
            if result is not False:
                await save_settings_async(updated)
                self._settings_cache[chat_id] = updated
        return self._settings_cache[chat_id], result

    async def _mutate_global(self, mutate: Callable[[GlobalConfig], bool]) -> bool:
        async with self._config_locks.hold(GLOBAL_LOCK_KEY):
            updated = copy.deepcopy(await self.get_global_config())
            changed = mutate(updated)
            if changed:
                await save_global_config_async(updated)
                self._global_config = updated
        return changed

    # ========================================================================
    # MESSAGE PIPELINE
    # ========================================================================

    async def _is_exempt(self, message: IncomingMessage, settings: GroupConfig, global_config: GlobalConfig) -> bool:
        if message.user_id in global_config.whitelist or message.user_id in settings.whitelist:
            return True
        return await is_chat_admin(self.platform, message.chat_id, message.user_id)

    async def on_message(self, message: IncomingMessage) -> ModerationResult:
        """Проверить входящее сообщение и применить действия."""
        chat_id, user_id = message.chat_id, message.user_id
        settings = await self.get_settings(chat_id)
        global_config = await self.get_global_config()

        if await self._is_exempt(message, settings, global_config):
            return ModerationResult(action=ModerationAction.EXEMPT)

        if user_id in global_config.blacklist or user_id in settings.blacklist:
            violation = Violation(reason=ViolationReason.BLACKLISTED, severity=Severity.CRITICAL)
            await self.enforcer.delete(chat_id, user_id, message.message_id, violation.describe(), settings)
            await self.enforcer.ban(chat_id, user_id, violation.describe(), settings)
            return ModerationResult(action=ModerationAction.BAN, violation=violation)

        gate_outcome = await self.gate.handle_answer(message, settings)
        if gate_outcome != GateOutcome.NOT_CHALLENGED:
            return ModerationResult(action=ModerationAction.GATE, gate_outcome=gate_outcome)

        # Флуд видит каждое сообщение, дошедшее до правил
        flood_count = self.flood.record(chat_id, user_id, settings.flood_window_sec)

        violation = await self.evaluate(message, settings, flood_count)
        if violation is None:
            return ModerationResult(action=ModerationAction.NONE)

        if violation.reason == ViolationReason.FLOOD:
            self.flood.clear(chat_id, user_id)

        return await self._enforce(message, violation, settings)

    async def evaluate(
        self,
        message: IncomingMessage,
        settings: GroupConfig,
        flood_count: int = 0
    ) -> Optional[Violation]:
        """Прогнать правила 4-10 и вернуть первое нарушение."""
        violation = evaluate_username(message.handle, settings)
        if violation:
            return violation

        violation = await self._ask_oracle(message.text, settings)
        if violation:
            return violation

        for rule in TEXT_RULES:
            violation = rule(message.text, settings)
            if violation:
                return violation

        if is_flooding(flood_count, settings.flood_limit):
            return Violation(
                reason=ViolationReason.FLOOD,
                severity=Severity.MEDIUM,
                detail=f"{flood_count} сообщений за {settings.flood_window_sec} сек.",
            )
        return None

    async def _ask_oracle(self, text: str, settings: GroupConfig) -> Optional[Violation]:
        """Спросить внешний классификатор. Таймаут или ошибка - вердикта нет."""
        if self.oracle is None or not settings.spam_oracle_enabled or not text:
            return None

        try:
            verdict = await asyncio.wait_for(self.oracle.classify(text), timeout=self.oracle_timeout)
        except asyncio.TimeoutError:
            log.warning(f"Spam oracle timed out after {self.oracle_timeout}s")
            return None
        except Exception as exc:
            # Сторонние реализации классификатора могут поднимать что угодно
            log.warning(f"Spam oracle failed: {exc}")
            return None

        if verdict is None or not verdict.is_spam(self.oracle_threshold, self.oracle_labels):
            return None
        return Violation(
            reason=ViolationReason.AI_SPAM,
            severity=Severity.HIGH,
            detail=f"{verdict.label} {verdict.score:.2f}",
        )

    async def _enforce(
        self,
        message: IncomingMessage,
        violation: Violation,
        settings: GroupConfig
    ) -> ModerationResult:
        """Удалить сообщение, засчитать предупреждение и эскалировать."""
        chat_id, user_id = message.chat_id, message.user_id
        reason = violation.describe()

        await self.enforcer.delete(chat_id, user_id, message.message_id, reason, settings)

        warn = await self.warns.add_violation(chat_id, user_id, violation.reason.value, settings)

        mention = html.escape(message.mention)
        violation_text = get_violation_message(violation)

        if warn.escalation == WarnEscalation.BAN:
            await self.enforcer.ban(chat_id, user_id, f"{reason} ({warn.count} предупреждений)", settings)
            await self.enforcer.notify(
                chat_id,
                f"🚫 {mention} забанен. {violation_text}",
                auto_delete_sec=settings.notice_auto_delete_sec,
            )
            action = ModerationAction.BAN

        elif warn.escalation == WarnEscalation.MUTE:
            await self.enforcer.mute(chat_id, user_id, warn.mute_duration_min, reason, settings)
            await self.enforcer.notify(
                chat_id,
                f"🔇 {mention} замучен на {warn.mute_duration_min} мин. {violation_text}",
                auto_delete_sec=settings.notice_auto_delete_sec,
            )
            action = ModerationAction.MUTE

        else:
            await self.enforcer.record(chat_id, "warn", user_id, reason, settings)
            await self.enforcer.notify(
                chat_id,
                format_warning_notice(mention, violation_text, warn, settings.warn_threshold),
                auto_delete_sec=settings.notice_auto_delete_sec,
            )
            action = ModerationAction.WARN

        log.info(
            f"Violation in chat {pseudonymize_chat_id(chat_id)} by {pseudonymize_id(user_id)}: "
            f"{violation.reason.value} -> {action.value}"
        )
        return ModerationResult(action=action, violation=violation, warn_count=warn.count)

    # ========================================================================
    # USER JOIN HANDLING
    # ========================================================================

    async def on_user_join(self, member: NewMember) -> JoinOutcome:
        settings = await self.get_settings(member.chat_id)
        global_config = await self.get_global_config()
        return await self.gate.on_join(member, settings, global_config)

    # ========================================================================
    # ADMIN CONTROL SURFACE
    # ========================================================================

    async def _audit(self, chat_id: int, admin_id: int, target_user_id: int, action_type: str, reason: str) -> None:
        settings = await self.get_settings(chat_id)
        await self.enforcer.record(chat_id, action_type, target_user_id, reason, settings, admin_id=admin_id)

    async def update_settings(self, chat_id: int, admin_id: int, **changes) -> GroupConfig:
        """Изменить поля настроек чата с валидацией.

        Raises:
            NotAuthorizedError: admin_id не админ
            ValueError: неизвестное поле или невалидное значение
        """
        await require_chat_admin(self.platform, chat_id, admin_id)

        known = {f.name for f in fields(GroupConfig)} - {"chat_id"}
        unknown = set(changes) - known
        if unknown:
            raise ValueError(f"Неизвестные настройки: {', '.join(sorted(unknown))}")

        def apply(settings: GroupConfig) -> bool:
            for name, value in changes.items():
                setattr(settings, name, value)
            errors = settings.validate()
            if errors:
                raise ValueError(f"Ошибки валидации: {'; '.join(errors)}")
            return True

        settings, _ = await self._mutate_settings(chat_id, apply)
        await self._audit(
            chat_id, admin_id, admin_id, "settings",
            ", ".join(f"{name}={value}" for name, value in changes.items())
        )
        return settings

    async def set_challenge_enabled(self, chat_id: int, admin_id: int, enabled: bool) -> GroupConfig:
        return await self.update_settings(chat_id, admin_id, require_challenge_on_join=enabled)

    async def set_auto_ban(self, chat_id: int, admin_id: int, enabled: bool) -> GroupConfig:
        return await self.update_settings(chat_id, admin_id, auto_ban_on_violation=enabled)

    async def set_flood_limit(
        self,
        chat_id: int,
        admin_id: int,
        limit: int,
        window_sec: Optional[int] = None
    ) -> GroupConfig:
        changes = {"flood_limit": limit}
        if window_sec is not None:
            changes["flood_window_sec"] = window_sec
        return await self.update_settings(chat_id, admin_id, **changes)

    async def set_welcome_text(self, chat_id: int, admin_id: int, text: str) -> GroupConfig:
        return await self.update_settings(chat_id, admin_id, welcome_text=text.strip())

    async def add_banned_word(self, chat_id: int, admin_id: int, word: str) -> bool:
        await require_chat_admin(self.platform, chat_id, admin_id)
        _, added = await self._mutate_settings(chat_id, lambda settings: ContentFilter(settings).add_word(word))
        if added:
            await self._audit(chat_id, admin_id, admin_id, "settings", f"+слово {word.strip().lower()}")
        return added

    async def remove_banned_word(self, chat_id: int, admin_id: int, word: str) -> bool:
        await require_chat_admin(self.platform, chat_id, admin_id)
        _, removed = await self._mutate_settings(chat_id, lambda settings: ContentFilter(settings).remove_word(word))
        if removed:
            await self._audit(chat_id, admin_id, admin_id, "settings", f"-слово {word.strip().lower()}")
        return removed

    async def add_banned_script(self, chat_id: int, admin_id: int, script: str) -> bool:
        """Запретить письменность. ValueError для неизвестного имени."""
        await require_chat_admin(self.platform, chat_id, admin_id)
        canonical = normalize_script_name(script)
        if canonical is None:
            raise ValueError(f"Неизвестная письменность: {script}")

        def apply(settings: GroupConfig) -> bool:
            if canonical in settings.banned_scripts:
                return False
            settings.banned_scripts.append(canonical)
            return True

        _, added = await self._mutate_settings(chat_id, apply)
        if added:
            await self._audit(chat_id, admin_id, admin_id, "settings", f"+письменность {canonical}")
        return added

    async def remove_banned_script(self, chat_id: int, admin_id: int, script: str) -> bool:
        await require_chat_admin(self.platform, chat_id, admin_id)
        canonical = normalize_script_name(script)
        if canonical is None:
            raise ValueError(f"Неизвестная письменность: {script}")

        def apply(settings: GroupConfig) -> bool:
            if canonical not in settings.banned_scripts:
                return False
            settings.banned_scripts.remove(canonical)
            return True

        _, removed = await self._mutate_settings(chat_id, apply)
        if removed:
            await self._audit(chat_id, admin_id, admin_id, "settings", f"-письменность {canonical}")
        return removed

    async def _change_user_list(
        self,
        chat_id: int,
        admin_id: int,
        user_id: int,
        list_name: str,
        add: bool,
        global_scope: bool
    ) -> bool:
        """Добавить/удалить user_id в whitelist или blacklist.

        Глобальные списки меняют только админы из ADMIN_IDS.
        """
        if global_scope:
            require_static_admin(admin_id)
        else:
            await require_chat_admin(self.platform, chat_id, admin_id)

        def apply(target) -> bool:
            users: List[int] = getattr(target, list_name)
            if add == (user_id in users):
                return False
            if add:
                users.append(user_id)
            else:
                users.remove(user_id)
            return True

        if global_scope:
            changed = await self._mutate_global(apply)
        else:
            _, changed = await self._mutate_settings(chat_id, apply)

        if changed:
            scope = "global" if global_scope else "chat"
            await self._audit(chat_id, admin_id, user_id, "settings", f"{'+' if add else '-'}{list_name} ({scope})")
        return changed

    async def add_whitelist(self, chat_id: int, admin_id: int, user_id: int, global_scope: bool = False) -> bool:
        return await self._change_user_list(chat_id, admin_id, user_id, "whitelist", True, global_scope)

    async def remove_whitelist(self, chat_id: int, admin_id: int, user_id: int, global_scope: bool = False) -> bool:
        return await self._change_user_list(chat_id, admin_id, user_id, "whitelist", False, global_scope)

    async def add_blacklist(self, chat_id: int, admin_id: int, user_id: int, global_scope: bool = False) -> bool:
        return await self._change_user_list(chat_id, admin_id, user_id, "blacklist", True, global_scope)

    async def remove_blacklist(self, chat_id: int, admin_id: int, user_id: int, global_scope: bool = False) -> bool:
        return await self._change_user_list(chat_id, admin_id, user_id, "blacklist", False, global_scope)

    async def reset_warnings(self, chat_id: int, admin_id: int, user_id: int) -> int:
        """Сбросить предупреждения пользователя. Возвращает счётчик до сброса."""
        await require_chat_admin(self.platform, chat_id, admin_id)
        count = await self.warns.reset(chat_id, user_id)
        await self._audit(chat_id, admin_id, user_id, "clearwarns", f"Очищено {count} предупреждений")
        return count

    async def get_stats(self, chat_id: int, admin_id: int) -> StatsCounter:
        await require_chat_admin(self.platform, chat_id, admin_id)
        return await load_stats_async(chat_id)

    async def get_mod_log(
        self,
        chat_id: int,
        admin_id: int,
        limit: int = 20,
        user_id: Optional[int] = None
    ) -> List[ModAction]:
        await require_chat_admin(self.platform, chat_id, admin_id)
        return await load_mod_log_async(chat_id, limit, user_id)

    async def export_settings(self, chat_id: int, admin_id: int) -> str:
        await require_chat_admin(self.platform, chat_id, admin_id)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, export_settings, chat_id)

    async def import_settings(self, chat_id: int, admin_id: int, json_str: str) -> GroupConfig:
        """Заменить настройки чата импортированными (ValueError если невалидны)."""
        await require_chat_admin(self.platform, chat_id, admin_id)
        imported = parse_settings(chat_id, json_str)

        async with self._config_locks.hold(chat_id):
            await save_settings_async(imported)
            self._settings_cache[chat_id] = imported

        await self._audit(chat_id, admin_id, admin_id, "settings", "Импорт настроек")
        return imported

    async def close(self) -> None:
        await self.gate.close()
        await self.enforcer.close()
        if self.oracle is not None:
            await self.oracle.close()


# Глобальный экземпляр контроллера (создаётся при инициализации бота)
_controller: Optional[ModerationController] = None


def get_moderation_controller() -> ModerationController:
    """Получить глобальный экземпляр контроллера модерации."""
    if _controller is None:
        raise RuntimeError("ModerationController is not initialized")
    return _controller


def init_moderation_controller(platform: PlatformClient, oracle: Optional[SpamOracle] = None) -> ModerationController:
    """Инициализировать глобальный контроллер модерации.

    Вызывается при старте бота.
    """
    global _controller
    _controller = ModerationController(platform, oracle=oracle)
    log.info("ModerationController initialized")
    return _controller
