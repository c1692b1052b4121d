# ============================================================
# ORCHESTRATOR - МОДЕРАЦИЯ ОДНОГО СООБЩЕНИЯ
# ============================================================
# Координирует обработку входящего сообщения группы:
#
#   Received -> Exempted                                  (конец)
#   Received -> Classified -> BelowThreshold              (конец)
#   Received -> Classified -> Violating -> Recorded
#            -> Escalated -> Executed                     (конец)
#
# Шаги:
#  1. Сохраняем отправителя и группу (upsert)
#  2. Не группа или нет текста - пропускаем
#  3. Снимок настроек группы
#  4. Срок давности и прощение за хорошее поведение
#  5. Админы / модераторы / ключевые слова - исключение
#  6. Классификация
#  7. Запись SCANNED для каждого проанализированного сообщения
#  8. Нарушение: удаление, страйк (STRIKE), запись VIOLATION, эскалация
#  9. Наказание через Telegram и запись PENALTY (+ сброс после kick/ban)
# 10. Любая ошибка логируется, сессия откатывается, исключение не выходит наружу
# ============================================================

# Импортируем enum для состояний
import enum
# Импортируем логгер
import logging
# Импортируем dataclass для входного сообщения и результата
from dataclasses import dataclass
# Импортируем типы для аннотаций
from typing import Any, Callable, Optional

# Импортируем типы aiogram
from aiogram.types import Message
# Импортируем SQLAlchemy компоненты
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

# Импортируем модели и запросы
from modbot.database.models_strikes import AuditEventType
from modbot.database.queries import upsert_user, upsert_group
# Импортируем сервисы модерации
from modbot.services.admin_cache import AdminCache
from modbot.services.classifier.adapter import ClassificationAdapter, ClassificationResult
from modbot.services.group_settings_service import GroupSettings, get_group_settings
from modbot.services.moderation.alerts import render_alert, render_forgiveness_notice
from modbot.services.strikes import (
    AUTO_MODERATOR,
    SEVERITY_TAGS,
    PenaltyAction,
    PenaltyDecision,
    append_entry,
    append_event,
    append_scan,
    apply_expiration,
    apply_good_behavior_forgiveness,
    escalate,
    make_excerpt,
    record_violation,
    reset_strikes,
)
from modbot.services.transport import TelegramTransport
from modbot.services.whitelist_gate import is_exempt, find_whitelisted_keyword
from modbot.utils.html_utils import display_name

# Создаём логгер
logger = logging.getLogger(__name__)

# Типы чатов, которые модерируются
MODERATED_CHAT_TYPES = frozenset({"group", "supergroup", "channel"})


# ============================================================
# ТИПЫ
# ============================================================

class ModerationState(str, enum.Enum):
    """Конечное состояние обработки сообщения."""
    # Не группа или нет текста
    SKIPPED = "skipped"
    # Админ, модератор или ключевое слово белого списка
    EXEMPTED = "exempted"
    # Классифицировано, нарушения нет
    BELOW_THRESHOLD = "below_threshold"
    # Нарушение записано, наказание для этого количества страйков не настроено
    RECORDED = "recorded"
    # Наказание выполнено (или попытка выполнения записана в журнал)
    EXECUTED = "executed"
    # Ошибка во время обработки, сообщение не обработано
    FAILED = "failed"


@dataclass(frozen=True)
class InboundMessage:
    """Входящее сообщение в виде, независимом от aiogram."""
    chat_id: int
    chat_type: str
    message_id: int
    user_id: int
    text: Optional[str] = None
    chat_title: Optional[str] = None
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    is_bot: bool = False

    @property
    def user_name(self) -> str:
        return display_name(self.user_id, self.username, self.first_name, self.last_name)

    @classmethod
    def from_aiogram(cls, message: Message) -> Optional["InboundMessage"]:
        """None для сообщений без отправителя-пользователя (анонимные админы, посты каналов)."""
        user = message.from_user
        if user is None:
            return None
        return cls(
            chat_id=message.chat.id,
            chat_type=message.chat.type,
            message_id=message.message_id,
            user_id=user.id,
            text=message.text,
            chat_title=message.chat.title,
            username=user.username,
            first_name=user.first_name,
            last_name=user.last_name,
            is_bot=bool(user.is_bot),
        )


@dataclass(frozen=True)
class ModerationOutcome:
    """
    Результат обработки сообщения.

    Attributes:
        state: Конечное состояние
        classification: Результат классификации (если дошли до шага 6)
        violation_type: SPAM / PROFANITY или None
        strike_count: Количество страйков после нарушения
        decision: Решение эскалации
        penalty_success: Выполнил ли Telegram наказание
        forgiven: Был ли снят страйк за хорошее поведение
    """
    state: ModerationState
    classification: Optional[ClassificationResult] = None
    violation_type: Optional[str] = None
    strike_count: Optional[int] = None
    decision: Optional[PenaltyDecision] = None
    penalty_success: Optional[bool] = None
    forgiven: bool = False


# Уведомление о наказании в канал логов (см. modbot.utils.logger.log_penalty_executed)
PenaltyNotifier = Callable[..., Any]


# ============================================================
# ОРКЕСТРАТОР
# ============================================================

class ModerationOrchestrator:
    """
    Обработка одного сообщения от входа до наказания.

    Все зависимости передаются снаружи, общего состояния между
    сообщениями нет (кроме кэша админов с TTL).

    Пример использования:
        orchestrator = ModerationOrchestrator(transport, adapter, admin_cache)
        outcome = await orchestrator.process_message(session, InboundMessage.from_aiogram(message))
    """

    def __init__(
        self,
        transport: TelegramTransport,
        classification_adapter: ClassificationAdapter,
        admin_cache: AdminCache,
        log_notifier: Optional[PenaltyNotifier] = None,
    ):
        self._transport = transport
        self._adapter = classification_adapter
        self._admin_cache = admin_cache
        self._log_notifier = log_notifier

    async def process_message(self, session: AsyncSession, message: InboundMessage) -> ModerationOutcome:
        """
        Модерирует одно сообщение. Никогда не бросает исключений.
        """
        try:
            return await self._process(session, message)
        except Exception as e:
            logger.exception(
                f"[ORCHESTRATOR] ❌ Ошибка обработки сообщения {message.message_id} "
                f"chat={message.chat_id} user={message.user_id}: {e}"
            )
            try:
                await session.rollback()
            except SQLAlchemyError as rollback_error:
                logger.error(f"[ORCHESTRATOR] Не удалось откатить сессию: {rollback_error}")
            return ModerationOutcome(state=ModerationState.FAILED)

    async def _process(self, session: AsyncSession, message: InboundMessage) -> ModerationOutcome:
        chat_id = message.chat_id
        user_id = message.user_id

        # ─────────────────────────────────────────────────────────
        # ШАГ 1: Сохраняем отправителя (идемпотентно)
        # ─────────────────────────────────────────────────────────
        await upsert_user(
            session,
            user_id=user_id,
            username=message.username,
            first_name=message.first_name,
            last_name=message.last_name,
            is_bot=message.is_bot,
        )

        # ─────────────────────────────────────────────────────────
        # ШАГ 2: Только группы и только текст
        # ─────────────────────────────────────────────────────────
        if message.chat_type not in MODERATED_CHAT_TYPES or not message.text:
            return ModerationOutcome(state=ModerationState.SKIPPED)

        await upsert_group(session, chat_id, message.chat_title)

        # ─────────────────────────────────────────────────────────
        # ШАГ 3: Снимок настроек (не кэшируется)
        # ─────────────────────────────────────────────────────────
        settings = await get_group_settings(session, chat_id)

        # ─────────────────────────────────────────────────────────
        # ШАГ 4: Срок давности и прощение ДО оценки нового сообщения
        # ─────────────────────────────────────────────────────────
        await apply_expiration(session, chat_id, user_id, settings.strike_expiration_days)
        forgiven = await apply_good_behavior_forgiveness(
            session, chat_id, user_id, settings.good_behavior_days
        )
        if forgiven:
            await self._send_forgiveness_notice(message)

        # ─────────────────────────────────────────────────────────
        # ШАГ 5: Исключения из модерации
        # ─────────────────────────────────────────────────────────
        admin_ids = await self._admin_cache.get_admin_ids(chat_id, self._transport.get_chat_admins)
        if is_exempt(chat_id, user_id, message.text, settings, admin_ids):
            keyword = find_whitelisted_keyword(message.text, settings)
            logger.debug(
                f"[ORCHESTRATOR] Исключение user={user_id} chat={chat_id}"
                f"{f' (ключевое слово {keyword!r})' if keyword and settings.keyword_whitelist_bypass else ''}"
            )
            return ModerationOutcome(state=ModerationState.EXEMPTED, forgiven=forgiven)

        # ─────────────────────────────────────────────────────────
        # ШАГ 6: Классификация
        # ─────────────────────────────────────────────────────────
        check_profanity = settings.profanity_enabled and settings.profanity_threshold > 0
        # В режиме обхода слова белого списка уже отработали на шаге 5
        whitelist_context = [] if settings.keyword_whitelist_bypass else sorted(settings.whitelisted_keywords)
        classification = await self._adapter.classify(
            message.text,
            whitelist_context,
            spam_threshold=settings.spam_threshold,
            profanity_threshold=settings.profanity_threshold,
            check_profanity=check_profanity,
        )

        # ─────────────────────────────────────────────────────────
        # ШАГ 7: SCANNED для каждого проанализированного сообщения
        # ─────────────────────────────────────────────────────────
        excerpt = make_excerpt(message.text)
        await append_scan(session, chat_id, user_id, {
            "message_id": message.message_id,
            "excerpt": excerpt,
            "message_length": len(message.text),
            "spam_score": classification.spam_score,
            "profanity_score": classification.profanity_score,
            "profanity_type": classification.profanity_type.value,
            "degraded": classification.degraded,
        })

        # ─────────────────────────────────────────────────────────
        # ШАГ 8: Нарушение? SPAM важнее PROFANITY
        # ─────────────────────────────────────────────────────────
        if classification.is_spam:
            violation_type = "SPAM"
        elif classification.has_profanity:
            violation_type = "PROFANITY"
        else:
            return ModerationOutcome(
                state=ModerationState.BELOW_THRESHOLD,
                classification=classification,
                forgiven=forgiven,
            )

        # Ошибка удаления не останавливает страйк и наказание
        deleted = await self._transport.delete_message(chat_id, message.message_id)

        violation_payload = {
            "violation_type": violation_type,
            "message_id": message.message_id,
            "excerpt": excerpt,
            "classification_score": (
                classification.spam_score if violation_type == "SPAM" else classification.profanity_score
            ),
            "spam_score": classification.spam_score,
            "profanity_score": classification.profanity_score,
            "profanity_type": classification.profanity_type.value,
            "username": message.username,
            "first_name": message.first_name,
        }
        strike_count = await record_violation(session, chat_id, user_id, violation_payload)

        await append_event(session, chat_id, user_id, AuditEventType.VIOLATION, {
            **violation_payload,
            "deleted": deleted,
            "strike_count": strike_count,
        })

        decision = escalate(strike_count, settings)
        logger.info(
            f"[ORCHESTRATOR] {violation_type}: user={user_id} chat={chat_id} "
            f"strike #{strike_count} -> {decision.action.name}"
        )

        if decision.action == PenaltyAction.NONE:
            return ModerationOutcome(
                state=ModerationState.RECORDED,
                classification=classification,
                violation_type=violation_type,
                strike_count=strike_count,
                decision=decision,
                forgiven=forgiven,
            )

        # ─────────────────────────────────────────────────────────
        # ШАГ 9: Наказание и запись PENALTY
        # ─────────────────────────────────────────────────────────
        success = await self._execute(decision, message, settings, violation_type, excerpt)
        await self._record_penalty(session, message, decision, violation_type, success)
        self._notify_log_channel(message, decision, violation_type, excerpt, success)

        return ModerationOutcome(
            state=ModerationState.EXECUTED,
            classification=classification,
            violation_type=violation_type,
            strike_count=strike_count,
            decision=decision,
            penalty_success=success,
            forgiven=forgiven,
        )

    # ─────────────────────────────────────────────────────────
    # Вспомогательные методы
    # ─────────────────────────────────────────────────────────

    async def _execute(
        self,
        decision: PenaltyDecision,
        message: InboundMessage,
        settings: GroupSettings,
        violation_type: str,
        excerpt: str,
    ) -> bool:
        chat_id = message.chat_id
        user_id = message.user_id
        action = decision.action

        if action == PenaltyAction.ALERT:
            text = render_alert(
                settings, violation_type, user_id, message.user_name, decision.strike_count, excerpt
            )
            sent_id = await self._transport.send_message(chat_id, text)
            if sent_id is None:
                return False
            self._transport.schedule_deletion(chat_id, sent_id, settings.warning_message_delete_seconds)
            return True

        if action == PenaltyAction.MUTE:
            return await self._transport.mute_user(chat_id, user_id, settings.mute_duration_minutes)

        if action == PenaltyAction.KICK:
            return await self._transport.kick_user(chat_id, user_id)

        if action == PenaltyAction.BAN:
            return await self._transport.ban_user(chat_id, user_id)

        return False

    async def _record_penalty(
        self,
        session: AsyncSession,
        message: InboundMessage,
        decision: PenaltyDecision,
        violation_type: str,
        success: bool,
    ) -> None:
        """PENALTY и сброс после успешного kick/ban - одна транзакция."""
        chat_id = message.chat_id
        user_id = message.user_id
        reset = success and decision.action in (PenaltyAction.KICK, PenaltyAction.BAN)

        try:
            await append_entry(session, chat_id, user_id, AuditEventType.PENALTY, {
                "action": decision.action.name,
                "severity": SEVERITY_TAGS[decision.action],
                "strike_count": decision.strike_count,
                "level": decision.level,
                "violation_type": violation_type,
                "executed_by": AUTO_MODERATOR,
                "success": success,
                "strikes_reset": reset,
            })
            if reset:
                await reset_strikes(session, chat_id, user_id, commit=False)
            await session.commit()
        except SQLAlchemyError:
            await session.rollback()
            raise

        if reset:
            logger.info(f"[ORCHESTRATOR] Страйки сброшены после {decision.action.name}: user={user_id} chat={chat_id}")

    async def _send_forgiveness_notice(self, message: InboundMessage) -> None:
        text = render_forgiveness_notice(message.chat_title or str(message.chat_id))
        sent_id = await self._transport.send_message(message.user_id, text)
        if sent_id is None:
            logger.warning(
                f"[ORCHESTRATOR] ⚠️ Не удалось отправить уведомление о прощении user={message.user_id}"
            )

    def _notify_log_channel(
        self,
        message: InboundMessage,
        decision: PenaltyDecision,
        violation_type: str,
        excerpt: str,
        success: bool,
    ) -> None:
        if self._log_notifier is None:
            return
        self._log_notifier(
            chat_id=message.chat_id,
            chat_title=message.chat_title,
            user_id=message.user_id,
            user_name=message.user_name,
            action=decision.action.name,
            severity=SEVERITY_TAGS[decision.action],
            strike_count=decision.strike_count,
            violation_type=violation_type,
            excerpt=excerpt,
            success=success,
        )
