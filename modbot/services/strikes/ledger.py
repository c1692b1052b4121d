# modbot/services/strikes/ledger.py
"""
Счётчик страйков пользователя в чате.

Единственный источник истины по количеству страйков: никакой компонент
не держит копию счётчика в памяти между сообщениями.

Правила:
- счётчик никогда не бывает меньше 0
- last_strike_at меняет только автоматическое нарушение (record_violation)
- каждое изменение счётчика пишет ровно одну запись в журнал аудита
  в ТОЙ ЖЕ транзакции (или обе записи, или ни одной)
- reset_strikes запись в журнал не пишет: её документирует запись PENALTY

Конкурентность: инкремент - один INSERT ... ON CONFLICT DO UPDATE
SET strike_count = strike_count + 1, сериализацию по ключу (chat_id, user_id)
обеспечивает БД. Ручные изменения берут строку под блокировку (FOR UPDATE
в PostgreSQL, в SQLite запись и так сериализована).
"""

# Импортируем логгер для записи событий
import logging
# Импортируем dataclass для результата чтения
from dataclasses import dataclass
# Импортируем datetime для работы со временем
from datetime import datetime, timedelta
# Импортируем типы для аннотаций
from typing import Any, Callable, Dict, Optional

# Импортируем SQLAlchemy компоненты
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

# Импортируем модели
from modbot.database.models import utcnow
from modbot.database.models_strikes import UserStrike, AuditEventType
from modbot.database.queries import dialect_insert
# Запись в журнал внутри транзакции леджера
from modbot.services.strikes.audit_trail import append_entry


# Создаём логгер для этого модуля
logger = logging.getLogger(__name__)


# ============================================================
# КОНСТАНТЫ И ТИПЫ
# ============================================================

# Системные исполнители для поля actor в журнале
AUTO_MODERATOR = "AUTO_MODERATOR"
GOOD_BEHAVIOR = "GOOD_BEHAVIOR"
STRIKE_EXPIRATION = "STRIKE_EXPIRATION"


class LedgerTransactionError(Exception):
    """
    Ошибка транзакции счётчика страйков.

    Выбрасывается после отката: ни счётчик, ни журнал не изменены.
    """
    pass


@dataclass(frozen=True)
class StrikeSnapshot:
    """Текущее состояние счётчика: количество и время последнего нарушения."""
    count: int
    last_strike_at: Optional[datetime]


# ============================================================
# ВНУТРЕННИЕ ФУНКЦИИ
# ============================================================

def _row_filter(chat_id: int, user_id: int):
    return (UserStrike.chat_id == chat_id, UserStrike.user_id == user_id)


async def _select_row(
    session: AsyncSession,
    chat_id: int,
    user_id: int,
    for_update: bool = False,
) -> Optional[UserStrike]:
    stmt = select(UserStrike).where(*_row_filter(chat_id, user_id))
    if for_update:
        stmt = stmt.with_for_update()
    # populate_existing: счётчик мог измениться UPDATE-запросом в обход ORM
    stmt = stmt.execution_options(populate_existing=True)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def _ensure_row(session: AsyncSession, chat_id: int, user_id: int, now: datetime) -> None:
    # Ленивое создание строки с нулевым счётчиком
    stmt = dialect_insert(session, UserStrike).values(
        chat_id=chat_id,
        user_id=user_id,
        strike_count=0,
        created_at=now,
        updated_at=now,
    ).on_conflict_do_nothing(index_elements=[UserStrike.chat_id, UserStrike.user_id])
    await session.execute(stmt)


async def _adjust(
    session: AsyncSession,
    chat_id: int,
    user_id: int,
    event_type: AuditEventType,
    compute: Callable[[int], int],
    payload: Dict[str, Any],
    now: datetime,
    create: bool = True,
    precondition: Optional[Callable[[UserStrike], bool]] = None,
    forgiven: bool = False,
) -> Optional[int]:
    """
    Общая транзакция изменения счётчика: блокировка строки, новое значение,
    запись в журнал, коммит.

    Returns:
        Новое значение счётчика или None, если precondition не выполнено
    """
    try:
        if create:
            await _ensure_row(session, chat_id, user_id, now)
        row = await _select_row(session, chat_id, user_id, for_update=True)

        if row is None or (precondition is not None and not precondition(row)):
            # Ничего не меняем, коммит снимает блокировку строки
            await session.commit()
            return None

        previous = row.strike_count or 0
        new_count = max(0, compute(previous))

        row.strike_count = new_count
        row.updated_at = now
        if forgiven:
            row.last_forgiven_at = now

        entry_payload = dict(payload)
        entry_payload.update({"previous_count": previous, "new_count": new_count})
        await append_entry(session, chat_id, user_id, event_type, entry_payload, now=now)

        await session.commit()
        return new_count

    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(
            f"[LEDGER] ❌ Откат {event_type.value}: chat={chat_id}, user={user_id}, error={e}"
        )
        raise LedgerTransactionError(
            f"{event_type.value} failed for chat={chat_id} user={user_id}"
        ) from e


def _check_amount(amount: int, name: str = "amount") -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
        raise ValueError(f"{name} must be a non-negative integer, got {amount!r}")


# ============================================================
# АВТОМАТИЧЕСКОЕ НАРУШЕНИЕ
# ============================================================

async def record_violation(
    session: AsyncSession,
    chat_id: int,
    user_id: int,
    payload: Dict[str, Any],
    now: Optional[datetime] = None,
) -> int:
    """
    Атомарно увеличивает счётчик на 1 и пишет запись STRIKE.

    Args:
        session: Асинхронная сессия SQLAlchemy
        chat_id: ID чата
        user_id: ID пользователя
        payload: Данные нарушения (скоры, тип, отрывок сообщения)
        now: Время нарушения (по умолчанию текущее UTC)

    Returns:
        Количество страйков после увеличения

    Raises:
        LedgerTransactionError: транзакция откатилась целиком
    """
    now = now or utcnow()

    try:
        # ─────────────────────────────────────────────────────────
        # ШАГ 1: Инкремент одним запросом (строка создаётся при первом нарушении)
        # ─────────────────────────────────────────────────────────
        stmt = dialect_insert(session, UserStrike).values(
            chat_id=chat_id,
            user_id=user_id,
            strike_count=1,
            last_strike_at=now,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[UserStrike.chat_id, UserStrike.user_id],
            set_={
                "strike_count": UserStrike.strike_count + 1,
                "last_strike_at": now,
                "updated_at": now,
            },
        )
        await session.execute(stmt)

        # ─────────────────────────────────────────────────────────
        # ШАГ 2: Читаем результат в той же транзакции
        # ─────────────────────────────────────────────────────────
        row = await _select_row(session, chat_id, user_id)
        new_count = row.strike_count

        # ─────────────────────────────────────────────────────────
        # ШАГ 3: Запись STRIKE в журнал и общий коммит
        # ─────────────────────────────────────────────────────────
        entry_payload = dict(payload)
        entry_payload.update({"strike_count": new_count, "executed_by": AUTO_MODERATOR})
        await append_entry(session, chat_id, user_id, AuditEventType.STRIKE, entry_payload, now=now)

        await session.commit()

    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"[LEDGER] ❌ Откат STRIKE: chat={chat_id}, user={user_id}, error={e}")
        raise LedgerTransactionError(f"STRIKE failed for chat={chat_id} user={user_id}") from e

    logger.info(f"[LEDGER] Страйк: chat={chat_id}, user={user_id}, count={new_count}")
    return new_count


# ============================================================
# РУЧНЫЕ ИЗМЕНЕНИЯ (администратор)
# ============================================================

async def add_strikes(
    session: AsyncSession,
    chat_id: int,
    user_id: int,
    amount: int,
    actor: Any,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> int:
    """Добавляет amount страйков. last_strike_at не меняется."""
    _check_amount(amount)
    new_count = await _adjust(
        session, chat_id, user_id,
        AuditEventType.MANUAL_STRIKE_ADD,
        lambda previous: previous + amount,
        {"amount": amount, "actor": actor, "reason": reason},
        now or utcnow(),
    )
    logger.info(f"[LEDGER] +{amount}: chat={chat_id}, user={user_id}, count={new_count}, actor={actor}")
    return new_count


async def remove_strikes(
    session: AsyncSession,
    chat_id: int,
    user_id: int,
    amount: int,
    actor: Any,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> int:
    """Убирает amount страйков, счётчик не опускается ниже 0."""
    _check_amount(amount)
    new_count = await _adjust(
        session, chat_id, user_id,
        AuditEventType.MANUAL_STRIKE_REMOVE,
        lambda previous: previous - amount,
        {"amount": amount, "actor": actor, "reason": reason},
        now or utcnow(),
    )
    logger.info(f"[LEDGER] -{amount}: chat={chat_id}, user={user_id}, count={new_count}, actor={actor}")
    return new_count


async def set_strikes(
    session: AsyncSession,
    chat_id: int,
    user_id: int,
    count: int,
    actor: Any,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> int:
    """Устанавливает счётчик в count."""
    _check_amount(count, "count")
    new_count = await _adjust(
        session, chat_id, user_id,
        AuditEventType.MANUAL_STRIKE_SET,
        lambda previous: count,
        {"amount": count, "actor": actor, "reason": reason},
        now or utcnow(),
    )
    logger.info(f"[LEDGER] ={count}: chat={chat_id}, user={user_id}, actor={actor}")
    return new_count


async def reset_strikes(
    session: AsyncSession,
    chat_id: int,
    user_id: int,
    commit: bool = True,
) -> None:
    """
    Обнуляет счётчик (после kick/ban). Записи в журнал не пишет.

    Повторный вызов ничего не меняет. С commit=False выполняется
    в транзакции вызывающего кода.
    """
    stmt = (
        update(UserStrike)
        .where(*_row_filter(chat_id, user_id))
        .values(strike_count=0, updated_at=utcnow())
    )
    if not commit:
        await session.execute(stmt)
        return

    try:
        await session.execute(stmt)
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        raise LedgerTransactionError(f"reset failed for chat={chat_id} user={user_id}") from e
    logger.info(f"[LEDGER] Сброс: chat={chat_id}, user={user_id}")


# ============================================================
# ЧТЕНИЕ, СРОК ДАВНОСТИ И ПРОЩЕНИЕ
# ============================================================

async def get_strikes(
    session: AsyncSession,
    chat_id: int,
    user_id: int,
    expiration_days: Optional[int] = None,
    now: Optional[datetime] = None,
) -> StrikeSnapshot:
    """
    Текущее количество страйков и время последнего нарушения.

    Если передан expiration_days, сначала применяется срок давности.
    Нет строки - (0, None).
    """
    if expiration_days:
        await apply_expiration(session, chat_id, user_id, expiration_days, now=now)

    row = await _select_row(session, chat_id, user_id)
    if row is None:
        return StrikeSnapshot(count=0, last_strike_at=None)
    return StrikeSnapshot(count=row.strike_count or 0, last_strike_at=row.last_strike_at)


async def apply_expiration(
    session: AsyncSession,
    chat_id: int,
    user_id: int,
    expiration_days: int,
    now: Optional[datetime] = None,
) -> bool:
    """
    Обнуляет страйки, если последнее нарушение старше expiration_days.

    Вызывается лениво при чтении, фоновой задачи нет.
    Пишет запись STRIKE-EXPIRED в той же транзакции.

    Returns:
        True если страйки сгорели
    """
    if not expiration_days or expiration_days <= 0:
        return False
    now = now or utcnow()
    window = timedelta(days=expiration_days)

    def expired(row: UserStrike) -> bool:
        return (
            (row.strike_count or 0) > 0
            and row.last_strike_at is not None
            and now - row.last_strike_at > window
        )

    new_count = await _adjust(
        session, chat_id, user_id,
        AuditEventType.STRIKE_EXPIRED,
        lambda previous: 0,
        {"actor": STRIKE_EXPIRATION, "expiration_days": expiration_days},
        now,
        create=False,
        precondition=expired,
    )
    if new_count is None:
        return False

    logger.info(
        f"[LEDGER] Страйки сгорели: chat={chat_id}, user={user_id}, срок {expiration_days} дн."
    )
    return True


async def apply_good_behavior_forgiveness(
    session: AsyncSession,
    chat_id: int,
    user_id: int,
    good_behavior_days: int,
    now: Optional[datetime] = None,
) -> bool:
    """
    Прощение за хорошее поведение: минус один страйк.

    Условия: good_behavior_days > 0, есть страйки, есть last_strike_at,
    и с момента max(last_strike_at, last_forgiven_at) прошло больше
    good_behavior_days. Не больше одного страйка за вызов и за интервал:
    last_forgiven_at ставится в той же транзакции.

    Returns:
        True если страйк был снят
    """
    if not good_behavior_days or good_behavior_days <= 0:
        return False
    now = now or utcnow()
    window = timedelta(days=good_behavior_days)

    def eligible(row: UserStrike) -> bool:
        if (row.strike_count or 0) <= 0 or row.last_strike_at is None:
            return False
        reference = row.last_strike_at
        if row.last_forgiven_at is not None and row.last_forgiven_at > reference:
            reference = row.last_forgiven_at
        return now - reference > window

    # Та же операция, что remove_strikes(..., 1, actor=GOOD_BEHAVIOR)
    new_count = await _adjust(
        session, chat_id, user_id,
        AuditEventType.MANUAL_STRIKE_REMOVE,
        lambda previous: previous - 1,
        {"amount": 1, "actor": GOOD_BEHAVIOR, "reason": f"{good_behavior_days} days without violations"},
        now,
        create=False,
        precondition=eligible,
        forgiven=True,
    )
    if new_count is None:
        return False

    logger.info(f"[LEDGER] ✅ Прощение: chat={chat_id}, user={user_id}, count={new_count}")
    return True
