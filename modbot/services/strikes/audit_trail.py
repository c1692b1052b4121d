"""
Журнал аудита модерации (append-only).

Этот модуль содержит:
- Запись событий внутри чужой транзакции (append_entry) - для событий,
  которые меняют счётчик страйков и обязаны коммититься вместе с ним
- Самостоятельную запись событий сканирования (append_scan)
- Самостоятельную запись событий, не меняющих счётчик (append_event)
- Запросы только для чтения для отчётов (история, счётчик за день)

Записи журнала никогда не изменяются и не удаляются.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from modbot.database.models import utcnow
from modbot.database.models_strikes import AuditLogEntry, AuditEventType, COUNT_CHANGING_EVENTS

logger = logging.getLogger(__name__)

# Максимальная длина отрывка сообщения в журнале
EXCERPT_LIMIT = 150


def make_excerpt(text: Optional[str], limit: int = EXCERPT_LIMIT) -> str:
    """Обрезает текст сообщения до limit символов для журнала."""
    if not text:
        return ""
    return text[:limit]


async def append_entry(
    session: AsyncSession,
    chat_id: int,
    user_id: int,
    event_type: AuditEventType,
    payload: Dict[str, Any],
    now: Optional[datetime] = None,
) -> AuditLogEntry:
    """
    Добавляет запись в журнал в рамках ТЕКУЩЕЙ транзакции сессии.

    Коммит не выполняется: вызывающий код (леджер или оркестратор)
    коммитит запись вместе с изменением счётчика или откатывает всё вместе.

    Args:
        session: Сессия БД с открытой транзакцией
        chat_id: ID чата
        user_id: ID пользователя
        event_type: Тип события
        payload: Структурированные данные события
        now: Время события (по умолчанию текущее UTC)

    Returns:
        Созданная (ещё не закоммиченная) запись
    """
    entry = AuditLogEntry(
        created_at=now or utcnow(),
        chat_id=chat_id,
        user_id=user_id,
        event_type=event_type,
        payload=dict(payload),
    )
    session.add(entry)
    # flush чтобы ошибка записи проявилась внутри транзакции, до коммита
    await session.flush()
    return entry


async def append_event(
    session: AsyncSession,
    chat_id: int,
    user_id: int,
    event_type: AuditEventType,
    payload: Dict[str, Any],
) -> AuditLogEntry:
    """
    Записывает событие, которое НЕ меняет счётчик страйков, и коммитит его.

    Raises:
        ValueError: если тип события меняет счётчик (такие пишутся только леджером)
        SQLAlchemyError: при ошибке БД (после отката)
    """
    if event_type in COUNT_CHANGING_EVENTS:
        raise ValueError(f"{event_type.value} must be written inside a ledger transaction")

    try:
        entry = await append_entry(session, chat_id, user_id, event_type, payload)
        await session.commit()
        return entry
    except SQLAlchemyError:
        await session.rollback()
        raise


async def append_scan(
    session: AsyncSession,
    chat_id: int,
    user_id: int,
    payload: Dict[str, Any],
) -> Optional[AuditLogEntry]:
    """
    Записывает событие SCANNED для каждого проанализированного сообщения.

    Ошибка записи логируется и не прерывает модерацию сообщения.
    """
    try:
        entry = await append_entry(session, chat_id, user_id, AuditEventType.SCANNED, payload)
        await session.commit()
        return entry
    except SQLAlchemyError as e:
        await session.rollback()
        logger.warning(f"[AUDIT] Не удалось записать SCANNED: chat={chat_id}, user={user_id}, error={e}")
        return None


# ============================================================
# ЗАПРОСЫ ДЛЯ ОТЧЁТОВ (только чтение)
# ============================================================

async def get_history(
    session: AsyncSession,
    chat_id: int,
    user_id: int,
    limit: int = 10,
    include_scans: bool = False,
) -> List[AuditLogEntry]:
    """История событий пользователя в чате, сначала новые."""
    stmt = select(AuditLogEntry).where(
        AuditLogEntry.chat_id == chat_id,
        AuditLogEntry.user_id == user_id,
    )
    if not include_scans:
        stmt = stmt.where(AuditLogEntry.event_type != AuditEventType.SCANNED)
    stmt = stmt.order_by(AuditLogEntry.id.desc()).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_recent_entries(
    session: AsyncSession,
    chat_id: int,
    limit: int = 15,
) -> List[AuditLogEntry]:
    """Последние события модерации в чате (без SCANNED)."""
    stmt = (
        select(AuditLogEntry)
        .where(
            AuditLogEntry.chat_id == chat_id,
            AuditLogEntry.event_type != AuditEventType.SCANNED,
        )
        .order_by(AuditLogEntry.id.desc())
        .limit(limit)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def count_today(
    session: AsyncSession,
    chat_id: int,
    event_type: Optional[AuditEventType] = AuditEventType.VIOLATION,
    now: Optional[datetime] = None,
) -> int:
    """
    Количество событий в чате за текущие сутки (UTC).

    По умолчанию считаются VIOLATION - то есть удалённые сообщения.
    event_type=None считает все события.
    """
    now = now or utcnow()
    day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    day_end = day_start + timedelta(days=1)

    stmt = select(func.count(AuditLogEntry.id)).where(
        AuditLogEntry.chat_id == chat_id,
        AuditLogEntry.created_at >= day_start,
        AuditLogEntry.created_at < day_end,
    )
    if event_type is not None:
        stmt = stmt.where(AuditLogEntry.event_type == event_type)

    result = await session.execute(stmt)
    return int(result.scalar() or 0)
