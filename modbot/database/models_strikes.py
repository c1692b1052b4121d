# Импорт функции для создания колонок таблицы
from sqlalchemy import Column, Integer, BigInteger, DateTime, JSON, Enum as SQLEnum, Index, UniqueConstraint
# Импорт базового класса для всех моделей
from modbot.database.models import Base, utcnow
# Импорт enum для типобезопасного определения констант
import enum


# ============================================================
# ENUM ТИПЫ ДЛЯ ЖУРНАЛА АУДИТА
# ============================================================

# Тип записи в журнале аудита
class AuditEventType(str, enum.Enum):
    # Каждое проанализированное сообщение (не меняет счётчик)
    SCANNED = "SCANNED"
    # Сообщение признано нарушением и удалено
    VIOLATION = "VIOLATION"
    # Автоматический страйк (пишется в одной транзакции с инкрементом)
    STRIKE = "STRIKE"
    # Выполненное наказание (alert/mute/kick/ban)
    PENALTY = "PENALTY"
    # Ручные изменения счётчика администратором
    MANUAL_STRIKE_ADD = "MANUAL-STRIKE-ADD"
    MANUAL_STRIKE_REMOVE = "MANUAL-STRIKE-REMOVE"
    MANUAL_STRIKE_SET = "MANUAL-STRIKE-SET"
    # Сброс счётчика по истечении срока давности
    STRIKE_EXPIRED = "STRIKE-EXPIRED"


# Типы, которые меняют счётчик страйков (пишутся только внутри транзакции леджера)
COUNT_CHANGING_EVENTS = frozenset({
    AuditEventType.STRIKE,
    AuditEventType.MANUAL_STRIKE_ADD,
    AuditEventType.MANUAL_STRIKE_REMOVE,
    AuditEventType.MANUAL_STRIKE_SET,
    AuditEventType.STRIKE_EXPIRED,
})


# ============================================================
# МОДЕЛЬ: СЧЁТЧИК СТРАЙКОВ
# ============================================================

# Одна строка на пару (chat_id, user_id); создаётся лениво при первом изменении
class UserStrike(Base):
    # Имя таблицы в базе данных
    __tablename__ = "user_strikes"

    # Уникальный идентификатор записи (первичный ключ)
    id = Column(Integer, primary_key=True, autoincrement=True)

    # ID чата (группы)
    chat_id = Column(BigInteger, nullable=False)

    # ID пользователя
    user_id = Column(BigInteger, nullable=False)

    # Текущее количество активных страйков (никогда не меньше 0)
    strike_count = Column(Integer, nullable=False, default=0)

    # Время последнего нарушения. Обновляется ТОЛЬКО автоматическим нарушением,
    # ручные изменения и прощение его не трогают
    last_strike_at = Column(DateTime, nullable=True)

    # Время последнего прощения за хорошее поведение
    # Ограничивает прощение одним страйком за интервал
    last_forgiven_at = Column(DateTime, nullable=True)

    # Дата создания и последнего обновления записи
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        # Уникальность пары (chat_id, user_id) - на неё опирается атомарный upsert
        UniqueConstraint("chat_id", "user_id", name="uq_user_strikes_chat_user"),
    )


# ============================================================
# МОДЕЛЬ: ЖУРНАЛ АУДИТА
# ============================================================

# Только добавление: записи никогда не изменяются и не удаляются ядром
class AuditLogEntry(Base):
    # Имя таблицы в базе данных
    __tablename__ = "audit_log"

    # Монотонный идентификатор записи
    id = Column(Integer, primary_key=True, autoincrement=True)

    # Время события (naive UTC)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    # ID чата и пользователя, к которым относится событие
    chat_id = Column(BigInteger, nullable=False)
    user_id = Column(BigInteger, nullable=False)

    # Тип события; в БД хранится значение enum ("MANUAL-STRIKE-ADD"), а не имя
    event_type = Column(
        SQLEnum(
            AuditEventType,
            name="audit_event_type_enum",
            values_callable=lambda members: [member.value for member in members],
        ),
        nullable=False,
    )

    # Структурированные данные: скоры, отрывок, кто выполнил действие и т.д.
    payload = Column(JSON, nullable=False, default=dict)

    __table_args__ = (
        # История пользователя в чате
        Index("ix_audit_log_chat_user", "chat_id", "user_id"),
        # Подсчёт событий за день
        Index("ix_audit_log_chat_type_created", "chat_id", "event_type", "created_at"),
    )
