# Инициализационный файл для пакета strikes services
# Счётчик страйков, журнал аудита и выбор наказания
from .ledger import (
    # Типы и ошибки
    StrikeSnapshot,
    LedgerTransactionError,
    # Системные исполнители
    AUTO_MODERATOR,
    GOOD_BEHAVIOR,
    # Операции со счётчиком
    record_violation,
    add_strikes,
    remove_strikes,
    set_strikes,
    reset_strikes,
    get_strikes,
    apply_expiration,
    apply_good_behavior_forgiveness,
)
from .audit_trail import (
    # Запись в журнал
    append_entry,
    append_scan,
    append_event,
    make_excerpt,
    # Отчёты
    get_history,
    get_recent_entries,
    count_today,
)
from .escalation import (
    PenaltyAction,
    PenaltyDecision,
    SEVERITY_TAGS,
    escalate,
)

# Определяем список экспортируемых имен
__all__ = [
    "StrikeSnapshot",
    "LedgerTransactionError",
    "AUTO_MODERATOR",
    "GOOD_BEHAVIOR",
    "record_violation",
    "add_strikes",
    "remove_strikes",
    "set_strikes",
    "reset_strikes",
    "get_strikes",
    "apply_expiration",
    "apply_good_behavior_forgiveness",
    "append_entry",
    "append_scan",
    "append_event",
    "make_excerpt",
    "get_history",
    "get_recent_entries",
    "count_today",
    "PenaltyAction",
    "PenaltyDecision",
    "SEVERITY_TAGS",
    "escalate",
]
