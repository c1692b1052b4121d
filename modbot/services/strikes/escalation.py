# modbot/services/strikes/escalation.py
"""
Выбор наказания по количеству страйков.

Чистая функция без состояния: таблица (действие, уровень) строится
заново из настроек группы при каждом вызове.

Алгоритм:
1. Берём пары [(BAN, ban_level), (KICK, kick_level), (MUTE, mute_level), (ALERT, alert_level)]
2. Отбрасываем выключенные (уровень 0)
3. Оставляем те, у которых уровень <= количества страйков
4. Выбираем пару с наибольшим уровнем; при равных уровнях - более строгое действие
"""

# Импортируем enum для типобезопасного определения действий
import enum
# Импортируем типы для аннотаций
from typing import Dict, List, NamedTuple, Tuple

# Импортируем снимок настроек группы
from modbot.services.group_settings_service import GroupSettings


# ============================================================
# ТИПЫ
# ============================================================

class PenaltyAction(str, enum.Enum):
    """Наказание. Порядок объявления = порядок строгости."""
    NONE = "none"
    ALERT = "alert"
    MUTE = "mute"
    KICK = "kick"
    BAN = "ban"

    @property
    def severity(self) -> int:
        # Индекс в порядке объявления: NONE=0 ... BAN=4
        return _SEVERITY_ORDER.index(self)

    def __lt__(self, other):
        if not isinstance(other, PenaltyAction):
            return NotImplemented
        return self.severity < other.severity

    def __le__(self, other):
        if not isinstance(other, PenaltyAction):
            return NotImplemented
        return self.severity <= other.severity

    def __gt__(self, other):
        if not isinstance(other, PenaltyAction):
            return NotImplemented
        return self.severity > other.severity

    def __ge__(self, other):
        if not isinstance(other, PenaltyAction):
            return NotImplemented
        return self.severity >= other.severity


_SEVERITY_ORDER: List[PenaltyAction] = list(PenaltyAction)


# Тег строгости для записи PENALTY в журнале
SEVERITY_TAGS: Dict[PenaltyAction, str] = {
    PenaltyAction.ALERT: "WARNING",
    PenaltyAction.MUTE: "LOW",
    PenaltyAction.KICK: "MEDIUM",
    PenaltyAction.BAN: "HIGH",
}


class PenaltyDecision(NamedTuple):
    """
    Результат эскалации.

    Attributes:
        action: Выбранное наказание (NONE - ничего не делать)
        strike_count: Количество страйков, по которому принималось решение
        level: Уровень сработавшего правила (0 для NONE)
    """
    action: PenaltyAction
    strike_count: int
    level: int = 0


# ============================================================
# ЭСКАЛАЦИЯ
# ============================================================

def strategy_table(settings: GroupSettings) -> List[Tuple[PenaltyAction, int]]:
    """Таблица (действие, уровень) от самого строгого к самому мягкому."""
    return [
        (PenaltyAction.BAN, settings.ban_level),
        (PenaltyAction.KICK, settings.kick_level),
        (PenaltyAction.MUTE, settings.mute_level),
        (PenaltyAction.ALERT, settings.alert_level),
    ]


def escalate(strike_count: int, settings: GroupSettings) -> PenaltyDecision:
    """
    Выбирает одно наказание для текущего количества страйков.

    Args:
        strike_count: Количество страйков после нарушения
        settings: Снимок настроек группы

    Returns:
        PenaltyDecision с самым строгим подходящим действием
    """
    candidates = [
        (action, level)
        for action, level in strategy_table(settings)
        if level > 0 and level <= strike_count
    ]
    if not candidates:
        return PenaltyDecision(PenaltyAction.NONE, strike_count, 0)

    # Максимум по (уровень, строгость): при равных уровнях побеждает более строгое
    action, level = max(candidates, key=lambda pair: (pair[1], pair[0].severity))
    return PenaltyDecision(action, strike_count, level)
