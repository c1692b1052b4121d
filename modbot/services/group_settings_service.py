# modbot/services/group_settings_service.py
"""
Сервис настроек модерации группы.

Настройки хранятся построчно в таблице chat_settings (chat_id, key, value JSON),
ключевые слова белого списка - в whitelist_keywords.

Для каждого сообщения собирается неизменяемый снимок GroupSettings:
- отсутствующий ключ = значение по умолчанию
- некорректное значение (не число, порог вне 0..1, отрицательный уровень)
  логируется и заменяется значением по умолчанию, сообщение не падает

Снимок не кэшируется между сообщениями.
"""

# Импортируем логгер для записи событий
import logging
# Импортируем json для хранения значений
import json
# Импортируем dataclass для снимка настроек
from dataclasses import dataclass, field, replace
# Импортируем типы для аннотаций
from typing import Any, Callable, Dict, FrozenSet, List, Optional

# Импортируем AsyncSession для асинхронной работы с БД
from sqlalchemy.ext.asyncio import AsyncSession
# Импортируем select/delete для построения запросов
from sqlalchemy import select, delete
from sqlalchemy.exc import SQLAlchemyError

# Импортируем модели настроек
from modbot.database.models import ChatSetting, WhitelistKeyword, utcnow
from modbot.database.queries import dialect_insert


# Создаём логгер для этого модуля
logger = logging.getLogger(__name__)


# ============================================================
# СНИМОК НАСТРОЕК
# ============================================================

@dataclass(frozen=True)
class GroupSettings:
    """
    Неизменяемый снимок настроек модерации одной группы.

    Уровни (alert/mute/kick/ban) - количество страйков, с которого
    срабатывает действие. 0 = действие выключено.
    """
    alert_level: int = 1
    mute_level: int = 2
    kick_level: int = 3
    ban_level: int = 0
    spam_threshold: float = 0.85
    profanity_enabled: bool = True
    profanity_threshold: float = 0.7
    mute_duration_minutes: int = 60
    warning_message: str = "⚠️ {user}, please avoid posting promotional/banned content."
    profanity_warning_message: str = "⚠️ {user}, please keep your language appropriate and respectful."
    # 0 = не удалять предупреждение
    warning_message_delete_seconds: int = 15
    moderator_ids: FrozenSet[int] = field(default_factory=frozenset)
    whitelisted_keywords: FrozenSet[str] = field(default_factory=frozenset)
    keyword_whitelist_bypass: bool = True
    # 0 = страйки не сгорают
    strike_expiration_days: int = 30
    # 0 = прощение выключено
    good_behavior_days: int = 7


# Значения по умолчанию
DEFAULT_SETTINGS = GroupSettings()


# ============================================================
# ПРИВЕДЕНИЕ ТИПОВ
# ============================================================

def _to_int(value: Any) -> int:
    # bool - подкласс int, но True как уровень - это ошибка
    if isinstance(value, bool):
        raise ValueError(f"ожидалось целое число, получено {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        return int(value.strip())
    raise ValueError(f"ожидалось целое число, получено {value!r}")


def _non_negative_int(value: Any) -> int:
    result = _to_int(value)
    if result < 0:
        raise ValueError(f"значение не может быть отрицательным: {result}")
    return result


def _positive_int(value: Any) -> int:
    result = _to_int(value)
    if result <= 0:
        raise ValueError(f"значение должно быть больше 0: {result}")
    return result


def _ratio(value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError(f"ожидалось число 0..1, получено {value!r}")
    if isinstance(value, (int, float)):
        result = float(value)
    elif isinstance(value, str):
        result = float(value.strip().replace(",", "."))
    else:
        raise ValueError(f"ожидалось число 0..1, получено {value!r}")
    # NaN не проходит ни одно сравнение
    if not 0.0 <= result <= 1.0:
        raise ValueError(f"порог должен быть в диапазоне 0..1: {result}")
    return result


def _spam_ratio(value: Any) -> float:
    result = _ratio(value)
    # При пороге 0 спамом считалось бы любое сообщение
    if result == 0.0:
        raise ValueError("порог спама должен быть больше 0")
    return result


_TRUE_STRINGS = {"true", "on", "yes", "1", "вкл"}
_FALSE_STRINGS = {"false", "off", "no", "0", "выкл"}


def _flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise ValueError(f"ожидалось true/false, получено {value!r}")


def _template(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError("шаблон сообщения не может быть пустым")
    return value


def _id_set(value: Any) -> FrozenSet[int]:
    # Из команды приходит строка "1, 2 3", из БД - JSON список
    if isinstance(value, str):
        parts = value.replace(",", " ").split()
    elif isinstance(value, (list, tuple, set, frozenset)):
        parts = list(value)
    else:
        raise ValueError(f"ожидался список id, получено {value!r}")
    return frozenset(_to_int(part) for part in parts)


# Ключ -> функция приведения. whitelisted_keywords хранится отдельной таблицей
SETTING_COERCERS: Dict[str, Callable[[Any], Any]] = {
    "alert_level": _non_negative_int,
    "mute_level": _non_negative_int,
    "kick_level": _non_negative_int,
    "ban_level": _non_negative_int,
    "spam_threshold": _spam_ratio,
    "profanity_enabled": _flag,
    "profanity_threshold": _ratio,
    "mute_duration_minutes": _positive_int,
    "warning_message": _template,
    "profanity_warning_message": _template,
    "warning_message_delete_seconds": _non_negative_int,
    "moderator_ids": _id_set,
    "keyword_whitelist_bypass": _flag,
    "strike_expiration_days": _non_negative_int,
    "good_behavior_days": _non_negative_int,
}


def coerce_setting(key: str, value: Any) -> Any:
    """
    Проверяет ключ и приводит значение к типу настройки.

    Raises:
        ValueError: неизвестный ключ или некорректное значение
    """
    coercer = SETTING_COERCERS.get(key)
    if coercer is None:
        raise ValueError(f"Неизвестная настройка: {key}")
    try:
        return coercer(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Некорректное значение для {key}: {e}") from e


def _to_json(value: Any) -> str:
    if isinstance(value, frozenset):
        value = sorted(value)
    return json.dumps(value, ensure_ascii=False)


# ============================================================
# ЧТЕНИЕ НАСТРОЕК
# ============================================================

async def get_group_settings(session: AsyncSession, chat_id: int) -> GroupSettings:
    """
    Собирает снимок настроек группы.

    Никогда не падает на плохих значениях: каждое некорректное
    значение заменяется значением по умолчанию с предупреждением.

    Args:
        session: Асинхронная сессия SQLAlchemy
        chat_id: ID группы

    Returns:
        GroupSettings: Неизменяемый снимок
    """
    result = await session.execute(
        select(ChatSetting.key, ChatSetting.value).where(ChatSetting.chat_id == chat_id)
    )

    overrides: Dict[str, Any] = {}
    for key, raw_value in result.all():
        if key not in SETTING_COERCERS:
            logger.debug(f"[SETTINGS] chat={chat_id}: неизвестный ключ {key}, пропускаем")
            continue
        try:
            overrides[key] = coerce_setting(key, json.loads(raw_value))
        except (ValueError, TypeError) as e:
            # json.JSONDecodeError - подкласс ValueError
            logger.warning(
                f"[SETTINGS] ⚠️ chat={chat_id}: некорректное значение {key}={raw_value!r} ({e}), "
                f"используем значение по умолчанию {getattr(DEFAULT_SETTINGS, key)!r}"
            )

    keywords = await list_whitelist_keywords(session, chat_id)
    overrides["whitelisted_keywords"] = frozenset(keywords)

    return replace(DEFAULT_SETTINGS, **overrides)


# ============================================================
# ИЗМЕНЕНИЕ НАСТРОЕК
# ============================================================

async def update_setting(session: AsyncSession, chat_id: int, key: str, value: Any) -> Any:
    """
    Сохраняет одну настройку группы.

    Args:
        session: Асинхронная сессия SQLAlchemy
        chat_id: ID группы
        key: Имя настройки (поле GroupSettings)
        value: Новое значение (строка из команды или готовое значение)

    Returns:
        Приведённое значение, которое было сохранено

    Raises:
        ValueError: неизвестный ключ или некорректное значение
    """
    coerced = coerce_setting(key, value)

    now = utcnow()
    stmt = dialect_insert(session, ChatSetting).values(
        chat_id=chat_id,
        key=key,
        value=_to_json(coerced),
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[ChatSetting.chat_id, ChatSetting.key],
        set_={"value": _to_json(coerced), "updated_at": now},
    )

    try:
        await session.execute(stmt)
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        logger.exception(f"[SETTINGS] ❌ Не удалось сохранить {key} для chat={chat_id}")
        raise

    logger.info(f"[SETTINGS] chat={chat_id}: {key} = {coerced!r}")
    return coerced


# ============================================================
# БЕЛЫЙ СПИСОК КЛЮЧЕВЫХ СЛОВ
# ============================================================

def _normalize_keyword(keyword: str) -> str:
    normalized = (keyword or "").strip().lower()
    if not normalized:
        raise ValueError("Ключевое слово не может быть пустым")
    return normalized


async def add_whitelist_keyword(
    session: AsyncSession,
    chat_id: int,
    keyword: str,
    added_by: Optional[int] = None,
) -> bool:
    """
    Добавляет ключевое слово в белый список (без учёта регистра).

    Returns:
        True если слово добавлено, False если уже было в списке
    """
    normalized = _normalize_keyword(keyword)
    stmt = dialect_insert(session, WhitelistKeyword).values(
        chat_id=chat_id,
        keyword=normalized,
        added_by=added_by,
        added_at=utcnow(),
    ).on_conflict_do_nothing(
        index_elements=[WhitelistKeyword.chat_id, WhitelistKeyword.keyword],
    )
    result = await session.execute(stmt)
    await session.commit()

    added = result.rowcount > 0
    if added:
        logger.info(f"[SETTINGS] chat={chat_id}: добавлено ключевое слово '{normalized}'")
    return added


async def remove_whitelist_keyword(session: AsyncSession, chat_id: int, keyword: str) -> bool:
    """
    Удаляет ключевое слово из белого списка.

    Returns:
        True если слово было удалено
    """
    normalized = _normalize_keyword(keyword)
    result = await session.execute(
        delete(WhitelistKeyword).where(
            WhitelistKeyword.chat_id == chat_id,
            WhitelistKeyword.keyword == normalized,
        )
    )
    await session.commit()

    removed = result.rowcount > 0
    if removed:
        logger.info(f"[SETTINGS] chat={chat_id}: удалено ключевое слово '{normalized}'")
    return removed


async def list_whitelist_keywords(session: AsyncSession, chat_id: int) -> List[str]:
    """Ключевые слова белого списка группы в алфавитном порядке."""
    result = await session.execute(
        select(WhitelistKeyword.keyword)
        .where(WhitelistKeyword.chat_id == chat_id)
        .order_by(WhitelistKeyword.keyword)
    )
    return list(result.scalars().all())
