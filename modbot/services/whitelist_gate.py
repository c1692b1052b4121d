"""
Проверка исключений из модерации.

Сообщение не модерируется, если:
- отправитель - администратор чата или модератор из настроек группы
- включён обход по ключевым словам и текст содержит слово из белого списка

Чистые функции без обращений к БД и Telegram: список админов
передаёт вызывающий код (см. AdminCache).
"""

from typing import Iterable, Optional

from modbot.services.group_settings_service import GroupSettings


def find_whitelisted_keyword(message_text: Optional[str], settings: GroupSettings) -> Optional[str]:
    """Возвращает первое найденное в тексте ключевое слово белого списка (без учёта регистра)."""
    if not message_text or not settings.whitelisted_keywords:
        return None
    lowered = message_text.lower()
    # sorted - чтобы при нескольких совпадениях результат был детерминированным
    for keyword in sorted(settings.whitelisted_keywords):
        if keyword and keyword.lower() in lowered:
            return keyword
    return None


def is_exempt(
    chat_id: int,
    user_id: int,
    message_text: Optional[str],
    settings: GroupSettings,
    chat_admin_ids: Iterable[int],
) -> bool:
    """
    Решает, освобождён ли отправитель от модерации.

    Args:
        chat_id: ID чата (для единообразия с остальными вызовами)
        user_id: ID отправителя
        message_text: Текст сообщения
        settings: Снимок настроек группы
        chat_admin_ids: Текущие администраторы чата

    Returns:
        True если сообщение не нужно модерировать
    """
    if user_id in set(chat_admin_ids) or user_id in settings.moderator_ids:
        return True

    if settings.keyword_whitelist_bypass:
        return find_whitelisted_keyword(message_text, settings) is not None

    return False
