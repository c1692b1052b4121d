# ============================================================
# HTML UTILS - УТИЛИТЫ ДЛЯ РАБОТЫ С HTML В TELEGRAM
# ============================================================
# Все сообщения бота отправляются с parse_mode=HTML.
# Пользовательский текст (имена, отрывки сообщений) нужно экранировать.
# ============================================================

from typing import Optional


def escape_html(text: str) -> str:
    """
    Экранирует специальные HTML символы.

    Используй эту функцию для пользовательского ввода
    или динамических значений в HTML сообщениях.

    Example:
        escape_html("5 < 10")  # "5 &lt; 10"
        escape_html("A & B")   # "A &amp; B"
    """
    return (
        str(text)
        .replace('&', '&amp;')
        .replace('<', '&lt;')
        .replace('>', '&gt;')
    )


def display_name(
    user_id: int,
    username: Optional[str] = None,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
) -> str:
    """Имя для показа: имя и фамилия, иначе @username, иначе id."""
    full_name = " ".join(part for part in (first_name, last_name) if part)
    if full_name:
        return full_name
    if username:
        return f"@{username}"
    return f"id{user_id}"


def user_mention(user_id: int, name: str) -> str:
    """HTML упоминание пользователя (работает и без username)."""
    return f"<a href='tg://user?id={user_id}'>{escape_html(name)}</a>"


def chat_link(chat_id: int, title: Optional[str]) -> str:
    """Ссылка на супергруппу вида t.me/c/<id>."""
    internal_id = str(chat_id).replace('-100', '')
    return f"<a href='https://t.me/c/{internal_id}'>{escape_html(title or chat_id)}</a>"
