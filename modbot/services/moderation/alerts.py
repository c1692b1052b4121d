# modbot/services/moderation/alerts.py
"""
Текст предупреждения для наказания ALERT.

Шаблон группы содержит {user} - туда подставляется HTML упоминание.
К шаблону добавляется причина (тип нарушения и отрывок сообщения)
и номер страйка: "... for 📢 spam: "<i>отрывок</i>" (Strike 2)".
"""

from modbot.services.group_settings_service import GroupSettings
from modbot.utils.html_utils import escape_html, user_mention

# Тип нарушения -> эмодзи в предупреждении
VIOLATION_EMOJI = {
    "SPAM": "📢",
    "PROFANITY": "🤬",
}

# Длина отрывка в предупреждении
ALERT_EXCERPT_LIMIT = 100


def pick_template(settings: GroupSettings, violation_type: str) -> str:
    if violation_type == "PROFANITY":
        return settings.profanity_warning_message
    return settings.warning_message


def render_alert(
    settings: GroupSettings,
    violation_type: str,
    user_id: int,
    user_name: str,
    strike_count: int,
    excerpt: str = "",
) -> str:
    """
    Собирает HTML текст предупреждения.

    Текст шаблона экранируется, {user} заменяется ссылкой на пользователя.
    """
    template = pick_template(settings, violation_type)
    parts = template.split("{user}")
    text = escape_html(parts[0])
    if len(parts) > 1:
        text += user_mention(user_id, user_name)
        text += escape_html("{user}".join(parts[1:]))

    if excerpt:
        emoji = VIOLATION_EMOJI.get(violation_type, "⚠️")
        short = excerpt[:ALERT_EXCERPT_LIMIT]
        text += f' for {emoji} {violation_type.lower()}: "<i>{escape_html(short)}</i>"'

    text += f" (Strike {strike_count})"
    return text


def render_forgiveness_notice(chat_title: str) -> str:
    """Личное сообщение пользователю о снятом страйке."""
    return (
        "Your good behavior has been noticed, and one of your strikes in "
        f"{escape_html(chat_title)} has been removed. Keep it up!"
    )
