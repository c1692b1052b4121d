import asyncio
import logging
from typing import Optional, Set

import aiohttp

from modbot.config import BOT_TOKEN, LOG_CHANNEL_ID
from modbot.utils.html_utils import escape_html, user_mention, chat_link

logger = logging.getLogger(__name__)

# Ссылки на фоновые задачи отправки, чтобы их не собрал GC
_pending_tasks: Set[asyncio.Task] = set()


# ==== СПЕЦИАЛЬНЫЕ ФОРМАТИРОВАННЫЕ ЛОГИ ДЛЯ TELEGRAM ====

async def send_formatted_log(message: str) -> bool:
    """Отправляет отформатированное сообщение в канал логов в Telegram"""
    if not BOT_TOKEN or not LOG_CHANNEL_ID:
        logger.debug("BOT_TOKEN или LOG_CHANNEL_ID не установлены, лог не отправлен")
        return False

    url = f"https://api.telegram.org/bot{BOT_TOKEN}/sendMessage"
    payload = {
        "chat_id": LOG_CHANNEL_ID,
        "text": message,
        "parse_mode": "HTML",
        "disable_web_page_preview": True
    }

    # Ошибки пишем уровнем WARNING: TelegramLogHandler слушает ERROR и выше
    try:
        async with aiohttp.ClientSession() as session:
            async with session.post(url, data=payload) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    logger.warning(f"❌ Telegram API Error: {resp.status} - {text}")
                    return False
                return True
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        logger.warning(f"❌ Ошибка при отправке лога в Telegram: {e}")
        return False


def _spawn(message: str) -> Optional[asyncio.Task]:
    # Отправка в фоне, без ожидания; вне event loop просто пропускаем
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        return None
    task = loop.create_task(send_formatted_log(message))
    _pending_tasks.add(task)
    task.add_done_callback(_pending_tasks.discard)
    return task


# Эмодзи по тегу строгости
SEVERITY_EMOJI = {
    "WARNING": "🟡",
    "LOW": "🟠",
    "MEDIUM": "🔴",
    "HIGH": "⛔",
}


def log_penalty_executed(
    chat_id: int,
    chat_title: Optional[str],
    user_id: int,
    user_name: str,
    action: str,
    severity: str,
    strike_count: int,
    violation_type: str,
    excerpt: str = "",
    success: bool = True,
) -> Optional[asyncio.Task]:
    """Отправляет лог о применённом наказании с хэштегами"""
    status = "✅ выполнено" if success else "❌ не выполнено"
    msg = (
        f"⚖️ #PENALTY #{action.upper()} {SEVERITY_EMOJI.get(severity, '')}\n"
        f"• Кто: {user_mention(user_id, user_name)} [{user_id}]\n"
        f"• Группа: {chat_link(chat_id, chat_title)} [{chat_id}]\n"
        f"• Нарушение: {violation_type}\n"
        f"• Страйков: {strike_count}\n"
        f"• Строгость: {severity}\n"
        f"• Статус: {status}\n"
    )
    if excerpt:
        msg += f"• Сообщение: <i>{escape_html(excerpt)}</i>\n"
    msg += f"#id{user_id}"

    logger.info(
        f"[PENALTY] {action} user={user_id} chat={chat_id} strikes={strike_count} success={success}"
    )
    return _spawn(msg)


class TelegramLogHandler(logging.Handler):
    """
    Дублирует записи логов (по умолчанию ERROR и выше) в канал логов.

    Сообщения самого модуля отправки не пересылаются, чтобы не зациклиться.
    """

    # Лимит длины сообщения Telegram - 4096, оставляем запас под разметку
    MAX_LENGTH = 3500

    def __init__(self, level: int = logging.ERROR):
        super().__init__(level=level)

    def emit(self, record: logging.LogRecord) -> None:
        if record.name == __name__:
            return
        try:
            text = self.format(record)
        except (TypeError, ValueError):
            self.handleError(record)
            return
        _spawn(f"❌ #ОШИБКА 🔴\n<pre>{escape_html(text[:self.MAX_LENGTH])}</pre>")
