# middleware/structured_logging.py
"""
Middleware для структурированного логирования апдейтов от Telegram.

Одна запись на апдейт: тип, чат, отправитель и начало текста.
Встроенные INFO логи aiogram о каждом апдейте отключаются в bot.py.
"""
import logging
import time
from typing import Callable, Dict, Any, Awaitable, Optional

from aiogram import BaseMiddleware
from aiogram.types import Update

logger = logging.getLogger(__name__)

# Сколько символов текста попадает в лог
TEXT_PREVIEW_LIMIT = 100


def describe_update(event: Update) -> Dict[str, Any]:
    """Собирает плоский словарь полей апдейта для лога"""
    data: Dict[str, Any] = {"update_id": event.update_id}

    msg = event.message or event.edited_message
    if msg is not None:
        data["type"] = "message" if event.message else "edited_message"
        data["message_id"] = msg.message_id
        data["chat_id"] = msg.chat.id
        data["chat_type"] = msg.chat.type
        data["chat_title"] = msg.chat.title
        if msg.from_user:
            data["user_id"] = msg.from_user.id
            data["username"] = msg.from_user.username
        if msg.text:
            data["text"] = msg.text[:TEXT_PREVIEW_LIMIT]
        return data

    if event.callback_query:
        cb = event.callback_query
        data["type"] = "callback_query"
        data["user_id"] = cb.from_user.id
        data["data"] = cb.data[:50] if cb.data else None
        return data

    if event.chat_member:
        cm = event.chat_member
        data["type"] = "chat_member"
        data["chat_id"] = cm.chat.id
        data["user_id"] = cm.new_chat_member.user.id
        data["new_status"] = cm.new_chat_member.status
        return data

    data["type"] = event.event_type or "unknown"
    return data


def format_update_line(data: Dict[str, Any], elapsed_ms: Optional[float] = None) -> str:
    parts = [f"{key}={value}" for key, value in data.items() if value not in (None, "")]
    if elapsed_ms is not None:
        parts.append(f"elapsed_ms={elapsed_ms:.0f}")
    return "📩 [UPDATE] " + " ".join(parts)


class StructuredLoggingMiddleware(BaseMiddleware):
    """Middleware для структурированного логирования апдейтов"""

    async def __call__(
        self,
        handler: Callable[[Update, Dict[str, Any]], Awaitable[Any]],
        event: Update,
        data: Dict[str, Any]
    ) -> Any:
        update_data = describe_update(event)
        started = time.monotonic()

        try:
            result = await handler(event, data)
        except Exception as e:
            logger.error(f"❌ [UPDATE] Ошибка обработки update id={event.update_id}: {e}")
            raise

        elapsed_ms = (time.monotonic() - started) * 1000
        logger.info(format_update_line(update_data, elapsed_ms))
        return result
