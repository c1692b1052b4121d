# ═══════════════════════════════════════════════════════════════════════════
# TELEGRAM TRANSPORT - ДЕЙСТВИЯ МОДЕРАЦИИ В ЧАТЕ
# ═══════════════════════════════════════════════════════════════════════════
# Тонкая обёртка над aiogram Bot для оркестратора модерации:
# - удаление сообщения
# - мут на N минут, кик (бан + разбан), бан
# - отправка сообщений и их отложенное удаление
# - список администраторов чата
#
# Действия не бросают исключений: ошибка Telegram логируется,
# метод возвращает False. Исключение бросает только get_chat_admins,
# чтобы кэш админов мог отдать устаревший список.
# ═══════════════════════════════════════════════════════════════════════════

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Set

from aiogram import Bot
from aiogram.types import ChatPermissions
from aiogram.exceptions import TelegramAPIError

# Настраиваем логгер
logger = logging.getLogger(__name__)


class TransportError(Exception):
    """Telegram не вернул список администраторов чата."""
    pass


# Полный запрет на отправку сообщений (как в ручном /amute)
MUTED_PERMISSIONS = ChatPermissions(
    can_send_messages=False,
    can_send_audios=False,
    can_send_documents=False,
    can_send_photos=False,
    can_send_videos=False,
    can_send_video_notes=False,
    can_send_voice_notes=False,
    can_send_polls=False,
    can_send_other_messages=False,
    can_add_web_page_previews=False,
)


class TelegramTransport:
    """
    Исполнитель действий модерации через Bot API.

    Пример использования:
        transport = TelegramTransport(bot)
        if not await transport.mute_user(chat_id, user_id, 60):
            logger.warning("мут не применён")
    """

    def __init__(self, bot: Bot):
        self._bot = bot
        # Ссылки на фоновые задачи удаления, чтобы их не собрал GC
        self._pending: Set[asyncio.Task] = set()

    @property
    def bot(self) -> Bot:
        return self._bot

    # ─────────────────────────────────────────────────────────
    # Сообщения
    # ─────────────────────────────────────────────────────────

    async def delete_message(self, chat_id: int, message_id: int) -> bool:
        try:
            await self._bot.delete_message(chat_id=chat_id, message_id=message_id)
            return True
        except TelegramAPIError as e:
            logger.warning(
                f"[TRANSPORT] Не удалось удалить сообщение {message_id} в chat={chat_id}: {e}"
            )
            return False

    async def send_message(self, chat_id: int, text: str, **opts) -> Optional[int]:
        """
        Отправляет сообщение.

        Returns:
            message_id отправленного сообщения или None при ошибке
        """
        opts.setdefault("parse_mode", "HTML")
        try:
            sent = await self._bot.send_message(chat_id=chat_id, text=text, **opts)
            return sent.message_id
        except TelegramAPIError as e:
            logger.warning(f"[TRANSPORT] Не удалось отправить сообщение в chat={chat_id}: {e}")
            return None

    def schedule_deletion(self, chat_id: int, message_id: int, delay_seconds: int) -> Optional[asyncio.Task]:
        """Удаляет сообщение через delay_seconds в фоне. 0 - не удалять."""
        if not delay_seconds or delay_seconds <= 0:
            return None

        async def delete_after_delay():
            await asyncio.sleep(delay_seconds)
            if await self.delete_message(chat_id, message_id):
                logger.debug(
                    f"[TRANSPORT] Авто-удалено сообщение {message_id} через {delay_seconds} сек"
                )

        task = asyncio.create_task(delete_after_delay())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    # ─────────────────────────────────────────────────────────
    # Наказания
    # ─────────────────────────────────────────────────────────

    async def mute_user(self, chat_id: int, user_id: int, duration_minutes: int) -> bool:
        until_date = datetime.now(timezone.utc) + timedelta(minutes=duration_minutes)
        try:
            await self._bot.restrict_chat_member(
                chat_id=chat_id,
                user_id=user_id,
                permissions=MUTED_PERMISSIONS,
                until_date=until_date,
            )
            logger.info(f"[TRANSPORT] Мут user={user_id} в chat={chat_id} на {duration_minutes} мин")
            return True
        except TelegramAPIError as e:
            logger.error(f"[TRANSPORT] ❌ Мут не применён user={user_id} chat={chat_id}: {e}")
            return False

    async def kick_user(self, chat_id: int, user_id: int) -> bool:
        """Кик = бан + разбан: пользователь может вернуться по ссылке."""
        try:
            await self._bot.ban_chat_member(chat_id=chat_id, user_id=user_id)
            await self._bot.unban_chat_member(chat_id=chat_id, user_id=user_id, only_if_banned=True)
            logger.info(f"[TRANSPORT] Кик user={user_id} из chat={chat_id}")
            return True
        except TelegramAPIError as e:
            logger.error(f"[TRANSPORT] ❌ Кик не выполнен user={user_id} chat={chat_id}: {e}")
            return False

    async def ban_user(self, chat_id: int, user_id: int) -> bool:
        try:
            await self._bot.ban_chat_member(chat_id=chat_id, user_id=user_id)
            logger.info(f"[TRANSPORT] Бан user={user_id} в chat={chat_id}")
            return True
        except TelegramAPIError as e:
            logger.error(f"[TRANSPORT] ❌ Бан не выполнен user={user_id} chat={chat_id}: {e}")
            return False

    # ─────────────────────────────────────────────────────────
    # Администраторы
    # ─────────────────────────────────────────────────────────

    async def get_chat_admins(self, chat_id: int) -> List[int]:
        """
        Raises:
            TransportError: Telegram вернул ошибку
        """
        try:
            admins = await self._bot.get_chat_administrators(chat_id=chat_id)
        except TelegramAPIError as e:
            raise TransportError(f"getChatAdministrators failed for chat={chat_id}: {e}") from e
        return [member.user.id for member in admins]
