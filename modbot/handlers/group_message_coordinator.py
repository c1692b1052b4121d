# ============================================================
# GROUP MESSAGE COORDINATOR - ЕДИНАЯ ТОЧКА ВХОДА
# ============================================================
# Все текстовые сообщения групп проходят через один хендлер:
# в aiogram 3.x из нескольких хендлеров с одинаковым фильтром
# выполняется только первый, поэтому модерация собрана здесь.
#
# Команды (/...) сюда не попадают - их обрабатывает strike_commands.
# Вся логика модерации - в ModerationOrchestrator, хендлер только
# переводит aiogram Message во входные данные оркестратора.
# ============================================================

# Импортируем Router для создания роутера
from aiogram import Router, F
# Импортируем типы сообщений
from aiogram.types import Message
# Импортируем логгер
import logging

# Импортируем типы SQLAlchemy
from sqlalchemy.ext.asyncio import AsyncSession

# Импортируем оркестратор
from modbot.services.moderation import InboundMessage, ModerationOrchestrator, ModerationState

# Создаём логгер для этого модуля
logger = logging.getLogger(__name__)

# Создаём роутер координатора
group_message_coordinator_router = Router(name='group_message_coordinator')


@group_message_coordinator_router.message(
    # Фильтр: только группы и супергруппы
    F.chat.type.in_({"group", "supergroup"}),
    # Только текст, не команда
    F.text,
    ~F.text.startswith("/"),
)
async def group_message_handler(
    message: Message,
    session: AsyncSession,
    orchestrator: ModerationOrchestrator,
):
    """
    Передаёт сообщение группы в оркестратор модерации.

    session приходит из DbSessionMiddleware, orchestrator - из
    workflow data диспетчера (см. modbot/bot.py).
    """
    inbound = InboundMessage.from_aiogram(message)
    if inbound is None:
        # Анонимный админ или пост канала - отправителя нет
        return

    outcome = await orchestrator.process_message(session, inbound)

    if outcome.state == ModerationState.FAILED:
        logger.warning(
            f"[COORDINATOR] Сообщение не обработано: chat={inbound.chat_id}, "
            f"msg_id={inbound.message_id}, user={inbound.user_id}"
        )
    elif outcome.state in (ModerationState.RECORDED, ModerationState.EXECUTED):
        logger.info(
            f"[COORDINATOR] {outcome.violation_type}: chat={inbound.chat_id}, user={inbound.user_id}, "
            f"strikes={outcome.strike_count}, state={outcome.state.value}"
        )
