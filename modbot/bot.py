import asyncio
import logging
import sys

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.fsm.storage.memory import MemoryStorage
from aiogram.fsm.storage.redis import RedisStorage

# ВАЖНО: сначала загружаем конфиг (.env), потом инициализируем Redis
from modbot.config import (
    ADMIN_CACHE_TTL_SECONDS,
    BOT_TOKEN,
    CLASSIFIER_MAX_TEXT_LENGTH,
    CLASSIFIER_TIMEOUT_SECONDS,
    LOG_LEVEL,
    OPENAI_API_KEY,
    OPENAI_BASE_URL,
    OPENAI_MODEL,
    log_config_summary,
)
from modbot.services.redis_conn import redis, test_connection

from modbot.database.session import async_session, init_db
from modbot.middleware.db_session import DbSessionMiddleware
from modbot.middleware.structured_logging import StructuredLoggingMiddleware
from modbot.handlers import handlers_router

from modbot.services.admin_cache import AdminCache
from modbot.services.classifier import ClassificationAdapter, OpenAIClassifier
from modbot.services.moderation import ModerationOrchestrator
from modbot.services.transport import TelegramTransport
from modbot.utils.logger import TelegramLogHandler, log_penalty_executed

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


def setup_logging() -> None:
    """Консоль + канал логов (ERROR и выше), aiogram только ошибки."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, LOG_LEVEL.upper(), logging.INFO))

    # Создаем обработчик для консоли
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(console_handler)

    # Создаем обработчик для Telegram
    telegram_handler = TelegramLogHandler(level=logging.ERROR)
    telegram_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(telegram_handler)

    # Отключаем встроенное логирование aiogram для каждого апдейта,
    # вместо него пишет StructuredLoggingMiddleware
    for logger_name in ("aiogram", "aiogram.dispatcher", "aiogram.event"):
        log = logging.getLogger(logger_name)
        log.addHandler(console_handler)
        log.setLevel(logging.ERROR)
        log.propagate = False


def build_orchestrator(transport: TelegramTransport, admin_cache: AdminCache) -> ModerationOrchestrator:
    classifier = OpenAIClassifier(
        api_key=OPENAI_API_KEY,
        model=OPENAI_MODEL,
        base_url=OPENAI_BASE_URL,
        request_timeout=CLASSIFIER_TIMEOUT_SECONDS,
    )
    adapter = ClassificationAdapter(
        classifier,
        timeout_seconds=CLASSIFIER_TIMEOUT_SECONDS,
        max_text_length=CLASSIFIER_MAX_TEXT_LENGTH,
    )
    return ModerationOrchestrator(
        transport=transport,
        classification_adapter=adapter,
        admin_cache=admin_cache,
        log_notifier=log_penalty_executed,
    )


# главная асинхронная функция, запускающая бота
async def main():
    setup_logging()
    log_config_summary()

    if not BOT_TOKEN:
        logger.critical("❌ BOT_TOKEN не задан. Проверьте .env файл.")
        sys.exit(1)

    # Если Redis недоступен - FSM в памяти, кэш админов в памяти процесса
    if await test_connection():
        storage = RedisStorage(redis=redis)
        admin_cache = AdminCache(redis, ttl_seconds=ADMIN_CACHE_TTL_SECONDS)
    else:
        storage = MemoryStorage()
        admin_cache = AdminCache(None, ttl_seconds=ADMIN_CACHE_TTL_SECONDS)
        logger.warning("⚠️ Redis недоступен, используется хранение в памяти процесса")

    # Создаём таблицы, если их нет (в проде схема ведётся через alembic)
    await init_db()

    bot = Bot(token=BOT_TOKEN, default=DefaultBotProperties(parse_mode=ParseMode.HTML))
    dp = Dispatcher(storage=storage)

    # middleware выполняются в порядке регистрации: сначала лог, потом сессия
    dp.update.middleware(StructuredLoggingMiddleware())
    dp.update.middleware(DbSessionMiddleware(async_session))

    dp.include_router(handlers_router)

    transport = TelegramTransport(bot)
    orchestrator = build_orchestrator(transport, admin_cache)

    logger.info("🤖 Бот запущен, режим polling")
    try:
        # Удаление вебхука перед запуском поллинга
        await bot.delete_webhook(drop_pending_updates=True)
        # orchestrator / transport / admin_cache попадают в хендлеры как аргументы
        await dp.start_polling(
            bot,
            orchestrator=orchestrator,
            transport=transport,
            admin_cache=admin_cache,
            # chat_member нужен для сброса кэша админов
            allowed_updates=dp.resolve_used_update_types(),
        )
    finally:
        await bot.session.close()
        await redis.aclose()


if __name__ == "__main__":
    asyncio.run(main())
