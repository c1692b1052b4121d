from redis.asyncio import Redis
from redis.exceptions import RedisError
import logging

from modbot.config import REDIS_HOST, REDIS_PORT, REDIS_PASSWORD

logger = logging.getLogger(__name__)

# Клиент создаётся лениво: реальное соединение открывается при первой команде
redis = Redis(
    host=REDIS_HOST,
    port=REDIS_PORT,
    password=REDIS_PASSWORD,
    db=0,
    decode_responses=True,
)


async def test_connection() -> bool:
    """Проверяет доступность Redis при старте. При ошибке кэш работает в памяти процесса."""
    try:
        await redis.ping()
        logger.info(f"✅ Соединение с Redis ({REDIS_HOST}:{REDIS_PORT}) установлено")
        return True
    except RedisError as e:
        logger.error(f"❌ Ошибка подключения к Redis ({REDIS_HOST}:{REDIS_PORT}): {e}")
        return False
