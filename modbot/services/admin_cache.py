# modbot/services/admin_cache.py
"""
Кэш списка администраторов чата.

Список админов нужен для каждого сообщения (админы не модерируются),
а запрос getChatAdministrators к Telegram дорогой. Поэтому список
кэшируется на короткое время (по умолчанию 5 минут).

Кэш терпим к устареванию:
- свежая копия живёт ttl_seconds
- последняя удачная копия хранится без срока и отдаётся,
  если обновить список не получилось
- если копий нет совсем, возвращается пустой список

Redis ключи:
- {prefix}:{chat_id} - свежий список (JSON, TTL)
- {prefix}:{chat_id}:stale - последний известный список (JSON, без TTL)

Без Redis кэш работает в памяти процесса.
"""

# Импортируем логгер для записи событий
import logging
# Импортируем json для сериализации списка id
import json
# Импортируем time для срока жизни записей в памяти
import time
# Импортируем типы для аннотаций
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

# Импортируем Redis клиент
from redis.asyncio import Redis
from redis.exceptions import RedisError


# Создаём логгер для этого модуля
logger = logging.getLogger(__name__)

# Тип функции загрузки админов (обычно TelegramTransport.get_chat_admins)
AdminLoader = Callable[[int], Awaitable[List[int]]]


class AdminCache:
    """
    Кэш id администраторов чата с TTL.

    Пример использования:
        cache = AdminCache(redis, ttl_seconds=300)
        admin_ids = await cache.get_admin_ids(chat_id, transport.get_chat_admins)
    """

    DEFAULT_PREFIX = "modbot:admins"

    def __init__(
        self,
        redis: Optional[Redis] = None,
        ttl_seconds: int = 300,
        key_prefix: str = DEFAULT_PREFIX,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            redis: Клиент Redis (None - хранить в памяти процесса)
            ttl_seconds: Время жизни свежей копии списка
            key_prefix: Префикс ключей Redis
            clock: Источник времени для кэша в памяти
        """
        self._redis = redis
        self._ttl = ttl_seconds
        self._prefix = key_prefix
        self._clock = clock
        # chat_id -> (момент истечения, список id)
        self._memory: Dict[int, Tuple[float, List[int]]] = {}
        # chat_id -> последний удачно загруженный список
        self._memory_stale: Dict[int, List[int]] = {}

    def _fresh_key(self, chat_id: int) -> str:
        return f"{self._prefix}:{chat_id}"

    def _stale_key(self, chat_id: int) -> str:
        return f"{self._prefix}:{chat_id}:stale"

    # ─────────────────────────────────────────────────────────
    # Чтение / запись
    # ─────────────────────────────────────────────────────────

    async def _read(self, chat_id: int, stale: bool = False) -> Optional[List[int]]:
        if self._redis is None:
            if stale:
                return self._memory_stale.get(chat_id)
            entry = self._memory.get(chat_id)
            if entry is None:
                return None
            expires_at, ids = entry
            if self._clock() >= expires_at:
                # Свежая копия истекла, stale остаётся
                del self._memory[chat_id]
                return None
            return ids

        key = self._stale_key(chat_id) if stale else self._fresh_key(chat_id)
        try:
            raw = await self._redis.get(key)
        except RedisError as e:
            logger.warning(f"[ADMIN_CACHE] Redis недоступен при чтении {key}: {e}")
            return None
        if raw is None:
            return None
        try:
            return [int(x) for x in json.loads(raw)]
        except (ValueError, TypeError) as e:
            logger.warning(f"[ADMIN_CACHE] Повреждённое значение {key}: {e}")
            return None

    async def _store(self, chat_id: int, admin_ids: List[int]) -> None:
        if self._redis is None:
            self._memory[chat_id] = (self._clock() + self._ttl, admin_ids)
            self._memory_stale[chat_id] = admin_ids
            return

        raw = json.dumps(admin_ids)
        try:
            await self._redis.set(self._fresh_key(chat_id), raw, ex=self._ttl)
            await self._redis.set(self._stale_key(chat_id), raw)
        except RedisError as e:
            logger.warning(f"[ADMIN_CACHE] Не удалось сохранить админов chat={chat_id}: {e}")

    # ─────────────────────────────────────────────────────────
    # Публичный API
    # ─────────────────────────────────────────────────────────

    async def get_admin_ids(self, chat_id: int, loader: AdminLoader) -> List[int]:
        """
        Возвращает id администраторов чата.

        Args:
            chat_id: ID чата
            loader: Корутина загрузки актуального списка

        Returns:
            Список id (свежий, устаревший при ошибке загрузки, или пустой)
        """
        cached = await self._read(chat_id)
        if cached is not None:
            return cached

        try:
            admin_ids = [int(x) for x in await loader(chat_id)]
        except Exception as e:
            # Любая ошибка загрузки: отдаём последнюю известную копию
            stale = await self._read(chat_id, stale=True)
            logger.warning(
                f"[ADMIN_CACHE] ⚠️ Не удалось обновить админов chat={chat_id}: {e}, "
                f"используем {'устаревший список' if stale is not None else 'пустой список'}"
            )
            return stale if stale is not None else []

        await self._store(chat_id, admin_ids)
        logger.debug(f"[ADMIN_CACHE] Обновлён список админов chat={chat_id}: {len(admin_ids)} шт.")
        return admin_ids

    async def invalidate(self, chat_id: int) -> None:
        """Сбрасывает свежую копию (например, после смены прав в чате)."""
        if self._redis is None:
            self._memory.pop(chat_id, None)
            return
        try:
            await self._redis.delete(self._fresh_key(chat_id))
        except RedisError as e:
            logger.warning(f"[ADMIN_CACHE] Не удалось сбросить кэш chat={chat_id}: {e}")
