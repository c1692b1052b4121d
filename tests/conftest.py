import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional
from unittest.mock import AsyncMock

import pytest

# КРИТИЧНО: окружение задаём ДО импорта modbot.config
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./tests/temp_test.db")
# Канал логов в тестах не используется
os.environ["LOG_CHANNEL_ID"] = ""

# Гарантируем, что пакет modbot доступен для импортов из тестов
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from aiogram import Bot
from aiogram.types import Message
from fakeredis import aioredis as fakeredis_aioredis
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from modbot.database.models import Base
# Импортируем модели страйков чтобы они зарегистрировались в Base.metadata
import modbot.database.models_strikes  # noqa: F401


def _build_database_url(tmp_path: Path) -> str:
    explicit = os.getenv("TEST_DATABASE_URL")
    if explicit:
        return explicit
    # Отдельный файл SQLite на каждый тест
    return f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"


@pytest.fixture
async def session_factory(tmp_path):
    """Фабрика сессий над чистой схемой."""
    engine = create_async_engine(_build_database_url(tmp_path), echo=False, poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    try:
        yield async_sessionmaker(engine, expire_on_commit=False)
    finally:
        await engine.dispose()


@pytest.fixture
async def db_session(session_factory):
    """Provide an isolated database session for a test."""
    session = session_factory()
    try:
        yield session
    finally:
        try:
            await session.rollback()
        finally:
            await session.close()


@pytest.fixture
async def fake_redis(monkeypatch):
    """Patch project-wide redis client with fakeredis for unit tests."""
    client = fakeredis_aioredis.FakeRedis(decode_responses=True)

    monkeypatch.setattr("modbot.services.redis_conn.redis", client)

    try:
        yield client
    finally:
        await client.flushall()
        await client.aclose()


@pytest.fixture
def bot_mock():
    """Async mock for aiogram Bot."""
    bot = AsyncMock(spec=Bot)
    bot.send_message = AsyncMock()
    bot.delete_message = AsyncMock(return_value=True)
    bot.get_chat_administrators = AsyncMock(return_value=[])
    bot.restrict_chat_member = AsyncMock(return_value=True)
    bot.ban_chat_member = AsyncMock(return_value=True)
    bot.unban_chat_member = AsyncMock(return_value=True)
    bot.session = AsyncMock()
    bot.id = 424242
    return bot


@pytest.fixture
def message_factory() -> Callable[..., Message]:
    """Factory for aiogram Message instances."""

    def _factory(
        *,
        message_id: int = 1,
        user_id: int = 100,
        chat_id: int = -1000,
        text: Optional[str] = "hello",
        chat_type: str = "supergroup",
        first_name: str = "Test",
        username: Optional[str] = None,
        reply_to: Optional[Message] = None,
    ) -> Message:
        payload = {
            "message_id": message_id,
            "date": datetime.now(timezone.utc),
            "chat": {"id": chat_id, "type": chat_type, "title": "Test chat"},
            "from": {"id": user_id, "is_bot": False, "first_name": first_name, "username": username},
        }
        if text is not None:
            payload["text"] = text
        if reply_to is not None:
            payload["reply_to_message"] = reply_to.model_dump()
        return Message.model_validate(payload)

    return _factory
