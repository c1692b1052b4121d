"""
Unit-тесты для middleware и хендлера-координатора.
"""

import logging
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from aiogram.types import Update

from modbot.handlers.group_message_coordinator import group_message_handler
from modbot.middleware.db_session import DbSessionMiddleware
from modbot.middleware.structured_logging import (
    StructuredLoggingMiddleware,
    describe_update,
    format_update_line,
)
from modbot.services.moderation import ModerationOutcome, ModerationState


def make_update(message_factory, **kwargs):
    message = message_factory(**kwargs)
    return Update(update_id=77, message=message)


class TestDescribeUpdate:

    def test_message_fields(self, message_factory):
        update = make_update(message_factory, text="x" * 300, user_id=5, username="bob")
        data = describe_update(update)
        assert data["type"] == "message"
        assert data["user_id"] == 5
        assert data["username"] == "bob"
        assert len(data["text"]) == 100

    def test_format_line_skips_empty(self):
        line = format_update_line({"update_id": 1, "username": None, "text": ""}, elapsed_ms=12.4)
        assert line == "📩 [UPDATE] update_id=1 elapsed_ms=12"


class TestStructuredLoggingMiddleware:

    @pytest.mark.asyncio
    async def test_logs_after_handler(self, message_factory, caplog):
        middleware = StructuredLoggingMiddleware()
        handler = AsyncMock(return_value="ok")
        with caplog.at_level(logging.INFO, logger="modbot.middleware.structured_logging"):
            result = await middleware(handler, make_update(message_factory), {})
        assert result == "ok"
        assert "[UPDATE] update_id=77" in caplog.text

    # Тест: ошибка хендлера логируется и пробрасывается дальше
    @pytest.mark.asyncio
    async def test_reraises(self, message_factory, caplog):
        middleware = StructuredLoggingMiddleware()
        handler = AsyncMock(side_effect=RuntimeError("boom"))
        with pytest.raises(RuntimeError):
            await middleware(handler, make_update(message_factory), {})
        assert "boom" in caplog.text


class TestDbSessionMiddleware:

    @pytest.mark.asyncio
    async def test_session_passed_to_handler(self, session_factory):
        middleware = DbSessionMiddleware(session_factory)
        seen = {}

        async def handler(event, data):
            seen["session"] = data["session"]
            return "done"

        assert await middleware(handler, SimpleNamespace(), {}) == "done"
        assert seen["session"] is not None


class TestGroupMessageHandler:

    @pytest.mark.asyncio
    async def test_passes_inbound_message(self, message_factory):
        orchestrator = SimpleNamespace(
            process_message=AsyncMock(return_value=ModerationOutcome(state=ModerationState.BELOW_THRESHOLD))
        )
        session = object()
        message = message_factory(text="hello group", user_id=12, chat_id=-100777)

        await group_message_handler(message, session=session, orchestrator=orchestrator)

        called_session, inbound = orchestrator.process_message.await_args.args
        assert called_session is session
        assert inbound.user_id == 12
        assert inbound.chat_id == -100777
        assert inbound.text == "hello group"

    # Тест: ошибка оркестратора только логируется
    @pytest.mark.asyncio
    async def test_failed_outcome_logged(self, message_factory, caplog):
        orchestrator = SimpleNamespace(
            process_message=AsyncMock(return_value=ModerationOutcome(state=ModerationState.FAILED))
        )
        await group_message_handler(message_factory(), session=object(), orchestrator=orchestrator)
        assert "Сообщение не обработано" in caplog.text
