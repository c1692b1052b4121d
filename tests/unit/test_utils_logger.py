import asyncio
import logging
from types import SimpleNamespace

import pytest

from modbot.utils import logger as logger_module


class DummyResponse:
    def __init__(self, status=200):
        self.status = status

    async def text(self):
        return "error body"

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        pass


def dummy_aiohttp(captured, status=200):
    class DummySession:
        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc, tb):
            pass

        def post(self, url, data):
            captured["url"] = url
            captured["data"] = data
            return DummyResponse(status)

    return SimpleNamespace(ClientSession=lambda: DummySession(), ClientError=Exception)


@pytest.fixture
def log_channel(monkeypatch):
    monkeypatch.setattr(logger_module, "BOT_TOKEN", "TEST_TOKEN", raising=False)
    monkeypatch.setattr(logger_module, "LOG_CHANNEL_ID", "123", raising=False)


@pytest.mark.asyncio
async def test_send_formatted_log(monkeypatch, log_channel):
    captured = {}
    monkeypatch.setattr(logger_module, "aiohttp", dummy_aiohttp(captured))

    assert await logger_module.send_formatted_log("message") is True

    assert captured["url"].endswith("/botTEST_TOKEN/sendMessage")
    assert captured["data"]["text"] == "message"
    assert captured["data"]["parse_mode"] == "HTML"


@pytest.mark.asyncio
async def test_send_formatted_log_http_error(monkeypatch, log_channel):
    monkeypatch.setattr(logger_module, "aiohttp", dummy_aiohttp({}, status=400))
    assert await logger_module.send_formatted_log("message") is False


@pytest.mark.asyncio
async def test_send_formatted_log_without_channel(monkeypatch):
    monkeypatch.setattr(logger_module, "LOG_CHANNEL_ID", "", raising=False)
    assert await logger_module.send_formatted_log("message") is False


@pytest.mark.asyncio
async def test_log_penalty_executed_creates_task(monkeypatch, log_channel):
    messages = []

    async def dummy_send(message):
        messages.append(message)

    monkeypatch.setattr(logger_module, "send_formatted_log", dummy_send)

    task = logger_module.log_penalty_executed(
        chat_id=-1001234,
        chat_title="Group",
        user_id=7,
        user_name="Bob",
        action="MUTE",
        severity="LOW",
        strike_count=2,
        violation_type="SPAM",
        excerpt="buy <now>",
        success=False,
    )
    await task

    assert len(messages) == 1
    assert "#PENALTY #MUTE 🟠" in messages[0]
    assert "❌ не выполнено" in messages[0]
    assert "buy &lt;now&gt;" in messages[0]
    assert messages[0].endswith("#id7")


def test_log_penalty_outside_loop(monkeypatch, log_channel):
    # Вне event loop отправка пропускается
    task = logger_module.log_penalty_executed(-100, "G", 1, "A", "ALERT", "WARNING", 1, "SPAM")
    assert task is None


@pytest.mark.asyncio
async def test_telegram_log_handler(monkeypatch):
    messages = []

    async def dummy_send(message):
        messages.append(message)

    monkeypatch.setattr(logger_module, "send_formatted_log", dummy_send)

    handler = logger_module.TelegramLogHandler()
    handler.emit(logging.LogRecord("modbot.bot", logging.ERROR, __file__, 1, "boom <x>", None, None))
    # Записи самого модуля отправки не пересылаются
    handler.emit(logging.LogRecord(logger_module.__name__, logging.ERROR, __file__, 1, "loop", None, None))
    await asyncio.sleep(0)

    assert messages == ["❌ #ОШИБКА 🔴\n<pre>boom &lt;x&gt;</pre>"]
