import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from aiogram import Bot, Router
from aiogram.client.session.base import BaseSession
from aiogram.client.telegram import TelegramAPIServer
from aiogram.methods import TelegramMethod
from aiogram.types import ChatMemberOwner, Message, User


def build_fresh_router() -> Router:
    """Reload handler modules to get fresh Router instances."""
    module_names = [name for name in list(sys.modules) if name.startswith("modbot.handlers")]
    for name in module_names:
        sys.modules.pop(name)

    from modbot.handlers import handlers_router

    return handlers_router


class RecordingSession(BaseSession):
    """Сессия Bot API без сети: запоминает вызовы и отвечает заглушками."""

    def __init__(self, admin_ids: Tuple[int, ...] = ()) -> None:
        super().__init__(api=TelegramAPIServer.from_base("https://api.test"))
        self.admin_ids = admin_ids
        self.requests: List[Tuple[str, TelegramMethod[Any]]] = []
        self._next_message_id = 2000

    def calls(self, method_name: str) -> List[TelegramMethod[Any]]:
        return [method for name, method in self.requests if name == method_name]

    async def make_request(
        self,
        bot: Bot,
        method: TelegramMethod[Any],
        timeout: Optional[int] = None,
    ) -> Any:
        method_name = method.__api_method__
        self.requests.append((method_name, method))

        if method_name == "sendMessage":
            self._next_message_id += 1
            return Message.model_validate({
                "message_id": self._next_message_id,
                "date": datetime.now(timezone.utc),
                "chat": {"id": method.chat_id, "type": "private" if method.chat_id > 0 else "supergroup"},
                "text": method.text,
                "from": {"id": bot.id or 333, "is_bot": True, "first_name": "TestBot"},
            })
        if method_name == "getChatAdministrators":
            return [
                ChatMemberOwner(user=User(id=admin_id, is_bot=False, first_name="Admin"), is_anonymous=False)
                for admin_id in self.admin_ids
            ]
        return True

    async def close(self) -> None:
        pass

    async def stream_content(self, *args: Any, **kwargs: Any) -> Any:
        raise NotImplementedError


class LinkSpamClassifier:
    """Спам - всё со ссылкой t.me, мат - не бывает."""

    async def analyze_spam(self, text, whitelist) -> Dict[str, Any]:
        score = 0.95 if "t.me/" in text else 0.05
        return {"isSpam": score > 0.5, "score": score}

    async def analyze_profanity(self, text) -> Dict[str, Any]:
        return {"hasProfanity": False, "severity": 0.0, "type": "clean"}
