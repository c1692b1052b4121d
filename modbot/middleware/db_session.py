from aiogram.dispatcher.middlewares.base import BaseMiddleware
from aiogram.types import TelegramObject
from sqlalchemy.ext.asyncio import async_sessionmaker
from typing import Callable, Awaitable, Dict, Any


class DbSessionMiddleware(BaseMiddleware):
    """
    Открывает отдельную AsyncSession на каждый апдейт.

    Каждое сообщение обрабатывается в своей задаче aiogram со своей сессией,
    общих объектов ORM между апдейтами нет.
    """

    def __init__(self, sessionmaker: async_sessionmaker):
        super().__init__()
        self.sessionmaker = sessionmaker  # сохраняем фабрику сессий

    async def __call__(
            self,
            handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
            event: TelegramObject,
            data: Dict[str, Any],
    ) -> Any:
        async with self.sessionmaker() as session:  # сессия закрывается после хендлера
            data["session"] = session  # хендлеры получают её аргументом session
            return await handler(event, data)
