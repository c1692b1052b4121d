import logging
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from modbot.database.models import User, Group, utcnow

logger = logging.getLogger(__name__)


def dialect_insert(session: AsyncSession, model):
    """
    Возвращает INSERT с поддержкой ON CONFLICT для текущего диалекта.

    PostgreSQL (asyncpg) в проде, SQLite (aiosqlite) локально и в тестах.
    Оба диалекта поддерживают on_conflict_do_update с одинаковой сигнатурой.
    """
    dialect_name = session.get_bind().dialect.name
    if dialect_name == "sqlite":
        return sqlite_insert(model)
    return pg_insert(model)


# функция добавления или обновления пользователя (идемпотентный upsert)
async def upsert_user(
    session: AsyncSession,
    user_id: int,
    username: Optional[str] = None,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    is_bot: bool = False,
) -> None:
    if not user_id:
        return

    now = utcnow()
    stmt = dialect_insert(session, User).values(
        user_id=user_id,
        username=username,
        first_name=first_name,
        last_name=last_name,
        is_bot=is_bot,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[User.user_id],
        set_={
            "username": username,
            "first_name": first_name,
            "last_name": last_name,
            "updated_at": now,
        },
    )
    await session.execute(stmt)
    await session.commit()


# функция сохранения группы в бд (title может меняться)
async def upsert_group(session: AsyncSession, chat_id: int, title: Optional[str]) -> None:
    if not chat_id:
        logger.error(f"Попытка сохранить группу с невалидным chat_id: {chat_id}")
        raise ValueError(f"Невалидный chat_id: {chat_id}")

    now = utcnow()
    stmt = dialect_insert(session, Group).values(
        chat_id=chat_id,
        title=title or str(chat_id),
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[Group.chat_id],
        set_={"title": title or str(chat_id), "updated_at": now},
    )
    await session.execute(stmt)
    await session.commit()


# поиск пользователя по username (без учёта регистра и без @)
async def find_user_by_username(session: AsyncSession, username: str) -> Optional[User]:
    if not username:
        return None
    username = username.lstrip("@")
    result = await session.execute(
        select(User).where(func.lower(User.username) == username.lower())
    )
    return result.scalars().first()


async def get_user(session: AsyncSession, user_id: int) -> Optional[User]:
    result = await session.execute(select(User).where(User.user_id == user_id))
    return result.scalar_one_or_none()
