import asyncio
from logging.config import fileConfig

from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from alembic import context

# 1. Конфиг проекта сам загружает нужный .env (ENVIRONMENT / ENV_PATH)
import os
from modbot.config import DATABASE_URL
from modbot.database.models import Base
# Модели страйков регистрируются в Base.metadata при импорте
import modbot.database.models_strikes  # noqa: F401

# 2. Берем URL из переменной окружения
ALEMBIC_URL = os.getenv("ALEMBIC_URL") or DATABASE_URL

# 3. Доступ к конфигу alembic ini
config = context.config

# 4. Устанавливаем значение sqlalchemy.url
if ALEMBIC_URL:
    config.set_main_option("sqlalchemy.url", ALEMBIC_URL)

# 5. Настройка логов
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# 6. Метаданные моделей
target_metadata = Base.metadata


def _is_sqlite(url: str) -> bool:
    # SQLite не умеет ALTER большинства колонок - нужен batch режим
    return (url or "").startswith("sqlite")


def run_migrations_offline() -> None:
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=_is_sqlite(url),
    )

    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    connectable = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


def do_run_migrations(connection: Connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        render_as_batch=connection.dialect.name == "sqlite",
    )

    with context.begin_transaction():
        context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
