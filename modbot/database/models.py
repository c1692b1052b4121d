from sqlalchemy import Column, Integer, String, BigInteger, DateTime, Boolean, Text, UniqueConstraint
from sqlalchemy.orm import declarative_base
from datetime import datetime, timezone

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


# 👤 Пользователи (upsert при каждом сообщении)
class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(BigInteger, unique=True, nullable=False)
    username = Column(String, nullable=True, index=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    is_bot = Column(Boolean, default=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


# 🏠 Группы
class Group(Base):
    __tablename__ = "groups"

    id = Column(Integer, primary_key=True)
    chat_id = Column(BigInteger, unique=True, nullable=False)
    title = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


# ⚙️ Настройки чата: одна строка на пару (chat_id, key), значение хранится как JSON
# Отсутствующий ключ = значение по умолчанию (см. group_settings_service.DEFAULT_SETTINGS)
class ChatSetting(Base):
    __tablename__ = "chat_settings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    chat_id = Column(BigInteger, nullable=False, index=True)
    key = Column(String(64), nullable=False)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("chat_id", "key", name="uq_chat_settings_chat_key"),
    )


# ✅ Белый список ключевых слов (хранятся в нижнем регистре)
class WhitelistKeyword(Base):
    __tablename__ = "whitelist_keywords"

    id = Column(Integer, primary_key=True, autoincrement=True)
    chat_id = Column(BigInteger, nullable=False, index=True)
    keyword = Column(String(255), nullable=False)
    added_by = Column(BigInteger, nullable=True)
    added_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint("chat_id", "keyword", name="uq_whitelist_keywords_chat_keyword"),
    )
