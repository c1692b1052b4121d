# ═══════════════════════════════════════════════════════════════════════════
# КОМАНДЫ СТРАЙКОВ И НАСТРОЕК ГРУППЫ
# ═══════════════════════════════════════════════════════════════════════════
# Команды админов и модераторов (в группе):
# - /addstrike <цель> <кол-во> [причина]
# - /removestrike <цель> [кол-во=1] [причина]
# - /setstrike <цель> <кол-во> [причина]
# - /checkstrikes <цель>        → отчёт в ЛС
# - /auditlog                   → последние события в ЛС
# - /status                     → настройки и удаления за сегодня
# - /setting <ключ> <значение>
# - /keyword add|remove|list [слово]
#
# Команда для всех:
# - /mystrikes                  → свой отчёт в ЛС (если ЛС закрыты - в группу)
#
# Цель: ответ на сообщение, @username (из таблицы users) или числовой id.
# ═══════════════════════════════════════════════════════════════════════════

import logging
import re
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple

from aiogram import Router, F
from aiogram.filters import Command
from aiogram.types import Message
from sqlalchemy.ext.asyncio import AsyncSession

# Импортируем сервисы
from modbot.database.models_strikes import AuditEventType, AuditLogEntry
from modbot.database.queries import find_user_by_username, get_user, upsert_user
from modbot.services.admin_cache import AdminCache
from modbot.services.group_settings_service import (
    GroupSettings,
    SETTING_COERCERS,
    add_whitelist_keyword,
    get_group_settings,
    list_whitelist_keywords,
    remove_whitelist_keyword,
    update_setting,
)
from modbot.services.strikes import (
    LedgerTransactionError,
    add_strikes,
    count_today,
    get_history,
    get_recent_entries,
    get_strikes,
    remove_strikes,
    set_strikes,
)
from modbot.services.transport import TelegramTransport
from modbot.utils.html_utils import display_name, escape_html

# Создаём роутер для команд
strike_commands_router = Router(name="strike_commands")

# Настраиваем логгер
logger = logging.getLogger(__name__)

# Команды работают только в группах
GROUP_CHAT_TYPES = {"group", "supergroup"}

# Через сколько секунд удалять подтверждение "отправил в ЛС"
CONFIRMATION_DELETE_SECONDS = 5

# Сколько записей показывать в отчётах
HISTORY_LIMIT = 10
AUDIT_LOG_LIMIT = 15


# ═══════════════════════════════════════════════════════════════════════════
# ПАРСИНГ КОМАНД
# ═══════════════════════════════════════════════════════════════════════════
@dataclass
class ParsedCommand:
    """Результат парсинга команды с целью."""
    target: Optional[str] = None
    # 'reply' | 'username' | 'user_id' | None
    target_type: Optional[str] = None
    args: List[str] = field(default_factory=list)


def strip_command(text: str) -> str:
    """Убирает /команду (и /команду@botname) из начала текста."""
    return re.sub(r'^/\w+(@\w+)?\s*', '', text or '').strip()


def strip_command_name(text: str) -> str:
    """'/addstrike@bot 2' -> 'addstrike'"""
    match = re.match(r'^/(\w+)', text or '')
    return match.group(1).lower() if match else ''


def parse_target_command(text: str, has_reply: bool = False) -> ParsedCommand:
    """
    Извлекает цель и остальные аргументы.

    Форматы:
    1. /cmd @username 2 спам  → username, args=['2', 'спам']
    2. /cmd 123456789 2       → user_id,  args=['2']
    3. (ответом) /cmd 2 спам  → reply,    args=['2', 'спам']

    При ответе на сообщение число первым аргументом считается
    количеством, а не id.
    """
    parts = strip_command(text).split()
    result = ParsedCommand()

    if parts and parts[0].startswith('@') and len(parts[0]) > 1:
        result.target = parts[0]
        result.target_type = 'username'
        result.args = parts[1:]
    elif has_reply:
        result.target_type = 'reply'
        result.args = parts
    elif parts and parts[0].isdigit():
        result.target = parts[0]
        result.target_type = 'user_id'
        result.args = parts[1:]
    else:
        result.args = parts

    return result


def parse_amount(args: List[str], default: Optional[int] = None, allow_zero: bool = False) -> Tuple[int, Optional[str]]:
    """
    Количество из первого аргумента и причина из остальных.

    Raises:
        ValueError: нет количества (и нет default) или оно некорректно
    """
    if not args:
        if default is None:
            raise ValueError("не указано количество")
        return default, None

    try:
        amount = int(args[0])
    except ValueError:
        raise ValueError(f"некорректное количество: {args[0]}")

    if amount < 0 or (amount == 0 and not allow_zero):
        raise ValueError(f"некорректное количество: {amount}")

    reason = " ".join(args[1:]) or None
    return amount, reason


# ═══════════════════════════════════════════════════════════════════════════
# ХЕЛПЕРЫ: ПРАВА, ЦЕЛЬ, ОТВЕТЫ
# ═══════════════════════════════════════════════════════════════════════════
def is_anonymous_admin(message: Message) -> bool:
    """Админ пишет от имени группы: sender_chat == chat."""
    return (
        message.sender_chat is not None
        and message.sender_chat.id == message.chat.id
    )


async def check_moderator(
    message: Message,
    session: AsyncSession,
    transport: TelegramTransport,
    admin_cache: AdminCache,
) -> Optional[GroupSettings]:
    """
    Проверяет что отправитель - админ чата или модератор из настроек.

    Returns:
        Снимок настроек группы, если права есть, иначе None
        (в этом случае пользователю уже отправлен отказ)
    """
    settings = await get_group_settings(session, message.chat.id)

    if is_anonymous_admin(message):
        return settings

    user_id = message.from_user.id if message.from_user else None
    admin_ids = await admin_cache.get_admin_ids(message.chat.id, transport.get_chat_admins)
    if user_id is not None and (user_id in admin_ids or user_id in settings.moderator_ids):
        return settings

    await message.answer("❌ Эта команда доступна только администраторам и модераторам.")
    logger.info(f"[STRIKE_CMD] Отказ: user={user_id} chat={message.chat.id} text={message.text!r}")
    return None


def actor_from_message(message: Message) -> dict:
    """Кто выполнил ручное действие - для записи в журнал."""
    if message.from_user is None or is_anonymous_admin(message):
        return {"id": message.chat.id, "name": message.chat.title or "admin"}
    return {"id": message.from_user.id, "name": message.from_user.full_name}


async def resolve_target(
    session: AsyncSession,
    message: Message,
    parsed: ParsedCommand,
) -> Optional[Tuple[int, str]]:
    """
    Определяет id и имя цели команды.

    Returns:
        (user_id, имя) или None, если цель не найдена
    """
    if parsed.target_type == 'reply' and message.reply_to_message:
        user = message.reply_to_message.from_user
        if user is None:
            return None
        await upsert_user(session, user.id, user.username, user.first_name, user.last_name, bool(user.is_bot))
        return user.id, user.full_name

    if parsed.target_type == 'username':
        db_user = await find_user_by_username(session, parsed.target)
        if db_user is None:
            return None
        return db_user.user_id, display_name(
            db_user.user_id, db_user.username, db_user.first_name, db_user.last_name
        )

    if parsed.target_type == 'user_id':
        user_id = int(parsed.target)
        db_user = await get_user(session, user_id)
        if db_user is None:
            return user_id, f"id{user_id}"
        return user_id, display_name(user_id, db_user.username, db_user.first_name, db_user.last_name)

    return None


async def reply_privately(transport: TelegramTransport, message: Message, text: str) -> bool:
    """
    Отправляет ответ в ЛС, если не вышло - в группу.

    Returns:
        True если ответ ушёл в ЛС
    """
    user = message.from_user
    if user is not None and not is_anonymous_admin(message):
        sent_id = await transport.send_message(user.id, text)
        if sent_id is not None:
            confirm_id = await transport.send_message(
                message.chat.id, f"📬 {escape_html(user.first_name)}, отправил ответ в личные сообщения."
            )
            if confirm_id is not None:
                transport.schedule_deletion(message.chat.id, confirm_id, CONFIRMATION_DELETE_SECONDS)
            return True

    # ЛС закрыты (бот не может начать диалог) - отвечаем в группе
    await message.answer(text, parse_mode="HTML")
    return False


# ═══════════════════════════════════════════════════════════════════════════
# ФОРМАТИРОВАНИЕ ОТЧЁТОВ
# ═══════════════════════════════════════════════════════════════════════════
def format_actor(actor: Any) -> str:
    if isinstance(actor, dict):
        return str(actor.get("name") or actor.get("id") or "?")
    return str(actor)


def describe_entry(entry: AuditLogEntry) -> str:
    """Одна строка отчёта по записи журнала."""
    payload = entry.payload or {}
    event_type = entry.event_type
    when = entry.created_at.strftime("%d.%m.%Y %H:%M") if entry.created_at else "?"

    if event_type == AuditEventType.STRIKE:
        text = f"🔥 Авто-страйк #{payload.get('strike_count', '?')}"
        if payload.get("excerpt"):
            text += f": «{escape_html(payload['excerpt'])}»"
    elif event_type == AuditEventType.VIOLATION:
        text = f"🚫 Нарушение {payload.get('violation_type', '?')}"
    elif event_type == AuditEventType.PENALTY:
        status = "✅" if payload.get("success") else "❌"
        text = f"⚖️ Наказание {payload.get('action', '?')} {status}"
    elif event_type == AuditEventType.MANUAL_STRIKE_ADD:
        text = f"🛡️ Добавлено страйков: {payload.get('amount')} ({escape_html(format_actor(payload.get('actor')))})"
    elif event_type == AuditEventType.MANUAL_STRIKE_REMOVE:
        text = f"🛡️ Снято страйков: {payload.get('amount')} ({escape_html(format_actor(payload.get('actor')))})"
    elif event_type == AuditEventType.MANUAL_STRIKE_SET:
        text = f"🛡️ Страйки установлены: {payload.get('amount')} ({escape_html(format_actor(payload.get('actor')))})"
    elif event_type == AuditEventType.STRIKE_EXPIRED:
        text = f"⌛ Страйки сгорели ({payload.get('expiration_days')} дн.)"
    else:
        text = str(getattr(event_type, "value", event_type))

    if payload.get("reason"):
        text += f"\n   💬 {escape_html(payload['reason'])}"

    return f"📅 {when} · {text}"


def format_strike_report(name: str, chat_title: str, count: int, history: List[AuditLogEntry]) -> str:
    lines = [
        f"⚖️ <b>Страйки: {escape_html(name)}</b>",
        f"Группа: {escape_html(chat_title)}",
        f"Текущие страйки: <b>{count}</b>",
    ]
    if history:
        lines.append(f"\nПоследние события ({len(history)}):")
        lines.extend(describe_entry(entry) for entry in history)
    else:
        lines.append("\n<i>История пуста.</i>")
    return "\n".join(lines)


def format_audit_log(chat_title: str, entries: List[AuditLogEntry]) -> str:
    if not entries:
        return f"📋 В журнале группы «{escape_html(chat_title)}» пока нет событий."
    lines = [f"📋 <b>Журнал модерации: {escape_html(chat_title)}</b>", ""]
    for entry in entries:
        lines.append(f"👤 {entry.user_id} · {describe_entry(entry)}")
    return "\n".join(lines)


def _on_off(value: bool) -> str:
    return "ВКЛ" if value else "ВЫКЛ"


def format_status(chat_title: str, settings: GroupSettings, deletions_today: int) -> str:
    keywords = ", ".join(sorted(settings.whitelisted_keywords)) or "нет"
    moderators = ", ".join(str(i) for i in sorted(settings.moderator_ids)) or "нет"
    return (
        f"📊 <b>Настройки модерации: {escape_html(chat_title)}</b>\n\n"
        f"<b>⚖️ Уровни наказаний</b> (0 = выключено)\n"
        f"• alert_level: <code>{settings.alert_level}</code>\n"
        f"• mute_level: <code>{settings.mute_level}</code>\n"
        f"• kick_level: <code>{settings.kick_level}</code>\n"
        f"• ban_level: <code>{settings.ban_level}</code>\n\n"
        f"<b>🧠 Классификация</b>\n"
        f"• spam_threshold: <code>{settings.spam_threshold}</code>\n"
        f"• profanity_enabled: <code>{_on_off(settings.profanity_enabled)}</code>\n"
        f"• profanity_threshold: <code>{settings.profanity_threshold}</code>\n"
        f"• keyword_whitelist_bypass: <code>{_on_off(settings.keyword_whitelist_bypass)}</code>\n\n"
        f"<b>⚙️ Прочее</b>\n"
        f"• mute_duration_minutes: <code>{settings.mute_duration_minutes}</code>\n"
        f"• warning_message_delete_seconds: <code>{settings.warning_message_delete_seconds}</code>\n"
        f"• strike_expiration_days: <code>{settings.strike_expiration_days}</code>\n"
        f"• good_behavior_days: <code>{settings.good_behavior_days}</code>\n"
        f"• Ключевые слова: <code>{escape_html(keywords)}</code>\n"
        f"• Модераторы: <code>{moderators}</code>\n\n"
        f"<b>📈 Статистика</b>\n"
        f"• Удалено сегодня: <code>{deletions_today}</code>"
    )


# ═══════════════════════════════════════════════════════════════════════════
# /addstrike /removestrike /setstrike
# ═══════════════════════════════════════════════════════════════════════════
USAGE = {
    "addstrike": "/addstrike <@user|id> <кол-во> [причина] (или ответом на сообщение)",
    "removestrike": "/removestrike <@user|id> [кол-во=1] [причина] (или ответом на сообщение)",
    "setstrike": "/setstrike <@user|id> <кол-во> [причина] (или ответом на сообщение)",
    "checkstrikes": "/checkstrikes <@user|id> (или ответом на сообщение)",
}


@strike_commands_router.message(
    Command("addstrike", "removestrike", "setstrike"),
    F.chat.type.in_(GROUP_CHAT_TYPES),
)
async def manual_strike_command(
    message: Message,
    session: AsyncSession,
    transport: TelegramTransport,
    admin_cache: AdminCache,
):
    """Ручное изменение страйков администратором."""
    command = strip_command_name(message.text)
    settings = await check_moderator(message, session, transport, admin_cache)
    if settings is None:
        return

    parsed = parse_target_command(message.text, has_reply=message.reply_to_message is not None)
    if parsed.target_type is None:
        await message.answer(f"ℹ️ Использование: <code>{escape_html(USAGE[command])}</code>", parse_mode="HTML")
        return

    target = await resolve_target(session, message, parsed)
    if target is None:
        await message.answer(
            f"❌ Пользователь {escape_html(parsed.target or '')} не найден. "
            f"Он должен написать в группу хотя бы одно сообщение."
        )
        return
    target_id, target_name = target

    try:
        if command == "addstrike":
            amount, reason = parse_amount(parsed.args)
        elif command == "removestrike":
            amount, reason = parse_amount(parsed.args, default=1)
        else:
            amount, reason = parse_amount(parsed.args, allow_zero=True)
    except ValueError as e:
        await message.answer(
            f"❌ {escape_html(str(e))}\nℹ️ Использование: <code>{escape_html(USAGE[command])}</code>",
            parse_mode="HTML",
        )
        return

    chat_id = message.chat.id
    actor = actor_from_message(message)

    try:
        before = await get_strikes(session, chat_id, target_id)
        if command == "addstrike":
            new_count = await add_strikes(session, chat_id, target_id, amount, actor, reason)
            change = f"+{amount}"
        elif command == "removestrike":
            new_count = await remove_strikes(session, chat_id, target_id, amount, actor, reason)
            change = f"-{amount}"
        else:
            new_count = await set_strikes(session, chat_id, target_id, amount, actor, reason)
            change = f"={amount}"
    except LedgerTransactionError as e:
        logger.error(f"[STRIKE_CMD] ❌ /{command} chat={chat_id} target={target_id}: {e}")
        await message.answer("❌ Не удалось сохранить изменение, попробуйте ещё раз.")
        return

    await message.answer(
        f"✅ Страйки {escape_html(target_name)}: {before.count} → {new_count} ({change})",
        parse_mode="HTML",
    )
    logger.info(
        f"[STRIKE_CMD] /{command}: chat={chat_id}, target={target_id}, "
        f"{before.count} -> {new_count}, by={actor['id']}"
    )


# ═══════════════════════════════════════════════════════════════════════════
# /checkstrikes /mystrikes
# ═══════════════════════════════════════════════════════════════════════════
async def build_strike_report(
    session: AsyncSession,
    chat_id: int,
    chat_title: str,
    user_id: int,
    name: str,
    settings: GroupSettings,
) -> str:
    snapshot = await get_strikes(session, chat_id, user_id, expiration_days=settings.strike_expiration_days)
    history = await get_history(session, chat_id, user_id, limit=HISTORY_LIMIT)
    return format_strike_report(name, chat_title, snapshot.count, history)


@strike_commands_router.message(Command("checkstrikes"), F.chat.type.in_(GROUP_CHAT_TYPES))
async def check_strikes_command(
    message: Message,
    session: AsyncSession,
    transport: TelegramTransport,
    admin_cache: AdminCache,
):
    settings = await check_moderator(message, session, transport, admin_cache)
    if settings is None:
        return

    parsed = parse_target_command(message.text, has_reply=message.reply_to_message is not None)
    target = await resolve_target(session, message, parsed) if parsed.target_type else None
    if target is None:
        await message.answer(
            f"ℹ️ Использование: <code>{escape_html(USAGE['checkstrikes'])}</code>", parse_mode="HTML"
        )
        return

    target_id, target_name = target
    report = await build_strike_report(
        session, message.chat.id, message.chat.title or str(message.chat.id), target_id, target_name, settings
    )
    await reply_privately(transport, message, report)


@strike_commands_router.message(Command("mystrikes"), F.chat.type.in_(GROUP_CHAT_TYPES))
async def my_strikes_command(
    message: Message,
    session: AsyncSession,
    transport: TelegramTransport,
):
    """Отчёт о своих страйках - доступен всем участникам."""
    user = message.from_user
    if user is None or is_anonymous_admin(message):
        return

    settings = await get_group_settings(session, message.chat.id)
    report = await build_strike_report(
        session, message.chat.id, message.chat.title or str(message.chat.id), user.id, user.full_name, settings
    )
    await reply_privately(transport, message, report)


# ═══════════════════════════════════════════════════════════════════════════
# /auditlog /status
# ═══════════════════════════════════════════════════════════════════════════
@strike_commands_router.message(Command("auditlog"), F.chat.type.in_(GROUP_CHAT_TYPES))
async def audit_log_command(
    message: Message,
    session: AsyncSession,
    transport: TelegramTransport,
    admin_cache: AdminCache,
):
    if await check_moderator(message, session, transport, admin_cache) is None:
        return

    entries = await get_recent_entries(session, message.chat.id, limit=AUDIT_LOG_LIMIT)
    await reply_privately(transport, message, format_audit_log(message.chat.title or str(message.chat.id), entries))


@strike_commands_router.message(Command("status"), F.chat.type.in_(GROUP_CHAT_TYPES))
async def status_command(
    message: Message,
    session: AsyncSession,
    transport: TelegramTransport,
    admin_cache: AdminCache,
):
    settings = await check_moderator(message, session, transport, admin_cache)
    if settings is None:
        return

    deletions_today = await count_today(session, message.chat.id)
    await message.answer(
        format_status(message.chat.title or str(message.chat.id), settings, deletions_today),
        parse_mode="HTML",
    )


# ═══════════════════════════════════════════════════════════════════════════
# /setting /keyword
# ═══════════════════════════════════════════════════════════════════════════
@strike_commands_router.message(Command("setting"), F.chat.type.in_(GROUP_CHAT_TYPES))
async def setting_command(
    message: Message,
    session: AsyncSession,
    transport: TelegramTransport,
    admin_cache: AdminCache,
):
    """/setting <ключ> <значение> - изменение одной настройки."""
    if await check_moderator(message, session, transport, admin_cache) is None:
        return

    parts = strip_command(message.text).split(maxsplit=1)
    if len(parts) < 2:
        keys = ", ".join(sorted(SETTING_COERCERS))
        await message.answer(
            f"ℹ️ Использование: <code>/setting &lt;ключ&gt; &lt;значение&gt;</code>\n"
            f"Ключи: <code>{keys}</code>",
            parse_mode="HTML",
        )
        return

    key, raw_value = parts[0].lower(), parts[1].strip()
    try:
        value = await update_setting(session, message.chat.id, key, raw_value)
    except ValueError as e:
        await message.answer(f"❌ {escape_html(str(e))}", parse_mode="HTML")
        return

    if isinstance(value, frozenset):
        value = ", ".join(str(v) for v in sorted(value)) or "пусто"
    await message.answer(
        f"✅ <code>{escape_html(key)}</code> = <code>{escape_html(str(value))}</code>",
        parse_mode="HTML",
    )
    logger.info(f"[STRIKE_CMD] /setting chat={message.chat.id}: {key}={value}")


@strike_commands_router.message(Command("keyword"), F.chat.type.in_(GROUP_CHAT_TYPES))
async def keyword_command(
    message: Message,
    session: AsyncSession,
    transport: TelegramTransport,
    admin_cache: AdminCache,
):
    """/keyword add|remove|list [слово] - белый список ключевых слов."""
    if await check_moderator(message, session, transport, admin_cache) is None:
        return

    parts = strip_command(message.text).split(maxsplit=1)
    action = parts[0].lower() if parts else ""
    word = parts[1].strip() if len(parts) > 1 else ""
    chat_id = message.chat.id

    if action == "list":
        keywords = await list_whitelist_keywords(session, chat_id)
        if keywords:
            text = "📝 Ключевые слова:\n" + "\n".join(f"• {escape_html(k)}" for k in keywords)
        else:
            text = "📝 Белый список ключевых слов пуст."
        await message.answer(text, parse_mode="HTML")
        return

    if action not in ("add", "remove") or not word:
        await message.answer(
            "ℹ️ Использование: <code>/keyword add|remove &lt;слово&gt;</code> или <code>/keyword list</code>",
            parse_mode="HTML",
        )
        return

    if action == "add":
        added_by = message.from_user.id if message.from_user else None
        changed = await add_whitelist_keyword(session, chat_id, word, added_by=added_by)
        text = f"✅ Добавлено: {escape_html(word.lower())}" if changed else f"ℹ️ Уже в списке: {escape_html(word.lower())}"
    else:
        changed = await remove_whitelist_keyword(session, chat_id, word)
        text = f"✅ Удалено: {escape_html(word.lower())}" if changed else f"ℹ️ Нет в списке: {escape_html(word.lower())}"

    await message.answer(text, parse_mode="HTML")
    logger.info(f"[STRIKE_CMD] /keyword {action} chat={chat_id}: {word!r} changed={changed}")
