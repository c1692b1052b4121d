# modbot/handlers/admin_changes.py
"""
Сброс кэша админов при повышении или снятии администратора.

Админы не модерируются, поэтому новый админ должен попасть в список
сразу, а снятый - перестать быть исключением, не дожидаясь TTL кэша.
"""
import logging

from aiogram import Router
from aiogram.filters import ChatMemberUpdatedFilter
from aiogram.filters.chat_member_updated import IS_ADMIN, KICKED, LEFT, MEMBER, RESTRICTED
from aiogram.types import ChatMemberUpdated

from modbot.services.admin_cache import AdminCache

logger = logging.getLogger(__name__)

admin_changes_router = Router(name="admin_changes")

_NOT_ADMIN = MEMBER | RESTRICTED | LEFT | KICKED
_PROMOTED_FILTER = ChatMemberUpdatedFilter(member_status_changed=_NOT_ADMIN >> IS_ADMIN)
_DEMOTED_FILTER = ChatMemberUpdatedFilter(member_status_changed=IS_ADMIN >> _NOT_ADMIN)


@admin_changes_router.chat_member(_PROMOTED_FILTER)
@admin_changes_router.chat_member(_DEMOTED_FILTER)
async def admin_list_changed(event: ChatMemberUpdated, admin_cache: AdminCache):
    await admin_cache.invalidate(event.chat.id)
    logger.info(
        f"[ADMIN_CACHE] 🔄 Список админов изменился: chat={event.chat.id}, "
        f"user={event.new_chat_member.user.id}, "
        f"{event.old_chat_member.status} → {event.new_chat_member.status}"
    )
