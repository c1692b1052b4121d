# Импорт всех роутеров для удобного подключения
# Команды страйков и настроек (должны идти раньше координатора)
from .strike_commands import strike_commands_router
# Координатор сообщений в группах - единая точка входа модерации
from .group_message_coordinator import group_message_coordinator_router
# Повышение / снятие админов - сброс кэша админов
from .admin_changes import admin_changes_router

# Объединяем все роутеры в один
from aiogram import Router

handlers_router = Router()
handlers_router.include_router(strike_commands_router)
handlers_router.include_router(group_message_coordinator_router)
handlers_router.include_router(admin_changes_router)

__all__ = ["handlers_router"]
