#!/usr/bin/env python3
"""
Главный файл для запуска бота модерации
"""

import asyncio

from modbot.bot import main

if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\n🛑 Бот остановлен пользователем")
