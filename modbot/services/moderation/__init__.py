# Инициализационный файл для пакета moderation services
# Оркестратор модерации и тексты предупреждений
from .orchestrator import (
    ModerationOrchestrator,
    ModerationOutcome,
    ModerationState,
    InboundMessage,
)
from .alerts import render_alert, render_forgiveness_notice

# Определяем список экспортируемых имен
__all__ = [
    "ModerationOrchestrator",
    "ModerationOutcome",
    "ModerationState",
    "InboundMessage",
    "render_alert",
    "render_forgiveness_notice",
]
