# Инициализационный файл для пакета classifier services
# Внешний классификатор спама/мата и адаптер его результатов
from .client import OpenAIClassifier, ClassifierUnavailableError, has_local_profanity
from .adapter import (
    ClassificationAdapter,
    ClassificationResult,
    ProfanityType,
    FAIL_SAFE_RESULT,
)

# Определяем список экспортируемых имен
__all__ = [
    "OpenAIClassifier",
    "ClassifierUnavailableError",
    "has_local_profanity",
    "ClassificationAdapter",
    "ClassificationResult",
    "ProfanityType",
    "FAIL_SAFE_RESULT",
]
