# modbot/services/classifier/adapter.py
"""
Нормализация ответа классификатора в ClassificationResult.

Гарантии для вызывающего кода:
- classify() никогда не бросает исключений
- пустой/нестроковый текст -> «чистый» результат без вызова классификатора
- длинный текст обрезается до max_text_length (+ "...")
- спам и мат оцениваются параллельно; ошибка, таймаут или кривой ответ
  в одной половине даёт безопасное значение только для этой половины
- скоры всегда в [0, 1]; is_spam / has_profanity считаются по порогам
  группы, булевым значениям из ответа модели не доверяем
"""

# Импортируем asyncio для параллельного запуска и таймаутов
import asyncio
# Импортируем enum для типа мата
import enum
# Импортируем logging для логирования ошибок
import logging
# Импортируем math для проверки NaN/inf
import math
# Импортируем dataclass для результата
from dataclasses import dataclass
# Импортируем типы для аннотаций
from typing import Any, Awaitable, Dict, Iterable, Optional, Protocol, Tuple

# Создаём логгер для этого модуля
logger = logging.getLogger(__name__)


# ============================================================
# ТИПЫ
# ============================================================

class ProfanityType(str, enum.Enum):
    NONE = "none"
    EXPLICIT = "explicit"
    IMPLICIT = "implicit"
    HATE = "hate"
    SEXUAL = "sexual"
    TOXIC = "toxic"

    @classmethod
    def parse(cls, value: Any) -> "ProfanityType":
        """Тип из ответа модели; "clean" и неизвестные значения -> NONE."""
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        return cls.NONE


@dataclass(frozen=True)
class ClassificationResult:
    """
    Нормализованный результат классификации.

    Attributes:
        spam_score: Оценка спама 0..1
        is_spam: spam_score >= порога спама группы
        profanity_score: Оценка мата 0..1
        has_profanity: profanity_score >= порога мата группы
        profanity_type: Тип мата (NONE если мата нет)
        degraded: Хотя бы одна половина взята из безопасного значения
    """
    spam_score: float = 0.0
    is_spam: bool = False
    profanity_score: float = 0.0
    has_profanity: bool = False
    profanity_type: ProfanityType = ProfanityType.NONE
    degraded: bool = False


# Безопасный результат: ничего не нарушено
FAIL_SAFE_RESULT = ClassificationResult()


class Classifier(Protocol):
    """Контракт внешнего классификатора (см. OpenAIClassifier)."""

    def analyze_spam(self, text: str, whitelist: Iterable[str]) -> Awaitable[Dict[str, Any]]:
        ...

    def analyze_profanity(self, text: str) -> Awaitable[Dict[str, Any]]:
        ...


class MalformedResponseError(ValueError):
    """Ответ классификатора не соответствует ожидаемой форме."""
    pass


# ============================================================
# ВСПОМОГАТЕЛЬНЫЕ ФУНКЦИИ
# ============================================================

def clamp_score(value: Any) -> float:
    """
    Приводит оценку к [0, 1].

    Raises:
        MalformedResponseError: не число, bool, NaN
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedResponseError(f"score must be a number, got {value!r}")
    if math.isnan(value):
        raise MalformedResponseError("score is NaN")
    return min(1.0, max(0.0, float(value)))


def meets_threshold(score: float, threshold: float) -> bool:
    return score >= threshold


# ============================================================
# АДАПТЕР
# ============================================================

class ClassificationAdapter:
    """
    Обёртка над классификатором с таймаутом и безопасными значениями.

    Пример использования:
        adapter = ClassificationAdapter(OpenAIClassifier(api_key), timeout_seconds=10)
        result = await adapter.classify(text, [], spam_threshold=0.85, profanity_threshold=0.7)
    """

    def __init__(
        self,
        classifier: Classifier,
        timeout_seconds: float = 10,
        max_text_length: int = 4000,
    ):
        self._classifier = classifier
        self._timeout = timeout_seconds
        self._max_text_length = max_text_length

    def normalize_text(self, text: Any) -> Optional[str]:
        """Обрезает пробелы и длину. None - нечего классифицировать."""
        if not isinstance(text, str):
            return None
        text = text.strip()
        if not text:
            return None
        if len(text) > self._max_text_length:
            text = text[:self._max_text_length] + "..."
        return text

    async def _spam_half(self, text: str, whitelist: Iterable[str]) -> Tuple[float, bool]:
        """(spam_score, degraded)"""
        try:
            raw = await asyncio.wait_for(
                self._classifier.analyze_spam(text, list(whitelist)),
                timeout=self._timeout,
            )
            if not isinstance(raw, dict) or "score" not in raw:
                raise MalformedResponseError(f"unexpected spam response: {raw!r}")
            return clamp_score(raw["score"]), False
        except asyncio.TimeoutError:
            logger.warning(f"[CLASSIFIER] ⚠️ Таймаут анализа спама ({self._timeout} сек), безопасный результат")
        except Exception as e:
            logger.warning(f"[CLASSIFIER] ⚠️ Анализ спама недоступен: {type(e).__name__}: {e}")
        return 0.0, True

    async def _profanity_half(self, text: str) -> Tuple[float, ProfanityType, bool]:
        """(profanity_score, profanity_type, degraded)"""
        try:
            raw = await asyncio.wait_for(
                self._classifier.analyze_profanity(text),
                timeout=self._timeout,
            )
            if not isinstance(raw, dict) or "severity" not in raw:
                raise MalformedResponseError(f"unexpected profanity response: {raw!r}")
            return clamp_score(raw["severity"]), ProfanityType.parse(raw.get("type")), False
        except asyncio.TimeoutError:
            logger.warning(f"[CLASSIFIER] ⚠️ Таймаут анализа мата ({self._timeout} сек), безопасный результат")
        except Exception as e:
            logger.warning(f"[CLASSIFIER] ⚠️ Анализ мата недоступен: {type(e).__name__}: {e}")
        return 0.0, ProfanityType.NONE, True

    async def _skipped_profanity(self) -> Tuple[float, ProfanityType, bool]:
        return 0.0, ProfanityType.NONE, False

    async def classify(
        self,
        text: Any,
        whitelisted_keywords: Iterable[str] = (),
        spam_threshold: float = 0.85,
        profanity_threshold: float = 0.7,
        check_profanity: bool = True,
    ) -> ClassificationResult:
        """
        Оценивает сообщение.

        Args:
            text: Текст сообщения
            whitelisted_keywords: Контекст для модели (разрешённые темы)
            spam_threshold: Порог спама группы
            profanity_threshold: Порог мата группы
            check_profanity: False - мат не проверяется

        Returns:
            ClassificationResult (никогда не бросает)
        """
        normalized = self.normalize_text(text)
        if normalized is None:
            return FAIL_SAFE_RESULT

        profanity_call = (
            self._profanity_half(normalized) if check_profanity else self._skipped_profanity()
        )
        (spam_score, spam_degraded), (profanity_score, profanity_type, profanity_degraded) = (
            await asyncio.gather(self._spam_half(normalized, whitelisted_keywords), profanity_call)
        )

        # Безопасное значение упавшей половины никогда не считается нарушением
        has_profanity = (
            check_profanity
            and not profanity_degraded
            and meets_threshold(profanity_score, profanity_threshold)
        )
        return ClassificationResult(
            spam_score=spam_score,
            is_spam=not spam_degraded and meets_threshold(spam_score, spam_threshold),
            profanity_score=profanity_score,
            has_profanity=has_profanity,
            profanity_type=profanity_type if has_profanity else ProfanityType.NONE,
            degraded=spam_degraded or profanity_degraded,
        )
