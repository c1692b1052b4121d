# ============================================================
# КЛИЕНТ ВНЕШНЕГО КЛАССИФИКАТОРА (SPAM / PROFANITY)
# ============================================================
# Оценивает текст сообщения через OpenAI Chat Completions API
# (JSON-ответ модели) и локальные паттерны мата.
#
# Клиент возвращает «сырые» ответы модели:
#   analyze_spam      -> {"isSpam": bool, "score": 0.0-1.0}
#   analyze_profanity -> {"hasProfanity": bool, "severity": 0.0-1.0, "type": "..."}
#
# Проверку формы ответа, таймаут и безопасные значения по умолчанию
# делает ClassificationAdapter (adapter.py).
#
# Запросы идут через официальный SDK (openai.AsyncOpenAI).
# ============================================================

# Импортируем json для разбора ответа модели
import json
# Импортируем logging для логирования ошибок
import logging
# Импортируем re для локальных паттернов
import re
# Импортируем типы для аннотаций
from typing import Any, Dict, Iterable, Optional

# Импортируем клиент OpenAI
import openai
from openai import AsyncOpenAI

# Создаём логгер для этого модуля
logger = logging.getLogger(__name__)


# ============================================================
# КОНСТАНТЫ
# ============================================================
DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-4o-mini"
# Сколько ключевых слов белого списка передавать модели как контекст
WHITELIST_CONTEXT_LIMIT = 10

# Очевидный мат ловим локально, без запроса к API
PROFANITY_PATTERNS = [
    re.compile(r"\b(f[u*]+ck|sh[i*]+t|b[i*]+tch|d[a*]+mn|h[e*]+ll)\b", re.IGNORECASE),
    re.compile(r"\b(a[s*]+s|cr[a*]+p|p[i*]+ss|s[u*]+ck)\b", re.IGNORECASE),
]
# Оценка для локального срабатывания
LOCAL_PROFANITY_SEVERITY = 0.8

SPAM_SYSTEM_PROMPT = """Analyze if this message is promotional spam in a crypto/Web3 Telegram chat.

SPAM indicators (high score 0.7-1.0):
- External project promotion/links
- DM requests from strangers
- Phishing/scam attempts
- Admin impersonation
- Unsolicited trading signals

ACCEPTABLE (low score 0.0-0.3):
- Community discussion/hype
- Price talk ("moon", "100x")
- Project enthusiasm
- Partnership news

Output JSON: {"isSpam": boolean, "score": 0.0-1.0}"""

PROFANITY_SYSTEM_PROMPT = """Analyze this message for profanity, offensive language, or inappropriate content.

Consider:
- Explicit profanity/swearing
- Hate speech or slurs
- Sexual content
- Harassment language
- Toxic behavior

Context: Telegram group chat moderation.

Output JSON: {"hasProfanity": boolean, "severity": 0.0-1.0, "type": "explicit|implicit|hate|sexual|toxic|clean"}"""


class ClassifierUnavailableError(Exception):
    """
    Классификатор недоступен: нет ключа API, ошибка API или сети,
    таймаут, или ответ не удалось разобрать.
    """
    pass


def has_local_profanity(text: str) -> bool:
    """Быстрая локальная проверка на очевидный мат."""
    return any(pattern.search(text) for pattern in PROFANITY_PATTERNS)


class OpenAIClassifier:
    """
    Классификатор сообщений на основе OpenAI Chat Completions.

    Пример использования:
        classifier = OpenAIClassifier(api_key=OPENAI_API_KEY)
        spam = await classifier.analyze_spam("Join my channel!", [])
        if spam["score"] > 0.85:
            ...
    """

    def __init__(
        self,
        api_key: Optional[str],
        model: str = DEFAULT_MODEL,
        base_url: str = DEFAULT_BASE_URL,
        request_timeout: float = 10,
        client: Optional[AsyncOpenAI] = None,
    ):
        """
        Args:
            api_key: Ключ OpenAI (None или пустая строка - классификатор отключён)
            model: Имя модели
            base_url: Адрес API (совместимые сервера тоже подходят)
            request_timeout: Таймаут одного запроса, сек
            client: Готовый AsyncOpenAI (для тестов)
        """
        self._model = model
        # Без повторов: таймаут и безопасный результат на стороне адаптера
        if client is None and api_key:
            client = AsyncOpenAI(
                api_key=api_key,
                base_url=base_url,
                timeout=request_timeout,
                max_retries=0,
            )
        self._client = client
        # Предупреждение об отсутствии ключа пишем один раз
        self._missing_key_logged = False

    async def _complete(self, system_prompt: str, text: str, max_tokens: int) -> Dict[str, Any]:
        """Один запрос к модели. Возвращает разобранный JSON из ответа."""
        if self._client is None:
            if not self._missing_key_logged:
                logger.warning("[CLASSIFIER] ⚠️ OPENAI_API_KEY не задан, классификатор отключён")
                self._missing_key_logged = True
            raise ClassifierUnavailableError("OPENAI_API_KEY is not set")

        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": text},
                ],
                response_format={"type": "json_object"},
                max_tokens=max_tokens,
                temperature=0.1,
            )
        except openai.APITimeoutError as e:
            raise ClassifierUnavailableError("timeout") from e
        except openai.APIError as e:
            raise ClassifierUnavailableError(f"api error: {e}") from e

        try:
            content = response.choices[0].message.content
            return json.loads(content)
        except (AttributeError, IndexError, TypeError, ValueError) as e:
            raise ClassifierUnavailableError(f"malformed response: {e}") from e

    async def analyze_spam(self, text: str, whitelist: Iterable[str] = ()) -> Dict[str, Any]:
        """
        Оценка «рекламности» сообщения.

        Args:
            text: Текст сообщения (уже обрезанный)
            whitelist: Разрешённые темы; первые 10 передаются модели как контекст

        Returns:
            {"isSpam": bool, "score": float}
        """
        system_prompt = SPAM_SYSTEM_PROMPT
        keywords = list(whitelist)[:WHITELIST_CONTEXT_LIMIT]
        if keywords:
            keyword_list = ", ".join(keywords)
            system_prompt += f"\n\nWhitelisted topics (consider acceptable): {keyword_list}"
            logger.debug(f"[CLASSIFIER] Контекст белого списка: [{keyword_list}]")

        result = await self._complete(system_prompt, text, max_tokens=100)
        logger.debug(f"[CLASSIFIER] spam: {result}")
        return result

    async def analyze_profanity(self, text: str) -> Dict[str, Any]:
        """
        Оценка мата и оскорблений.

        Очевидный мат определяется локально без запроса к API.

        Returns:
            {"hasProfanity": bool, "severity": float, "type": str}
        """
        if has_local_profanity(text):
            logger.debug("[CLASSIFIER] Мат найден локальными паттернами")
            return {"hasProfanity": True, "severity": LOCAL_PROFANITY_SEVERITY, "type": "explicit"}

        result = await self._complete(PROFANITY_SYSTEM_PROMPT, text, max_tokens=80)
        logger.debug(f"[CLASSIFIER] profanity: {result}")
        return result
