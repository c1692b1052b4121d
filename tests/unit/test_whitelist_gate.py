"""
Unit-тесты для исключений из модерации (modbot.services.whitelist_gate).
"""

from dataclasses import replace

from modbot.services.group_settings_service import DEFAULT_SETTINGS
from modbot.services.whitelist_gate import find_whitelisted_keyword, is_exempt

CHAT_ID = -100500


def settings_with(**overrides):
    return replace(DEFAULT_SETTINGS, **overrides)


class TestIsExempt:
    """Тесты для is_exempt."""

    # Тест: администратор чата не модерируется
    def test_chat_admin_exempt(self):
        assert is_exempt(CHAT_ID, 1, "buy now", DEFAULT_SETTINGS, [1, 2]) is True

    # Тест: модератор из настроек не модерируется
    def test_moderator_exempt(self):
        settings = settings_with(moderator_ids=frozenset({7}))
        assert is_exempt(CHAT_ID, 7, "buy now", settings, []) is True

    # Тест: обычный пользователь без ключевых слов модерируется
    def test_regular_user_not_exempt(self):
        assert is_exempt(CHAT_ID, 9, "buy now", DEFAULT_SETTINGS, [1]) is False

    # Тест: ключевое слово при включённом обходе - без учёта регистра
    def test_keyword_bypass(self):
        settings = settings_with(whitelisted_keywords=frozenset({"airdrop"}), keyword_whitelist_bypass=True)
        assert is_exempt(CHAT_ID, 9, "Official AIRDROP news", settings, []) is True

    # Тест: обход выключен - ключевое слово не освобождает
    def test_keyword_without_bypass(self):
        settings = settings_with(whitelisted_keywords=frozenset({"airdrop"}), keyword_whitelist_bypass=False)
        assert is_exempt(CHAT_ID, 9, "Official airdrop news", settings, []) is False

    # Тест: пустой текст
    def test_empty_text(self):
        settings = settings_with(whitelisted_keywords=frozenset({"airdrop"}))
        assert is_exempt(CHAT_ID, 9, None, settings, []) is False
        assert is_exempt(CHAT_ID, 9, "", settings, []) is False


class TestFindWhitelistedKeyword:
    """Тесты для find_whitelisted_keyword."""

    # Тест: при нескольких совпадениях - первое по алфавиту
    def test_deterministic_match(self):
        settings = settings_with(whitelisted_keywords=frozenset({"token", "airdrop"}))
        assert find_whitelisted_keyword("token airdrop", settings) == "airdrop"

    def test_no_match(self):
        settings = settings_with(whitelisted_keywords=frozenset({"token"}))
        assert find_whitelisted_keyword("hello world", settings) is None
