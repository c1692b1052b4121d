"""
Unit-тесты для счётчика страйков (modbot.services.strikes.ledger).

Проверяем:
- Атомарный инкремент и запись STRIKE в одной транзакции
- Счётчик никогда не меньше 0
- Откат при ошибке записи в журнал
- Идемпотентный сброс
- Прощение за хорошее поведение (не больше одного страйка за интервал)
- Срок давности страйков
"""

# Импорт asyncio для параллельных вызовов
import asyncio

# Импорт pytest для тестирования
import pytest
# Импорт datetime для управления временем
from datetime import timedelta
# Импорт select для проверки журнала
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

# Импорт моделей
from modbot.database.models import utcnow
from modbot.database.models_strikes import AuditEventType, AuditLogEntry, UserStrike
# Импорт тестируемых функций
from modbot.services.strikes.ledger import (
    AUTO_MODERATOR,
    GOOD_BEHAVIOR,
    LedgerTransactionError,
    StrikeSnapshot,
    add_strikes,
    apply_expiration,
    apply_good_behavior_forgiveness,
    get_strikes,
    record_violation,
    remove_strikes,
    reset_strikes,
    set_strikes,
)

CHAT_ID = -100123
USER_ID = 555
ADMIN = {"id": 1, "name": "Admin"}


async def audit_entries(session, event_type=None):
    stmt = select(AuditLogEntry).where(
        AuditLogEntry.chat_id == CHAT_ID,
        AuditLogEntry.user_id == USER_ID,
    )
    if event_type is not None:
        stmt = stmt.where(AuditLogEntry.event_type == event_type)
    result = await session.execute(stmt.order_by(AuditLogEntry.id))
    return list(result.scalars().all())


# ============================================================
# АВТОМАТИЧЕСКОЕ НАРУШЕНИЕ
# ============================================================

class TestRecordViolation:
    """Тесты для record_violation."""

    # Тест: первое нарушение создаёт строку со счётчиком 1
    @pytest.mark.asyncio
    async def test_first_violation_creates_row(self, db_session):
        count = await record_violation(db_session, CHAT_ID, USER_ID, {"violation_type": "SPAM"})
        assert count == 1

        snapshot = await get_strikes(db_session, CHAT_ID, USER_ID)
        assert snapshot.count == 1
        assert snapshot.last_strike_at is not None

    # Тест: каждое нарушение увеличивает счётчик ровно на 1
    @pytest.mark.asyncio
    async def test_increments_by_one(self, db_session):
        counts = [
            await record_violation(db_session, CHAT_ID, USER_ID, {"violation_type": "SPAM"})
            for _ in range(3)
        ]
        assert counts == [1, 2, 3]

    # Тест: запись STRIKE с количеством и исполнителем
    @pytest.mark.asyncio
    async def test_writes_strike_entry(self, db_session):
        await record_violation(db_session, CHAT_ID, USER_ID, {"violation_type": "PROFANITY", "excerpt": "bad"})

        entries = await audit_entries(db_session, AuditEventType.STRIKE)
        assert len(entries) == 1
        payload = entries[0].payload
        assert payload["strike_count"] == 1
        assert payload["executed_by"] == AUTO_MODERATOR
        assert payload["violation_type"] == "PROFANITY"
        assert payload["excerpt"] == "bad"

    # Тест: last_strike_at обновляется временем нарушения
    @pytest.mark.asyncio
    async def test_updates_last_strike_at(self, db_session):
        first = utcnow() - timedelta(days=3)
        second = utcnow()
        await record_violation(db_session, CHAT_ID, USER_ID, {}, now=first)
        await record_violation(db_session, CHAT_ID, USER_ID, {}, now=second)

        snapshot = await get_strikes(db_session, CHAT_ID, USER_ID)
        assert snapshot.last_strike_at == second

    # Тест: счётчики разных чатов независимы
    @pytest.mark.asyncio
    async def test_chats_are_independent(self, db_session):
        await record_violation(db_session, CHAT_ID, USER_ID, {})
        await record_violation(db_session, CHAT_ID, USER_ID, {})
        await record_violation(db_session, CHAT_ID - 1, USER_ID, {})

        assert (await get_strikes(db_session, CHAT_ID, USER_ID)).count == 2
        assert (await get_strikes(db_session, CHAT_ID - 1, USER_ID)).count == 1

    # Тест: параллельные нарушения получают разные номера страйков
    @pytest.mark.asyncio
    async def test_concurrent_violations_serialize(self, session_factory):
        calls = 5

        async def one_violation(i):
            async with session_factory() as session:
                return await record_violation(session, CHAT_ID, USER_ID, {"message_id": i})

        counts = await asyncio.gather(*(one_violation(i) for i in range(calls)))

        assert sorted(counts) == list(range(1, calls + 1))
        async with session_factory() as session:
            assert (await get_strikes(session, CHAT_ID, USER_ID)).count == calls
            assert len(await audit_entries(session, AuditEventType.STRIKE)) == calls

    # Тест: ошибка записи в журнал откатывает и инкремент
    @pytest.mark.asyncio
    async def test_rollback_when_audit_write_fails(self, db_session, monkeypatch):
        await record_violation(db_session, CHAT_ID, USER_ID, {})

        async def failing_append(*args, **kwargs):
            raise OperationalError("INSERT INTO audit_log", {}, Exception("disk full"))

        monkeypatch.setattr("modbot.services.strikes.ledger.append_entry", failing_append)

        with pytest.raises(LedgerTransactionError):
            await record_violation(db_session, CHAT_ID, USER_ID, {})

        # Счётчик и журнал остались как до неудачной попытки
        assert (await get_strikes(db_session, CHAT_ID, USER_ID)).count == 1
        assert len(await audit_entries(db_session, AuditEventType.STRIKE)) == 1


# ============================================================
# РУЧНЫЕ ИЗМЕНЕНИЯ
# ============================================================

class TestManualChanges:
    """Тесты для add_strikes / remove_strikes / set_strikes."""

    # Тест: добавление страйков
    @pytest.mark.asyncio
    async def test_add_strikes(self, db_session):
        count = await add_strikes(db_session, CHAT_ID, USER_ID, 3, ADMIN, "flood")
        assert count == 3

        entries = await audit_entries(db_session, AuditEventType.MANUAL_STRIKE_ADD)
        assert len(entries) == 1
        assert entries[0].payload["amount"] == 3
        assert entries[0].payload["actor"] == ADMIN
        assert entries[0].payload["reason"] == "flood"
        assert entries[0].payload["previous_count"] == 0
        assert entries[0].payload["new_count"] == 3

    # Тест: ручное добавление не трогает last_strike_at
    @pytest.mark.asyncio
    async def test_manual_add_keeps_last_strike_at(self, db_session):
        await add_strikes(db_session, CHAT_ID, USER_ID, 2, ADMIN)
        assert (await get_strikes(db_session, CHAT_ID, USER_ID)).last_strike_at is None

    # Тест: снятие больше, чем есть - счётчик 0, а не отрицательный
    @pytest.mark.asyncio
    async def test_remove_never_goes_negative(self, db_session):
        await add_strikes(db_session, CHAT_ID, USER_ID, 2, ADMIN)
        count = await remove_strikes(db_session, CHAT_ID, USER_ID, 5, ADMIN)
        assert count == 0
        assert (await get_strikes(db_session, CHAT_ID, USER_ID)).count == 0

    # Тест: снятие у пользователя без страйков
    @pytest.mark.asyncio
    async def test_remove_from_empty(self, db_session):
        assert await remove_strikes(db_session, CHAT_ID, USER_ID, 1, ADMIN) == 0

    # Тест: установка конкретного значения
    @pytest.mark.asyncio
    async def test_set_strikes(self, db_session):
        await add_strikes(db_session, CHAT_ID, USER_ID, 4, ADMIN)
        assert await set_strikes(db_session, CHAT_ID, USER_ID, 1, ADMIN) == 1
        assert await set_strikes(db_session, CHAT_ID, USER_ID, 0, ADMIN) == 0

    # Тест: отрицательные и нецелые значения отклоняются
    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad", [-1, 1.5, True, "2"])
    async def test_invalid_amounts_rejected(self, db_session, bad):
        with pytest.raises(ValueError):
            await add_strikes(db_session, CHAT_ID, USER_ID, bad, ADMIN)
        with pytest.raises(ValueError):
            await set_strikes(db_session, CHAT_ID, USER_ID, bad, ADMIN)

    # Тест: последовательность операций не опускает счётчик ниже 0
    @pytest.mark.asyncio
    async def test_non_negative_after_any_sequence(self, db_session):
        operations = [
            (remove_strikes, 3), (add_strikes, 1), (remove_strikes, 2),
            (set_strikes, 2), (remove_strikes, 1), (remove_strikes, 10),
        ]
        for operation, amount in operations:
            count = await operation(db_session, CHAT_ID, USER_ID, amount, ADMIN)
            assert count >= 0

        result = await db_session.execute(select(UserStrike.strike_count))
        assert all(value >= 0 for value in result.scalars().all())

    # Тест: ошибка записи в журнал откатывает ручное изменение
    @pytest.mark.parametrize(
        "change, event_type",
        [
            (lambda s: add_strikes(s, CHAT_ID, USER_ID, 2, ADMIN), AuditEventType.MANUAL_STRIKE_ADD),
            (lambda s: remove_strikes(s, CHAT_ID, USER_ID, 1, ADMIN), AuditEventType.MANUAL_STRIKE_REMOVE),
            (lambda s: set_strikes(s, CHAT_ID, USER_ID, 0, ADMIN), AuditEventType.MANUAL_STRIKE_SET),
        ],
    )
    @pytest.mark.asyncio
    async def test_rollback_when_audit_write_fails(self, db_session, monkeypatch, change, event_type):
        await add_strikes(db_session, CHAT_ID, USER_ID, 3, ADMIN)
        entries_before = len(await audit_entries(db_session, event_type))

        async def failing_append(*args, **kwargs):
            raise OperationalError("INSERT INTO audit_log", {}, Exception("disk full"))

        monkeypatch.setattr("modbot.services.strikes.ledger.append_entry", failing_append)

        with pytest.raises(LedgerTransactionError):
            await change(db_session)

        assert (await get_strikes(db_session, CHAT_ID, USER_ID)).count == 3
        assert len(await audit_entries(db_session, event_type)) == entries_before


# ============================================================
# СБРОС
# ============================================================

class TestResetStrikes:
    """Тесты для reset_strikes."""

    # Тест: сброс обнуляет счётчик
    @pytest.mark.asyncio
    async def test_reset_to_zero(self, db_session):
        await add_strikes(db_session, CHAT_ID, USER_ID, 3, ADMIN)
        await reset_strikes(db_session, CHAT_ID, USER_ID)
        assert (await get_strikes(db_session, CHAT_ID, USER_ID)).count == 0

    # Тест: повторный сброс ничего не меняет и не пишет в журнал
    @pytest.mark.asyncio
    async def test_reset_is_idempotent(self, db_session):
        await add_strikes(db_session, CHAT_ID, USER_ID, 3, ADMIN)
        entries_before = len(await audit_entries(db_session))

        await reset_strikes(db_session, CHAT_ID, USER_ID)
        await reset_strikes(db_session, CHAT_ID, USER_ID)

        assert (await get_strikes(db_session, CHAT_ID, USER_ID)).count == 0
        assert len(await audit_entries(db_session)) == entries_before

    # Тест: сброс для несуществующей строки не падает
    @pytest.mark.asyncio
    async def test_reset_missing_row(self, db_session):
        await reset_strikes(db_session, CHAT_ID, USER_ID)
        assert await get_strikes(db_session, CHAT_ID, USER_ID) == StrikeSnapshot(0, None)


# ============================================================
# ПРОЩЕНИЕ ЗА ХОРОШЕЕ ПОВЕДЕНИЕ
# ============================================================

class TestGoodBehaviorForgiveness:
    """Тесты для apply_good_behavior_forgiveness."""

    async def _two_strikes(self, session, days_ago):
        when = utcnow() - timedelta(days=days_ago)
        await record_violation(session, CHAT_ID, USER_ID, {}, now=when)
        await record_violation(session, CHAT_ID, USER_ID, {}, now=when)

    # Тест: 2 страйка, последнее нарушение 10 дней назад, порог 7 -> остаётся 1
    @pytest.mark.asyncio
    async def test_forgives_one_strike(self, db_session):
        await self._two_strikes(db_session, days_ago=10)

        assert await apply_good_behavior_forgiveness(db_session, CHAT_ID, USER_ID, 7) is True
        assert (await get_strikes(db_session, CHAT_ID, USER_ID)).count == 1

        entries = await audit_entries(db_session, AuditEventType.MANUAL_STRIKE_REMOVE)
        assert len(entries) == 1
        assert entries[0].payload["actor"] == GOOD_BEHAVIOR
        assert entries[0].payload["amount"] == 1

    # Тест: 2 страйка, последнее нарушение 2 дня назад -> без изменений
    @pytest.mark.asyncio
    async def test_recent_violation_not_forgiven(self, db_session):
        await self._two_strikes(db_session, days_ago=2)

        assert await apply_good_behavior_forgiveness(db_session, CHAT_ID, USER_ID, 7) is False
        assert (await get_strikes(db_session, CHAT_ID, USER_ID)).count == 2

    # Тест: повторный вызов в том же интервале не снимает второй страйк
    @pytest.mark.asyncio
    async def test_at_most_one_per_interval(self, db_session):
        await self._two_strikes(db_session, days_ago=30)
        now = utcnow()

        results = [
            await apply_good_behavior_forgiveness(db_session, CHAT_ID, USER_ID, 7, now=now)
            for _ in range(3)
        ]
        assert results == [True, False, False]
        assert (await get_strikes(db_session, CHAT_ID, USER_ID)).count == 1

        # Через следующий полный интервал - ещё один страйк
        later = now + timedelta(days=8)
        assert await apply_good_behavior_forgiveness(db_session, CHAT_ID, USER_ID, 7, now=later) is True
        assert (await get_strikes(db_session, CHAT_ID, USER_ID)).count == 0

    # Тест: прощение не меняет last_strike_at
    @pytest.mark.asyncio
    async def test_keeps_last_strike_at(self, db_session):
        await self._two_strikes(db_session, days_ago=10)
        before = (await get_strikes(db_session, CHAT_ID, USER_ID)).last_strike_at

        await apply_good_behavior_forgiveness(db_session, CHAT_ID, USER_ID, 7)
        assert (await get_strikes(db_session, CHAT_ID, USER_ID)).last_strike_at == before

    # Тест: выключенное прощение и пользователь без страйков
    @pytest.mark.asyncio
    async def test_disabled_or_nothing_to_forgive(self, db_session):
        assert await apply_good_behavior_forgiveness(db_session, CHAT_ID, USER_ID, 7) is False

        await self._two_strikes(db_session, days_ago=10)
        assert await apply_good_behavior_forgiveness(db_session, CHAT_ID, USER_ID, 0) is False
        assert (await get_strikes(db_session, CHAT_ID, USER_ID)).count == 2

    # Тест: страйки, выданные вручную (без last_strike_at), не прощаются
    @pytest.mark.asyncio
    async def test_manual_strikes_without_timestamp(self, db_session):
        await add_strikes(db_session, CHAT_ID, USER_ID, 2, ADMIN)
        assert await apply_good_behavior_forgiveness(db_session, CHAT_ID, USER_ID, 7) is False


# ============================================================
# СРОК ДАВНОСТИ
# ============================================================

class TestExpiration:
    """Тесты для apply_expiration и get_strikes(expiration_days=...)."""

    # Тест: страйки старше срока сгорают с записью STRIKE-EXPIRED
    @pytest.mark.asyncio
    async def test_expired_strikes_reset(self, db_session):
        await record_violation(db_session, CHAT_ID, USER_ID, {}, now=utcnow() - timedelta(days=31))

        assert await apply_expiration(db_session, CHAT_ID, USER_ID, 30) is True
        assert (await get_strikes(db_session, CHAT_ID, USER_ID)).count == 0

        entries = await audit_entries(db_session, AuditEventType.STRIKE_EXPIRED)
        assert len(entries) == 1
        assert entries[0].payload["previous_count"] == 1
        assert entries[0].payload["new_count"] == 0

    # Тест: повторная проверка не пишет вторую запись
    @pytest.mark.asyncio
    async def test_expiration_only_once(self, db_session):
        await record_violation(db_session, CHAT_ID, USER_ID, {}, now=utcnow() - timedelta(days=31))

        await apply_expiration(db_session, CHAT_ID, USER_ID, 30)
        assert await apply_expiration(db_session, CHAT_ID, USER_ID, 30) is False
        assert len(await audit_entries(db_session, AuditEventType.STRIKE_EXPIRED)) == 1

    # Тест: свежие страйки не сгорают
    @pytest.mark.asyncio
    async def test_fresh_strikes_kept(self, db_session):
        await record_violation(db_session, CHAT_ID, USER_ID, {}, now=utcnow() - timedelta(days=5))
        snapshot = await get_strikes(db_session, CHAT_ID, USER_ID, expiration_days=30)
        assert snapshot.count == 1

    # Тест: get_strikes применяет срок давности при чтении
    @pytest.mark.asyncio
    async def test_get_strikes_applies_expiration(self, db_session):
        await record_violation(db_session, CHAT_ID, USER_ID, {}, now=utcnow() - timedelta(days=40))
        snapshot = await get_strikes(db_session, CHAT_ID, USER_ID, expiration_days=30)
        assert snapshot.count == 0

    # Тест: срок 0 - страйки не сгорают
    @pytest.mark.asyncio
    async def test_expiration_disabled(self, db_session):
        await record_violation(db_session, CHAT_ID, USER_ID, {}, now=utcnow() - timedelta(days=400))
        assert await apply_expiration(db_session, CHAT_ID, USER_ID, 0) is False
        assert (await get_strikes(db_session, CHAT_ID, USER_ID)).count == 1
