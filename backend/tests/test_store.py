"""Tests for signal_engine/store.py"""

from datetime import datetime
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from signal_engine.constants import SIGNAL_ACTIVE, SIGNAL_CLOSED, SIGNAL_PENDING, US_ACTIVE, US_CLOSED, US_PENDING
from signal_engine.exceptions import StoreUnavailableError
from signal_engine.models import UserSignal
from signal_engine.store import Store, append_event


def _locked_error():
    return OperationalError("UPDATE user_signals", {}, Exception("database is locked"))


# ---------------------------------------------------------------------------
# append_event
# ---------------------------------------------------------------------------


class TestAppendEvent:
    def test_first_line(self):
        when = datetime(2026, 1, 2, 3, 4, 5)
        assert append_event(None, "Entry placed", when) == "[2026-01-02 03:04:05] Entry placed"

    def test_appends_on_new_line(self):
        when = datetime(2026, 1, 2, 3, 4, 5)
        result = append_event("[2026-01-01 00:00:00] first", "second", when)
        assert result.splitlines() == ["[2026-01-01 00:00:00] first", "[2026-01-02 03:04:05] second"]


# ---------------------------------------------------------------------------
# Reads and writes
# ---------------------------------------------------------------------------


class TestStoreReadsAndWrites:
    @pytest.mark.asyncio
    async def test_fetch_missing_rows_return_none(self, store):
        assert await store.fetch_signal(999) is None
        assert await store.fetch_user_signal(999) is None
        assert await store.fetch_user(999) is None

    @pytest.mark.asyncio
    async def test_scan_signals_by_status(self, store, factory):
        pending = await factory.signal(status=SIGNAL_PENDING)
        active = await factory.signal(status=SIGNAL_ACTIVE)
        await factory.signal(status=SIGNAL_CLOSED)

        rows = await store.scan_signals((SIGNAL_PENDING, SIGNAL_ACTIVE))
        assert [s.id for s in rows] == [pending.id, active.id]

    @pytest.mark.asyncio
    async def test_scan_user_signals_filters_by_signal(self, store, factory):
        user = await factory.user()
        key = await factory.api_key(user)
        first = await factory.signal()
        second = await factory.signal()
        a = await factory.user_signal(first, user, key, status=US_PENDING)
        await factory.user_signal(second, user, key, status=US_ACTIVE)

        rows = await store.scan_user_signals((US_PENDING, US_ACTIVE), signal_id=first.id)
        assert [r.id for r in rows] == [a.id]

    @pytest.mark.asyncio
    async def test_update_user_signal_appends_note(self, store, factory):
        user = await factory.user()
        key = await factory.api_key(user)
        signal = await factory.signal()
        row = await factory.user_signal(signal, user, key)

        await store.update_user_signal(row.id, ticket="T1", note="Entry placed")
        updated = await store.update_user_signal(row.id, status=US_CLOSED, note="Closed")

        assert updated.ticket == "T1"
        assert updated.status == US_CLOSED
        lines = updated.event.splitlines()
        assert len(lines) == 2
        assert lines[0].endswith("Entry placed")
        assert lines[1].endswith("Closed")

    @pytest.mark.asyncio
    async def test_update_missing_row_returns_none(self, store):
        assert await store.update_signal(12345, status=SIGNAL_CLOSED) is None
        assert await store.update_user_signal(12345, status=US_CLOSED) is None

    @pytest.mark.asyncio
    async def test_duplicate_user_signal_raises_integrity_error(self, store, factory):
        """Failure: the (signal, user, api) unique constraint is not retried."""
        user = await factory.user()
        key = await factory.api_key(user)
        signal = await factory.signal()
        await factory.user_signal(signal, user, key)

        duplicate = UserSignal(
            signal_id=signal.id, user_id=user.id, api_id=key.id,
            lotsize=10.0, symbol="BTC/USDT", direction="LONG",
        )
        with pytest.raises(IntegrityError):
            await store.insert(duplicate)


# ---------------------------------------------------------------------------
# Retry behaviour
# ---------------------------------------------------------------------------


class TestStoreRetry:
    @pytest.mark.asyncio
    async def test_transient_failure_retried_until_success(self, session_maker):
        """Happy path: a locked database is retried and the write eventually lands."""
        store = Store(session_maker, retry_base=0.5, retry_cap=5.0)
        attempts = {"n": 0}

        async def flaky(session):
            attempts["n"] += 1
            if attempts["n"] < 3:
                raise _locked_error()
            return "ok"

        with patch("signal_engine.store.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            result = await store.run(flaky, "flaky write")

        assert result == "ok"
        assert attempts["n"] == 3
        assert [c.args[0] for c in mock_sleep.await_args_list] == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_bounded_store_gives_up(self, session_maker):
        store = Store(session_maker, retry_base=0.0, retry_cap=0.0, max_attempts=3)

        async def always_locked(session):
            raise _locked_error()

        with pytest.raises(StoreUnavailableError, match="after 3 attempts"):
            await store.run(always_locked, "locked write")

    @pytest.mark.asyncio
    async def test_programming_errors_propagate_immediately(self, store):
        calls = {"n": 0}

        async def broken(session):
            calls["n"] += 1
            raise KeyError("bug")

        with pytest.raises(KeyError):
            await store.run(broken)
        assert calls["n"] == 1
