"""Tests for signal_engine/routers/user_signals_router.py"""

import pytest

from signal_engine.constants import US_ACTIVE, US_CLOSED, US_PENDING
from signal_engine.exceptions import NotFoundError, ValidationError
from signal_engine.models import UserSignal
from signal_engine.routers.user_signals_router import close_user_signal, get_user_signal, list_user_signals


@pytest.fixture
async def rows(factory):
    """Two users on one signal, plus a second signal for the first user."""
    alice = await factory.user(username="alice")
    alice_key = await factory.api_key(alice)
    bob = await factory.user(username="bob")
    bob_key = await factory.api_key(bob)
    first = await factory.signal()
    second = await factory.signal(symbol="ETH/USDT")

    return {
        "alice_first": await factory.user_signal(first, alice, alice_key, status=US_ACTIVE),
        "bob_first": await factory.user_signal(first, bob, bob_key, status=US_PENDING),
        "alice_second": await factory.user_signal(second, alice, alice_key, status=US_CLOSED),
    }


class TestListUserSignals:
    @pytest.mark.asyncio
    async def test_filters(self, db_session, rows):
        alice_id = rows["alice_first"].user_id
        first_id = rows["alice_first"].signal_id

        by_user = await list_user_signals(user_id=alice_id, signal_id=None, status=None, limit=100, db=db_session)
        by_signal = await list_user_signals(user_id=None, signal_id=first_id, status=None, limit=100, db=db_session)
        by_status = await list_user_signals(user_id=None, signal_id=None, status=US_CLOSED, limit=100, db=db_session)

        assert {r.id for r in by_user} == {rows["alice_first"].id, rows["alice_second"].id}
        assert {r.id for r in by_signal} == {rows["alice_first"].id, rows["bob_first"].id}
        assert [r.id for r in by_status] == [rows["alice_second"].id]

    @pytest.mark.asyncio
    async def test_status_label_is_filled_in(self, db_session, rows):
        result = await list_user_signals(user_id=None, signal_id=None, status=US_ACTIVE, limit=100, db=db_session)
        assert result[0].status_label == "active"


class TestGetUserSignal:
    @pytest.mark.asyncio
    async def test_found(self, db_session, rows):
        result = await get_user_signal(rows["bob_first"].id, db=db_session)
        assert result.status == US_PENDING
        assert result.status_label == "pending"

    @pytest.mark.asyncio
    async def test_not_found(self, db_session):
        with pytest.raises(NotFoundError) as exc_info:
            await get_user_signal(999, db=db_session)
        assert exc_info.value.status_code == 404


class TestCloseUserSignal:
    @pytest.mark.asyncio
    async def test_active_position_gets_close_requested(self, db_session, rows):
        row_id = rows["alice_first"].id

        result = await close_user_signal(row_id, db=db_session)

        assert result.message == "Close requested"
        row = await db_session.get(UserSignal, row_id)
        assert row.close_requested is True
        assert row.status == US_ACTIVE

    @pytest.mark.asyncio
    @pytest.mark.parametrize("key", ["bob_first", "alice_second"])
    async def test_only_active_positions_can_be_closed(self, db_session, rows, key):
        """Failure: pending entries and finished positions are rejected."""
        with pytest.raises(ValidationError) as exc_info:
            await close_user_signal(rows[key].id, db=db_session)
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_not_found(self, db_session):
        with pytest.raises(NotFoundError) as exc_info:
            await close_user_signal(999, db=db_session)
        assert exc_info.value.status_code == 404
