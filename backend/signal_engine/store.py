"""
Persistent Store

Thin access layer over async SQLAlchemy sessions used by every watcher and
the dispatcher. Each call opens a short-lived session and performs one
atomic read-modify-write on a single row; no long-lived transactions.

Driver-level failures (database locked, connection dropped, pool timeout)
surface as StoreUnavailableError and are retried with capped backoff until
they succeed. A transition that cannot be persisted blocks the calling
watcher instead of being dropped.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import (
    DisconnectionError,
    IntegrityError,
    InterfaceError,
    OperationalError,
    TimeoutError as PoolTimeoutError,
)
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from signal_engine.exceptions import StoreUnavailableError
from signal_engine.models import Signal, User, UserSignal
from signal_engine.utils.backoff import backoff_delay

logger = logging.getLogger(__name__)

# Errors that mean "the store is unreachable right now", not "the statement is wrong"
TRANSIENT_STORE_ERRORS = (
    OperationalError,
    InterfaceError,
    DisconnectionError,
    PoolTimeoutError,
    OSError,
    StoreUnavailableError,
)


def append_event(existing: Optional[str], note: str, when: Optional[datetime] = None) -> str:
    """Append a timestamped line to a UserSignal.event log."""
    stamp = (when or datetime.utcnow()).strftime("%Y-%m-%d %H:%M:%S")
    line = f"[{stamp}] {note}"
    return f"{existing}\n{line}" if existing else line


class Store:
    """Row-level persistence for Signal and UserSignal records."""

    def __init__(
        self,
        session_maker: async_sessionmaker,
        retry_base: float = 0.5,
        retry_cap: float = 30.0,
        max_attempts: Optional[int] = None,
    ):
        """
        Args:
            session_maker: async_sessionmaker bound to the engine
            retry_base / retry_cap: backoff shape for transient store failures
            max_attempts: None retries forever; tests pass a bound
        """
        self.session_maker = session_maker
        self.retry_base = retry_base
        self.retry_cap = retry_cap
        self.max_attempts = max_attempts

    async def run(self, fn: Callable[[AsyncSession], Awaitable[Any]], description: str = "store operation") -> Any:
        """
        Run ``fn(session)`` in a fresh session and commit, retrying transient
        failures until success. IntegrityError and programming errors propagate.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                async with self.session_maker() as session:
                    result = await fn(session)
                    await session.commit()
                    return result
            except IntegrityError:
                raise
            except TRANSIENT_STORE_ERRORS as e:
                if self.max_attempts is not None and attempt >= self.max_attempts:
                    raise StoreUnavailableError(f"{description} failed after {attempt} attempts: {e}") from e
                delay = backoff_delay(attempt, self.retry_base, self.retry_cap)
                logger.warning(f"Store unavailable during {description} (attempt {attempt}): {e} - retrying in {delay:.1f}s")
                await asyncio.sleep(delay)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def fetch_signal(self, signal_id: int) -> Optional[Signal]:
        async def _get(session: AsyncSession):
            return await session.get(Signal, signal_id)

        return await self.run(_get, f"fetch signal {signal_id}")

    async def fetch_user_signal(self, user_signal_id: int) -> Optional[UserSignal]:
        async def _get(session: AsyncSession):
            return await session.get(UserSignal, user_signal_id)

        return await self.run(_get, f"fetch user_signal {user_signal_id}")

    async def scan_signals(self, statuses: Iterable[str]) -> List[Signal]:
        statuses = list(statuses)

        async def _scan(session: AsyncSession):
            result = await session.execute(
                select(Signal).where(Signal.status.in_(statuses)).order_by(Signal.id)
            )
            return list(result.scalars().all())

        return await self.run(_scan, f"scan signals {statuses}")

    async def scan_user_signals(self, statuses: Iterable[int], signal_id: Optional[int] = None) -> List[UserSignal]:
        statuses = list(statuses)

        async def _scan(session: AsyncSession):
            query = select(UserSignal).where(UserSignal.status.in_(statuses))
            if signal_id is not None:
                query = query.where(UserSignal.signal_id == signal_id)
            result = await session.execute(query.order_by(UserSignal.id))
            return list(result.scalars().all())

        return await self.run(_scan, f"scan user_signals {statuses}")

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def insert(self, obj: Any) -> Any:
        async def _insert(session: AsyncSession):
            session.add(obj)
            await session.flush()
            return obj

        return await self.run(_insert, f"insert {type(obj).__name__}")

    async def update_signal(self, signal_id: int, **values) -> Optional[Signal]:
        async def _update(session: AsyncSession):
            signal = await session.get(Signal, signal_id)
            if signal is None:
                return None
            for key, value in values.items():
                setattr(signal, key, value)
            return signal

        return await self.run(_update, f"update signal {signal_id}")

    async def update_user_signal(self, user_signal_id: int, note: Optional[str] = None, **values) -> Optional[UserSignal]:
        """
        Update a UserSignal row; ``note`` is appended to its event log in the
        same transaction.
        """
        async def _update(session: AsyncSession):
            row = await session.get(UserSignal, user_signal_id)
            if row is None:
                return None
            for key, value in values.items():
                setattr(row, key, value)
            if note:
                row.event = append_event(row.event, note)
            return row

        return await self.run(_update, f"update user_signal {user_signal_id}")

    async def fetch_user(self, user_id: int) -> Optional[User]:
        async def _get(session: AsyncSession):
            return await session.get(User, user_id)

        return await self.run(_get, f"fetch user {user_id}")
