"""
Signal API routes

- List signals (optionally by status)
- Signal details
- Request cancellation (the signal's watcher performs it)
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from signal_engine.constants import SIGNAL_TERMINAL_STATUSES
from signal_engine.database import get_db
from signal_engine.exceptions import NotFoundError, ValidationError
from signal_engine.models import Signal
from signal_engine.routers.dependencies import verify_api_token
from signal_engine.schemas import ActionResponse, SignalResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/signals", tags=["signals"], dependencies=[Depends(verify_api_token)])


@router.get("", response_model=List[SignalResponse])
async def list_signals(
    status: Optional[str] = None,
    limit: int = 50,
    db: AsyncSession = Depends(get_db),
):
    """Get signals, newest first, with optional status filter"""
    query = select(Signal)
    if status:
        query = query.where(Signal.status == status)
    query = query.order_by(desc(Signal.id)).limit(limit)

    result = await db.execute(query)
    return list(result.scalars().all())


@router.get("/{signal_id}", response_model=SignalResponse)
async def get_signal(signal_id: int, db: AsyncSession = Depends(get_db)):
    signal = await db.get(Signal, signal_id)
    if not signal:
        raise NotFoundError("Signal not found")
    return signal


@router.post("/{signal_id}/cancel", response_model=ActionResponse)
async def cancel_signal(signal_id: int, db: AsyncSession = Depends(get_db)):
    """
    Ask for a signal to be cancelled.

    Only the flag is set here; the signal watcher moves it to cancelled on
    its next tick and the position watchers cancel any unfilled entries.
    """
    signal = await db.get(Signal, signal_id)
    if not signal:
        raise NotFoundError("Signal not found")
    if signal.status in SIGNAL_TERMINAL_STATUSES:
        raise ValidationError(f"Signal is already {signal.status}")

    signal.cancel_requested = True
    await db.commit()
    logger.info(f"Cancellation requested for signal {signal_id}")
    return ActionResponse(id=signal_id, message="Cancellation requested")
