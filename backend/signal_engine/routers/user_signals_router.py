"""
UserSignal API routes

- List user signals (filters: user_id, signal_id, status)
- User signal details
- Request a manual close (the position watcher performs it)
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from signal_engine.constants import US_ACTIVE, US_STATUS_LABELS
from signal_engine.database import get_db
from signal_engine.exceptions import NotFoundError, ValidationError
from signal_engine.models import UserSignal
from signal_engine.routers.dependencies import verify_api_token
from signal_engine.schemas import ActionResponse, UserSignalResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/user-signals", tags=["user-signals"], dependencies=[Depends(verify_api_token)])


def _to_response(row: UserSignal) -> UserSignalResponse:
    response = UserSignalResponse.model_validate(row)
    response.status_label = US_STATUS_LABELS.get(row.status)
    return response


@router.get("", response_model=List[UserSignalResponse])
async def list_user_signals(
    user_id: Optional[int] = None,
    signal_id: Optional[int] = None,
    status: Optional[int] = None,
    limit: int = 100,
    db: AsyncSession = Depends(get_db),
):
    query = select(UserSignal)
    if user_id is not None:
        query = query.where(UserSignal.user_id == user_id)
    if signal_id is not None:
        query = query.where(UserSignal.signal_id == signal_id)
    if status is not None:
        query = query.where(UserSignal.status == status)
    query = query.order_by(desc(UserSignal.id)).limit(limit)

    result = await db.execute(query)
    return [_to_response(row) for row in result.scalars().all()]


@router.get("/{user_signal_id}", response_model=UserSignalResponse)
async def get_user_signal(user_signal_id: int, db: AsyncSession = Depends(get_db)):
    row = await db.get(UserSignal, user_signal_id)
    if not row:
        raise NotFoundError("User signal not found")
    return _to_response(row)


@router.post("/{user_signal_id}/close", response_model=ActionResponse)
async def close_user_signal(user_signal_id: int, db: AsyncSession = Depends(get_db)):
    """
    Ask for an open position to be closed at market.

    Only active positions can be closed; a pending entry is cancelled by
    cancelling its signal instead.
    """
    row = await db.get(UserSignal, user_signal_id)
    if not row:
        raise NotFoundError("User signal not found")
    if row.status != US_ACTIVE:
        raise ValidationError(
            f"Only active positions can be closed (status: {US_STATUS_LABELS.get(row.status, row.status)})"
        )

    row.close_requested = True
    await db.commit()
    logger.info(f"Manual close requested for user_signal {user_signal_id}")
    return ActionResponse(id=user_signal_id, message="Close requested")
