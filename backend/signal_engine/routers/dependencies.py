"""
Shared router dependencies

The read API is meant to sit behind the bot/dashboard; when API_TOKEN is set
every request must carry it in the X-API-Token header.
"""

import secrets
from typing import Optional

from fastapi import Header, HTTPException, status

from signal_engine.config import settings


async def verify_api_token(x_api_token: Optional[str] = Header(None)) -> None:
    if not settings.api_token:
        return
    if x_api_token is None or not secrets.compare_digest(x_api_token, settings.api_token):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API token",
        )
