from fastapi import Depends, Header, Path
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
import logging

import httpx

import config
from database import get_db
from errors import Unauthorized, NotFound
from models import Room

logger = logging.getLogger(__name__)


def _bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise Unauthorized("Unauthorized")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise Unauthorized("Unauthorized")
    return token.strip()


async def verify_access_token(token: str) -> str:
    """Ask Supabase Auth who owns ``token`` and return that user's id."""
    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            res = await client.get(
                f"{config.SUPABASE_URL.rstrip('/')}/auth/v1/user",
                headers={
                    "apikey": config.SUPABASE_ANON_KEY,
                    "Authorization": f"Bearer {token}",
                },
            )
    except httpx.HTTPError as e:
        logger.warning("Auth verification request failed: %s", e)
        raise Unauthorized("Unauthorized") from e

    if res.status_code != 200:
        raise Unauthorized("Unauthorized")

    user_id = res.json().get("id")
    if not user_id:
        raise Unauthorized("Unauthorized")
    return user_id


async def get_current_user_id(authorization: Optional[str] = Header(None)) -> str:
    """Dependency resolving the caller from the bearer credential, never the body."""
    return await verify_access_token(_bearer_token(authorization))


async def get_room_by_code(
    room_code: str = Path(..., min_length=6, max_length=6),
    db: AsyncSession = Depends(get_db)
) -> Room:
    """Dependency to fetch a room by code and check it exists."""
    room = await db.get(Room, room_code.upper())

    if not room:
        raise NotFound("Room not found")

    return room
