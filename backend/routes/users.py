from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, desc
from typing import List

from database import get_db
from errors import Forbidden
from models import User, BattleScore, Battle, Room, Prompt, Round, Image
from schemas import UserCreate, UserResponse, HistoryEntry, UserStats, PromptHistoryEntry
from security import get_current_user_id

router = APIRouter(prefix="/api", tags=["users"])

@router.post("/users/create", response_model=UserResponse)
async def create_user(
    user_in: UserCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db)
):
    if user_in.id != user_id:
        raise Forbidden("Cannot create profile for another user")

    user = await db.get(User, user_id)
    if user is None:
        user = User(id=user_id)
        db.add(user)

    user.name = user_in.name or user_in.email or user.name
    user.email = user_in.email or user.email
    user.avatar = user_in.avatar or user.avatar

    await db.commit()
    return user

@router.get("/users/{user_id}/history", response_model=List[HistoryEntry])
async def battle_history(
    user_id: str,
    db: AsyncSession = Depends(get_db)
):
    result = await db.execute(
        select(BattleScore, Battle, Room.title)
        .join(Battle, Battle.id == BattleScore.battle_id)
        .join(Room, Room.id == Battle.room_id)
        .where(BattleScore.user_id == user_id)
        .order_by(desc(Battle.started_at))
    )
    return [
        HistoryEntry(
            battle_id=battle.id,
            room_id=battle.room_id,
            room_title=title,
            status=battle.status,
            started_at=battle.started_at,
            total_score=score.total_score,
            rank=score.rank,
        )
        for score, battle, title in result.all()
    ]

@router.get("/users/{user_id}/stats", response_model=UserStats)
async def user_stats(
    user_id: str,
    db: AsyncSession = Depends(get_db)
):
    result = await db.execute(
        select(
            func.count(BattleScore.id),
            func.count(BattleScore.id).filter(BattleScore.rank == 1),
            func.coalesce(func.avg(BattleScore.total_score), 0),
        ).where(BattleScore.user_id == user_id)
    )
    played, wins, average = result.one()
    return UserStats(
        user_id=user_id,
        battles_played=played,
        wins=wins,
        average_score=round(float(average), 1),
    )

@router.get("/battles/{battle_id}/prompts", response_model=List[PromptHistoryEntry])
async def battle_prompts(
    battle_id: str,
    user_id: str = Query(..., min_length=1),
    db: AsyncSession = Depends(get_db)
):
    result = await db.execute(
        select(Prompt, Round.round_number, Image.url)
        .join(Round, Round.id == Prompt.round_id)
        .join(Image, Image.id == Round.image_id)
        .where(Prompt.battle_id == battle_id, Prompt.user_id == user_id)
        .order_by(Round.round_number)
    )
    return [
        PromptHistoryEntry(
            round_id=prompt.round_id,
            round_number=round_number,
            image_url=url,
            prompt_text=prompt.prompt_text,
            score=prompt.score,
            justification=prompt.justification,
        )
        for prompt, round_number, url in result.all()
    ]
