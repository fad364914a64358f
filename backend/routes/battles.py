from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from judge import Judge, get_judge
from schemas import (
    BattleStart, BattleStartedResponse, PromptSubmit, ScoreRound, FinalizeRound,
    AdvanceRound, AdvanceRoundResponse, ScoreRoundResponse, SuccessResponse,
)
from security import get_current_user_id
import battle_engine

router = APIRouter(prefix="/api/battle", tags=["battle"])

@router.post("/start", response_model=BattleStartedResponse)
async def start_battle(
    body: BattleStart,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db)
):
    return await battle_engine.start_battle(
        db, body.room_id, user_id, user_id=body.user_id, total_rounds=body.total_rounds
    )

@router.post("/submit-prompt", response_model=SuccessResponse)
async def submit_prompt(
    body: PromptSubmit,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db)
):
    await battle_engine.submit_prompt(
        db, user_id, body.round_id, body.battle_id, body.user_id, body.prompt_text
    )
    return SuccessResponse()

@router.post("/score-round", response_model=ScoreRoundResponse)
async def score_round(
    body: ScoreRound,
    user_id: str = Depends(get_current_user_id),
    judge: Judge = Depends(get_judge),
    db: AsyncSession = Depends(get_db)
):
    room = await battle_engine.get_room(db, body.room_id)
    await battle_engine.require_member(db, room, user_id)
    return await battle_engine.score_round(
        db, judge, room.id, body.round_id, body.battle_id, image_url=body.image_url
    )

@router.post("/finalize-round", response_model=ScoreRoundResponse)
async def finalize_round(
    body: FinalizeRound,
    user_id: str = Depends(get_current_user_id),
    judge: Judge = Depends(get_judge),
    db: AsyncSession = Depends(get_db)
):
    return await battle_engine.finalize_round(db, judge, body.room_id, body.round_id, user_id)

@router.post("/advance-round", response_model=AdvanceRoundResponse)
async def advance_round(
    body: AdvanceRound,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db)
):
    return await battle_engine.advance_round(
        db, body.room_id, body.battle_id, user_id,
        user_id=body.user_id, from_round=body.round_number,
    )
