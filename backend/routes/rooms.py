from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models import Room
from schemas import (
    RoomCreate, RoomCreatedResponse, RoomAction, RoomReady, RoomSettingsUpdate,
    RoomJoinedResponse, RoomResponse, SuccessResponse,
)
from security import get_current_user_id, get_room_by_code
from utils import generate_qr_code_base64, get_join_url
import battle_engine

router = APIRouter(prefix="/api/rooms", tags=["rooms"])

@router.post("/create", response_model=RoomCreatedResponse)
async def create_room(
    room_in: RoomCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db)
):
    battle_engine.ensure_caller(room_in.host_id, user_id)
    room = await battle_engine.create_room(db, room_in.title, user_id, room_in.total_rounds)

    join_url = get_join_url(room.id)
    return RoomCreatedResponse(
        room_id=room.id,
        join_url=join_url,
        qr_code=generate_qr_code_base64(join_url),
    )

@router.get("/{room_code}", response_model=RoomResponse)
async def get_room(
    room: Room = Depends(get_room_by_code),
    db: AsyncSession = Depends(get_db)
):
    # Anonymous lookup so a join link can preview the lobby
    return await battle_engine.get_room_state(db, room.id)

@router.post("/join", response_model=RoomJoinedResponse)
async def join_room(
    body: RoomAction,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db)
):
    room = await battle_engine.join_room(db, body.room_id, user_id)
    return RoomJoinedResponse(room_id=room.id)

@router.post("/ready", response_model=SuccessResponse)
async def set_ready(
    body: RoomReady,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db)
):
    await battle_engine.set_ready(db, body.room_id, body.user_id, user_id, body.is_ready)
    return SuccessResponse()

@router.post("/update-settings", response_model=SuccessResponse)
async def update_settings(
    body: RoomSettingsUpdate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db)
):
    await battle_engine.update_settings(db, body.room_id, user_id, body.total_rounds)
    return SuccessResponse()

@router.post("/heartbeat", response_model=SuccessResponse)
async def heartbeat(
    body: RoomAction,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db)
):
    await battle_engine.heartbeat(db, body.room_id, user_id)
    return SuccessResponse()

@router.post("/reset", response_model=SuccessResponse)
async def reset_room(
    body: RoomAction,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db)
):
    await battle_engine.reset_room(db, body.room_id, user_id)
    return SuccessResponse()
