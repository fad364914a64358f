from pydantic import BaseModel, Field, ConfigDict, field_serializer, field_validator
from datetime import datetime, timezone
from typing import Optional, List

import config


def _iso(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.isoformat() + 'Z'


# --- Requests ---

class RoomCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    host_id: Optional[str] = None
    # Clamped rather than rejected
    total_rounds: Optional[int] = None

    @field_validator('title')
    @classmethod
    def title_not_blank(cls, v):
        if not v.strip():
            raise ValueError('Title cannot be empty')
        return v.strip()

class RoomAction(BaseModel):
    room_id: str = Field(..., min_length=1)

class RoomReady(RoomAction):
    user_id: str = Field(..., min_length=1)
    is_ready: bool = True

class RoomSettingsUpdate(RoomAction):
    total_rounds: int = Field(..., ge=config.MIN_TOTAL_ROUNDS, le=config.MAX_TOTAL_ROUNDS)

class BattleStart(RoomAction):
    user_id: Optional[str] = None
    total_rounds: Optional[int] = None

class PromptSubmit(BaseModel):
    round_id: str = Field(..., min_length=1)
    battle_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    prompt_text: str = Field("", max_length=2000)

class ScoreRound(RoomAction):
    round_id: str = Field(..., min_length=1)
    battle_id: str = Field(..., min_length=1)
    image_url: Optional[str] = None

class FinalizeRound(RoomAction):
    round_id: str = Field(..., min_length=1)

class AdvanceRound(RoomAction):
    battle_id: str = Field(..., min_length=1)
    user_id: Optional[str] = None
    # The round the caller is advancing from
    round_number: Optional[int] = None

class UserCreate(BaseModel):
    id: str = Field(..., min_length=1)
    name: Optional[str] = Field(None, max_length=100)
    email: Optional[str] = None
    avatar: Optional[str] = None


# --- Responses ---

class SuccessResponse(BaseModel):
    success: bool = True

class RoomCreatedResponse(BaseModel):
    room_id: str
    join_url: str
    qr_code: str

class RoomJoinedResponse(SuccessResponse):
    room_id: str

class PlayerResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    is_host: bool
    is_ready: bool
    score: int
    last_active_at: Optional[datetime] = None

    @field_serializer('last_active_at')
    def serialize_dt(self, dt: Optional[datetime], _info):
        return _iso(dt)

class BattleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    current_round: int
    total_rounds: int
    status: str
    started_at: Optional[datetime] = None

    @field_serializer('started_at')
    def serialize_dt(self, dt: Optional[datetime], _info):
        return _iso(dt)

class RoundResponse(BaseModel):
    id: str
    battle_id: str
    round_number: int
    image_url: str
    started_at: datetime
    ends_at: datetime

    @field_serializer('started_at', 'ends_at')
    def serialize_dt(self, dt: datetime, _info):
        return _iso(dt)

class RoomResponse(BaseModel):
    id: str
    title: str
    host_id: str
    total_rounds: int
    current_round: int
    active_battle_id: Optional[str] = None
    created_at: Optional[datetime] = None
    players: List[PlayerResponse] = []
    battle: Optional[BattleResponse] = None
    round: Optional[RoundResponse] = None

    @field_serializer('created_at')
    def serialize_dt(self, dt: Optional[datetime], _info):
        return _iso(dt)

class PhaseUpdate(BaseModel):
    """Payload of the ``phase_update`` event."""
    phase: str = "submission"
    time: int
    image_url: str
    round_id: str
    round_number: int
    battle_id: str
    total_rounds: int
    ends_at: datetime

    @field_serializer('ends_at')
    def serialize_dt(self, dt: datetime, _info):
        return _iso(dt)

class BattleStartedResponse(PhaseUpdate):
    success: bool = True

class AdvanceRoundResponse(SuccessResponse):
    finished: bool = False
    already_advanced: bool = False
    round: Optional[int] = None
    phase: Optional[PhaseUpdate] = None

class EvaluationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    prompt_id: str
    user_id: str
    score: int
    justification: str
    judged: bool = True

class BattleScoreResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    total_score: int
    rank: Optional[int] = None

class ScoreRoundResponse(SuccessResponse):
    round_id: str
    already_scored: bool = False
    evaluations: List[EvaluationResponse]
    scores: List[BattleScoreResponse]

class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    avatar: Optional[str] = None

class HistoryEntry(BaseModel):
    battle_id: str
    room_id: str
    room_title: str
    status: str
    started_at: Optional[datetime] = None
    total_score: int
    rank: Optional[int] = None

    @field_serializer('started_at')
    def serialize_dt(self, dt: Optional[datetime], _info):
        return _iso(dt)

class UserStats(BaseModel):
    user_id: str
    battles_played: int
    wins: int
    average_score: float

class PromptHistoryEntry(BaseModel):
    round_id: str
    round_number: int
    image_url: str
    prompt_text: str
    score: Optional[int] = None
    justification: Optional[str] = None
