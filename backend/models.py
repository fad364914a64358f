from sqlalchemy import Column, String, Integer, DateTime, Boolean, ForeignKey, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from database import Base
import utils

BATTLE_ACTIVE = "active"
BATTLE_FINISHED = "finished"
BATTLE_ARCHIVED = "archived"

class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)  # Auth provider subject
    name = Column(String, nullable=True)
    email = Column(String, nullable=True)
    avatar = Column(String, nullable=True)
    created_at = Column(DateTime, default=utils.get_utc_now)

class Room(Base):
    __tablename__ = "rooms"

    id = Column(String(6), primary_key=True)  # The shareable room code
    title = Column(String, nullable=False)
    host_id = Column(String, nullable=False, index=True)
    total_rounds = Column(Integer, nullable=False, default=3)
    current_round = Column(Integer, nullable=False, default=0)
    active_battle_id = Column(String, nullable=True)
    created_at = Column(DateTime, default=utils.get_utc_now)

class RoomPlayer(Base):
    __tablename__ = "room_players"
    __table_args__ = (UniqueConstraint("room_id", "user_id", name="uq_room_players_room_user"),)

    id = Column(String, primary_key=True, default=utils.generate_uuid)
    room_id = Column(String(6), ForeignKey("rooms.id"), nullable=False, index=True)
    user_id = Column(String, nullable=False)
    is_host = Column(Boolean, nullable=False, default=False)
    is_ready = Column(Boolean, nullable=False, default=False)
    score = Column(Integer, nullable=False, default=0)
    joined_at = Column(DateTime, default=utils.get_utc_now)
    last_active_at = Column(DateTime, default=utils.get_utc_now)

class Battle(Base):
    __tablename__ = "battles"

    id = Column(String, primary_key=True, default=utils.generate_uuid)
    room_id = Column(String(6), ForeignKey("rooms.id"), nullable=False, index=True)
    current_round = Column(Integer, nullable=False, default=1)
    total_rounds = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default=BATTLE_ACTIVE)
    started_at = Column(DateTime, default=utils.get_utc_now)
    finished_at = Column(DateTime, nullable=True)

class Image(Base):
    __tablename__ = "images"

    id = Column(String, primary_key=True, default=utils.generate_uuid)
    url = Column(String, nullable=False)

class Round(Base):
    __tablename__ = "rounds"
    # Duplicate advance calls lose on this constraint
    __table_args__ = (UniqueConstraint("battle_id", "round_number", name="uq_rounds_battle_number"),)

    id = Column(String, primary_key=True, default=utils.generate_uuid)
    room_id = Column(String(6), ForeignKey("rooms.id"), nullable=False, index=True)
    battle_id = Column(String, ForeignKey("battles.id"), nullable=False, index=True)
    round_number = Column(Integer, nullable=False)
    image_id = Column(String, ForeignKey("images.id"), nullable=False)
    started_at = Column(DateTime, nullable=False, default=utils.get_utc_now)
    ends_at = Column(DateTime, nullable=False)

    image = relationship("Image", lazy="joined")

class Prompt(Base):
    __tablename__ = "prompts"
    __table_args__ = (UniqueConstraint("round_id", "user_id", name="uq_prompts_round_user"),)

    id = Column(String, primary_key=True, default=utils.generate_uuid)
    round_id = Column(String, ForeignKey("rounds.id"), nullable=False, index=True)
    battle_id = Column(String, ForeignKey("battles.id"), nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)
    prompt_text = Column(Text, nullable=False, default="")
    score = Column(Integer, nullable=True)
    justification = Column(Text, nullable=True)
    submitted_at = Column(DateTime, default=utils.get_utc_now)

class BattleScore(Base):
    __tablename__ = "battle_scores"
    __table_args__ = (UniqueConstraint("battle_id", "user_id", name="uq_battle_scores_battle_user"),)

    id = Column(String, primary_key=True, default=utils.generate_uuid)
    battle_id = Column(String, ForeignKey("battles.id"), nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)
    total_score = Column(Integer, nullable=False, default=0)
    rank = Column(Integer, nullable=True)
