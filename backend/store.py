"""Write helpers that lean on unique constraints instead of locks.

Concurrent handlers race on inserts (room codes, memberships, round numbers,
prompts, battle scores). The loser of such a race is not an error:
``insert_once`` issues ``INSERT ... ON CONFLICT DO NOTHING`` and reports
``ALREADY_EXISTS`` when the row was already there, leaving the surrounding
transaction usable.
"""

import enum
import logging

from sqlalchemy import select, func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from models import BattleScore, Prompt, RoomPlayer
import utils

logger = logging.getLogger(__name__)

_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class InsertOutcome(enum.Enum):
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"


async def insert_once(db: AsyncSession, model, **values) -> InsertOutcome:
    dialect = db.get_bind().dialect.name
    try:
        insert = _INSERTS[dialect]
    except KeyError:
        raise RuntimeError(f"Unsupported database dialect: {dialect}")

    stmt = insert(model.__table__).values(**values).on_conflict_do_nothing()
    result = await db.execute(stmt)
    if result.rowcount == 0:
        logger.info("Insert into %s lost a uniqueness race", model.__tablename__)
        return InsertOutcome.ALREADY_EXISTS
    return InsertOutcome.CREATED


async def get_room_player(db: AsyncSession, room_id: str, user_id: str):
    result = await db.execute(
        select(RoomPlayer).where(RoomPlayer.room_id == room_id, RoomPlayer.user_id == user_id)
    )
    return result.scalars().first()


async def upsert_room_player(db: AsyncSession, room_id: str, user_id: str, is_host: bool = False):
    """Membership upsert: an existing row keeps its role and readiness.

    Returns ``(player, outcome)``.
    """
    now = utils.get_utc_now()
    outcome = await insert_once(
        db, RoomPlayer,
        id=utils.generate_uuid(),
        room_id=room_id,
        user_id=user_id,
        is_host=is_host,
        is_ready=is_host,
        joined_at=now,
        last_active_at=now,
    )
    player = await get_room_player(db, room_id, user_id)
    player.last_active_at = now
    return player, outcome


async def get_prompt(db: AsyncSession, round_id: str, user_id: str):
    result = await db.execute(
        select(Prompt).where(Prompt.round_id == round_id, Prompt.user_id == user_id)
    )
    return result.scalars().first()


async def upsert_prompt(db: AsyncSession, round_id: str, battle_id: str, user_id: str, prompt_text: str) -> Prompt:
    """Keyed on (round, user); a later submission overwrites the earlier text."""
    now = utils.get_utc_now()
    await insert_once(
        db, Prompt,
        id=utils.generate_uuid(),
        round_id=round_id,
        battle_id=battle_id,
        user_id=user_id,
        prompt_text=prompt_text,
        submitted_at=now,
    )
    prompt = await get_prompt(db, round_id, user_id)
    prompt.prompt_text = prompt_text
    prompt.submitted_at = now
    return prompt


async def recompute_battle_total(db: AsyncSession, battle_id: str, user_id: str) -> int:
    """Sum of the user's scored prompts in the battle.

    Always derived from the prompt rows so re-scoring a round converges on
    the same total instead of adding to it.
    """
    await db.flush()
    result = await db.execute(
        select(func.coalesce(func.sum(Prompt.score), 0)).where(
            Prompt.battle_id == battle_id,
            Prompt.user_id == user_id,
        )
    )
    return int(result.scalar_one())


async def upsert_battle_score(db: AsyncSession, battle_id: str, user_id: str, total_score: int) -> BattleScore:
    await insert_once(
        db, BattleScore,
        id=utils.generate_uuid(),
        battle_id=battle_id,
        user_id=user_id,
        total_score=total_score,
    )
    result = await db.execute(
        select(BattleScore).where(BattleScore.battle_id == battle_id, BattleScore.user_id == user_id)
    )
    score = result.scalars().first()
    score.total_score = total_score
    return score
