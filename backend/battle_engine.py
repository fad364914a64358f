"""Room and battle state machine.

Phases run ``waiting -> submission -> results -> submission ... -> finished``.
Every operation reads persisted state, validates before touching anything,
writes, commits, and broadcasts last so subscribers never hear about rows
that are not durable yet. There are no in-process locks: concurrent callers
are reconciled through the unique constraints behind ``store.insert_once``.
"""

import logging
import re
from dataclasses import asdict
from datetime import timedelta
from typing import List, Optional

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

import config
import utils
from connection_manager import (
    manager, room_channel, phase_channel,
    PHASE_UPDATE, RESULTS_READY, GAME_FINISHED,
    PLAYER_JOINED, PLAYER_READY, SETTINGS_UPDATED, ROOM_RESET,
)
from errors import (
    ValidationError, Forbidden, NotFound, PreconditionFailed,
    ResourceExhausted, RoomCreationFailed,
)
from judge import Judge
from models import (
    Room, RoomPlayer, Battle, Round, Prompt, BattleScore, Image,
    BATTLE_ACTIVE, BATTLE_FINISHED, BATTLE_ARCHIVED,
)
from schemas import (
    PhaseUpdate, BattleStartedResponse, AdvanceRoundResponse, ScoreRoundResponse,
    EvaluationResponse, BattleScoreResponse, RoomResponse, PlayerResponse,
    BattleResponse, RoundResponse,
)
from scoring import Evaluation, partition_prompts, evaluate_empty, assign_ranks, is_blank
from store import (
    InsertOutcome, insert_once, upsert_room_player, get_room_player, upsert_prompt,
    get_prompt, recompute_battle_total, upsert_battle_score,
)

logger = logging.getLogger(__name__)

ROOM_CODE_PATTERN = re.compile(r"^[A-Z0-9]{6}$")


# --- Lookups ---

def normalize_room_code(room_id: Optional[str]) -> str:
    code = (room_id or "").strip().upper()
    if not ROOM_CODE_PATTERN.match(code):
        raise ValidationError("Invalid room code format")
    return code

def ensure_caller(claimed_user_id: Optional[str], caller_id: str):
    """A user id in the body is only accepted when it names the caller."""
    if claimed_user_id and claimed_user_id != caller_id:
        raise Forbidden("Cannot act on behalf of another user")

async def get_room(db: AsyncSession, room_id: str) -> Room:
    room = await db.get(Room, normalize_room_code(room_id))
    if not room:
        raise NotFound("Room not found")
    return room

async def require_member(db: AsyncSession, room: Room, user_id: str) -> RoomPlayer:
    player = await get_room_player(db, room.id, user_id)
    if player is None:
        raise Forbidden("Not a member of this room")
    return player

async def require_host(db: AsyncSession, room: Room, user_id: str, message: str) -> RoomPlayer:
    player = await get_room_player(db, room.id, user_id)
    if player is None or not player.is_host:
        raise Forbidden(message)
    return player

async def list_players(db: AsyncSession, room_id: str) -> List[RoomPlayer]:
    result = await db.execute(
        select(RoomPlayer)
        .where(RoomPlayer.room_id == room_id)
        .order_by(RoomPlayer.is_host.desc(), RoomPlayer.joined_at, RoomPlayer.user_id)
    )
    return list(result.scalars().all())

async def get_active_battle(db: AsyncSession, room: Room) -> Optional[Battle]:
    if not room.active_battle_id:
        return None
    battle = await db.get(Battle, room.active_battle_id)
    if battle is None or battle.status != BATTLE_ACTIVE:
        return None
    return battle

async def draw_image(db: AsyncSession) -> Image:
    """Uniform random pick from the image pool."""
    result = await db.execute(select(Image).order_by(func.random()).limit(1))
    image = result.scalars().first()
    if image is None:
        raise ResourceExhausted("No images available")
    return image

async def round_exists(db: AsyncSession, battle_id: str, round_number: int) -> bool:
    result = await db.execute(
        select(Round.id).where(Round.battle_id == battle_id, Round.round_number == round_number)
    )
    return result.first() is not None

async def get_current_round(db: AsyncSession, battle: Battle) -> Optional[Round]:
    result = await db.execute(
        select(Round).where(Round.battle_id == battle.id, Round.round_number == battle.current_round)
    )
    return result.scalars().first()

async def round_prompts(db: AsyncSession, round_id: str) -> List[Prompt]:
    result = await db.execute(
        select(Prompt).where(Prompt.round_id == round_id).order_by(Prompt.submitted_at, Prompt.id)
    )
    return list(result.scalars().all())

def round_values(battle: Battle, round_number: int, image: Image) -> dict:
    now = utils.get_utc_now()
    return dict(
        id=utils.generate_uuid(),
        room_id=battle.room_id,
        battle_id=battle.id,
        round_number=round_number,
        image_id=image.id,
        started_at=now,
        ends_at=now + timedelta(seconds=config.SUBMISSION_SECONDS),
    )

def phase_update(battle: Battle, round_: Round, image_url: str) -> PhaseUpdate:
    return PhaseUpdate(
        time=config.SUBMISSION_SECONDS,
        image_url=image_url,
        round_id=round_.id,
        round_number=round_.round_number,
        battle_id=battle.id,
        total_rounds=battle.total_rounds,
        ends_at=round_.ends_at,
    )


# --- Rooms ---

async def create_room(db: AsyncSession, title: str, host_id: str, total_rounds=None) -> Room:
    rounds = utils.clamp_total_rounds(total_rounds)

    # Retry a few times in the rare case of a code collision
    for _ in range(config.ROOM_CODE_ATTEMPTS):
        code = utils.generate_room_code()
        outcome = await insert_once(
            db, Room,
            id=code,
            title=title,
            host_id=host_id,
            total_rounds=rounds,
            current_round=0,
            created_at=utils.get_utc_now(),
        )
        if outcome is InsertOutcome.CREATED:
            break
    else:
        raise RoomCreationFailed("Failed to create room")

    await upsert_room_player(db, code, host_id, is_host=True)
    await db.commit()

    logger.info("Room %s created by %s (%d rounds)", code, host_id, rounds)
    return await db.get(Room, code)

async def join_room(db: AsyncSession, room_id: str, user_id: str) -> Room:
    room = await get_room(db, room_id)

    _player, outcome = await upsert_room_player(db, room.id, user_id)
    await db.commit()

    if outcome is InsertOutcome.CREATED:
        logger.info("User %s joined room %s", user_id, room.id)
        await manager.broadcast(room_channel(room.id), PLAYER_JOINED, {"user_id": user_id})
    return room

async def set_ready(db: AsyncSession, room_id: str, user_id: str, caller_id: str, is_ready: bool) -> RoomPlayer:
    ensure_caller(user_id, caller_id)
    room = await get_room(db, room_id)

    player = await get_room_player(db, room.id, caller_id)
    if player is None:
        raise NotFound("Player not in room")
    if player.is_host:
        # The host is always ready
        return player

    player.is_ready = is_ready
    player.last_active_at = utils.get_utc_now()
    await db.commit()

    await manager.broadcast(
        room_channel(room.id), PLAYER_READY, {"user_id": caller_id, "is_ready": is_ready}
    )
    return player

async def update_settings(db: AsyncSession, room_id: str, caller_id: str, total_rounds: int) -> Room:
    room = await get_room(db, room_id)
    await require_host(db, room, caller_id, "Only the host can change settings")

    if await get_active_battle(db, room) is not None:
        raise PreconditionFailed("Cannot change settings while a battle is running")

    room.total_rounds = utils.clamp_total_rounds(total_rounds)
    await db.commit()

    await manager.broadcast(
        room_channel(room.id), SETTINGS_UPDATED, {"total_rounds": room.total_rounds}
    )
    return room

async def heartbeat(db: AsyncSession, room_id: str, caller_id: str):
    room = await get_room(db, room_id)
    player = await get_room_player(db, room.id, caller_id)
    if player is None:
        raise NotFound("Player not in room")
    player.last_active_at = utils.get_utc_now()
    await db.commit()

async def reset_room(db: AsyncSession, room_id: str, caller_id: str) -> Room:
    """Rematch: archive the finished battle and return everyone to the lobby.

    Rounds, prompts and battle scores stay behind as history.
    """
    room = await get_room(db, room_id)
    await require_host(db, room, caller_id, "Only the host can reset the room")

    if await get_active_battle(db, room) is not None:
        raise PreconditionFailed("Battle still in progress")

    await db.execute(
        update(Battle)
        .where(Battle.room_id == room.id, Battle.status == BATTLE_FINISHED)
        .values(status=BATTLE_ARCHIVED)
    )
    room.active_battle_id = None
    room.current_round = 0

    # Guests go back to not ready, the host stays ready
    await db.execute(
        update(RoomPlayer)
        .where(RoomPlayer.room_id == room.id)
        .values(is_ready=RoomPlayer.is_host, score=0)
        .execution_options(synchronize_session="fetch")
    )
    await db.commit()

    logger.info("Room %s reset for a rematch", room.id)
    await manager.broadcast(room_channel(room.id), ROOM_RESET, {"room_id": room.id})
    return room

async def get_room_state(db: AsyncSession, room_id: str) -> RoomResponse:
    room = await get_room(db, room_id)
    players = await list_players(db, room.id)

    battle = await db.get(Battle, room.active_battle_id) if room.active_battle_id else None
    round_ = await get_current_round(db, battle) if battle else None

    return RoomResponse(
        id=room.id,
        title=room.title,
        host_id=room.host_id,
        total_rounds=room.total_rounds,
        current_round=room.current_round,
        active_battle_id=room.active_battle_id,
        created_at=room.created_at,
        players=[PlayerResponse.model_validate(p) for p in players],
        battle=BattleResponse.model_validate(battle) if battle else None,
        round=RoundResponse(
            id=round_.id,
            battle_id=round_.battle_id,
            round_number=round_.round_number,
            image_url=round_.image.url,
            started_at=round_.started_at,
            ends_at=round_.ends_at,
        ) if round_ else None,
    )


# --- Battles ---

async def start_battle(
    db: AsyncSession, room_id: str, caller_id: str,
    user_id: Optional[str] = None, total_rounds: Optional[int] = None,
) -> BattleStartedResponse:
    ensure_caller(user_id, caller_id)
    room = await get_room(db, room_id)
    await require_host(db, room, caller_id, "Only the host can start the battle")

    if await get_active_battle(db, room) is not None:
        raise PreconditionFailed("A battle is already in progress")

    players = await list_players(db, room.id)
    if not all(p.is_ready for p in players if not p.is_host):
        raise PreconditionFailed("All non-host players must be ready before starting")

    # Drawn before any write so an empty pool leaves no half-started battle
    image = await draw_image(db)

    if total_rounds is not None:
        room.total_rounds = utils.clamp_total_rounds(total_rounds)

    await db.execute(
        update(Battle)
        .where(Battle.room_id == room.id, Battle.status == BATTLE_FINISHED)
        .values(status=BATTLE_ARCHIVED)
    )

    battle = Battle(
        id=utils.generate_uuid(),
        room_id=room.id,
        current_round=1,
        total_rounds=room.total_rounds,
        status=BATTLE_ACTIVE,
        started_at=utils.get_utc_now(),
    )
    db.add(battle)
    await db.flush()
    room.active_battle_id = battle.id
    room.current_round = 1
    for player in players:
        player.score = 0

    round_ = Round(**round_values(battle, 1, image))
    db.add(round_)
    await db.commit()

    phase = phase_update(battle, round_, image.url)
    logger.info("Battle %s started in room %s (%d rounds)", battle.id, room.id, battle.total_rounds)
    await manager.broadcast(phase_channel(room.id), PHASE_UPDATE, phase.model_dump(mode="json"))
    return BattleStartedResponse(**phase.model_dump())

async def submit_prompt(
    db: AsyncSession, caller_id: str, round_id: str, battle_id: str,
    user_id: str, prompt_text: str,
) -> Prompt:
    ensure_caller(user_id, caller_id)

    round_ = await db.get(Round, round_id)
    if round_ is None or round_.battle_id != battle_id:
        raise NotFound("Round not found")
    battle = await db.get(Battle, battle_id)
    if battle is None:
        raise NotFound("Battle not found")

    room = await get_room(db, round_.room_id)
    await require_member(db, room, caller_id)

    if battle.status != BATTLE_ACTIVE or round_.round_number != battle.current_round:
        raise PreconditionFailed("Round is closed")

    existing = await get_prompt(db, round_.id, caller_id)
    if existing is not None and existing.score is not None:
        raise PreconditionFailed("Round already scored")

    prompt = await upsert_prompt(db, round_.id, battle.id, caller_id, prompt_text)
    await db.commit()
    return prompt

async def _load_round(db: AsyncSession, room_id: str, round_id: str, battle_id: Optional[str] = None):
    room = await get_room(db, room_id)
    round_ = await db.get(Round, round_id)
    if round_ is None or round_.room_id != room.id:
        raise NotFound("Round not found")
    if battle_id is not None and round_.battle_id != battle_id:
        raise NotFound("Round not found")
    battle = await db.get(Battle, round_.battle_id)
    if battle is None:
        raise NotFound("Battle not found")
    return room, round_, battle

def ensure_live_battle(room: Room, battle: Battle):
    """Only the room's current battle may be scored; archived ones are history."""
    if battle.status == BATTLE_ARCHIVED or battle.id != room.active_battle_id:
        raise PreconditionFailed("Battle is no longer running in this room")

async def rerank(db: AsyncSession, battle_id: str) -> List[BattleScore]:
    await db.flush()
    result = await db.execute(
        select(BattleScore)
        .where(BattleScore.battle_id == battle_id)
        .order_by(BattleScore.total_score.desc(), BattleScore.user_id)
    )
    rows = list(result.scalars().all())
    ranks = dict(assign_ranks([(row.user_id, row.total_score) for row in rows]))
    for row in rows:
        row.rank = ranks[row.user_id]
    return sorted(rows, key=lambda row: row.rank)

async def _apply_evaluations(
    db: AsyncSession, battle: Battle, prompts: List[Prompt], evaluations: List[Evaluation],
) -> List[BattleScore]:
    prompts_by_id = {p.id: p for p in prompts}
    players = {p.user_id: p for p in await list_players(db, battle.room_id)}

    for ev in evaluations:
        prompt = prompts_by_id[ev.prompt_id]
        prompt.score = ev.score
        prompt.justification = ev.justification

        player = players.get(ev.user_id)
        if player is not None and not player.is_host:
            player.is_ready = False

        total = await recompute_battle_total(db, battle.id, ev.user_id)
        await upsert_battle_score(db, battle.id, ev.user_id, total)
        if player is not None:
            player.score = total

    return await rerank(db, battle.id)

def _score_response(round_id: str, evaluations, scores, already_scored: bool = False) -> ScoreRoundResponse:
    return ScoreRoundResponse(
        round_id=round_id,
        already_scored=already_scored,
        evaluations=[EvaluationResponse(**asdict(ev)) for ev in evaluations],
        scores=[BattleScoreResponse.model_validate(s) for s in scores],
    )

async def score_round(
    db: AsyncSession, judge: Judge, room_id: str, round_id: str, battle_id: str,
    image_url: Optional[str] = None,
) -> ScoreRoundResponse:
    """Judge a round and refresh the battle's totals and ranks.

    Blank prompts never reach the judge; they score 0. The judge runs before
    any write, so a judge failure leaves the round untouched. Totals are
    re-summed from prompt rows, which makes running this twice harmless.
    """
    room, round_, battle = await _load_round(db, room_id, round_id, battle_id)
    ensure_live_battle(room, battle)

    prompts = await round_prompts(db, round_.id)
    if not prompts:
        raise PreconditionFailed("No prompts found")

    to_judge, empty = partition_prompts(prompts)
    judged = await judge.evaluate(image_url or round_.image.url, to_judge) if to_judge else []
    evaluations = judged + evaluate_empty(empty)

    scores = await _apply_evaluations(db, battle, prompts, evaluations)
    await db.commit()

    logger.info(
        "Round %s scored: %d judged, %d empty", round_.id, len(to_judge), len(empty)
    )
    await manager.broadcast(phase_channel(room.id), RESULTS_READY, {"round_id": round_.id})
    return _score_response(round_.id, evaluations, scores)

async def finalize_round(db: AsyncSession, judge: Judge, room_id: str, round_id: str, caller_id: str) -> ScoreRoundResponse:
    """Close a round once its deadline passed (or everyone submitted) and score it.

    Members without a prompt get an empty one. A round that is already fully
    scored is returned as-is without calling the judge again.
    """
    room, round_, battle = await _load_round(db, room_id, round_id)
    ensure_live_battle(room, battle)
    await require_member(db, room, caller_id)

    players = await list_players(db, room.id)
    prompts = await round_prompts(db, round_.id)
    submitted = {p.user_id for p in prompts}
    missing = [p for p in players if p.user_id not in submitted]

    if not missing and prompts and all(p.score is not None for p in prompts):
        evaluations = [
            Evaluation(
                prompt_id=p.id,
                user_id=p.user_id,
                score=p.score,
                justification=p.justification or "",
                judged=not is_blank(p.prompt_text),
            )
            for p in prompts
        ]
        result = await db.execute(
            select(BattleScore)
            .where(BattleScore.battle_id == battle.id)
            .order_by(BattleScore.rank, BattleScore.user_id)
        )
        return _score_response(round_.id, evaluations, result.scalars().all(), already_scored=True)

    if missing and utils.get_utc_now() < round_.ends_at:
        raise PreconditionFailed("Submission window is still open")

    for player in missing:
        await insert_once(
            db, Prompt,
            id=utils.generate_uuid(),
            round_id=round_.id,
            battle_id=battle.id,
            user_id=player.user_id,
            prompt_text="",
            submitted_at=utils.get_utc_now(),
        )

    return await score_round(db, judge, room.id, round_.id, battle.id)

async def advance_round(
    db: AsyncSession, room_id: str, battle_id: str, caller_id: str,
    user_id: Optional[str] = None, from_round: Optional[int] = None,
) -> AdvanceRoundResponse:
    """Move the battle to its next round, or finish it after the last one.

    Safe to call from every client when the shared countdown ends: whoever
    loses the race on (battle, round_number) gets ``already_advanced``.
    """
    ensure_caller(user_id, caller_id)
    room = await get_room(db, room_id)

    battle = await db.get(Battle, battle_id)
    if battle is None or battle.room_id != room.id:
        raise NotFound("Battle not found")

    player = await require_member(db, room, caller_id)
    if config.REQUIRE_HOST_TO_ADVANCE and not player.is_host:
        raise Forbidden("Only the host can advance the round")

    if battle.status != BATTLE_ACTIVE:
        return AdvanceRoundResponse(finished=True)

    if from_round is not None:
        if from_round > battle.current_round:
            raise ValidationError("Round number is ahead of the battle")
        if from_round < battle.current_round:
            # Late duplicate of an advance that already went through
            return AdvanceRoundResponse(already_advanced=True, round=battle.current_round)

    next_number = battle.current_round + 1
    if await round_exists(db, battle.id, next_number):
        logger.info("Round %d of battle %s already created, skipping", next_number, battle.id)
        return AdvanceRoundResponse(already_advanced=True, round=next_number)

    if next_number > battle.total_rounds:
        # Only the caller that flips the status announces the end
        result = await db.execute(
            update(Battle)
            .where(Battle.id == battle.id, Battle.status == BATTLE_ACTIVE)
            .values(status=BATTLE_FINISHED, finished_at=utils.get_utc_now())
        )
        await db.commit()
        if result.rowcount != 1:
            return AdvanceRoundResponse(finished=True)

        logger.info("Battle %s finished", battle.id)
        await manager.broadcast(phase_channel(room.id), GAME_FINISHED, {"battle_id": battle.id})
        return AdvanceRoundResponse(finished=True)

    image = await draw_image(db)
    values = round_values(battle, next_number, image)
    if await insert_once(db, Round, **values) is InsertOutcome.ALREADY_EXISTS:
        return AdvanceRoundResponse(already_advanced=True, round=next_number)
    round_ = await db.get(Round, values["id"])

    battle.current_round = next_number
    room.current_round = next_number
    await db.commit()

    phase = phase_update(battle, round_, image.url)
    await manager.broadcast(phase_channel(room.id), PHASE_UPDATE, phase.model_dump(mode="json"))
    return AdvanceRoundResponse(round=next_number, phase=phase)
