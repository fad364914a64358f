from sqlalchemy import select

from models import User
from tests.helpers import advance, auth, fetch_one, score, start, submit


async def _play_one_round(client, fake_judge, room_id):
    fake_judge.scores = {"a red bicycle": 82, "a bike": 40}
    phase = (await start(client, room_id)).json()
    await submit(client, phase, "host-1", "a red bicycle")
    await submit(client, phase, "guest-1", "a bike")
    await score(client, room_id, phase)
    return phase


async def test_profile_is_created_then_updated(client, test_db):
    first = await client.post(
        "/api/users/create",
        json={"id": "host-1", "email": "host@example.com"},
        headers=auth("host-1"),
    )
    second = await client.post(
        "/api/users/create",
        json={"id": "host-1", "name": "Host", "avatar": "https://cdn.test/a.png"},
        headers=auth("host-1"),
    )

    assert first.status_code == 200
    assert first.json()["name"] == "host@example.com"
    assert second.json() == {
        "id": "host-1",
        "name": "Host",
        "email": "host@example.com",
        "avatar": "https://cdn.test/a.png",
    }
    user = await fetch_one(test_db, select(User).where(User.id == "host-1"))
    assert user.name == "Host"


async def test_profile_for_another_user_is_forbidden(client):
    res = await client.post(
        "/api/users/create", json={"id": "guest-1", "name": "Impostor"}, headers=auth("host-1"),
    )

    assert res.status_code == 403


async def test_history_lists_battles_with_rank(client, fake_judge, lobby):
    phase = await _play_one_round(client, fake_judge, lobby)

    res = await client.get("/api/users/guest-1/history")

    assert res.status_code == 200
    [entry] = res.json()
    assert entry["battle_id"] == phase["battle_id"]
    assert entry["room_id"] == lobby
    assert entry["room_title"] == "Friday battle"
    assert entry["status"] == "active"
    assert entry["total_score"] == 40
    assert entry["rank"] == 2


async def test_history_is_empty_for_newcomers(client):
    res = await client.get("/api/users/nobody/history")

    assert res.json() == []


async def test_stats_count_wins(client, fake_judge, lobby):
    await _play_one_round(client, fake_judge, lobby)

    host = (await client.get("/api/users/host-1/stats")).json()
    guest = (await client.get("/api/users/guest-1/stats")).json()

    assert host == {"user_id": "host-1", "battles_played": 1, "wins": 1, "average_score": 82.0}
    assert guest == {"user_id": "guest-1", "battles_played": 1, "wins": 0, "average_score": 40.0}


async def test_stats_for_newcomers_are_zero(client):
    res = await client.get("/api/users/nobody/stats")

    assert res.json() == {"user_id": "nobody", "battles_played": 0, "wins": 0, "average_score": 0.0}


async def test_battle_prompts_per_round(client, fake_judge, lobby):
    phase = await _play_one_round(client, fake_judge, lobby)
    phase2 = (await advance(client, lobby, phase["battle_id"])).json()["phase"]
    await submit(client, phase2, "guest-1", "a lighthouse")

    res = await client.get(
        f"/api/battles/{phase['battle_id']}/prompts", params={"user_id": "guest-1"},
    )

    assert res.status_code == 200
    rounds = res.json()
    assert [(r["round_number"], r["prompt_text"], r["score"]) for r in rounds] == [
        (1, "a bike", 40),
        (2, "a lighthouse", None),
    ]
    assert rounds[0]["image_url"] == phase["image_url"]
    assert rounds[0]["justification"] == "Judged: a bike"


async def test_battle_prompts_require_user(client):
    res = await client.get("/api/battles/some-battle/prompts")

    assert res.status_code == 400
