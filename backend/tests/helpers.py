"""Request helpers and the fake judge shared by the API tests."""

from errors import UpstreamFailure
from judge import Judge
from scoring import Evaluation


class FakeJudge(Judge):
    """Scores prompts from a fixed table; records what it was asked."""

    def __init__(self):
        self.calls = []
        self.scores = {}
        self.default_score = 50
        self.fail = False

    async def evaluate(self, image_url, prompts):
        self.calls.append((image_url, [p.prompt_text for p in prompts]))
        if self.fail:
            raise UpstreamFailure("Gemini API call failed: boom")
        return [
            Evaluation(
                prompt_id=p.id,
                user_id=p.user_id,
                score=self.scores.get(p.prompt_text, self.default_score),
                justification=f"Judged: {p.prompt_text}",
            )
            for p in prompts
        ]

    @property
    def judged_texts(self):
        return [text for _url, texts in self.calls for text in texts]


def auth(user_id: str) -> dict:
    return {"Authorization": f"Bearer {user_id}"}


async def fetch_all(db, stmt):
    """Query with fresh attribute values, bypassing stale identity-map state."""
    db.expire_all()
    result = await db.execute(stmt)
    return result.scalars().all()


async def fetch_one(db, stmt):
    rows = await fetch_all(db, stmt)
    return rows[0] if rows else None


async def create_room(client, host="host-1", total_rounds=2, title="Friday battle"):
    res = await client.post(
        "/api/rooms/create",
        json={"title": title, "total_rounds": total_rounds},
        headers=auth(host),
    )
    assert res.status_code == 200, res.text
    return res.json()["room_id"]


async def join(client, room_id, user):
    res = await client.post("/api/rooms/join", json={"room_id": room_id}, headers=auth(user))
    assert res.status_code == 200, res.text
    return res


async def ready(client, room_id, user, is_ready=True):
    return await client.post(
        "/api/rooms/ready",
        json={"room_id": room_id, "user_id": user, "is_ready": is_ready},
        headers=auth(user),
    )


async def start(client, room_id, host="host-1"):
    return await client.post(
        "/api/battle/start", json={"room_id": room_id, "user_id": host}, headers=auth(host),
    )


async def submit(client, phase, user, text):
    return await client.post(
        "/api/battle/submit-prompt",
        json={
            "round_id": phase["round_id"],
            "battle_id": phase["battle_id"],
            "user_id": user,
            "prompt_text": text,
        },
        headers=auth(user),
    )


async def score(client, room_id, phase, user="host-1"):
    return await client.post(
        "/api/battle/score-round",
        json={
            "room_id": room_id,
            "round_id": phase["round_id"],
            "battle_id": phase["battle_id"],
            "image_url": phase["image_url"],
        },
        headers=auth(user),
    )


async def finalize(client, room_id, round_id, user="host-1"):
    return await client.post(
        "/api/battle/finalize-round",
        json={"room_id": room_id, "round_id": round_id},
        headers=auth(user),
    )


async def advance(client, room_id, battle_id, user="host-1", from_round=None):
    body = {"room_id": room_id, "battle_id": battle_id, "user_id": user}
    if from_round is not None:
        body["round_number"] = from_round
    return await client.post("/api/battle/advance-round", json=body, headers=auth(user))
