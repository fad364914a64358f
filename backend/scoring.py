from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

MIN_SCORE = 0
MAX_SCORE = 100
EMPTY_PROMPT_JUSTIFICATION = "No prompt submitted in time."


@dataclass
class Evaluation:
    prompt_id: str
    user_id: str
    score: int
    justification: str
    judged: bool = True


def clamp_score(value: int) -> int:
    return max(MIN_SCORE, min(MAX_SCORE, int(value)))


def is_blank(text: Optional[str]) -> bool:
    return not (text or "").strip()


def partition_prompts(prompts: Iterable) -> Tuple[list, list]:
    """Split prompts into (to_judge, empty), preserving order."""
    to_judge, empty = [], []
    for prompt in prompts:
        (empty if is_blank(prompt.prompt_text) else to_judge).append(prompt)
    return to_judge, empty


def evaluate_empty(prompts: Iterable) -> List[Evaluation]:
    return [
        Evaluation(
            prompt_id=p.id,
            user_id=p.user_id,
            score=0,
            justification=EMPTY_PROMPT_JUSTIFICATION,
            judged=False,
        )
        for p in prompts
    ]


def assign_ranks(totals: Sequence[Tuple[str, int]]) -> List[Tuple[str, int]]:
    """Rank (user_id, total_score) pairs, best first.

    Equal totals are ordered by user id so the ranking never depends on the
    order rows come back from the database.
    """
    ordered = sorted(totals, key=lambda item: (-item[1], item[0]))
    return [(user_id, position + 1) for position, (user_id, _total) in enumerate(ordered)]
