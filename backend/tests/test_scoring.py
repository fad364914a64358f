from types import SimpleNamespace

from scoring import (
    EMPTY_PROMPT_JUSTIFICATION, assign_ranks, clamp_score, evaluate_empty, partition_prompts,
)


def _prompt(prompt_id, user_id, text):
    return SimpleNamespace(id=prompt_id, user_id=user_id, prompt_text=text)


def test_partition_separates_blank_prompts():
    prompts = [
        _prompt("p1", "u1", "a red bicycle"),
        _prompt("p2", "u2", ""),
        _prompt("p3", "u3", "   \n"),
        _prompt("p4", "u4", "lighthouse at dusk"),
    ]

    to_judge, empty = partition_prompts(prompts)

    assert [p.id for p in to_judge] == ["p1", "p4"]
    assert [p.id for p in empty] == ["p2", "p3"]


def test_empty_prompts_score_zero_without_judge():
    evaluations = evaluate_empty([_prompt("p2", "u2", "")])

    assert len(evaluations) == 1
    assert evaluations[0].score == 0
    assert evaluations[0].justification == EMPTY_PROMPT_JUSTIFICATION
    assert evaluations[0].judged is False


def test_ranks_are_dense_positions_best_first():
    ranks = assign_ranks([("u1", 40), ("u2", 90), ("u3", 65)])

    assert ranks == [("u2", 1), ("u3", 2), ("u1", 3)]


def test_rank_ties_break_on_user_id():
    ranks = dict(assign_ranks([("zed", 50), ("amy", 50), ("max", 80)]))

    assert ranks == {"max": 1, "amy": 2, "zed": 3}


def test_ranks_cover_one_to_k():
    totals = [(f"user-{i}", i % 3) for i in range(7)]

    ranks = [rank for _user, rank in assign_ranks(totals)]

    assert sorted(ranks) == list(range(1, 8))


def test_clamp_score_bounds():
    assert clamp_score(-5) == 0
    assert clamp_score(140) == 100
    assert clamp_score(73) == 73
