from fractions import Fraction

import pytest

from rpgf.ballot_store import SqliteBallotStore
from rpgf.ranking import page, paginate, rank
from rpgf.tally import ProjectScore


def test_rank_descending():
    assert rank({"a": 1, "b": 5, "c": 3}) == ["b", "c", "a"]


def test_ties_keep_insertion_order_every_time():
    scores = {"x": 2, "y": 2, "z": 2, "w": 9}
    first = rank(scores)
    assert first == ["w", "x", "y", "z"]
    for _ in range(20):
        assert rank(scores) == first


def test_rank_accepts_project_scores():
    scores = {
        "a": ProjectScore("a", Fraction(1, 2), 1),
        "b": ProjectScore("b", Fraction(3, 2), 2),
    }
    assert rank(scores) == ["b", "a"]


def test_paginate_windows():
    ranked = [f"p{i}" for i in range(7)]
    assert paginate(ranked, 0, 3) == ["p0", "p1", "p2"]
    assert paginate(ranked, 6, 3) == ["p6"]
    assert paginate(ranked, 10, 3) == []
    assert page(ranked, 1, 3) == ["p3", "p4", "p5"]


def test_paginate_rejects_negative():
    with pytest.raises(ValueError):
        paginate(["a"], -1, 1)
    with pytest.raises(ValueError):
        paginate(["a"], 0, -1)


def test_service_ranking_is_stable_for_tied_scores(make_service, voter_a, voter_b, voter_c, sign, tmp_path):
    svc = make_service(store=SqliteBallotStore(tmp_path / "ballots.sqlite"))
    ballots = [
        (voter_a, [{"projectId": "p3", "amount": 5}, {"projectId": "p1", "amount": 5}]),
        (voter_b, [{"projectId": "p2", "amount": 5}, {"projectId": "p4", "amount": 9}]),
        (voter_c, [{"projectId": "p5", "amount": 5}]),
    ]
    for acct, votes in ballots:
        svc.save_draft(1, acct.address, votes)
        svc.publish(1, acct.address, sign(acct, votes))

    first = svc.get_ranked_projects(1, offset=0, limit=10)
    assert first[0] == "p4"
    assert sorted(first[1:]) == ["p1", "p2", "p3", "p5"]
    for _ in range(5):
        assert svc.get_ranked_projects(1, offset=0, limit=10) == first
    assert svc.get_ranked_projects(1, offset=1, limit=2) == first[1:3]
