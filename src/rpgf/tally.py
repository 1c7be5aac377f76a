"""
Tally engine.

Scores every project referenced by a Published ballot of one round:
  - one amount per (ballot, project); a duplicate entry inside a ballot
    replaces the earlier one (last entry wins)
  - sum: plain sum, no quorum
  - average / median: 0 unless distinct contributing voters >= threshold

All arithmetic is exact (Fraction). Amounts are converted through their decimal
string form, so 0.1 counts as one tenth.
"""
from __future__ import annotations

from dataclasses import dataclass
from fractions import Fraction
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from rpgf.ballot_store import Ballot
from rpgf.round_keys import belongs_to_round
from rpgf.settings import RoundConfig, Strategy, parse_strategy


@dataclass(frozen=True)
class ProjectScore:
    project_id: str
    votes: Fraction
    voters: int

    def to_dict(self) -> Dict[str, Any]:
        return {"projectId": self.project_id, "votes": as_number(self.votes), "voters": self.voters}


@dataclass(frozen=True)
class TallyResult:
    projects: Dict[str, ProjectScore]
    total_voters: int
    total_votes: Fraction
    calculation: Strategy
    threshold: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "projects": {pid: s.to_dict() for pid, s in self.projects.items()},
            "totalVoters": self.total_voters,
            "totalVotes": as_number(self.total_votes),
            "calculation": self.calculation.value,
            "threshold": self.threshold,
        }


def as_number(x: Fraction) -> Any:
    if x.denominator == 1:
        return int(x)
    return float(x)


def exact_amount(amount: Any) -> Fraction:
    if isinstance(amount, Fraction):
        return amount
    if isinstance(amount, int):
        return Fraction(amount)
    return Fraction(str(amount))


def _sum(amounts: Sequence[Fraction]) -> Fraction:
    return sum(amounts, Fraction(0))


def _average(amounts: Sequence[Fraction]) -> Fraction:
    if not amounts:
        return Fraction(0)
    return _sum(amounts) / len(amounts)


def _median(amounts: Sequence[Fraction]) -> Fraction:
    if not amounts:
        return Fraction(0)
    s = sorted(amounts)
    mid = len(s) // 2
    if len(s) % 2:
        return s[mid]
    return (s[mid - 1] + s[mid]) / 2


CALCULATIONS: Dict[Strategy, Callable[[Sequence[Fraction]], Fraction]] = {
    Strategy.SUM: _sum,
    Strategy.AVERAGE: _average,
    Strategy.MEDIAN: _median,
}


def collect_amounts(ballots: Iterable[Ballot]) -> Dict[str, List[Fraction]]:
    """projectId -> one amount per contributing ballot, in first-seen order."""
    out: Dict[str, List[Fraction]] = {}
    for b in ballots:
        per_ballot: Dict[str, Fraction] = {}
        for v in b.votes:
            per_ballot[v.project_id] = exact_amount(v.amount)
        for pid, amt in per_ballot.items():
            out.setdefault(pid, []).append(amt)
    return out


def score_project(amounts: Sequence[Fraction], config: RoundConfig) -> Fraction:
    strategy = parse_strategy(config.calculation)
    if strategy is not Strategy.SUM and len(amounts) < config.threshold:
        return Fraction(0)
    return CALCULATIONS[strategy](amounts)


def tally_ballots(
    ballots: Iterable[Ballot],
    config: RoundConfig,
    *,
    round: Optional[int] = None,
) -> TallyResult:
    """
    Returns the tally for the given ballots. Drafts are ignored; when `round`
    is given, ballots whose key belongs to another round are ignored too.
    """
    strategy = parse_strategy(config.calculation)
    selected = [
        b for b in ballots
        if b.is_published and (round is None or belongs_to_round(b.voter_key, round))
    ]

    projects: Dict[str, ProjectScore] = {}
    for pid, amounts in collect_amounts(selected).items():
        projects[pid] = ProjectScore(
            project_id=pid,
            votes=score_project(amounts, config),
            voters=len(amounts),
        )

    total = sum((s.votes for s in projects.values()), Fraction(0))
    return TallyResult(
        projects=projects,
        total_voters=len(selected),
        total_votes=total,
        calculation=strategy,
        threshold=int(config.threshold),
    )
