"""
Payout calculator.

payout = floor(score * pool / total_votes), exact rational arithmetic only.
Floor rounding can leave an undistributed remainder but never exceeds the pool.
"""
from __future__ import annotations

from dataclasses import dataclass
from fractions import Fraction
from typing import Any, Dict, List, Mapping, Optional

from rpgf.collaborators import ProjectDirectory
from rpgf.ranking import rank
from rpgf.tally import exact_amount


@dataclass(frozen=True)
class PayoutLine:
    project_id: str
    payout_amount: int
    payout_address: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"projectId": self.project_id, "payoutAmount": str(self.payout_amount)}
        if self.payout_address is not None:
            d["payoutAddress"] = self.payout_address
        return d


def calculate_payout(score: Any, total_votes: Any, pool_amount: int) -> int:
    score_q = exact_amount(score)
    total_q = exact_amount(total_votes)
    if score_q < 0:
        raise ValueError("project score must be >= 0")
    if pool_amount < 0:
        raise ValueError("pool amount must be >= 0")
    if total_q <= 0:
        return 0
    return int((score_q * int(pool_amount)) // total_q)


def payouts(
    scores: Mapping[str, Any],
    pool_amount: int,
    total_votes: Optional[Any] = None,
) -> List[PayoutLine]:
    """
    One PayoutLine per project, in the mapping's order. `total_votes` defaults
    to the sum of the scores.
    """
    exact: Dict[str, Fraction] = {pid: exact_amount(s) for pid, s in scores.items()}
    total = sum(exact.values(), Fraction(0)) if total_votes is None else exact_amount(total_votes)
    return [
        PayoutLine(project_id=pid, payout_amount=calculate_payout(s, total, pool_amount))
        for pid, s in exact.items()
    ]


def remainder(lines: List[PayoutLine], pool_amount: int) -> int:
    return int(pool_amount) - sum(l.payout_amount for l in lines)


def distribution(
    scores: Mapping[str, Any],
    pool_amount: int,
    *,
    directory: Optional[ProjectDirectory] = None,
) -> List[PayoutLine]:
    """Non-zero payouts ordered by score descending, joined with payout addresses."""
    exact: Dict[str, Fraction] = {pid: exact_amount(s) for pid, s in scores.items()}
    total = sum(exact.values(), Fraction(0))
    out: List[PayoutLine] = []
    for pid in rank(exact):
        if exact[pid] <= 0:
            continue
        out.append(
            PayoutLine(
                project_id=pid,
                payout_amount=calculate_payout(exact[pid], total, pool_amount),
                payout_address=directory.payout_address(pid) if directory else None,
            )
        )
    return out
