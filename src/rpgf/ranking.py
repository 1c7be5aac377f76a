from __future__ import annotations

from typing import Any, List, Mapping, Sequence


def _score_of(v: Any) -> Any:
    # accepts raw numbers or ProjectScore-like objects
    return getattr(v, "votes", v)


def rank(scores: Mapping[str, Any]) -> List[str]:
    """
    Project ids by score descending. `sorted` is stable, so equal scores keep
    the mapping's order; nothing is shuffled.
    """
    return [pid for pid, _ in sorted(scores.items(), key=lambda kv: _score_of(kv[1]), reverse=True)]


def paginate(ranked: Sequence[str], offset: int, limit: int) -> List[str]:
    if offset < 0 or limit < 0:
        raise ValueError("offset and limit must be >= 0")
    return list(ranked[offset:offset + limit])


def page(ranked: Sequence[str], cursor: int, limit: int) -> List[str]:
    return paginate(ranked, cursor * limit, limit)
