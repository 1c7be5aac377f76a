"""
Round-qualified voter keys.

One voter-identity namespace serves every round:
  - round 1 keys are the bare voter id
  - later rounds are stored as "{round}-{voterId}"

The round-1 special case lives only in RoundKey.encode / RoundKey.decode.
Everything else compares decoded RoundKey values.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Tuple

_PREFIX_RE = re.compile(r"^(\d+)-(.+)$")


@dataclass(frozen=True)
class RoundKey:
    round: int
    voter_id: str

    def __post_init__(self) -> None:
        if not isinstance(self.round, int) or isinstance(self.round, bool) or self.round < 1:
            raise ValueError(f"round must be a positive integer, got {self.round!r}")
        if not isinstance(self.voter_id, str) or not self.voter_id:
            raise ValueError("voter_id must be a non-empty string")
        # a round-1 id shaped like "<digits>-..." would decode into another round
        if self.round == 1 and _PREFIX_RE.match(self.voter_id):
            raise ValueError(f"round 1 voter id must not look round-prefixed: {self.voter_id!r}")

    def encode(self) -> str:
        if self.round == 1:
            return self.voter_id
        return f"{self.round}-{self.voter_id}"

    @classmethod
    def decode(cls, key: str) -> "RoundKey":
        m = _PREFIX_RE.match(key)
        if m is None:
            return cls(round=1, voter_id=key)
        return cls(round=int(m.group(1)), voter_id=m.group(2))


def scope_key(round: int, voter_id: str) -> str:
    return RoundKey(round=round, voter_id=voter_id).encode()


def unscope_key(key: str) -> Tuple[int, str]:
    rk = RoundKey.decode(key)
    return rk.round, rk.voter_id


def belongs_to_round(key: str, round: int) -> bool:
    try:
        return RoundKey.decode(key).round == round
    except ValueError:
        return False


def round_label(round: int) -> str:
    """Human/domain label for a round, also used as the typed-data salt."""
    return f"rpgf-round-{int(round)}"
