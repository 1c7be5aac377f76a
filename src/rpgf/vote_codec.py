"""
Vote hash / signature codec.

Canonical form of a vote list:
  - compact JSON array, input order preserved (never re-sorted)
  - each vote written as {"projectId": ..., "amount": ...} in that field order
  - amounts written as JavaScript writes numbers (100 not 100.0, 0.00001
    not 1e-05, 1e+21 not 1e21)

The hash is keccak-256 over those bytes, 0x-prefixed hex.

A publish request is accepted only if:
  1. the claimed hash equals the recomputed hash of the stored votes, then
  2. an EIP-712 typed-data signature over
     {total_votes, project_count, hashed_votes} recovers to the voter address,
     under a domain bound to the chain id and the round.
"""
from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence

from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_utils import keccak

from rpgf.errors import HashMismatch, InvalidSignature, InvalidVotes
from rpgf.round_keys import round_label

log = logging.getLogger(__name__)

_MAX_SAFE_INT = 2**53 - 1

DOMAIN_NAME = "Sign votes"
DOMAIN_VERSION = "1"

BALLOT_TYPES: Dict[str, List[Dict[str, str]]] = {
    "EIP712Domain": [
        {"name": "name", "type": "string"},
        {"name": "version", "type": "string"},
        {"name": "chainId", "type": "uint256"},
        {"name": "salt", "type": "bytes32"},
    ],
    "Ballot": [
        {"name": "total_votes", "type": "uint256"},
        {"name": "project_count", "type": "uint256"},
        {"name": "hashed_votes", "type": "string"},
    ],
}


@dataclass(frozen=True)
class Vote:
    project_id: str
    amount: float

    def to_dict(self) -> Dict[str, Any]:
        return {"projectId": self.project_id, "amount": _js_number(self.amount)}


@dataclass(frozen=True)
class PublishRequest:
    signature: str
    chain_id: int
    total_votes: int
    project_count: int
    hashed_votes: str

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PublishRequest":
        """
        Accepts the wire shape:
          {"signature": "0x..", "chainId": 1,
           "message": {"total_votes": .., "project_count": .., "hashed_votes": ".."}}
        """
        msg = d.get("message") or {}
        try:
            return cls(
                signature=str(d["signature"]),
                chain_id=_uint(d["chainId"], "chainId"),
                total_votes=_uint(msg["total_votes"], "total_votes"),
                project_count=_uint(msg["project_count"], "project_count"),
                hashed_votes=str(msg["hashed_votes"]),
            )
        except KeyError as e:
            raise InvalidVotes(f"publish request missing field: {e.args[0]}") from e

    def message(self) -> Dict[str, Any]:
        return {
            "total_votes": self.total_votes,
            "project_count": self.project_count,
            "hashed_votes": self.hashed_votes,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {"signature": self.signature, "chainId": self.chain_id, "message": self.message()}


def _uint(v: Any, name: str) -> int:
    if isinstance(v, bool):
        raise InvalidVotes(f"{name} must be an unsigned integer")
    try:
        n = int(v)
    except (TypeError, ValueError) as e:
        raise InvalidVotes(f"{name} must be an unsigned integer") from e
    if n < 0 or (isinstance(v, float) and n != v):
        raise InvalidVotes(f"{name} must be an unsigned integer")
    return n


def _js_number(x: float) -> Any:
    # JSON.stringify writes 100.0 as 100
    if isinstance(x, float) and x.is_integer():
        return int(x)
    return x


def parse_vote(obj: Any) -> Vote:
    if isinstance(obj, Vote):
        return obj
    if not isinstance(obj, dict):
        raise InvalidVotes("vote must be an object with projectId and amount")
    pid = obj.get("projectId")
    amount = obj.get("amount")
    if not isinstance(pid, str) or not pid:
        raise InvalidVotes("vote.projectId must be a non-empty string")
    if isinstance(amount, bool) or not isinstance(amount, (int, float)):
        raise InvalidVotes(f"vote.amount must be a number (project {pid})")
    if isinstance(amount, float) and not math.isfinite(amount):
        raise InvalidVotes(f"vote.amount must be finite (project {pid})")
    if amount < 0:
        raise InvalidVotes(f"vote.amount must be >= 0 (project {pid})")
    return Vote(project_id=pid, amount=amount)


def parse_votes(items: Iterable[Any]) -> List[Vote]:
    if isinstance(items, (str, bytes, dict)):
        raise InvalidVotes("votes must be a list")
    return [parse_vote(v) for v in items]


def votes_to_dicts(votes: Sequence[Vote]) -> List[Dict[str, Any]]:
    return [v.to_dict() for v in votes]


def js_number_text(x: Any) -> str:
    """
    Number text as JavaScript writes it (Number.prototype.toString):
      - plain decimal for 1e-6 <= |x| < 1e21
      - otherwise d[.ddd]e+N / d[.ddd]e-N
    Digits are the shortest round-trip form, which Python's float repr also uses.
    """
    if isinstance(x, bool):
        raise InvalidVotes("amount must be a number")
    if isinstance(x, int) and abs(x) <= _MAX_SAFE_INT:
        return str(x)
    f = float(x)
    if not math.isfinite(f):
        raise InvalidVotes("amount must be finite")
    if f == 0:
        return "0"
    sign = "-" if f < 0 else ""
    _, digit_tuple, exp = Decimal(repr(abs(f))).as_tuple()
    digits = "".join(str(d) for d in digit_tuple).rstrip("0")
    exp += len(digit_tuple) - len(digits)
    k = len(digits)
    n = exp + k
    if k <= n <= 21:
        body = digits + "0" * (n - k)
    elif 0 < n <= 21:
        body = digits[:n] + "." + digits[n:]
    elif -6 < n <= 0:
        body = "0." + "0" * (-n) + digits
    else:
        e = n - 1
        mantissa = digits if k == 1 else digits[0] + "." + digits[1:]
        body = f"{mantissa}e{'+' if e > 0 else '-'}{abs(e)}"
    return sign + body


def canonicalize(votes: Sequence[Vote]) -> bytes:
    parts = [
        '{"projectId":' + json.dumps(v.project_id, ensure_ascii=False)
        + ',"amount":' + js_number_text(v.amount) + "}"
        for v in votes
    ]
    return ("[" + ",".join(parts) + "]").encode("utf-8")


def hash_votes(votes: Sequence[Vote]) -> str:
    return "0x" + keccak(canonicalize(votes)).hex()


def round_salt(round: int) -> bytes:
    label = round_label(round).encode("utf-8")
    if len(label) > 32:
        raise ValueError(f"round label too long for bytes32: {label!r}")
    return label.ljust(32, b"\x00")


def ballot_typed_data(*, chain_id: int, round: int, message: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "types": BALLOT_TYPES,
        "primaryType": "Ballot",
        "domain": {
            "name": DOMAIN_NAME,
            "version": DOMAIN_VERSION,
            "chainId": int(chain_id),
            "salt": round_salt(round),
        },
        "message": dict(message),
    }


def recover_signer(*, typed_data: Dict[str, Any], signature: str) -> str:
    signable = encode_typed_data(full_message=typed_data)
    return Account.recover_message(signable, signature=signature)


def verify_hash(claimed_hash: str, votes: Sequence[Vote]) -> None:
    actual = hash_votes(votes)
    if not isinstance(claimed_hash, str) or claimed_hash.lower() != actual.lower():
        raise HashMismatch("Votes hash mismatch")


def verify_signature(
    *,
    request: PublishRequest,
    signer: str,
    round: int,
) -> None:
    typed = ballot_typed_data(chain_id=request.chain_id, round=round, message=request.message())
    try:
        recovered = recover_signer(typed_data=typed, signature=request.signature)
    except Exception as e:
        # malformed signatures surface from eth_keys/eth_account under several types
        log.debug("signature recovery failed: %s", e)
        raise InvalidSignature("Signature couldn't be verified") from e
    if recovered.lower() != str(signer).lower():
        raise InvalidSignature("Signature couldn't be verified")


def verify_publish_request(
    *,
    claimed_hash: str,
    votes: Sequence[Vote],
    signature: str,
    signer: str,
    round: int,
    total_votes: int,
    project_count: int,
    chain_id: int,
    expected_chain_id: Optional[int] = None,
) -> None:
    """
    Hash first, signature second. Raises HashMismatch / InvalidSignature.
    """
    verify_hash(claimed_hash, votes)
    if expected_chain_id is not None and int(chain_id) != int(expected_chain_id):
        raise InvalidSignature(f"Signature is for chain {chain_id}, expected {expected_chain_id}")
    req = PublishRequest(
        signature=signature,
        chain_id=int(chain_id),
        total_votes=int(total_votes),
        project_count=int(project_count),
        hashed_votes=claimed_hash,
    )
    verify_signature(request=req, signer=signer, round=round)
