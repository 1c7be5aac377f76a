from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest
from eth_account import Account
from eth_account.messages import encode_typed_data

from rpgf.ballot_store import MemoryBallotStore
from rpgf.collaborators import AllowlistApproval, StaticProjectDirectory
from rpgf.service import RoundService
from rpgf.settings import MemoryConfigStore, RoundConfig, RoundSettings
from rpgf.vote_codec import PublishRequest, ballot_typed_data, hash_votes, parse_votes

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

KEY_A = "0x" + "11" * 32
KEY_B = "0x" + "22" * 32
KEY_C = "0x" + "33" * 32


def sign_request(
    account: Any,
    votes: List[Dict[str, Any]],
    *,
    round: int = 1,
    chain_id: int = 314,
    hashed_votes: Optional[str] = None,
    total_votes: Optional[int] = None,
) -> PublishRequest:
    parsed = parse_votes(votes)
    message = {
        "total_votes": int(sum(v.amount for v in parsed)) if total_votes is None else total_votes,
        "project_count": len(parsed),
        "hashed_votes": hashed_votes or hash_votes(parsed),
    }
    typed = ballot_typed_data(chain_id=chain_id, round=round, message=message)
    signed = Account.sign_message(encode_typed_data(full_message=typed), private_key=account.key)
    return PublishRequest(
        signature="0x" + bytes(signed.signature).hex(),
        chain_id=chain_id,
        total_votes=message["total_votes"],
        project_count=message["project_count"],
        hashed_votes=message["hashed_votes"],
    )


@pytest.fixture
def voter_a():
    return Account.from_key(KEY_A)


@pytest.fixture
def voter_b():
    return Account.from_key(KEY_B)


@pytest.fixture
def voter_c():
    return Account.from_key(KEY_C)


class FixedClock:
    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kw: Any) -> None:
        self.now = self.now + timedelta(**kw)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def make_service(clock, voter_a, voter_b, voter_c):
    def _make(
        *,
        store=None,
        approved=None,
        config: Optional[RoundConfig] = None,
        projects: Optional[Dict[str, Dict[str, Any]]] = None,
        **settings_kw: Any,
    ) -> RoundService:
        if approved is None:
            approved = [voter_a.address, voter_b.address, voter_c.address]
        settings_kw.setdefault("default_config", config or RoundConfig())

        def settings_for(round: int) -> RoundSettings:
            return RoundSettings(round=round, **settings_kw)

        return RoundService(
            store=store or MemoryBallotStore(),
            config_store=MemoryConfigStore(),
            approval=AllowlistApproval(approved),
            directory=StaticProjectDirectory(projects or {}),
            settings_for=settings_for,
            clock=clock,
            timeout_s=5.0,
        )

    return _make


@pytest.fixture
def sign():
    return sign_request
