"""
Ballot persistence.

One record per round-qualified voter key. The only transitions are:
  - upsert_draft: create, or overwrite votes while published_at is unset
  - mark_published: set published_at + signature once, guarded by
    "still a draft" AND "votes are the ones that were verified"

Both backends make those guards a single atomic step, so concurrent publishes
for the same key race safely: one wins, the rest see AlreadyPublished.
"""
from __future__ import annotations

import json
import sqlite3
import threading
from contextlib import closing
from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from rpgf.errors import AlreadyPublished, HashMismatch, NotFound
from rpgf.round_keys import RoundKey, belongs_to_round
from rpgf.vote_codec import Vote, canonicalize, parse_votes, votes_to_dicts


@dataclass(frozen=True)
class Ballot:
    voter_key: str
    votes: Sequence[Vote]
    created_at: datetime
    updated_at: datetime
    published_at: Optional[datetime] = None
    signature: Optional[str] = None
    publish_message: Optional[Dict[str, Any]] = None

    @property
    def round(self) -> int:
        return RoundKey.decode(self.voter_key).round

    @property
    def voter_id(self) -> str:
        return RoundKey.decode(self.voter_key).voter_id

    @property
    def is_published(self) -> bool:
        return self.published_at is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "voterId": self.voter_id,
            "round": self.round,
            "votes": votes_to_dicts(self.votes),
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "publishedAt": self.published_at.isoformat() if self.published_at else None,
            "signature": self.signature,
        }


def _votes_text(votes: Sequence[Vote]) -> str:
    return canonicalize(votes).decode("utf-8")


def _sort_key(b: Ballot) -> Any:
    return (b.published_at or b.updated_at, b.voter_key)


class BallotStore:
    def get(self, voter_key: str) -> Optional[Ballot]:
        raise NotImplementedError

    def upsert_draft(self, voter_key: str, votes: Sequence[Vote], now: datetime) -> Ballot:
        raise NotImplementedError

    def mark_published(
        self,
        voter_key: str,
        *,
        expected_votes: Sequence[Vote],
        signature: str,
        message: Dict[str, Any],
        now: datetime,
    ) -> Ballot:
        raise NotImplementedError

    def list_published(self, round: int) -> List[Ballot]:
        """Published ballots of one round, ordered by (published_at, key)."""
        raise NotImplementedError


class MemoryBallotStore(BallotStore):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rows: Dict[str, Ballot] = {}

    def get(self, voter_key: str) -> Optional[Ballot]:
        with self._lock:
            return self._rows.get(voter_key)

    def upsert_draft(self, voter_key: str, votes: Sequence[Vote], now: datetime) -> Ballot:
        votes = tuple(votes)
        with self._lock:
            existing = self._rows.get(voter_key)
            if existing is None:
                b = Ballot(voter_key=voter_key, votes=votes, created_at=now, updated_at=now)
            elif existing.is_published:
                raise AlreadyPublished("Ballot already published")
            else:
                b = replace(existing, votes=votes, updated_at=now, published_at=None)
            self._rows[voter_key] = b
            return b

    def mark_published(
        self,
        voter_key: str,
        *,
        expected_votes: Sequence[Vote],
        signature: str,
        message: Dict[str, Any],
        now: datetime,
    ) -> Ballot:
        with self._lock:
            existing = self._rows.get(voter_key)
            if existing is None:
                raise NotFound("Ballot doesn't exist")
            if existing.is_published:
                raise AlreadyPublished("Ballot already published")
            if _votes_text(existing.votes) != _votes_text(expected_votes):
                raise HashMismatch("Ballot changed while publishing")
            b = replace(
                existing,
                published_at=now,
                updated_at=now,
                signature=signature,
                publish_message=dict(message),
            )
            self._rows[voter_key] = b
            return b

    def list_published(self, round: int) -> List[Ballot]:
        with self._lock:
            rows = [b for k, b in self._rows.items() if b.is_published and belongs_to_round(k, round)]
        return sorted(rows, key=_sort_key)


_SCHEMA = """
CREATE TABLE IF NOT EXISTS ballots (
    voter_key       TEXT PRIMARY KEY,
    votes           TEXT NOT NULL,
    created_at      TEXT NOT NULL,
    updated_at      TEXT NOT NULL,
    published_at    TEXT,
    signature       TEXT,
    publish_message TEXT
)
"""


class SqliteBallotStore(BallotStore):
    """
    SQLite-backed store. The primary key on voter_key is the only lock;
    publish is one conditional UPDATE whose rowcount decides the race.
    """

    def __init__(self, path: Path, timeout_s: float = 30.0) -> None:
        self.path = Path(path)
        self.timeout_s = float(timeout_s)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with closing(self._connect()) as conn, conn:
            conn.execute(_SCHEMA)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.path), timeout=self.timeout_s)
        conn.row_factory = sqlite3.Row
        return conn

    @staticmethod
    def _row_to_ballot(row: sqlite3.Row) -> Ballot:
        msg = row["publish_message"]
        return Ballot(
            voter_key=row["voter_key"],
            votes=tuple(parse_votes(json.loads(row["votes"]))),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
            published_at=datetime.fromisoformat(row["published_at"]) if row["published_at"] else None,
            signature=row["signature"],
            publish_message=json.loads(msg) if msg else None,
        )

    def _get(self, conn: sqlite3.Connection, voter_key: str) -> Optional[Ballot]:
        row = conn.execute("SELECT * FROM ballots WHERE voter_key = ?", (voter_key,)).fetchone()
        return self._row_to_ballot(row) if row else None

    def get(self, voter_key: str) -> Optional[Ballot]:
        with closing(self._connect()) as conn:
            return self._get(conn, voter_key)

    def upsert_draft(self, voter_key: str, votes: Sequence[Vote], now: datetime) -> Ballot:
        text = _votes_text(votes)
        ts = now.isoformat()
        with closing(self._connect()) as conn, conn:
            cur = conn.execute(
                "UPDATE ballots SET votes = ?, updated_at = ?, published_at = NULL "
                "WHERE voter_key = ? AND published_at IS NULL",
                (text, ts, voter_key),
            )
            if cur.rowcount == 0:
                cur = conn.execute(
                    "INSERT OR IGNORE INTO ballots (voter_key, votes, created_at, updated_at) VALUES (?, ?, ?, ?)",
                    (voter_key, text, ts, ts),
                )
                if cur.rowcount == 0:
                    # the row exists and the guarded UPDATE missed it: it is published
                    raise AlreadyPublished("Ballot already published")
            b = self._get(conn, voter_key)
        assert b is not None
        return b

    def mark_published(
        self,
        voter_key: str,
        *,
        expected_votes: Sequence[Vote],
        signature: str,
        message: Dict[str, Any],
        now: datetime,
    ) -> Ballot:
        ts = now.isoformat()
        msg = json.dumps(message, sort_keys=True, separators=(",", ":"))
        with closing(self._connect()) as conn, conn:
            cur = conn.execute(
                "UPDATE ballots SET published_at = ?, updated_at = ?, signature = ?, publish_message = ? "
                "WHERE voter_key = ? AND published_at IS NULL AND votes = ?",
                (ts, ts, signature, msg, voter_key, _votes_text(expected_votes)),
            )
            b = self._get(conn, voter_key)
        if cur.rowcount == 1:
            assert b is not None
            return b
        if b is None:
            raise NotFound("Ballot doesn't exist")
        if b.is_published:
            raise AlreadyPublished("Ballot already published")
        raise HashMismatch("Ballot changed while publishing")

    def list_published(self, round: int) -> List[Ballot]:
        with closing(self._connect()) as conn:
            rows = conn.execute(
                "SELECT * FROM ballots WHERE published_at IS NOT NULL ORDER BY published_at, voter_key"
            ).fetchall()
        return [self._row_to_ballot(r) for r in rows if belongs_to_round(r["voter_key"], round)]
