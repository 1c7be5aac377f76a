"""
Ballot lifecycle: Draft -> Published (terminal).

publish() checks, in order:
  voting deadline -> draft exists -> not yet published -> vote caps
  -> voter approval -> votes hash -> typed-data signature -> atomic commit

A second publish is an error, never a no-op.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from rpgf.ballot_store import Ballot, BallotStore
from rpgf.collaborators import ApprovalCheck, Clock, call_with_timeout, collaborator_timeout_s, utc_now
from rpgf.errors import (
    AlreadyPublished,
    HashMismatch,
    InvalidSignature,
    NotFound,
    QuotaExceeded,
    VoterNotApproved,
    VotingClosed,
)
from rpgf.events import DRAFT_SAVED, PUBLISHED, emit_event
from rpgf.round_keys import scope_key
from rpgf.settings import RoundSettings
from rpgf.tally import exact_amount
from rpgf.vote_codec import PublishRequest, Vote, hash_votes, parse_votes, verify_publish_request, votes_to_dicts

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditRecord:
    voter_id: str
    signature: Optional[str]
    published_at: str
    votes: List[Dict[str, Any]]
    message: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "voterId": self.voter_id,
            "signature": self.signature,
            "publishedAt": self.published_at,
            "votes": self.votes,
        }
        if self.message is not None:
            d["message"] = self.message
        return d


def check_quota(votes: Sequence[Vote], settings: RoundSettings) -> None:
    total = sum((exact_amount(v.amount) for v in votes), exact_amount(0))
    if settings.max_votes_total is not None and total > exact_amount(settings.max_votes_total):
        raise QuotaExceeded(
            f"Ballot must have a maximum of {settings.max_votes_total} votes "
            f"and {settings.max_votes_project} per project."
        )
    if settings.max_votes_project is not None:
        cap = exact_amount(settings.max_votes_project)
        for v in votes:
            if exact_amount(v.amount) > cap:
                raise QuotaExceeded(
                    f"Ballot must have a maximum of {settings.max_votes_total} votes "
                    f"and {settings.max_votes_project} per project (project {v.project_id})."
                )


class BallotService:
    def __init__(
        self,
        *,
        store: BallotStore,
        settings_for: Callable[[int], RoundSettings],
        approval: ApprovalCheck,
        clock: Clock = utc_now,
        timeout_s: Optional[float] = None,
    ) -> None:
        self.store = store
        self.settings_for = settings_for
        self.approval = approval
        self.clock = clock
        self.timeout_s = collaborator_timeout_s() if timeout_s is None else float(timeout_s)

    def _ensure_open(self, settings: RoundSettings) -> None:
        if settings.voting_closed(self.clock()):
            raise VotingClosed("Voting has ended")

    def get_ballot(self, round: int, voter_id: str) -> Optional[Ballot]:
        return self.store.get(scope_key(round, voter_id))

    def save_draft(self, round: int, voter_id: str, votes: Iterable[Any]) -> Ballot:
        settings = self.settings_for(round)
        self._ensure_open(settings)
        parsed = parse_votes(votes)
        key = scope_key(round, voter_id)
        b = self.store.upsert_draft(key, parsed, self.clock())
        emit_event(DRAFT_SAVED, round, {"voter_key": key, "hashed_votes": hash_votes(parsed)})
        return b

    def publish(self, round: int, voter_id: str, request: PublishRequest) -> Ballot:
        settings = self.settings_for(round)
        self._ensure_open(settings)

        key = scope_key(round, voter_id)
        ballot = self.store.get(key)
        if ballot is None:
            raise NotFound("Ballot doesn't exist")
        if ballot.is_published:
            raise AlreadyPublished("Ballot already published")

        check_quota(ballot.votes, settings)

        if not settings.skip_approved_voter_check:
            approved = call_with_timeout(
                self.approval.is_approved,
                voter_id,
                timeout_s=self.timeout_s,
                what="voter approval check",
                lane="approval",
            )
            if not approved:
                log.warning("publish rejected: voter %s not approved (round %s)", voter_id, round)
                raise VoterNotApproved("Voter is not approved")

        try:
            call_with_timeout(
                verify_publish_request,
                timeout_s=self.timeout_s,
                what="signature verification",
                lane="signature",
                claimed_hash=request.hashed_votes,
                votes=ballot.votes,
                signature=request.signature,
                signer=voter_id,
                round=round,
                total_votes=request.total_votes,
                project_count=request.project_count,
                chain_id=request.chain_id,
                expected_chain_id=settings.chain_id,
            )
        except (HashMismatch, InvalidSignature) as e:
            log.warning("publish rejected: voter %s round %s: %s", voter_id, round, e)
            raise

        published = self.store.mark_published(
            key,
            expected_votes=ballot.votes,
            signature=request.signature,
            message={**request.message(), "chainId": request.chain_id},
            now=self.clock(),
        )
        log.info("ballot published: round=%s voter=%s projects=%d", round, voter_id, len(published.votes))
        emit_event(PUBLISHED, round, {"voter_key": key, "hashed_votes": request.hashed_votes})
        return published

    def export_published(self, round: int) -> List[AuditRecord]:
        out: List[AuditRecord] = []
        for b in self.store.list_published(round):
            assert b.published_at is not None
            out.append(
                AuditRecord(
                    voter_id=b.voter_id,
                    signature=b.signature,
                    published_at=b.published_at.isoformat(),
                    votes=votes_to_dicts(b.votes),
                    message=dict(b.publish_message) if b.publish_message else None,
                )
            )
        return out
