from __future__ import annotations

from typing import Any, Dict


class BallotError(ValueError):
    """
    Base for every typed failure the ballot core reports.

    `code` is stable and safe to hand to clients; `retryable` tells the caller
    whether repeating the same request can succeed.
    """
    code = "ballot_error"
    http_status = 400
    retryable = False

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "detail": str(self), "retryable": self.retryable}


class VotingClosed(BallotError):
    code = "voting_closed"
    http_status = 403


class NotFound(BallotError):
    code = "not_found"
    http_status = 404


class AlreadyPublished(BallotError):
    code = "already_published"
    http_status = 409


class QuotaExceeded(BallotError):
    code = "quota_exceeded"
    http_status = 400


class HashMismatch(BallotError):
    code = "hash_mismatch"
    http_status = 400


class InvalidSignature(BallotError):
    code = "invalid_signature"
    http_status = 401


class VoterNotApproved(BallotError):
    code = "voter_not_approved"
    http_status = 401


class InvalidStrategy(BallotError):
    code = "invalid_strategy"
    http_status = 500


class InvalidVotes(BallotError):
    code = "invalid_votes"
    http_status = 422


class ResultsNotAvailable(BallotError):
    code = "results_not_available"
    http_status = 400


class CollaboratorTimeout(BallotError):
    code = "collaborator_timeout"
    http_status = 503
    retryable = True
