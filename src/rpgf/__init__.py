from rpgf.ballot_store import Ballot, BallotStore, MemoryBallotStore, SqliteBallotStore
from rpgf.errors import (
    AlreadyPublished,
    BallotError,
    CollaboratorTimeout,
    HashMismatch,
    InvalidSignature,
    InvalidStrategy,
    InvalidVotes,
    NotFound,
    QuotaExceeded,
    ResultsNotAvailable,
    VoterNotApproved,
    VotingClosed,
)
from rpgf.payout import PayoutLine, calculate_payout, payouts
from rpgf.ranking import paginate, rank
from rpgf.round_keys import RoundKey, scope_key, unscope_key
from rpgf.service import RoundService
from rpgf.settings import RoundConfig, RoundSettings, Strategy
from rpgf.tally import ProjectScore, TallyResult, tally_ballots
from rpgf.vote_codec import PublishRequest, Vote, canonicalize, hash_votes, verify_publish_request

__version__ = "0.1.0"

__all__ = [
    "AlreadyPublished",
    "Ballot",
    "BallotError",
    "BallotStore",
    "CollaboratorTimeout",
    "HashMismatch",
    "InvalidSignature",
    "InvalidStrategy",
    "InvalidVotes",
    "MemoryBallotStore",
    "NotFound",
    "PayoutLine",
    "ProjectScore",
    "PublishRequest",
    "QuotaExceeded",
    "ResultsNotAvailable",
    "RoundConfig",
    "RoundKey",
    "RoundService",
    "RoundSettings",
    "SqliteBallotStore",
    "Strategy",
    "TallyResult",
    "Vote",
    "VoterNotApproved",
    "VotingClosed",
    "calculate_payout",
    "canonicalize",
    "hash_votes",
    "paginate",
    "payouts",
    "rank",
    "scope_key",
    "tally_ballots",
    "unscope_key",
    "verify_publish_request",
    "__version__",
]
