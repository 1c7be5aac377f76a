"""
Round-scoped entry points.

Every call takes the round explicitly and re-reads the store and the round
config; nothing is cached between calls.
"""
from __future__ import annotations

import logging
import os
from fractions import Fraction
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from rpgf.audit_export import build_export, flatten_rows, validate_export
from rpgf.ballot_store import Ballot, BallotStore, MemoryBallotStore, SqliteBallotStore
from rpgf.ballots import BallotService
from rpgf.collaborators import (
    AllowlistApproval,
    ApprovalCheck,
    Clock,
    JsonProjectDirectory,
    ProjectDirectory,
    StaticProjectDirectory,
    utc_now,
)
from rpgf.errors import ResultsNotAvailable
from rpgf.events import TALLY_COMPUTED, emit_event
from rpgf.payout import PayoutLine, distribution, payouts
from rpgf.ranking import paginate, rank
from rpgf.settings import (
    ConfigStore,
    JsonConfigStore,
    MemoryConfigStore,
    RoundConfig,
    RoundSettings,
    load_round_settings,
)
from rpgf.tally import ProjectScore, TallyResult, tally_ballots
from rpgf.vote_codec import PublishRequest

log = logging.getLogger(__name__)


class RoundService:
    def __init__(
        self,
        *,
        store: BallotStore,
        config_store: ConfigStore,
        approval: ApprovalCheck,
        directory: Optional[ProjectDirectory] = None,
        settings_for: Callable[[int], RoundSettings] = load_round_settings,
        clock: Clock = utc_now,
        timeout_s: Optional[float] = None,
    ) -> None:
        self.store = store
        self.config_store = config_store
        self.directory = directory or StaticProjectDirectory()
        self.settings_for = settings_for
        self.clock = clock
        self.ballots = BallotService(
            store=store,
            settings_for=settings_for,
            approval=approval,
            clock=clock,
            timeout_s=timeout_s,
        )

    @classmethod
    def from_env(cls) -> "RoundService":
        db = os.getenv("RPGF_DB_PATH", "").strip()
        cfg = os.getenv("RPGF_CONFIG_PATH", "").strip()
        projects = os.getenv("RPGF_PROJECTS_PATH", "").strip()
        store: BallotStore = SqliteBallotStore(Path(db)) if db else MemoryBallotStore()
        config_store: ConfigStore = JsonConfigStore(Path(cfg)) if cfg else MemoryConfigStore()
        directory: ProjectDirectory = JsonProjectDirectory(Path(projects)) if projects else StaticProjectDirectory()
        return cls(
            store=store,
            config_store=config_store,
            approval=AllowlistApproval.from_env(),
            directory=directory,
        )

    # ballots

    def get_ballot(self, round: int, voter_id: str) -> Optional[Ballot]:
        return self.ballots.get_ballot(round, voter_id)

    def save_draft(self, round: int, voter_id: str, votes: Iterable[Any]) -> Ballot:
        return self.ballots.save_draft(round, voter_id, votes)

    def publish(self, round: int, voter_id: str, request: PublishRequest) -> Ballot:
        return self.ballots.publish(round, voter_id, request)

    # config (admin path)

    def get_config(self, round: int) -> RoundConfig:
        return self.config_store.get_config(round, self.settings_for(round).default_config)

    def set_config(self, round: int, config: RoundConfig) -> RoundConfig:
        log.info("round %s config set: %s", round, config.to_dict())
        return self.config_store.set_config(round, config)

    # results

    def ensure_results_available(self, round: int) -> None:
        if not self.settings_for(round).results_available(self.clock()):
            raise ResultsNotAvailable("Results not available yet")

    def get_tally(self, round: int) -> TallyResult:
        config = self.get_config(round)
        result = tally_ballots(self.store.list_published(round), config, round=round)
        emit_event(TALLY_COMPUTED, round, {
            "calculation": result.calculation.value,
            "threshold": result.threshold,
            "projects": len(result.projects),
            "total_voters": result.total_voters,
        })
        return result

    def get_project_score(self, round: int, project_id: str) -> Fraction:
        s = self.get_tally(round).projects.get(project_id)
        return s.votes if s else Fraction(0)

    def _pool(self, round: int, pool_amount: Optional[int]) -> int:
        return self.settings_for(round).pool_amount if pool_amount is None else int(pool_amount)

    def get_payout(self, round: int, pool_amount: Optional[int] = None) -> List[PayoutLine]:
        t = self.get_tally(round)
        scores = {pid: s.votes for pid, s in t.projects.items()}
        return payouts(scores, self._pool(round, pool_amount), total_votes=t.total_votes)

    def get_distribution(self, round: int, pool_amount: Optional[int] = None) -> List[PayoutLine]:
        t = self.get_tally(round)
        scores = {pid: s.votes for pid, s in t.projects.items()}
        return distribution(scores, self._pool(round, pool_amount), directory=self.directory)

    def get_ranked_projects(self, round: int, offset: int = 0, limit: int = 50) -> List[str]:
        return [s.project_id for s in self.get_ranked_scores(round, offset, limit)]

    def get_ranked_scores(self, round: int, offset: int = 0, limit: int = 50) -> List[ProjectScore]:
        """One page of ProjectScores, ranked from a single tally read."""
        t = self.get_tally(round)
        return [t.projects[pid] for pid in paginate(rank(t.projects), offset, limit)]

    # audit

    def export_audit(self, round: int) -> Dict[str, Any]:
        doc = build_export(round, self.ballots.export_published(round))
        validate_export(doc)
        return doc

    def export_audit_rows(self, round: int) -> List[Dict[str, Any]]:
        return flatten_rows(self.ballots.export_published(round), self.directory)
