from __future__ import annotations

import json
import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Optional, TypeVar

from rpgf.errors import CollaboratorTimeout

log = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], datetime]

DEFAULT_TIMEOUT_S = 10.0

LANE_WORKERS = 8

_lanes: Dict[str, ThreadPoolExecutor] = {}
_lanes_lock = threading.Lock()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def collaborator_timeout_s() -> float:
    v = os.getenv("RPGF_COLLABORATOR_TIMEOUT_S", "").strip()
    return float(v) if v else DEFAULT_TIMEOUT_S


def _lane(name: str) -> ThreadPoolExecutor:
    with _lanes_lock:
        ex = _lanes.get(name)
        if ex is None:
            ex = ThreadPoolExecutor(max_workers=LANE_WORKERS, thread_name_prefix=f"rpgf-{name}")
            _lanes[name] = ex
        return ex


def call_with_timeout(
    fn: Callable[..., T],
    *args: Any,
    timeout_s: float,
    what: str,
    lane: str = "default",
    **kwargs: Any,
) -> T:
    """
    Runs an external call with a bounded wait. A timeout surfaces as the
    retryable CollaboratorTimeout; exceptions from `fn` propagate unchanged.

    Each lane has its own worker pool. A call that timed out keeps its worker
    until it returns, so a hung collaborator can only exhaust its own lane.
    """
    fut = _lane(lane).submit(fn, *args, **kwargs)
    try:
        return fut.result(timeout=timeout_s)
    except FutureTimeout as e:
        fut.cancel()
        log.warning("%s timed out after %.1fs", what, timeout_s)
        raise CollaboratorTimeout(f"{what} timed out; retry later") from e


class ApprovalCheck:
    def is_approved(self, voter_id: str) -> bool:
        raise NotImplementedError


class AllowlistApproval(ApprovalCheck):
    """Approved voters are a fixed set of addresses, compared case-insensitively."""

    def __init__(self, addresses: Iterable[str]) -> None:
        self._approved = {a.strip().lower() for a in addresses if a and a.strip()}

    @classmethod
    def from_env(cls) -> "AllowlistApproval":
        return cls(os.getenv("RPGF_APPROVED_VOTERS", "").split(","))

    def is_approved(self, voter_id: str) -> bool:
        return voter_id.strip().lower() in self._approved


class ProjectDirectory:
    """projectId -> display metadata. Unknown projects read as None."""

    def name(self, project_id: str) -> Optional[str]:
        raise NotImplementedError

    def payout_address(self, project_id: str) -> Optional[str]:
        raise NotImplementedError


class StaticProjectDirectory(ProjectDirectory):
    def __init__(self, projects: Optional[Dict[str, Dict[str, Any]]] = None) -> None:
        self._projects: Dict[str, Dict[str, Any]] = dict(projects or {})

    def name(self, project_id: str) -> Optional[str]:
        p = self._projects.get(project_id) or {}
        v = p.get("name")
        return str(v) if v is not None else None

    def payout_address(self, project_id: str) -> Optional[str]:
        p = self._projects.get(project_id) or {}
        v = p.get("payoutAddress")
        return str(v) if v is not None else None


class JsonProjectDirectory(StaticProjectDirectory):
    """
    File layout:
      { "<projectId>": {"name": "...", "payoutAddress": "0x..."} }
    """

    def __init__(self, path: Path) -> None:
        obj = json.loads(Path(path).read_text(encoding="utf-8-sig"))
        if not isinstance(obj, dict):
            raise ValueError(f"project directory must be a JSON object: {path}")
        super().__init__({str(k): v for k, v in obj.items() if isinstance(v, dict)})
