"""
Round settings and round configuration.

RoundSettings are operator-provided (environment). Per-round values are read
from RPGF_ROUND_{n}_{KEY} and fall back to RPGF_{KEY}.

RoundConfig is the admin-mutable part (calculation strategy + quorum
threshold). Config documents written through the admin path are validated
against ROUND_CONFIG_SCHEMA before they are stored.
"""
from __future__ import annotations

import json
import os
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from jsonschema import Draft202012Validator

from rpgf.errors import InvalidStrategy

DEFAULT_POOL_AMOUNT = 270000 * 10**18
DEFAULT_CALCULATION = "sum"
DEFAULT_THRESHOLD = 6


class Strategy(str, Enum):
    SUM = "sum"
    AVERAGE = "average"
    MEDIAN = "median"


def parse_strategy(value: Any) -> Strategy:
    if isinstance(value, Strategy):
        return value
    try:
        return Strategy(str(value).strip().lower())
    except ValueError as e:
        raise InvalidStrategy(f"unsupported calculation: {value!r}") from e


ROUND_CONFIG_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["calculation", "threshold"],
    "properties": {
        "calculation": {"type": "string"},
        "threshold": {"type": "integer", "minimum": 0},
    },
    "additionalProperties": False,
}

_config_validator = Draft202012Validator(ROUND_CONFIG_SCHEMA)


@dataclass(frozen=True)
class RoundConfig:
    calculation: Strategy = Strategy.SUM
    threshold: int = DEFAULT_THRESHOLD

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "RoundConfig":
        errs = sorted(_config_validator.iter_errors(d), key=lambda e: list(e.path))
        if errs:
            e0 = errs[0]
            loc = ".".join(str(x) for x in e0.path) if e0.path else "<root>"
            raise InvalidStrategy(f"round config invalid at {loc}: {e0.message}")
        return cls(calculation=parse_strategy(d["calculation"]), threshold=int(d["threshold"]))

    def to_dict(self) -> Dict[str, Any]:
        return {"calculation": self.calculation.value, "threshold": self.threshold}


def _truthy(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


def _round_env(round: int, key: str) -> str:
    v = os.getenv(f"RPGF_ROUND_{int(round)}_{key}", "").strip()
    if v:
        return v
    return os.getenv(f"RPGF_{key}", "").strip()


def _parse_iso(s: str) -> Optional[datetime]:
    if not s:
        return None
    s2 = s.replace("Z", "+00:00") if s.endswith("Z") else s
    dt = datetime.fromisoformat(s2)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _opt_number(s: str) -> Optional[float]:
    if not s:
        return None
    n = float(s)
    return int(n) if n.is_integer() else n


@dataclass(frozen=True)
class RoundSettings:
    round: int
    voting_ends_at: Optional[datetime] = None
    results_at: Optional[datetime] = None
    max_votes_total: Optional[float] = None
    max_votes_project: Optional[float] = None
    skip_approved_voter_check: bool = False
    chain_id: Optional[int] = None
    pool_amount: int = DEFAULT_POOL_AMOUNT
    default_config: RoundConfig = RoundConfig()

    def voting_closed(self, now: datetime) -> bool:
        return self.voting_ends_at is not None and now >= self.voting_ends_at

    def results_available(self, now: datetime) -> bool:
        return self.results_at is None or now >= self.results_at


def load_round_settings(round: int) -> RoundSettings:
    chain = _round_env(round, "CHAIN_ID")
    pool = _round_env(round, "POOL_AMOUNT")
    calc = _round_env(round, "DEFAULT_CALCULATION") or DEFAULT_CALCULATION
    threshold = _round_env(round, "DEFAULT_THRESHOLD")
    skip = _truthy(_round_env(round, "SKIP_APPROVED_VOTER_CHECK"))
    return RoundSettings(
        round=int(round),
        voting_ends_at=_parse_iso(_round_env(round, "VOTING_ENDS_AT")),
        results_at=_parse_iso(_round_env(round, "RESULTS_AT")),
        max_votes_total=_opt_number(_round_env(round, "MAX_VOTES_TOTAL")),
        max_votes_project=_opt_number(_round_env(round, "MAX_VOTES_PROJECT")),
        skip_approved_voter_check=skip,
        chain_id=int(chain) if chain else None,
        pool_amount=int(pool) if pool else DEFAULT_POOL_AMOUNT,
        default_config=RoundConfig(
            calculation=parse_strategy(calc),
            threshold=int(threshold) if threshold else DEFAULT_THRESHOLD,
        ),
    )


class ConfigStore:
    """Admin path for RoundConfig. Unset rounds read as the round defaults."""

    def get_config(self, round: int, default: Optional[RoundConfig] = None) -> RoundConfig:
        raise NotImplementedError

    def set_config(self, round: int, config: RoundConfig) -> RoundConfig:
        raise NotImplementedError


class MemoryConfigStore(ConfigStore):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._configs: Dict[int, RoundConfig] = {}

    def get_config(self, round: int, default: Optional[RoundConfig] = None) -> RoundConfig:
        with self._lock:
            return self._configs.get(int(round), default or RoundConfig())

    def set_config(self, round: int, config: RoundConfig) -> RoundConfig:
        with self._lock:
            self._configs[int(round)] = config
        return config


class JsonConfigStore(ConfigStore):
    """
    File layout:
      { "1": {"calculation": "sum", "threshold": 6}, "2": {...} }
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        obj = json.loads(self.path.read_text(encoding="utf-8-sig"))
        return obj if isinstance(obj, dict) else {}

    def get_config(self, round: int, default: Optional[RoundConfig] = None) -> RoundConfig:
        with self._lock:
            raw = self._read().get(str(int(round)))
        if raw is None:
            return default or RoundConfig()
        return RoundConfig.from_dict(raw)

    def set_config(self, round: int, config: RoundConfig) -> RoundConfig:
        with self._lock:
            data = self._read()
            data[str(int(round))] = config.to_dict()
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
            tmp.replace(self.path)
        return config
