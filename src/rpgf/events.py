"""
Ballot lifecycle events.

When RPGF_EVENTS_OUT names a file, every draft save, publish and tally appends
one canonical JSON line (sorted keys, no whitespace):

  {"data":{...},"kind":"ballot.published","round":1,"seq":7,"ts_utc":"..."}

seq is process-wide and strictly increasing in file order.
"""
from __future__ import annotations

import json
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

DRAFT_SAVED = "ballot.draft_saved"
PUBLISHED = "ballot.published"
TALLY_COMPUTED = "tally.computed"


class EventLog:
    def __init__(self, env_var: str = "RPGF_EVENTS_OUT") -> None:
        self.env_var = env_var
        self._lock = threading.Lock()
        self._seq = 0

    def target(self) -> Optional[Path]:
        v = os.getenv(self.env_var, "").strip()
        return Path(v) if v else None

    def reset(self) -> None:
        with self._lock:
            self._seq = 0

    def emit(self, kind: str, round: int, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        out = self.target()
        if out is None:
            return None
        out.parent.mkdir(parents=True, exist_ok=True)
        # seq is taken and written under one lock so file order matches seq order
        with self._lock:
            self._seq += 1
            record = {
                "seq": self._seq,
                "ts_utc": datetime.now(timezone.utc).isoformat(),
                "kind": kind,
                "round": int(round),
                "data": data,
            }
            with out.open("a", encoding="utf-8", newline="\n") as f:
                f.write(json.dumps(record, ensure_ascii=False, sort_keys=True, separators=(",", ":")) + "\n")
        return record


events = EventLog()


def emit_event(kind: str, round: int, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    return events.emit(kind, round, data)
