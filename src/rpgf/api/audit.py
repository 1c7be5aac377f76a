"""
HTTP request log for the ballot API.

Every request gets a fresh request id (request.state.request_id, echoed in the
X-Request-ID response header). When RPGF_AUDIT_LOG names a file, one JSON line
per request is appended with who acted (voter id, or a short hash of the admin
key, never the key itself), on which round, and how it ended.
"""
from __future__ import annotations

import hashlib
import json
import os
import re
import threading
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import Request, Response

from rpgf import __version__

RECORD_VERSION = "rpgf.request.v1"

_ROUND_IN_PATH = re.compile(r"^/v1/rounds/(\d+)(?:/|$)")

Handler = Callable[[Request], Awaitable[Response]]


def get_app_version() -> str:
    return os.getenv("RPGF_VERSION", __version__)


def key_fingerprint(api_key: str) -> str:
    return hashlib.blake2b(api_key.encode("utf-8"), digest_size=8).hexdigest() if api_key else ""


def round_of(path: str) -> Optional[int]:
    m = _ROUND_IN_PATH.match(path)
    return int(m.group(1)) if m else None


class RequestLog:
    def __init__(self, env_var: str = "RPGF_AUDIT_LOG") -> None:
        self.env_var = env_var
        self._lock = threading.Lock()

    def target(self) -> Optional[Path]:
        v = os.getenv(self.env_var, "").strip()
        return Path(v) if v else None

    def append(self, record: Dict[str, Any]) -> None:
        out = self.target()
        if out is None:
            return
        out.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(record, ensure_ascii=False, sort_keys=True, separators=(",", ":")) + "\n"
        with self._lock, out.open("a", encoding="utf-8", newline="\n") as f:
            f.write(line)


def make_audit_middleware(log: RequestLog) -> Callable[[Request, Handler], Awaitable[Response]]:
    async def middleware(request: Request, call_next: Handler) -> Response:
        request_id = uuid.uuid4().hex
        request.state.request_id = request_id
        started = time.monotonic()
        resp: Optional[Response] = None
        failure: Optional[str] = None
        try:
            resp = await call_next(request)
            return resp
        except Exception as e:
            failure = type(e).__name__
            raise
        finally:
            log.append({
                "record": RECORD_VERSION,
                "app_version": get_app_version(),
                "at": datetime.now(timezone.utc).isoformat(),
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "round": round_of(request.url.path),
                "voter_id": request.headers.get("X-Voter-Id", "").strip() or None,
                "admin_key": key_fingerprint(request.headers.get("X-API-Key", "")) or None,
                "status": resp.status_code if resp is not None else 500,
                "elapsed_ms": round((time.monotonic() - started) * 1000.0, 3),
                "failure": failure,
            })
            if resp is not None:
                resp.headers["X-Request-ID"] = request_id

    return middleware
