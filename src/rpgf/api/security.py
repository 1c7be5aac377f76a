from __future__ import annotations

import hmac
import os
from typing import Optional

from fastapi import Header, HTTPException


def require_admin_key(x_api_key: Optional[str] = Header(default=None)) -> str:
    expected = os.getenv("RPGF_ADMIN_API_KEY", "devkey")
    if x_api_key is None or not hmac.compare_digest(x_api_key, expected):
        raise HTTPException(status_code=401, detail="Invalid or missing API key (X-API-Key).")
    return x_api_key


def require_voter(x_voter_id: Optional[str] = Header(default=None)) -> str:
    # identity is established upstream; the header value is trusted as-is
    if x_voter_id is None or not x_voter_id.strip():
        raise HTTPException(status_code=401, detail="Missing voter identity (X-Voter-Id).")
    return x_voter_id.strip()
