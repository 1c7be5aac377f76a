"""
Audit export of published ballots.

Export document:
  {"round": n, "exported_at": "...", "ballots": [AuditRecord...]}

Each record keeps the signed publish message, so anyone holding an export can
re-run the hash and signature checks offline (verify_audit_record).
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from jsonschema import Draft202012Validator

from rpgf.ballots import AuditRecord
from rpgf.collaborators import ProjectDirectory
from rpgf.errors import BallotError, InvalidVotes
from rpgf.vote_codec import PublishRequest, parse_votes, verify_publish_request

EXPORT_SCHEMA_ID = "rpgf.audit_export.v1"

_VOTE = {
    "type": "object",
    "required": ["projectId", "amount"],
    "properties": {
        "projectId": {"type": "string", "minLength": 1},
        "amount": {"type": "number", "minimum": 0},
    },
}

AUDIT_EXPORT_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["schema_id", "round", "exported_at", "ballots"],
    "properties": {
        "schema_id": {"const": EXPORT_SCHEMA_ID},
        "round": {"type": "integer", "minimum": 1},
        "exported_at": {"type": "string"},
        "ballots": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["voterId", "signature", "publishedAt", "votes"],
                "properties": {
                    "voterId": {"type": "string", "minLength": 1},
                    "signature": {"type": ["string", "null"]},
                    "publishedAt": {"type": "string"},
                    "votes": {"type": "array", "items": _VOTE},
                    "message": {
                        "type": "object",
                        "required": ["total_votes", "project_count", "hashed_votes", "chainId"],
                    },
                },
            },
        },
    },
}

_validator = Draft202012Validator(AUDIT_EXPORT_SCHEMA)


class AuditExportError(ValueError):
    pass


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def build_export(round: int, records: Sequence[AuditRecord]) -> Dict[str, Any]:
    return {
        "schema_id": EXPORT_SCHEMA_ID,
        "round": int(round),
        "exported_at": _utc_now_iso(),
        "ballots": [r.to_dict() for r in records],
    }


def validate_export(doc: Dict[str, Any]) -> None:
    errs = sorted(_validator.iter_errors(doc), key=lambda e: list(e.path))
    if errs:
        e0 = errs[0]
        loc = ".".join(str(x) for x in e0.path) if e0.path else "<root>"
        raise AuditExportError(f"audit export schema violation at {loc}: {e0.message}")


def flatten_rows(records: Sequence[AuditRecord], directory: Optional[ProjectDirectory] = None) -> List[Dict[str, Any]]:
    """One row per vote, with the project display name joined in."""
    rows: List[Dict[str, Any]] = []
    for r in records:
        for v in r.votes:
            rows.append({
                "voterId": r.voter_id,
                "signature": r.signature,
                "publishedAt": r.published_at,
                "projectId": v["projectId"],
                "amount": v["amount"],
                "project": directory.name(v["projectId"]) if directory else None,
            })
    return rows


def verify_audit_record(record: Dict[str, Any], round: int) -> None:
    """
    Re-verifies one exported ballot. Raises HashMismatch / InvalidSignature,
    or AuditExportError when the record carries no signed message.
    """
    msg = record.get("message")
    if not isinstance(msg, dict) or not record.get("signature"):
        raise AuditExportError(f"record for {record.get('voterId')!r} has no signed publish message")
    try:
        req = PublishRequest.from_dict({"signature": record["signature"], "chainId": msg.get("chainId"), "message": msg})
        votes = parse_votes(record.get("votes") or [])
    except InvalidVotes as e:
        raise AuditExportError(str(e)) from e
    verify_publish_request(
        claimed_hash=req.hashed_votes,
        votes=votes,
        signature=req.signature,
        signer=str(record["voterId"]),
        round=round,
        total_votes=req.total_votes,
        project_count=req.project_count,
        chain_id=req.chain_id,
    )


def verify_export(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Validates the document and re-verifies every ballot; returns a summary."""
    validate_export(doc)
    round = int(doc["round"])
    failures: List[Dict[str, str]] = []
    for rec in doc["ballots"]:
        try:
            verify_audit_record(rec, round)
        except (BallotError, AuditExportError) as e:
            failures.append({"voterId": str(rec.get("voterId")), "reason": str(e)})
    return {
        "round": round,
        "ballots": len(doc["ballots"]),
        "verified": len(doc["ballots"]) - len(failures),
        "failures": failures,
    }
