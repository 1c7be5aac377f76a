from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, List, Optional

from rpgf.audit_export import verify_export
from rpgf.ballot_store import SqliteBallotStore
from rpgf.collaborators import AllowlistApproval, JsonProjectDirectory, StaticProjectDirectory
from rpgf.service import RoundService
from rpgf.settings import JsonConfigStore, MemoryConfigStore


def _service(args: argparse.Namespace) -> RoundService:
    return RoundService(
        store=SqliteBallotStore(Path(args.db)),
        config_store=JsonConfigStore(Path(args.config)) if args.config else MemoryConfigStore(),
        approval=AllowlistApproval([]),
        directory=JsonProjectDirectory(Path(args.projects)) if args.projects else StaticProjectDirectory(),
    )


def _dump(obj: Any) -> None:
    sys.stdout.write(json.dumps(obj, ensure_ascii=False, indent=2, sort_keys=True) + "\n")


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(prog="rpgf", description="Tally, payout and audit tools for RPGF ballots")
    ap.add_argument("--db", help="SQLite ballot store path")
    ap.add_argument("--config", default=None, help="Round config JSON (admin path)")
    ap.add_argument("--projects", default=None, help="Project directory JSON")
    ap.add_argument("--round", type=int, default=1)
    ap.add_argument("-v", "--verbose", action="store_true")
    sub = ap.add_subparsers(dest="cmd", required=True)

    sub.add_parser("tally", help="Per-project scores for the round")
    p_pay = sub.add_parser("payout", help="Payout lines for the round")
    p_pay.add_argument("--pool", type=int, default=None, help="Pool in base units (default: round setting)")
    p_pay.add_argument("--distribution", action="store_true", help="Only non-zero lines, ranked, with payout addresses")
    p_rank = sub.add_parser("rank", help="Ranked project ids")
    p_rank.add_argument("--offset", type=int, default=0)
    p_rank.add_argument("--limit", type=int, default=50)
    p_exp = sub.add_parser("export", help="Audit export of published ballots")
    p_exp.add_argument("--rows", action="store_true", help="One row per vote with project names")
    p_ver = sub.add_parser("verify-export", help="Re-verify hashes and signatures of an export file")
    p_ver.add_argument("path")

    args = ap.parse_args(argv)
    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING)

    if args.cmd == "verify-export":
        doc = json.loads(Path(args.path).read_text(encoding="utf-8-sig"))
        summary = verify_export(doc)
        _dump(summary)
        return 0 if not summary["failures"] else 1

    if not args.db:
        ap.error("--db is required for this command")
    svc = _service(args)

    if args.cmd == "tally":
        _dump(svc.get_tally(args.round).to_dict())
    elif args.cmd == "payout":
        lines = (
            svc.get_distribution(args.round, args.pool)
            if args.distribution
            else svc.get_payout(args.round, args.pool)
        )
        _dump([l.to_dict() for l in lines])
    elif args.cmd == "rank":
        _dump(svc.get_ranked_projects(args.round, args.offset, args.limit))
    elif args.cmd == "export":
        _dump(svc.export_audit_rows(args.round) if args.rows else svc.export_audit(args.round))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
