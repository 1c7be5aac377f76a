from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from rpgf.api.audit import RequestLog, get_app_version, make_audit_middleware
from rpgf.api.security import require_admin_key, require_voter
from rpgf.errors import BallotError
from rpgf.round_keys import RoundKey
from rpgf.service import RoundService
from rpgf.settings import RoundConfig
from rpgf.tally import as_number
from rpgf.vote_codec import PublishRequest


class BallotIn(BaseModel):
    votes: List[Dict[str, Any]]


class PublishMessageIn(BaseModel):
    total_votes: int
    project_count: int
    hashed_votes: str


class PublishIn(BaseModel):
    chainId: int
    signature: str
    message: PublishMessageIn


class ConfigIn(BaseModel):
    calculation: str
    threshold: int


def req_id(req: Request) -> str:
    return str(getattr(req.state, "request_id", ""))


def _check_round(round: int, voter_id: Optional[str] = None) -> None:
    try:
        RoundKey(round=round, voter_id=voter_id or "0x0")
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e


def _empty_ballot() -> Dict[str, Any]:
    return {"votes": [], "createdAt": None, "updatedAt": None, "publishedAt": None, "signature": None}


def create_app(service: Optional[RoundService] = None) -> FastAPI:
    svc = service or RoundService.from_env()
    app = FastAPI(title="RPGF Ballot API", version=get_app_version())
    app.state.service = svc
    app.middleware("http")(make_audit_middleware(RequestLog()))

    @app.exception_handler(BallotError)
    async def ballot_error_handler(request: Request, exc: BallotError) -> JSONResponse:
        body = exc.to_dict()
        body["request_id"] = req_id(request)
        return JSONResponse(status_code=exc.http_status, content=body)

    @app.get("/health")
    def health(req: Request) -> Dict[str, Any]:
        return {"ok": True, "version": get_app_version(), "request_id": req_id(req)}

    # voter

    @app.get("/v1/rounds/{round}/ballot")
    def get_ballot(round: int, voter: str = Depends(require_voter)) -> Dict[str, Any]:
        _check_round(round, voter)
        b = svc.get_ballot(round, voter)
        return b.to_dict() if b else _empty_ballot()

    @app.put("/v1/rounds/{round}/ballot")
    def save_ballot(round: int, payload: BallotIn, voter: str = Depends(require_voter)) -> Dict[str, Any]:
        _check_round(round, voter)
        return svc.save_draft(round, voter, payload.votes).to_dict()

    @app.post("/v1/rounds/{round}/ballot/publish")
    def publish_ballot(round: int, payload: PublishIn, voter: str = Depends(require_voter)) -> Dict[str, Any]:
        _check_round(round, voter)
        request = PublishRequest.from_dict(payload.model_dump())
        return svc.publish(round, voter, request).to_dict()

    # public results

    @app.get("/v1/rounds/{round}/results")
    def results(round: int) -> Dict[str, Any]:
        _check_round(round)
        svc.ensure_results_available(round)
        return svc.get_tally(round).to_dict()

    @app.get("/v1/rounds/{round}/results/projects")
    def results_projects(
        round: int,
        cursor: int = Query(default=0, ge=0),
        limit: int = Query(default=10, ge=1, le=500),
    ) -> List[Dict[str, Any]]:
        _check_round(round)
        svc.ensure_results_available(round)
        return [
            {"projectId": s.project_id, "name": svc.directory.name(s.project_id), "votes": as_number(s.votes)}
            for s in svc.get_ranked_scores(round, offset=cursor * limit, limit=limit)
        ]

    @app.get("/v1/rounds/{round}/results/projects/{project_id}")
    def results_project(round: int, project_id: str) -> Dict[str, Any]:
        _check_round(round)
        svc.ensure_results_available(round)
        return {"amount": as_number(svc.get_project_score(round, project_id))}

    # admin

    @app.get("/v1/rounds/{round}/votes")
    def votes(round: int, _: str = Depends(require_admin_key)) -> Dict[str, Any]:
        _check_round(round)
        return svc.get_tally(round).to_dict()

    @app.get("/v1/rounds/{round}/payout")
    def payout(
        round: int,
        pool: Optional[int] = Query(default=None, ge=0),
        _: str = Depends(require_admin_key),
    ) -> List[Dict[str, Any]]:
        _check_round(round)
        return [line.to_dict() for line in svc.get_payout(round, pool)]

    @app.get("/v1/rounds/{round}/distribution")
    def distribution(
        round: int,
        pool: Optional[int] = Query(default=None, ge=0),
        _: str = Depends(require_admin_key),
    ) -> List[Dict[str, Any]]:
        _check_round(round)
        return [line.to_dict() for line in svc.get_distribution(round, pool)]

    @app.post("/v1/rounds/{round}/export")
    def export(round: int, _: str = Depends(require_admin_key)) -> Dict[str, Any]:
        _check_round(round)
        return svc.export_audit(round)

    @app.get("/v1/rounds/{round}/export/rows")
    def export_rows(round: int, _: str = Depends(require_admin_key)) -> List[Dict[str, Any]]:
        _check_round(round)
        return svc.export_audit_rows(round)

    @app.get("/v1/rounds/{round}/config")
    def get_config(round: int, _: str = Depends(require_admin_key)) -> Dict[str, Any]:
        _check_round(round)
        return svc.get_config(round).to_dict()

    @app.put("/v1/rounds/{round}/config")
    def put_config(round: int, payload: ConfigIn, _: str = Depends(require_admin_key)) -> Dict[str, Any]:
        _check_round(round)
        cfg = RoundConfig.from_dict(payload.model_dump())
        return svc.set_config(round, cfg).to_dict()

    return app
