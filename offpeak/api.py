import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .engine import SessionEngine
from .errors import (
    AwaitTimeout,
    CommandFailed,
    CommandRejected,
    InvalidTrigger,
    NoActiveTransaction,
    NotConnected,
)
from .models import Session
from .timers import START, STOP
from .transactions import abridge

ERROR_STATUS = {
    NotConnected: 503,
    AwaitTimeout: 503,
    InvalidTrigger: 400,
    NoActiveTransaction: 400,
    CommandRejected: 409,
    CommandFailed: 502,
}


class StatusEntry(BaseModel):
    status: str
    receivedAt: datetime
    connectorId: Optional[int] = None
    errorCode: Optional[str] = None


class SessionView(BaseModel):
    identity: str
    connected: bool
    status: Optional[str] = None
    statusHistory: List[StatusEntry]
    activeTransactionId: Optional[int] = None
    lastTransactionId: Optional[int] = None
    lastTransaction: Optional[List[Any]] = None
    transactions: Dict[int, List[Any]]
    startTime: Optional[datetime] = None
    endTime: Optional[datetime] = None
    startPending: bool = False
    stopPending: bool = False


class StartReq(BaseModel):
    connectorId: int = 1


def session_view(engine: SessionEngine, session: Session, full: bool = False) -> SessionView:
    shown = list if full else abridge
    last = session.last_transaction
    return SessionView(
        identity=session.identity,
        connected=session.connected,
        status=session.status,
        statusHistory=[
            StatusEntry(
                status=r.status,
                receivedAt=r.received_at,
                connectorId=r.connector_id,
                errorCode=r.error_code,
            )
            for r in session.status_history
        ],
        activeTransactionId=session.active_transaction_id,
        lastTransactionId=session.last_transaction_id,
        lastTransaction=shown(last.meter_values) if last is not None else None,
        transactions={tx_id: shown(record.meter_values) for tx_id, record in session.transactions.items()},
        startTime=session.scheduled_start,
        endTime=session.scheduled_stop,
        startPending=engine.timers.pending(session.identity, START),
        stopPending=engine.timers.pending(session.identity, STOP),
    )


def create_app(engine: SessionEngine) -> FastAPI:
    app = FastAPI(title="Off-peak Central Control API", version="1.0.0")
    app.state.engine = engine

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logging.info(f">>> {request.method} {request.url.path}")
        try:
            response = await call_next(request)
            logging.info(f"<<< {request.method} {request.url.path} -> {response.status_code}")
            return response
        except Exception:
            logging.exception("Handler crashed")
            raise

    for error_type, status_code in ERROR_STATUS.items():
        app.add_exception_handler(error_type, _error_handler(status_code))

    @app.get("/health")
    def health():
        return {"ok": True, "time": datetime.now(timezone.utc).isoformat()}

    @app.get("/clients")
    def list_clients():
        return engine.store.identities()

    @app.get("/clients/{cpid}")
    def get_client(cpid: str):
        return session_view(engine, engine.store.require(cpid))

    @app.get("/clients/{cpid}/transactions")
    def get_transactions(cpid: str, full: bool = False):
        view = session_view(engine, engine.store.require(cpid), full=full)
        return {
            "activeTransactionId": view.activeTransactionId,
            "lastTransactionId": view.lastTransactionId,
            "transactions": view.transactions,
        }

    @app.get("/clients/{cpid}/config")
    async def get_config(cpid: str):
        resp = await engine.get_configuration(cpid)
        if resp is None:
            raise HTTPException(status_code=502, detail="GetConfiguration failed")
        return resp

    @app.get("/clients/{cpid}/trigger/{message}")
    async def trigger(cpid: str, message: str):
        return await engine.trigger(cpid, message)

    @app.post("/clients/{cpid}/start")
    async def start(cpid: str, req: Optional[StartReq] = None):
        connector_id = req.connectorId if req is not None else 1
        status = await engine.remote_start(cpid, connector_id)
        return {"ok": True, "status": status, "message": "started charge session"}

    @app.post("/clients/{cpid}/stop")
    async def stop(cpid: str):
        tx_id = await engine.remote_stop(cpid)
        return {"ok": True, "transactionId": tx_id, "message": "stopped charge session"}

    @app.post("/clients/{cpid}/softreset")
    async def soft_reset(cpid: str):
        resp = await engine.soft_reset(cpid)
        return {"ok": True, "response": resp, "message": "terminated connection"}

    @app.post("/softreset")
    async def soft_reset_all():
        results = await engine.soft_reset_all()
        return {"ok": True, "responses": results, "message": "terminated connections"}

    return app


def _error_handler(status_code: int):
    async def handle(request: Request, exc: Exception):
        logging.warning(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    return handle
