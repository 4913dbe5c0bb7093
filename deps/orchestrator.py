# deps/orchestrator.py
from fastapi import HTTPException, Request

from app.payouts.engine import PayoutOrchestrator
from app.workers.batch_runner import BatchRunner


def get_orchestrator(request: Request) -> PayoutOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="SERVICE_NOT_READY")
    return orchestrator


def get_batch_runner(request: Request) -> BatchRunner:
    runner = getattr(request.app.state, "batch_runner", None)
    if runner is None:
        raise HTTPException(status_code=503, detail="SERVICE_NOT_READY")
    return runner
