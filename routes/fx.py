# routes/fx.py
import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from app.payouts.engine import PayoutOrchestrator
from app.payouts.errors import GatewayError
from deps.auth import require_api_key
from deps.orchestrator import get_orchestrator
from schemas import RatesResponse

logger = logging.getLogger("waya.fx")
router = APIRouter(prefix="/api/v1", tags=["fx"], dependencies=[Depends(require_api_key)])


@router.get("/rates", response_model=RatesResponse)
def get_rates(
    base: str = Query(default="USD", min_length=3, max_length=3),
    symbols: str = Query(..., min_length=3, max_length=200),
    orchestrator: PayoutOrchestrator = Depends(get_orchestrator),
):
    try:
        table = orchestrator.get_rates(base.upper(), symbols.upper())
    except GatewayError as e:
        logger.error("rate lookup failed base=%s symbols=%s err=%s", base, symbols, e)
        raise HTTPException(status_code=502, detail="Rate lookup failed")
    return RatesResponse(base=table.base, rates=table.rates, updated_at=table.updated_at)
