# routes/payouts.py
from __future__ import annotations

import logging
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from app.payouts.engine import PayoutOrchestrator
from app.payouts.errors import NotFoundError, StorageError, ValidationError
from app.payouts.model import Payout, STATUS_PROCESSING
from app.payouts.money import to_minor_units
from app.workers.batch_runner import BatchRunner, RunnerClosed
from deps.auth import require_api_key
from deps.orchestrator import get_batch_runner, get_orchestrator
from schemas import BatchOut, BulkPayoutRequest, BulkPayoutResponse, PayoutOut
from settings import settings

logger = logging.getLogger("waya")
router = APIRouter(prefix="/api/v1", tags=["payouts"], dependencies=[Depends(require_api_key)])


def _reference_id(batch_reference: str) -> str:
    return f"{batch_reference}-{uuid.uuid4().hex[:8]}"


def _to_domain(batch_id: str, req: BulkPayoutRequest) -> list[Payout]:
    payouts: list[Payout] = []
    for item in req.items:
        try:
            amount = to_minor_units(item.amount)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e)) from e

        payouts.append(
            Payout(
                id=str(uuid.uuid4()),
                batch_id=batch_id,
                reference_id=_reference_id(req.batch_reference),
                recipient_name=item.recipient_name,
                recipient_phone=item.recipient_phone,
                recipient_email=item.recipient_email,
                recipient_tag=item.recipient_tag,
                country_code=item.country_code,
                bank_code=item.bank_code,
                account_number=item.account_number,
                bank_name=item.bank_name,
                amount=amount,
                currency=item.currency,
            )
        )
    return payouts


@router.post("/payouts", response_model=BulkPayoutResponse, status_code=202)
def submit_bulk_payout(req: BulkPayoutRequest, runner: BatchRunner = Depends(get_batch_runner)):
    batch_id = str(uuid.uuid4())
    payouts = _to_domain(batch_id, req)

    try:
        runner.submit(batch_id, payouts)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    except StorageError:
        # rows saved before the failure stay; the caller can inspect by batch_id
        logger.exception("bulk payout persistence failed batch=%s", batch_id)
        raise HTTPException(status_code=500, detail=f"Failed to persist batch {batch_id}")
    except RunnerClosed:
        raise HTTPException(status_code=503, detail="SHUTTING_DOWN")

    return BulkPayoutResponse(
        batch_id=batch_id,
        status=STATUS_PROCESSING,
        message=f"Batch accepted. Check status via /api/v1/payouts/{batch_id}",
    )


# declared before /payouts/{batch_id} so "all" is not captured as an id
@router.get("/payouts/all", response_model=List[PayoutOut])
def list_all_payouts(
    limit: Optional[int] = Query(default=None, ge=1, le=1000),
    orchestrator: PayoutOrchestrator = Depends(get_orchestrator),
):
    effective = limit or settings.LIST_PAYOUTS_DEFAULT_LIMIT
    try:
        payouts = orchestrator.list_payouts(effective)
    except StorageError:
        logger.exception("Failed to list payouts")
        raise HTTPException(status_code=500, detail="Failed to retrieve payout history")
    return [PayoutOut.from_domain(p) for p in payouts]


@router.get("/payouts/item/{payout_id}", response_model=PayoutOut)
def get_payout(payout_id: str, orchestrator: PayoutOrchestrator = Depends(get_orchestrator)):
    try:
        payout = orchestrator.get_payout(payout_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Payout not found")
    except StorageError:
        logger.exception("Failed to load payout %s", payout_id)
        raise HTTPException(status_code=500, detail="Failed to retrieve payout")
    return PayoutOut.from_domain(payout)


@router.get("/payouts/{batch_id}", response_model=BatchOut)
def get_batch_status(batch_id: str, orchestrator: PayoutOrchestrator = Depends(get_orchestrator)):
    try:
        batch = orchestrator.get_batch_status(batch_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Batch ID not found")
    except StorageError:
        logger.exception("Failed to load batch %s", batch_id)
        raise HTTPException(status_code=500, detail="Failed to retrieve batch status")
    return BatchOut.from_domain(batch)
