from fastapi import APIRouter
from fastapi.responses import Response

from services.metrics import render_prometheus

router = APIRouter(tags=["metrics"])

PROMETHEUS_CONTENT_TYPE = "text/plain; version=0.0.4"


@router.get("/metrics", include_in_schema=False)
def metrics():
    """Request, batch submission, payout outcome and notification counters."""
    return Response(content=render_prometheus(), media_type=PROMETHEUS_CONTENT_TYPE)
