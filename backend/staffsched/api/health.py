"""Health check and metrics endpoints."""

from fastapi import APIRouter, Depends, Response
from prometheus_client import CONTENT_TYPE_LATEST

from ..core.config import get_settings
from ..services.scheduling import ScheduleService
from .schedules import get_service

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    """Return service health and the configured store backend."""
    return {"status": "ok", "store": get_settings().STORE_BACKEND}


@router.get("/metrics")
def metrics(service: ScheduleService = Depends(get_service)) -> Response:
    """Scheduling counters in the Prometheus text format."""
    return Response(service.metrics.exposition(), media_type=CONTENT_TYPE_LATEST)
