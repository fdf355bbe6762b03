"""
Admin / observability endpoints
===============================

GET /api/v1/admin/health -- health check with the pending-queue depth
"""

from fastapi import APIRouter, Depends

from src.api.dependencies import get_engine
from src.api.schemas import HealthResponse
from src.domain.lifecycle import RideEngine

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health(engine: RideEngine = Depends(get_engine)):
    return HealthResponse(pending_rides=len(engine.queue))
