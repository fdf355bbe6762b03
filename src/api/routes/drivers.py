"""
Driver endpoints
================

GET  /api/v1/drivers?active=               -- drivers, optionally by online flag
GET  /api/v1/drivers/{driver_id}           -- driver profile
POST /api/v1/drivers/{driver_id}/next-ride -- claim the best pending ride
GET  /api/v1/drivers/{driver_id}/rides     -- rides driven, newest first
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from src.api.dependencies import get_engine
from src.api.middleware import limiter
from src.api.schemas import DriverResponse, ErrorResponse, RideResponse
from src.config import settings
from src.domain.lifecycle import RideEngine

router = APIRouter(prefix="/drivers", tags=["drivers"])


@router.get(
    "",
    response_model=list[DriverResponse],
    summary="List drivers",
    description="Highest rated first.  ``active`` filters on the online flag.",
)
@limiter.limit(settings.rate_limit)
async def list_drivers(
    request: Request,
    active: Optional[bool] = Query(None),
    engine: RideEngine = Depends(get_engine),
):
    drivers = await engine.list_drivers(active)
    return [DriverResponse.model_validate(d, from_attributes=True) for d in drivers]


@router.get(
    "/{driver_id}",
    response_model=DriverResponse,
    summary="Driver profile",
    responses={404: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit)
async def get_driver(
    request: Request,
    driver_id: int,
    engine: RideEngine = Depends(get_engine),
):
    driver = await engine.get_driver(driver_id)
    return DriverResponse.model_validate(driver, from_attributes=True)


@router.post(
    "/{driver_id}/next-ride",
    response_model=RideResponse,
    summary="Assign the best pending ride to this driver",
    description=(
        "The driver-became-available signal.  Returns the accepted ride, or "
        "204 when nothing is pending.  Rides this driver rejected are skipped."
    ),
    responses={
        204: {"description": "No pending rides"},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse, "description": "Driver is offline"},
    },
)
@limiter.limit(settings.rate_limit)
async def next_ride(
    request: Request,
    driver_id: int,
    engine: RideEngine = Depends(get_engine),
):
    ride = await engine.dispatch_next(driver_id)
    if ride is None:
        return Response(status_code=204)
    return RideResponse.model_validate(ride, from_attributes=True)


@router.get(
    "/{driver_id}/rides",
    response_model=list[RideResponse],
    summary="Ride history for a driver",
)
@limiter.limit(settings.rate_limit)
async def driver_rides(
    request: Request,
    driver_id: int,
    limit: int = Query(10, ge=1, le=100),
    engine: RideEngine = Depends(get_engine),
):
    rides = await engine.list_driver_rides(driver_id, limit)
    return [RideResponse.model_validate(r, from_attributes=True) for r in rides]
