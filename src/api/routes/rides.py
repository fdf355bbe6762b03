"""
Ride endpoints
==============

POST  /api/v1/rides                        -- request a ride (202 Accepted)
GET   /api/v1/rides/pending                -- priority-ordered pending rides
GET   /api/v1/rides/{ride_id}              -- ride state
POST  /api/v1/rides/{ride_id}/accept       -- driver accepts
POST  /api/v1/rides/{ride_id}/reject       -- driver declines
POST  /api/v1/rides/{ride_id}/start        -- accepted -> in_progress
POST  /api/v1/rides/{ride_id}/confirm/rider  -- rider confirms completion
POST  /api/v1/rides/{ride_id}/confirm/driver -- driver confirms completion
GET   /api/v1/rides/{ride_id}/completion   -- dual-confirmation status
PATCH /api/v1/rides/{ride_id}/cancel       -- cancel a ride
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request, Response

from src.api.dependencies import get_engine
from src.api.middleware import limiter
from src.api.schemas import (
    CompletionStatusResponse,
    DriverActionRequest,
    ErrorResponse,
    PendingRideResponse,
    RideCreateRequest,
    RideResponse,
    RiderConfirmationRequest,
)
from src.config import settings
from src.domain.lifecycle import RideEngine

router = APIRouter(prefix="/rides", tags=["rides"])

_errors = {
    404: {"model": ErrorResponse, "description": "Ride or driver not found"},
    409: {"model": ErrorResponse, "description": "Ride is in the wrong state"},
}


def _ride(ride) -> RideResponse:
    return RideResponse.model_validate(ride, from_attributes=True)


def _status(status) -> CompletionStatusResponse:
    return CompletionStatusResponse.model_validate(status, from_attributes=True)


@router.post(
    "",
    status_code=202,
    response_model=RideResponse,
    summary="Request a ride",
    responses={
        202: {"description": "Ride queued; a driver will pick it up."},
        404: _errors[404],
    },
)
@limiter.limit(settings.rate_limit)
async def request_ride(
    request: Request,
    body: RideCreateRequest,
    engine: RideEngine = Depends(get_engine),
):
    ride = await engine.request_ride(
        rider_id=body.rider_id,
        pickup=body.pickup.to_domain(),
        destination=body.destination.to_domain(),
        vehicle_type=body.vehicle_type,
        payment_method=body.payment_method,
        fare=body.fare,
        split_fare=body.split_fare,
        split_with=body.split_with,
    )
    return _ride(ride)


@router.get(
    "/pending",
    response_model=list[PendingRideResponse],
    summary="List pending rides, highest-rated riders first",
    description=(
        "Point-in-time snapshot ordered by rider rating (descending), then "
        "request time.  With ``driver_id``, rides that driver rejected are "
        "hidden."
    ),
)
@limiter.limit(settings.rate_limit)
async def list_pending_rides(
    request: Request,
    driver_id: Optional[int] = None,
    engine: RideEngine = Depends(get_engine),
):
    return [
        PendingRideResponse.model_validate(entry, from_attributes=True)
        for entry in engine.list_pending_rides(driver_id)
    ]


@router.get(
    "/{ride_id}",
    response_model=RideResponse,
    summary="Get ride state",
    responses={404: _errors[404]},
)
@limiter.limit(settings.rate_limit)
async def get_ride(
    request: Request,
    ride_id: int,
    engine: RideEngine = Depends(get_engine),
):
    return _ride(await engine.get_ride(ride_id))


@router.post(
    "/{ride_id}/accept",
    response_model=RideResponse,
    summary="Accept a pending ride",
    description=(
        "Atomically claims the ride for the driver.  409 ``already_matched`` "
        "means another driver won the race: pick another ride."
    ),
    responses=_errors,
)
@limiter.limit(settings.rate_limit)
async def accept_ride(
    request: Request,
    ride_id: int,
    body: DriverActionRequest,
    engine: RideEngine = Depends(get_engine),
):
    return _ride(await engine.accept_ride(body.driver_id, ride_id))


@router.post(
    "/{ride_id}/reject",
    status_code=204,
    summary="Decline a pending ride",
    responses={404: _errors[404]},
)
@limiter.limit(settings.rate_limit)
async def reject_ride(
    request: Request,
    ride_id: int,
    body: DriverActionRequest,
    engine: RideEngine = Depends(get_engine),
):
    await engine.reject_ride(body.driver_id, ride_id)
    return Response(status_code=204)


@router.post(
    "/{ride_id}/start",
    response_model=RideResponse,
    summary="Start an accepted ride",
    responses=_errors,
)
@limiter.limit(settings.rate_limit)
async def start_ride(
    request: Request,
    ride_id: int,
    engine: RideEngine = Depends(get_engine),
):
    return _ride(await engine.start_ride(ride_id))


@router.post(
    "/{ride_id}/confirm/rider",
    response_model=CompletionStatusResponse,
    summary="Rider confirms the trip is over",
    responses=_errors,
)
@limiter.limit(settings.rate_limit)
async def confirm_by_rider(
    request: Request,
    ride_id: int,
    body: Optional[RiderConfirmationRequest] = None,
    engine: RideEngine = Depends(get_engine),
):
    rating = body.rating if body else None
    return _status(await engine.confirm_completion_by_rider(ride_id, rating))


@router.post(
    "/{ride_id}/confirm/driver",
    response_model=CompletionStatusResponse,
    summary="Driver confirms the trip is over",
    responses=_errors,
)
@limiter.limit(settings.rate_limit)
async def confirm_by_driver(
    request: Request,
    ride_id: int,
    engine: RideEngine = Depends(get_engine),
):
    return _status(await engine.confirm_completion_by_driver(ride_id))


@router.get(
    "/{ride_id}/completion",
    response_model=CompletionStatusResponse,
    summary="Dual-confirmation status (safe to poll)",
    responses={404: _errors[404]},
)
@limiter.limit(settings.rate_limit)
async def get_completion_status(
    request: Request,
    ride_id: int,
    engine: RideEngine = Depends(get_engine),
):
    return _status(await engine.get_completion_status(ride_id))


@router.patch(
    "/{ride_id}/cancel",
    response_model=RideResponse,
    summary="Cancel a ride",
    description=(
        "Transitions a REQUESTED or ACCEPTED ride to CANCELED and removes it "
        "from the pending queue.  In-progress rides cannot be canceled."
    ),
    responses=_errors,
)
@limiter.limit(settings.rate_limit)
async def cancel_ride(
    request: Request,
    ride_id: int,
    engine: RideEngine = Depends(get_engine),
):
    return _ride(await engine.cancel_ride(ride_id))
