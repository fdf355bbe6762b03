"""
User endpoints
==============

GET /api/v1/users/{user_id}       -- profile: rating, points, level
GET /api/v1/users/{user_id}/rides -- rides requested by a rider, newest first
"""

from fastapi import APIRouter, Depends, Query, Request

from src.api.dependencies import get_engine
from src.api.middleware import limiter
from src.api.schemas import ErrorResponse, RideResponse, UserResponse
from src.config import settings
from src.domain.lifecycle import RideEngine

router = APIRouter(prefix="/users", tags=["users"])


@router.get(
    "/{user_id}",
    response_model=UserResponse,
    summary="User profile with points and level",
    responses={404: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit)
async def get_user(
    request: Request,
    user_id: int,
    engine: RideEngine = Depends(get_engine),
):
    user = await engine.get_user(user_id)
    return UserResponse.model_validate(user, from_attributes=True)


@router.get(
    "/{user_id}/rides",
    response_model=list[RideResponse],
    summary="Ride history for a rider",
)
@limiter.limit(settings.rate_limit)
async def rider_rides(
    request: Request,
    user_id: int,
    limit: int = Query(10, ge=1, le=100),
    engine: RideEngine = Depends(get_engine),
):
    rides = await engine.list_rider_rides(user_id, limit)
    return [RideResponse.model_validate(r, from_attributes=True) for r in rides]
