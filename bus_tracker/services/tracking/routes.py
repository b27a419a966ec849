# bus_tracker/services/tracking/routes.py
"""
REST API автобусов и поездок.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from bus_tracker.common.exceptions import (
    BusTrackerError,
    NotFoundError,
    PositionError,
    TrackingStateError,
    WriteFailedError,
)
from bus_tracker.services.tracking.dependencies import (
    get_current_user,
    get_optional_user,
    get_service,
    require_conductor,
)
from bus_tracker.services.tracking.service import TripService
from bus_tracker.shared.models.bus import BusSnapshot, LocationRecord, Profile, Trip

router = APIRouter(tags=["Buses"])


# === MODELS ===

class StartTripRequest(BaseModel):
    bus_id: UUID


class SetRouteRequest(BaseModel):
    from_destination: str = Field(..., min_length=1)
    to_destination: str = Field(..., min_length=1)


class LatestLocationResponse(BaseModel):
    """Последняя точка автобуса; location=None, если данных ещё нет."""
    bus_id: str
    location: LocationRecord | None = None


class SearchHistoryItem(BaseModel):
    from_query: str
    to_query: str


def _http_error(e: Exception) -> HTTPException:
    """Доменное исключение → HTTP-ответ."""
    match e:
        case NotFoundError():
            return HTTPException(status_code=404, detail=str(e))
        case TrackingStateError():
            return HTTPException(status_code=409, detail=str(e))
        case PositionError():
            return HTTPException(status_code=422, detail={"code": e.code.value, "message": e.message})
        case WriteFailedError():
            return HTTPException(status_code=503, detail="Хранилище недоступно")
        case ValueError():
            return HTTPException(status_code=400, detail=str(e))
    return HTTPException(status_code=500, detail="Внутренняя ошибка")


# === BUSES ===

@router.get("/buses", response_model=list[BusSnapshot])
async def list_buses(service: TripService = Depends(get_service)):
    return await service.list_buses()


@router.get("/buses/search", response_model=list[BusSnapshot])
async def search_buses(
    from_query: str | None = Query(default=None, alias="from"),
    to_query: str | None = Query(default=None, alias="to"),
    user: Profile | None = Depends(get_optional_user),
    service: TripService = Depends(get_service),
):
    """Автобусы, чей маршрут проходит через from и затем через to."""
    return await service.search(from_query, to_query, user.id if user else None)


@router.get("/buses/{bus_id}/location", response_model=LatestLocationResponse)
async def get_latest_location(bus_id: UUID, service: TripService = Depends(get_service)):
    location = await service.get_latest_location(str(bus_id))
    return LatestLocationResponse(bus_id=str(bus_id), location=location)


@router.patch("/buses/{bus_id}/route", response_model=BusSnapshot)
async def set_route(
    bus_id: UUID,
    request: SetRouteRequest,
    conductor: Profile = Depends(require_conductor),
    service: TripService = Depends(get_service),
):
    try:
        return await service.set_route(
            str(bus_id), request.from_destination, request.to_destination, conductor,
        )
    except (BusTrackerError, ValueError) as e:
        raise _http_error(e) from e


@router.get("/conductor/bus", response_model=BusSnapshot)
async def get_conductor_bus(
    conductor: Profile = Depends(require_conductor),
    service: TripService = Depends(get_service),
):
    """Автобус, закреплённый за кондуктором."""
    bus = await service.repository.get_bus_by_conductor(conductor.id)
    if bus is None:
        raise HTTPException(status_code=404, detail="За кондуктором не закреплён автобус")
    return bus


# === TRIPS ===

@router.post("/trips", response_model=Trip, status_code=201)
async def start_trip(
    request: StartTripRequest,
    conductor: Profile = Depends(require_conductor),
    service: TripService = Depends(get_service),
):
    try:
        return await service.start_trip(str(request.bus_id), conductor)
    except (BusTrackerError, ValueError) as e:
        raise _http_error(e) from e


@router.post("/trips/{trip_id}/end", response_model=Trip)
async def end_trip(
    trip_id: UUID,
    conductor: Profile = Depends(require_conductor),
    service: TripService = Depends(get_service),
):
    try:
        return await service.end_trip(str(trip_id), conductor)
    except (BusTrackerError, ValueError) as e:
        raise _http_error(e) from e


# === SEARCH HISTORY ===

@router.get("/search/history", response_model=list[SearchHistoryItem])
async def get_search_history(
    user: Profile = Depends(get_current_user),
    service: TripService = Depends(get_service),
):
    history = await service.get_search_history(user.id)
    return [SearchHistoryItem(from_query=h.from_query, to_query=h.to_query) for h in history]
