# bus_tracker/shared/events/trip_events.py
"""
События домена поездок автобусов.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from bus_tracker.shared.events.base import DomainEvent


class TripStarted(DomainEvent):
    """Событие: кондуктор начал поездку, трекинг включён."""

    event_type: Literal["trip.started"] = "trip.started"

    trip_id: str
    bus_id: str
    conductor_id: str


class TripEnded(DomainEvent):
    """Событие: поездка завершена, трекинг остановлен."""

    event_type: Literal["trip.ended"] = "trip.ended"

    trip_id: str
    bus_id: str
    ended_at: datetime
    records_written: int = 0


class RouteChanged(DomainEvent):
    """Событие: кондуктор задал начальную и конечную точки маршрута."""

    event_type: Literal["bus.route_changed"] = "bus.route_changed"

    bus_id: str
    from_destination: str
    to_destination: str
