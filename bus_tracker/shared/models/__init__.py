# bus_tracker/shared/models/__init__.py
"""
Общие DTO и Pydantic-модели для межсервисного взаимодействия.
"""

from bus_tracker.shared.models.position import Position, utcnow
from bus_tracker.shared.models.bus import (
    BusSnapshot,
    LocationRecord,
    Trip,
    Profile,
)
from bus_tracker.shared.models.common import ErrorResponse, HealthStatus

__all__ = [
    "Position",
    "utcnow",
    "BusSnapshot",
    "LocationRecord",
    "Trip",
    "Profile",
    "ErrorResponse",
    "HealthStatus",
]
