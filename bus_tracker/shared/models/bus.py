# bus_tracker/shared/models/bus.py
"""
DTO для автобусов, поездок, точек маршрута и профилей.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from bus_tracker.common.constants import BusStatus, UserRole


class BusSnapshot(BaseModel):
    """Автобус в том виде, в каком он хранится в таблице buses."""

    id: str
    bus_number: str
    route_name: str
    status: BusStatus = BusStatus.INACTIVE
    from_destination: str | None = None
    to_destination: str | None = None
    stops: list[str] = Field(default_factory=list)
    capacity: int | None = None
    conductor_id: str | None = None
    updated_at: datetime | None = None

    class Config:
        from_attributes = True

    @property
    def complete_route(self) -> list[str]:
        """Полный маршрут: начальная точка, остановки, конечная точка."""
        return [self.from_destination or "", *self.stops, self.to_destination or ""]


class LocationRecord(BaseModel):
    """
    Запись в таблице bus_locations.

    Для ядра таблица только на добавление: записи не обновляются и не удаляются.
    """

    bus_id: str
    trip_id: str | None = None
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    accuracy: float | None = None
    speed: float = 0.0
    heading: float | None = None
    recorded_at: datetime

    class Config:
        from_attributes = True
        frozen = True


class Trip(BaseModel):
    """Поездка: интервал, в течение которого автобус отслеживается."""

    id: str
    bus_id: str
    conductor_id: str
    started_at: datetime | None = None
    ended_at: datetime | None = None
    is_active: bool = True
    total_distance: float | None = None
    metadata: dict[str, Any] | None = None

    class Config:
        from_attributes = True


class Profile(BaseModel):
    """Профиль пользователя (только чтение)."""

    id: str
    email: str
    full_name: str | None = None
    phone: str | None = None
    role: UserRole = UserRole.PASSENGER

    class Config:
        from_attributes = True
