# bus_tracker/services/tracking/repository.py
"""
Репозиторий автобусов, поездок и точек маршрута (PostgreSQL).
"""

from __future__ import annotations

import json
from typing import Any
from uuid import UUID

import asyncpg

from bus_tracker.common.constants import BusStatus
from bus_tracker.common.exceptions import NotFoundError, WriteFailedError
from bus_tracker.infra.database import DatabaseManager
from bus_tracker.shared.models.bus import BusSnapshot, LocationRecord, Profile, Trip

_BUS_COLUMNS = """
    id, bus_number, route_name, status, from_destination, to_destination,
    stops, capacity, conductor_id, updated_at
"""

_TRIP_COLUMNS = """
    id, bus_id, conductor_id, started_at, ended_at, is_active, total_distance, metadata
"""

_LOCATION_COLUMNS = """
    bus_id, trip_id, latitude, longitude, accuracy, speed, heading, recorded_at
"""


def _row_to_dict(row: asyncpg.Record | None) -> dict[str, Any] | None:
    """Record → dict; UUID приводятся к строкам, NUMERIC к float."""
    if row is None:
        return None
    data: dict[str, Any] = {}
    for key, value in row.items():
        if isinstance(value, UUID):
            value = str(value)
        elif key in ("accuracy", "total_distance") and value is not None:
            value = float(value)
        elif key == "metadata" and isinstance(value, str):
            # asyncpg отдаёт JSONB строкой
            value = json.loads(value)
        data[key] = value
    if "stops" in data and data["stops"] is None:
        data["stops"] = []
    return data


class BusRepository:
    """
    Доступ к таблицам buses, trips, bus_locations и profiles.

    Ошибки записи оборачиваются в WriteFailedError, ошибки чтения
    пробрасываются как есть.
    """

    def __init__(self, db: DatabaseManager) -> None:
        self.db = db

    # =========================================================================
    # АВТОБУСЫ
    # =========================================================================

    async def list_buses(self) -> list[BusSnapshot]:
        """Все автобусы, упорядоченные по номеру."""
        rows = await self.db.fetch(f"SELECT {_BUS_COLUMNS} FROM buses ORDER BY bus_number")
        return [BusSnapshot(**_row_to_dict(row)) for row in rows]

    async def get_bus(self, bus_id: str) -> BusSnapshot | None:
        row = await self.db.fetchrow(
            f"SELECT {_BUS_COLUMNS} FROM buses WHERE id = $1",
            UUID(bus_id),
        )
        return BusSnapshot(**_row_to_dict(row)) if row else None

    async def get_bus_by_conductor(self, conductor_id: str) -> BusSnapshot | None:
        """Автобус, закреплённый за кондуктором (первый по номеру)."""
        row = await self.db.fetchrow(
            f"SELECT {_BUS_COLUMNS} FROM buses WHERE conductor_id = $1 ORDER BY bus_number LIMIT 1",
            UUID(conductor_id),
        )
        return BusSnapshot(**_row_to_dict(row)) if row else None

    async def update_bus_status(
        self,
        bus_id: str,
        status: BusStatus,
        conductor_id: str | None = None,
    ) -> BusSnapshot:
        """
        Меняет статус автобуса.

        conductor_id переписывается только если передан.
        """
        query = f"""
            UPDATE buses
            SET status = $2,
                conductor_id = COALESCE($3, conductor_id),
                updated_at = NOW()
            WHERE id = $1
            RETURNING {_BUS_COLUMNS}
        """
        row = await self._write_row(
            query,
            UUID(bus_id),
            status.value,
            UUID(conductor_id) if conductor_id else None,
        )
        if row is None:
            raise NotFoundError(f"Автобус {bus_id} не найден")
        return BusSnapshot(**row)

    async def set_route(self, bus_id: str, from_destination: str, to_destination: str) -> BusSnapshot:
        """Задаёт начальную и конечную точки и переводит автобус в active."""
        query = f"""
            UPDATE buses
            SET from_destination = $2,
                to_destination = $3,
                status = 'active',
                updated_at = NOW()
            WHERE id = $1
            RETURNING {_BUS_COLUMNS}
        """
        row = await self._write_row(query, UUID(bus_id), from_destination, to_destination)
        if row is None:
            raise NotFoundError(f"Автобус {bus_id} не найден")
        return BusSnapshot(**row)

    # =========================================================================
    # ПОЕЗДКИ
    # =========================================================================

    async def begin_trip(self, bus_id: str, conductor_id: str) -> tuple[BusSnapshot, Trip]:
        """
        Переводит автобус в active с кондуктором и создаёт поездку.

        Обе записи идут в одной транзакции: если вставка поездки не
        удалась, статус автобуса не меняется.
        """
        assign_query = f"""
            UPDATE buses
            SET status = 'active',
                conductor_id = $2,
                updated_at = NOW()
            WHERE id = $1
            RETURNING {_BUS_COLUMNS}
        """
        trip_query = f"""
            INSERT INTO trips (bus_id, conductor_id, is_active, started_at)
            VALUES ($1, $2, TRUE, NOW())
            RETURNING {_TRIP_COLUMNS}
        """
        try:
            async with self.db.transaction() as conn:
                bus_row = await conn.fetchrow(assign_query, UUID(bus_id), UUID(conductor_id))
                if bus_row is None:
                    raise NotFoundError(f"Автобус {bus_id} не найден")
                trip_row = await conn.fetchrow(trip_query, UUID(bus_id), UUID(conductor_id))
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            raise WriteFailedError(str(e)) from e

        return BusSnapshot(**_row_to_dict(bus_row)), Trip(**_row_to_dict(trip_row))

    async def get_trip(self, trip_id: str) -> Trip | None:
        row = await self.db.fetchrow(
            f"SELECT {_TRIP_COLUMNS} FROM trips WHERE id = $1",
            UUID(trip_id),
        )
        return Trip(**_row_to_dict(row)) if row else None

    async def end_trip(self, trip_id: str) -> Trip:
        """Проставляет ended_at и is_active=false."""
        query = f"""
            UPDATE trips
            SET ended_at = NOW(), is_active = FALSE
            WHERE id = $1
            RETURNING {_TRIP_COLUMNS}
        """
        row = await self._write_row(query, UUID(trip_id))
        if row is None:
            raise NotFoundError(f"Поездка {trip_id} не найдена")
        return Trip(**row)

    # =========================================================================
    # МЕСТОПОЛОЖЕНИЕ
    # =========================================================================

    async def insert_location(self, record: LocationRecord) -> LocationRecord:
        """Добавляет точку. Существующие точки никогда не меняются."""
        query = f"""
            INSERT INTO bus_locations ({_LOCATION_COLUMNS})
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            RETURNING {_LOCATION_COLUMNS}
        """
        row = await self._write_row(
            query,
            UUID(record.bus_id),
            UUID(record.trip_id) if record.trip_id else None,
            record.latitude,
            record.longitude,
            record.accuracy,
            record.speed,
            record.heading,
            record.recorded_at,
        )
        return LocationRecord(**row)

    async def get_latest_location(self, bus_id: str) -> LocationRecord | None:
        """Самая свежая точка автобуса или None, если истории ещё нет."""
        row = await self.db.fetchrow(
            f"""
            SELECT {_LOCATION_COLUMNS} FROM bus_locations
            WHERE bus_id = $1
            ORDER BY recorded_at DESC
            LIMIT 1
            """,
            UUID(bus_id),
        )
        return LocationRecord(**_row_to_dict(row)) if row else None

    # =========================================================================
    # ПРОФИЛИ
    # =========================================================================

    async def get_profile(self, user_id: str) -> Profile | None:
        row = await self.db.fetchrow(
            "SELECT id, email, full_name, phone, role FROM profiles WHERE id = $1",
            UUID(user_id),
        )
        return Profile(**_row_to_dict(row)) if row else None

    async def _write_row(self, query: str, *args: Any) -> dict[str, Any] | None:
        try:
            row = await self.db.fetchrow(query, *args)
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            raise WriteFailedError(str(e)) from e
        return _row_to_dict(row)
