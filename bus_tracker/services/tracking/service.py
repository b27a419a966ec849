# bus_tracker/services/tracking/service.py
"""
Сервис поездок и трекинга автобусов.

Порядок операций:
- начало поездки: автобус → active и вставка trip в одной транзакции,
  запуск сессии, TripStarted;
- направление: автобус → active, трекинг без поездки, если он ещё не идёт;
- остановка трекинга: сессия останавливается, автобус → inactive;
- завершение: остановка сессии и ожидание записей, trip → ended,
  автобус → inactive, TripEnded.
"""

from __future__ import annotations

from bus_tracker.common.constants import BusStatus, TypeMsg
from bus_tracker.common.exceptions import (
    NotFoundError,
    PositionError,
    PositionErrorCode,
    TrackingStateError,
)
from bus_tracker.common.logger import log_info
from bus_tracker.core.routes.search import SearchHistory, SearchQuery, search_buses
from bus_tracker.infra.event_bus import EventBus
from bus_tracker.services.tracking.publisher import ChangeFeedPublisher
from bus_tracker.services.tracking.registry import SessionRegistry
from bus_tracker.services.tracking.repository import BusRepository
from bus_tracker.shared.events.trip_events import RouteChanged, TripEnded, TripStarted
from bus_tracker.shared.models.bus import BusSnapshot, LocationRecord, Profile, Trip


class TripService:
    """Операции кондуктора и пассажира поверх репозитория и реестра сессий."""

    def __init__(
        self,
        repository: BusRepository,
        registry: SessionRegistry,
        publisher: ChangeFeedPublisher,
        event_bus: EventBus,
        history: SearchHistory | None = None,
    ) -> None:
        self.repository = repository
        self.registry = registry
        self.publisher = publisher
        self.event_bus = event_bus
        self.history = history

    # =========================================================================
    # ПОЕЗДКИ
    # =========================================================================

    async def start_trip(self, bus_id: str, conductor: Profile) -> Trip:
        """
        Начинает поездку и включает трекинг.

        Если кондуктор уже отслеживает автобус без поездки (после задания
        направления), наблюдение перезапускается с новой поездкой.

        Raises:
            TrackingStateError: у кондуктора уже идёт поездка
            PositionError: геолокация не поддерживается (до любых записей в БД)
        """
        entry = self.registry.get_or_create(conductor.id)
        session = entry.session

        if session.is_watching and session.trip_id is not None:
            raise TrackingStateError(
                f"Кондуктор {conductor.id} уже отслеживает поездку {session.trip_id}"
            )
        if not session.sampler.is_supported:
            raise PositionError(PositionErrorCode.UNSUPPORTED)

        bus, trip = await self.repository.begin_trip(bus_id, conductor.id)
        await self.publisher.bus_changed(bus)
        session.start(bus_id, trip.id)

        await log_info(
            f"Поездка {trip.id} начата: автобус {bus.bus_number}, кондуктор {conductor.id}",
            type_msg=TypeMsg.INFO,
            extra={"trip_id": trip.id, "bus_id": bus_id},
        )
        await self.event_bus.publish(TripStarted(
            trip_id=trip.id,
            bus_id=bus_id,
            conductor_id=conductor.id,
        ))
        return trip

    async def end_trip(self, trip_id: str, conductor: Profile) -> Trip:
        """
        Завершает поездку.

        Сессия останавливается и дожидается уже запущенных записей до того,
        как поездка помечается завершённой: ни одна точка не попадёт в БД
        после ended_at.
        """
        trip = await self.repository.get_trip(trip_id)
        if trip is None or trip.conductor_id != conductor.id:
            raise NotFoundError(f"Поездка {trip_id} не найдена")
        if not trip.is_active:
            raise TrackingStateError(f"Поездка {trip_id} уже завершена")

        records_written = 0
        entry = self.registry.get(conductor.id)
        if entry is not None and entry.session.trip_id == trip_id:
            await self.registry.remove(conductor.id)
            records_written = int(entry.session.get_stats()["records_written"] or 0)

        ended = await self.repository.end_trip(trip_id)
        bus = await self.repository.update_bus_status(trip.bus_id, BusStatus.INACTIVE)
        await self.publisher.bus_changed(bus)

        await log_info(
            f"Поездка {trip_id} завершена, записано точек: {records_written}",
            type_msg=TypeMsg.INFO,
            extra={"trip_id": trip_id, "bus_id": trip.bus_id},
        )
        await self.event_bus.publish(TripEnded(
            trip_id=trip_id,
            bus_id=trip.bus_id,
            ended_at=ended.ended_at,
            records_written=records_written,
        ))
        return ended

    async def stop_tracking(self, conductor_id: str) -> bool:
        """
        Останавливает трекинг без завершения поездки. Автобус становится inactive.

        Returns:
            True если сессия была активна
        """
        entry = self.registry.get(conductor_id)
        if entry is None or not entry.session.is_watching:
            return False

        session = entry.session
        bus_id = session.bus_id
        session.stop()
        await session.drain()

        if bus_id:
            bus = await self.repository.update_bus_status(bus_id, BusStatus.INACTIVE)
            await self.publisher.bus_changed(bus)
        await log_info(f"Трекинг кондуктора {conductor_id} остановлен", type_msg=TypeMsg.INFO)
        return True

    async def set_route(
        self,
        bus_id: str,
        from_destination: str,
        to_destination: str,
        conductor: Profile,
    ) -> BusSnapshot:
        """
        Задаёт направление движения. Автобус становится active.

        Если трекинг ещё не идёт, он включается без поездки, а первая точка
        запрашивается разово, не дожидаясь наблюдения.

        Raises:
            ValueError: пустая начальная или конечная точка
            TrackingStateError: кондуктор отслеживает другой автобус
            PositionError: геолокация не поддерживается (до любых записей в БД)
        """
        from_destination = from_destination.strip()
        to_destination = to_destination.strip()
        if not from_destination or not to_destination:
            raise ValueError("Нужно указать начальную и конечную точки")

        session = self.registry.get_or_create(conductor.id).session
        if session.is_watching and session.bus_id != bus_id:
            raise TrackingStateError(
                f"Кондуктор {conductor.id} отслеживает другой автобус: {session.bus_id}"
            )
        if not session.is_watching and not session.sampler.is_supported:
            raise PositionError(PositionErrorCode.UNSUPPORTED)

        bus = await self.repository.set_route(bus_id, from_destination, to_destination)
        if not session.is_watching:
            session.start(bus_id)
            session.seed()

        await self.publisher.bus_changed(bus)
        await self.event_bus.publish(RouteChanged(
            bus_id=bus_id,
            from_destination=from_destination,
            to_destination=to_destination,
        ))
        return bus

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    async def list_buses(self) -> list[BusSnapshot]:
        return await self.repository.list_buses()

    async def search(
        self,
        from_query: str | None,
        to_query: str | None,
        user_id: str | None = None,
    ) -> list[BusSnapshot]:
        """Поиск по маршруту; при наличии пользователя запрос попадает в историю."""
        buses = await self.repository.list_buses()
        found = search_buses(buses, from_query, to_query)

        if user_id and self.history is not None and from_query and to_query:
            await self.history.add(user_id, from_query, to_query)
        return found

    async def get_search_history(self, user_id: str) -> list[SearchQuery]:
        if self.history is None:
            return []
        return await self.history.get(user_id)

    async def get_latest_location(self, bus_id: str) -> LocationRecord | None:
        return await self.repository.get_latest_location(bus_id)

    async def get_profile(self, user_id: str) -> Profile | None:
        return await self.repository.get_profile(user_id)

    def get_stats(self) -> dict[str, int]:
        return {
            **self.registry.get_stats(),
            "events_published": self.event_bus.published_count,
        }
