# bus_tracker/services/tracking/publisher.py
"""
Публикация изменений buses / bus_locations в Redis-каналы changes:*.

Подписчики (realtime gateway) получают {table, operation, new_row}.
"""

from __future__ import annotations

from bus_tracker.common.constants import ChangeOperation, ChangeTable, TypeMsg
from bus_tracker.common.logger import log_error, log_info
from bus_tracker.infra.redis_client import RedisClient
from bus_tracker.shared.events.change_events import ChangeEvent
from bus_tracker.shared.models.bus import BusSnapshot, LocationRecord


class ChangeFeedPublisher:
    """
    Издатель канала изменений.

    Доставка best-effort: ошибка Redis логируется, запись в БД
    при этом уже состоялась и не откатывается.
    """

    def __init__(self, redis: RedisClient) -> None:
        self._redis = redis

    async def publish(self, event: ChangeEvent) -> bool:
        try:
            receivers = await self._redis.publish(event.channel, event.model_dump_json())
        except Exception as e:
            await log_error(
                f"Не удалось опубликовать изменение {event.table.value}: {e}",
                extra={"bus_id": event.bus_id},
            )
            return False

        await log_info(
            f"Изменение {event.table.value}/{event.operation.value} → {receivers} подписчиков",
            type_msg=TypeMsg.DEBUG,
        )
        return True

    async def bus_changed(self, bus: BusSnapshot) -> bool:
        return await self.publish(ChangeEvent(
            table=ChangeTable.BUSES,
            operation=ChangeOperation.UPDATE,
            new_row=bus.model_dump(mode="json"),
        ))

    async def location_inserted(self, record: LocationRecord) -> bool:
        return await self.publish(ChangeEvent(
            table=ChangeTable.BUS_LOCATIONS,
            operation=ChangeOperation.INSERT,
            new_row=record.model_dump(mode="json"),
        ))


class PublishingLocationSink:
    """Хранилище для TrackingSession: вставка в bus_locations и публикация в канал."""

    def __init__(self, repository, publisher: ChangeFeedPublisher) -> None:
        self._repository = repository
        self._publisher = publisher

    async def insert_location(self, record: LocationRecord) -> None:
        stored = await self._repository.insert_location(record)
        await self._publisher.location_inserted(stored)
