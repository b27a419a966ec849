# bus_tracker/infra/event_bus.py
"""
Шина доменных событий на базе RabbitMQ (topic exchange).

Публикует события поездок (trip.started, trip.ended, bus.route_changed).
Routing key совпадает с event_type.
"""

from __future__ import annotations

from datetime import datetime, timezone

import aio_pika
from aio_pika import ExchangeType, Message
from aio_pika.abc import AbstractChannel, AbstractExchange, AbstractRobustConnection

from bus_tracker.common.constants import TypeMsg
from bus_tracker.common.logger import get_logger, log_debug, log_error, log_info
from bus_tracker.shared.events.base import DomainEvent

logger = get_logger("event_bus")


class EventBus:
    """Singleton-издатель доменных событий."""

    _instance: EventBus | None = None
    _connection: AbstractRobustConnection | None = None
    _channel: AbstractChannel | None = None
    _exchange: AbstractExchange | None = None

    def __new__(cls) -> EventBus:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        if hasattr(self, "_initialized"):
            return
        self._initialized = True
        self._connection = None
        self._channel = None
        self._exchange = None
        self._exchange_name = "bus.events"
        self._published = 0

    @property
    def is_connected(self) -> bool:
        return self._connection is not None and not self._connection.is_closed

    @property
    def published_count(self) -> int:
        return self._published

    async def connect(
        self,
        url: str,
        exchange_name: str | None = None,
        prefetch_count: int = 10,
    ) -> None:
        if self.is_connected:
            return
        if exchange_name:
            self._exchange_name = exchange_name

        await log_info("Подключение к RabbitMQ...", type_msg=TypeMsg.INFO)

        self._connection = await aio_pika.connect_robust(url)
        self._channel = await self._connection.channel()
        await self._channel.set_qos(prefetch_count=prefetch_count)
        self._exchange = await self._channel.declare_exchange(
            self._exchange_name,
            ExchangeType.TOPIC,
            durable=True,
        )

    async def disconnect(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            self._channel = None
            self._exchange = None

    async def publish(self, event: DomainEvent) -> bool:
        """
        Публикует событие.

        Ошибки публикации логируются и не пробрасываются: доменная
        операция (старт/завершение поездки) к этому моменту уже сохранена.

        Returns:
            True если событие отправлено
        """
        if not self.is_connected or self._exchange is None:
            await log_error(f"RabbitMQ не подключён, событие {event.event_type} не отправлено")
            return False

        message = Message(
            body=event.to_json().encode(),
            content_type="application/json",
            message_id=event.event_id,
            timestamp=datetime.now(timezone.utc),
        )

        try:
            await self._exchange.publish(message, routing_key=event.event_type)
        except Exception as e:
            await log_error(f"Ошибка публикации {event.event_type}: {e}")
            return False

        self._published += 1
        await log_debug(f"Событие опубликовано: {event.event_type}")
        return True

    async def health_check(self) -> bool:
        return self.is_connected


_event_bus: EventBus | None = None


def get_event_bus() -> EventBus:
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
    return _event_bus


async def init_event_bus() -> EventBus:
    """Подключается к RabbitMQ по настройкам."""
    from bus_tracker.config import settings

    mq = settings.rabbitmq
    event_bus = get_event_bus()
    await event_bus.connect(
        url=mq.url,
        exchange_name=mq.RABBITMQ_EXCHANGE,
        prefetch_count=mq.RABBITMQ_PREFETCH_COUNT,
    )
    await log_info(f"RabbitMQ подключён: {mq.RABBITMQ_HOST}:{mq.RABBITMQ_PORT}", type_msg=TypeMsg.INFO)
    return event_bus


async def close_event_bus() -> None:
    await get_event_bus().disconnect()
    await log_info("RabbitMQ отключён", type_msg=TypeMsg.INFO)
