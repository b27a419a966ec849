# bus_tracker/services/realtime_ws/redis_subscriber.py
"""
Подписчик на Redis Pub/Sub канала изменений.

Слушает паттерн changes:* (changes:buses, changes:bus_locations).
При обрыве соединения сообщает об этом обработчику и переподписывается.
"""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from bus_tracker.common.constants import CHANGES_CHANNEL_PREFIX
from bus_tracker.common.exceptions import SubscriptionDroppedError
from bus_tracker.common.logger import log_error, log_info, log_warning

if TYPE_CHECKING:
    from bus_tracker.infra.redis_client import RedisClient

MessageHandler = Callable[[str, dict[str, Any]], Awaitable[None]]
DropHandler = Callable[[str], Awaitable[None]]

_CONNECTION_ERRORS = (RedisConnectionError, RedisTimeoutError, OSError)


def _decode(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value) if value is not None else ""


class RedisSubscriber:
    """
    Подписчик Pub/Sub с автоматической переподпиской.

    Между обрывом и восстановлением сообщения теряются: Redis Pub/Sub не
    хранит историю. Поэтому обработчик обрыва должен пометить данные как
    возможно устаревшие.
    """

    def __init__(
        self,
        redis: "RedisClient",
        message_handler: MessageHandler,
        drop_handler: DropHandler | None = None,
        patterns: tuple[str, ...] = (f"{CHANGES_CHANNEL_PREFIX}*",),
        resubscribe_delay: float = 1.0,
    ) -> None:
        self._redis = redis
        self._handler = message_handler
        self._drop_handler = drop_handler
        self._patterns = patterns
        self._resubscribe_delay = resubscribe_delay

        self._pubsub = None
        self._task: asyncio.Task | None = None
        self._running = False
        self._drops = 0
        self._messages = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def drop_count(self) -> int:
        return self._drops

    @property
    def message_count(self) -> int:
        return self._messages

    async def start(self) -> None:
        if self._running:
            return
        await self._subscribe()
        self._running = True
        self._task = asyncio.create_task(self._listen())
        await log_info(f"Подписка на {', '.join(self._patterns)}")

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self._close_pubsub()

    async def _subscribe(self) -> None:
        """Подписка на паттерны. При ошибке _pubsub остаётся None, следующий цикл повторит попытку."""
        pubsub = self._redis.pubsub()
        try:
            await pubsub.psubscribe(*self._patterns)
        except _CONNECTION_ERRORS:
            try:
                await pubsub.aclose()
            except _CONNECTION_ERRORS:
                pass
            raise
        self._pubsub = pubsub

    async def _close_pubsub(self) -> None:
        if self._pubsub is None:
            return
        pubsub, self._pubsub = self._pubsub, None
        try:
            await pubsub.punsubscribe()
            await pubsub.aclose()
        except _CONNECTION_ERRORS:
            # Соединение уже потеряно
            pass

    async def _listen(self) -> None:
        while self._running:
            try:
                message = await self._next_message()
                if message is None:
                    continue
                await self._process_message(message)

            except asyncio.CancelledError:
                raise
            except SubscriptionDroppedError as e:
                await self._handle_drop(e)
            except Exception as e:
                # Ошибка обработчика не должна останавливать подписку
                await log_error(f"Ошибка обработки сообщения Redis: {e}", exc_info=True)

    async def _next_message(self) -> dict[str, Any] | None:
        if self._pubsub is None:
            raise SubscriptionDroppedError("подписка не восстановлена")
        try:
            return await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
        except _CONNECTION_ERRORS as e:
            raise SubscriptionDroppedError(str(e)) from e

    async def _handle_drop(self, error: SubscriptionDroppedError) -> None:
        self._drops += 1
        await log_warning(f"Подписка Redis оборвалась: {error}")

        if self._drop_handler is not None:
            try:
                await self._drop_handler(str(error))
            except Exception as e:
                await log_error(f"Ошибка обработчика обрыва подписки: {e}")

        await asyncio.sleep(self._resubscribe_delay)
        await self._close_pubsub()
        try:
            await self._subscribe()
            await log_info("Подписка Redis восстановлена")
        except _CONNECTION_ERRORS as e:
            # Следующая итерация снова попадёт сюда
            await log_warning(f"Переподписка не удалась: {e}")

    async def _process_message(self, message: dict[str, Any]) -> None:
        if message.get("type") not in ("message", "pmessage"):
            return

        channel = _decode(message.get("channel"))
        raw = _decode(message.get("data"))
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            await log_warning(f"Не-JSON сообщение в канале {channel}")
            return

        self._messages += 1
        await self._handler(channel, data)
