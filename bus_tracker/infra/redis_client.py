# bus_tracker/infra/redis_client.py
"""
Клиент Redis.

Используется для канала изменений (Pub/Sub changes:*) и истории поиска
пассажиров (списки). Ключи хранения префиксуются namespace, каналы Pub/Sub нет.
"""

from __future__ import annotations

import json
from typing import Any

import redis.asyncio as redis
from redis.asyncio.client import PubSub

from bus_tracker.common.constants import TypeMsg
from bus_tracker.common.logger import get_logger, log_error, log_info

logger = get_logger("redis")


class RedisClient:
    """Singleton-обёртка над redis.asyncio."""

    _instance: RedisClient | None = None
    _client: redis.Redis | None = None

    def __new__(cls) -> RedisClient:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        if hasattr(self, "_initialized"):
            return
        self._initialized = True
        self._client = None
        self._namespace = "bus"

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            raise RuntimeError("Redis не подключён, сначала вызовите connect()")
        return self._client

    @property
    def namespace(self) -> str:
        return self._namespace

    def _make_key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    async def connect(
        self,
        url: str,
        max_connections: int = 50,
        namespace: str | None = None,
    ) -> None:
        if self._client is not None:
            return
        if namespace:
            self._namespace = namespace

        await log_info("Подключение к Redis...", type_msg=TypeMsg.INFO)
        self._client = redis.from_url(
            url,
            max_connections=max_connections,
            decode_responses=True,
        )
        await self._client.ping()

    async def disconnect(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # =========================================================================
    # СПИСКИ (история поиска)
    # =========================================================================

    async def list_push_unique(self, key: str, value: str, max_len: int) -> None:
        """
        Ставит значение в начало списка без дублей и обрезает список до max_len.

        LREM, LPUSH и LTRIM выполняются одной транзакцией MULTI/EXEC.
        """
        full_key = self._make_key(key)
        pipe = self.client.pipeline(transaction=True)
        pipe.lrem(full_key, 0, value)
        pipe.lpush(full_key, value)
        pipe.ltrim(full_key, 0, max_len - 1)
        await pipe.execute()

    async def list_range(self, key: str, start: int = 0, end: int = -1) -> list[str]:
        return await self.client.lrange(self._make_key(key), start, end)

    # =========================================================================
    # PUB/SUB
    # =========================================================================

    async def publish(self, channel: str, message: str | dict[str, Any]) -> int:
        """
        Публикует сообщение в канал.

        Returns:
            Количество получивших подписчиков
        """
        if not isinstance(message, str):
            message = json.dumps(message, ensure_ascii=False, default=str)
        return await self.client.publish(channel, message)

    def pubsub(self) -> PubSub:
        return self.client.pubsub()

    async def health_check(self) -> bool:
        try:
            return await self.client.ping()
        except Exception as e:
            await log_error(f"Health check Redis: {e}")
            return False


def get_redis() -> RedisClient:
    return RedisClient()


async def init_redis() -> RedisClient:
    """Подключается к Redis по настройкам."""
    from bus_tracker.config import settings

    redis_settings = settings.redis
    redis_client = get_redis()
    await redis_client.connect(
        url=redis_settings.url,
        max_connections=redis_settings.REDIS_MAX_CONNECTIONS,
        namespace=redis_settings.REDIS_NAMESPACE,
    )
    await log_info(
        f"Redis подключён: {redis_settings.REDIS_HOST}:{redis_settings.REDIS_PORT}/{redis_settings.REDIS_DB}",
        type_msg=TypeMsg.INFO,
    )
    return redis_client


async def close_redis() -> None:
    await get_redis().disconnect()
    await log_info("Redis отключён", type_msg=TypeMsg.INFO)
