# bus_tracker/core/routes/search.py
"""
Поиск автобусов по маршруту и история поиска пассажира.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Iterable

from bus_tracker.shared.models.bus import BusSnapshot

if TYPE_CHECKING:
    from bus_tracker.infra.redis_client import RedisClient


def _normalize(value: str | None) -> str:
    return (value or "").strip().lower()


def matches_route(bus: BusSnapshot, from_query: str | None, to_query: str | None) -> bool:
    """
    Проходит ли маршрут автобуса через указанные точки.

    Сравниваются целые названия (без учёта регистра и пробелов по краям).
    Если заданы обе точки, «откуда» должна встречаться раньше «куда».
    """
    search_from = _normalize(from_query)
    search_to = _normalize(to_query)
    if not search_from and not search_to:
        return False

    route = [_normalize(stop) for stop in bus.complete_route]

    if search_from and not search_to:
        return search_from in route
    if search_to and not search_from:
        return search_to in route

    if search_from not in route or search_to not in route:
        return False
    return route.index(search_from) < route.index(search_to)


def search_buses(
    buses: Iterable[BusSnapshot],
    from_query: str | None,
    to_query: str | None,
) -> list[BusSnapshot]:
    """Возвращает автобусы, маршрут которых подходит под запрос. Пустой запрос — пустой результат."""
    return [bus for bus in buses if matches_route(bus, from_query, to_query)]


@dataclass(frozen=True)
class SearchQuery:
    """Пара «откуда — куда» из истории поиска."""
    from_query: str
    to_query: str


class SearchHistory:
    """
    Последние поиски пассажира (уникальные, новые первыми).

    Хранится в Redis списком JSON-строк под ключом search_history:{user_id}.
    """

    KEY_PREFIX = "search_history:"

    def __init__(self, redis: "RedisClient", size: int = 5) -> None:
        self._redis = redis
        self._size = size

    def _key(self, user_id: str) -> str:
        return f"{self.KEY_PREFIX}{user_id}"

    async def add(self, user_id: str, from_query: str, to_query: str) -> list[SearchQuery]:
        """
        Добавляет поиск в историю.

        Запоминаются только поиски, где заданы обе точки.
        """
        if not from_query.strip() or not to_query.strip():
            return await self.get(user_id)

        entry = json.dumps(asdict(SearchQuery(from_query, to_query)), ensure_ascii=False)
        key = self._key(user_id)

        await self._redis.list_push_unique(key, entry, self._size)

        return await self.get(user_id)

    async def get(self, user_id: str) -> list[SearchQuery]:
        """Возвращает историю, новые первыми."""
        raw_items = await self._redis.list_range(self._key(user_id), 0, self._size - 1)
        history: list[SearchQuery] = []
        for raw in raw_items:
            try:
                history.append(SearchQuery(**json.loads(raw)))
            except (ValueError, TypeError):
                continue
        return history
