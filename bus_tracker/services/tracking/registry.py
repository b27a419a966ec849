# bus_tracker/services/tracking/registry.py
"""
Реестр сессий трекинга: одна сессия на кондуктора.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import partial
from typing import TYPE_CHECKING, Callable

from bus_tracker.common.constants import TypeMsg
from bus_tracker.common.logger import log_info, log_warning
from bus_tracker.core.tracking.sampler import PositionOptions, PositionSampler, PushPositionProvider
from bus_tracker.core.tracking.session import LocationSink, TrackingSession
from bus_tracker.core.tracking.throttle import LocationUpdateThrottle

if TYPE_CHECKING:
    from fastapi import WebSocket


@dataclass
class TrackingEntry:
    """Сессия кондуктора и источник координат, который питает её из WebSocket."""
    conductor_id: str
    provider: PushPositionProvider
    session: TrackingSession
    websocket: "WebSocket | None" = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    async def notify(self, title: str, description: str) -> None:
        """Уведомление кондуктору. Без подключения только пишется в лог."""
        if self.websocket is None:
            await log_warning(
                f"[{self.conductor_id}] {title}: {description} (нет подключения)"
            )
            return
        await self.websocket.send_json({
            "type": "notification",
            "title": title,
            "description": description,
            "variant": "destructive",
        })


class SessionRegistry:
    """
    Хранит TrackingEntry по conductor_id.

    Запись создаётся при первом обращении и удаляется при завершении
    поездки (сессия при этом останавливается).
    """

    def __init__(
        self,
        sink: LocationSink,
        min_interval_ms: int = 5000,
        max_accuracy: float = 999.99,
        options: PositionOptions | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._sink = sink
        self._min_interval_ms = min_interval_ms
        self._max_accuracy = max_accuracy
        self._options = options or PositionOptions()
        self._clock = clock
        self._entries: dict[str, TrackingEntry] = {}
        # Сокеты живут дольше записей: поездка завершается, соединение остаётся
        self._sockets: dict[str, "WebSocket"] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, conductor_id: str) -> bool:
        return conductor_id in self._entries

    @property
    def options(self) -> PositionOptions:
        return self._options

    def get(self, conductor_id: str) -> TrackingEntry | None:
        return self._entries.get(conductor_id)

    def get_or_create(self, conductor_id: str) -> TrackingEntry:
        entry = self._entries.get(conductor_id)
        if entry is not None:
            return entry

        clock_kwargs = {} if self._clock is None else {"clock": self._clock}
        provider = PushPositionProvider(**clock_kwargs)
        session = TrackingSession(
            sampler=PositionSampler(provider, self._options),
            sink=self._sink,
            throttle=LocationUpdateThrottle(self._min_interval_ms),
            notifier=partial(self._notify, conductor_id),
            max_accuracy=self._max_accuracy,
            **clock_kwargs,
        )
        entry = TrackingEntry(
            conductor_id=conductor_id,
            provider=provider,
            session=session,
            websocket=self._sockets.get(conductor_id),
        )
        self._entries[conductor_id] = entry
        return entry

    def attach(self, conductor_id: str, websocket: "WebSocket") -> TrackingEntry:
        """Привязывает соединение кондуктора, в том числе к будущим сессиям."""
        self._sockets[conductor_id] = websocket
        entry = self.get_or_create(conductor_id)
        entry.websocket = websocket
        return entry

    def detach(self, conductor_id: str, websocket: "WebSocket") -> None:
        """Отвязывает соединение. Более новое соединение того же кондуктора не трогается."""
        if self._sockets.get(conductor_id) is websocket:
            del self._sockets[conductor_id]
        entry = self._entries.get(conductor_id)
        if entry is not None and entry.websocket is websocket:
            entry.websocket = None

    async def _notify(self, conductor_id: str, title: str, description: str) -> None:
        entry = self._entries.get(conductor_id)
        if entry is None:
            await log_warning(f"[{conductor_id}] {title}: {description}")
            return
        await entry.notify(title, description)

    async def remove(self, conductor_id: str) -> TrackingEntry | None:
        """Останавливает сессию, дожидается записей и удаляет запись реестра."""
        entry = self._entries.get(conductor_id)
        if entry is None:
            return None
        entry.session.stop()
        await entry.session.drain()
        self._entries.pop(conductor_id, None)
        await log_info(f"Сессия трекинга кондуктора {conductor_id} удалена", type_msg=TypeMsg.DEBUG)
        return entry

    async def close_all(self) -> None:
        for conductor_id in list(self._entries):
            await self.remove(conductor_id)

    def get_stats(self) -> dict[str, int]:
        return {
            "sessions": len(self._entries),
            "watching": sum(1 for e in self._entries.values() if e.session.is_watching),
            "connected": len(self._sockets),
        }
