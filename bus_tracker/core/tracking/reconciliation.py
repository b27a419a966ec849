# bus_tracker/core/tracking/reconciliation.py
"""
Согласование отображаемого местоположения автобуса у пассажира.

Начальная загрузка и поток realtime-обновлений сводятся к сообщениям,
которые по одному применяются функцией reconcile. Состояние неизменяемо:
каждое сообщение возвращает новое.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Union

from bus_tracker.common.constants import BusStatus
from bus_tracker.shared.models.bus import BusSnapshot, LocationRecord


class ViewStatus(str, Enum):
    """Что сейчас показывает экран пассажира."""
    NO_SELECTION = "no_selection"
    LOADING = "loading"
    NO_DATA = "no_data"  # у автобуса ещё нет ни одной точки
    LIVE = "live"
    ERROR = "error"


# =============================================================================
# СООБЩЕНИЯ
# =============================================================================

@dataclass(frozen=True)
class BusSelected:
    bus_id: str | None


@dataclass(frozen=True)
class InitialFetchResolved:
    bus_id: str
    record: LocationRecord | None


@dataclass(frozen=True)
class InitialFetchFailed:
    bus_id: str
    error: str


@dataclass(frozen=True)
class LocationPushed:
    record: LocationRecord


@dataclass(frozen=True)
class BusChanged:
    bus: BusSnapshot


@dataclass(frozen=True)
class SubscriptionDropped:
    reason: str = ""


ViewMessage = Union[
    BusSelected,
    InitialFetchResolved,
    InitialFetchFailed,
    LocationPushed,
    BusChanged,
    SubscriptionDropped,
]


# =============================================================================
# СОСТОЯНИЕ
# =============================================================================

@dataclass(frozen=True)
class Marker:
    """То, что получает отрисовщик карты."""
    latitude: float
    longitude: float
    bus_status: BusStatus
    heading: float | None = None
    speed: float = 0.0
    recorded_at: str | None = None


@dataclass(frozen=True)
class LiveViewState:
    """Состояние экрана отслеживания одного автобуса."""
    bus_id: str | None = None
    status: ViewStatus = ViewStatus.NO_SELECTION
    location: LocationRecord | None = None
    bus: BusSnapshot | None = None
    error: str | None = None
    feed_connected: bool = True

    def marker(self) -> Marker | None:
        """Маркер для карты или None, если показывать нечего."""
        if self.location is None:
            return None
        bus_status = self.bus.status if self.bus is not None else BusStatus.ACTIVE
        return Marker(
            latitude=self.location.latitude,
            longitude=self.location.longitude,
            bus_status=bus_status,
            heading=self.location.heading,
            speed=self.location.speed,
            recorded_at=self.location.recorded_at.isoformat(),
        )


def _newest(current: LocationRecord | None, incoming: LocationRecord | None) -> LocationRecord | None:
    if incoming is None:
        return current
    if current is None or incoming.recorded_at > current.recorded_at:
        return incoming
    return current


def reconcile(state: LiveViewState, message: ViewMessage) -> LiveViewState:
    """Применяет одно сообщение к состоянию и возвращает новое состояние."""
    match message:
        case BusSelected(bus_id=bus_id):
            if bus_id is None:
                return LiveViewState()
            # Старый маркер сбрасывается сразу, не дожидаясь загрузки
            return LiveViewState(bus_id=bus_id, status=ViewStatus.LOADING)

        case InitialFetchResolved(bus_id=bus_id, record=record):
            if bus_id != state.bus_id:
                return state
            if record is not None and record.bus_id != state.bus_id:
                return state
            location = _newest(state.location, record)
            if location is None:
                return replace(state, status=ViewStatus.NO_DATA, error=None)
            return replace(state, location=location, status=ViewStatus.LIVE, error=None)

        case InitialFetchFailed(bus_id=bus_id, error=error):
            if bus_id != state.bus_id:
                return state
            # Уже пришедшее по push обновление важнее ошибки загрузки
            if state.location is not None:
                return replace(state, error=error)
            return replace(state, status=ViewStatus.ERROR, error=error)

        case LocationPushed(record=record):
            if state.bus_id is None or record.bus_id != state.bus_id:
                return state
            location = _newest(state.location, record)
            if location is state.location:
                return state
            return replace(
                state,
                location=location,
                status=ViewStatus.LIVE,
                error=None,
                feed_connected=True,
            )

        case BusChanged(bus=bus):
            if bus.id != state.bus_id:
                return state
            return replace(state, bus=bus, feed_connected=True)

        case SubscriptionDropped():
            if state.bus_id is None or not state.feed_connected:
                return state
            # Последнее известное местоположение остаётся на экране
            return replace(state, feed_connected=False)

    return state


class LiveBusView:
    """Держатель состояния для одного экрана пассажира."""

    def __init__(self) -> None:
        self._state = LiveViewState()

    @property
    def state(self) -> LiveViewState:
        return self._state

    def dispatch(self, message: ViewMessage) -> bool:
        """Применяет сообщение. Возвращает True, если состояние изменилось."""
        new_state = reconcile(self._state, message)
        if new_state is self._state:
            return False
        self._state = new_state
        return True
