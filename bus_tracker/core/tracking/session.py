# bus_tracker/core/tracking/session.py
"""
Сессия трекинга кондуктора.

Состояния: IDLE (начальное и конечное) и WATCHING. В WATCHING каждая
фиксация проходит через троттл; принятые превращаются в LocationRecord
и отдаются в хранилище без ожидания записи.
"""

from __future__ import annotations

import asyncio
import math
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Protocol

from bus_tracker.common.constants import MAX_ACCURACY_METERS, TypeMsg
from bus_tracker.common.exceptions import PositionError, PositionErrorCode, WriteFailedError
from bus_tracker.common.logger import log_error, log_info
from bus_tracker.core.tracking.sampler import PositionSampler, monotonic_ms
from bus_tracker.core.tracking.throttle import LocationUpdateThrottle
from bus_tracker.shared.models.bus import LocationRecord
from bus_tracker.shared.models.position import Position


class SessionStatus(str, Enum):
    """Состояние сессии трекинга."""
    IDLE = "idle"
    WATCHING = "watching"


class LocationSink(Protocol):
    """Хранилище, в которое сессия добавляет записи о местоположении."""

    async def insert_location(self, record: LocationRecord) -> None: ...


# Уведомление пользователю: (заголовок, текст)
Notifier = Callable[[str, str], Awaitable[None]]


def build_location_record(
    position: Position,
    bus_id: str,
    trip_id: str | None,
    max_accuracy: float = MAX_ACCURACY_METERS,
    recorded_at: datetime | None = None,
) -> LocationRecord:
    """
    Собирает LocationRecord из фиксации.

    Точность ограничивается max_accuracy (нечисловая отбрасывается),
    отсутствующая скорость становится 0, курс передаётся как есть.
    """
    accuracy = position.accuracy
    if accuracy is not None:
        accuracy = min(accuracy, max_accuracy) if math.isfinite(accuracy) else None

    return LocationRecord(
        bus_id=bus_id,
        trip_id=trip_id,
        latitude=position.latitude,
        longitude=position.longitude,
        accuracy=accuracy,
        speed=position.speed or 0.0,
        heading=position.heading,
        recorded_at=recorded_at or datetime.now(timezone.utc),
    )


class TrackingSession:
    """
    Сессия трекинга одного автобуса.

    Вся работа идёт в одном event loop: колбэки сэмплера синхронные,
    запись в хранилище запускается отдельной задачей. Номер поколения
    увеличивается при каждом start/stop, и фиксация, доставленная для
    старого поколения, игнорируется.
    """

    def __init__(
        self,
        sampler: PositionSampler,
        sink: LocationSink,
        throttle: LocationUpdateThrottle | None = None,
        notifier: Notifier | None = None,
        clock: Callable[[], float] = monotonic_ms,
        max_accuracy: float = MAX_ACCURACY_METERS,
    ) -> None:
        self._sampler = sampler
        self._sink = sink
        self._throttle = throttle or LocationUpdateThrottle()
        self._notifier = notifier
        self._clock = clock
        self._max_accuracy = max_accuracy

        self._status = SessionStatus.IDLE
        self._bus_id: str | None = None
        self._trip_id: str | None = None
        self._generation = 0
        self._pending: set[asyncio.Task] = set()
        self._seed_task: asyncio.Task | None = None

        self._records_written = 0
        self._samples_dropped = 0
        self._write_failures = 0

    # =========================================================================
    # СВОЙСТВА
    # =========================================================================

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def is_watching(self) -> bool:
        return self._status == SessionStatus.WATCHING

    @property
    def bus_id(self) -> str | None:
        return self._bus_id

    @property
    def trip_id(self) -> str | None:
        return self._trip_id

    @property
    def sampler(self) -> PositionSampler:
        return self._sampler

    @property
    def throttle(self) -> LocationUpdateThrottle:
        return self._throttle

    @property
    def pending_writes(self) -> int:
        return len(self._pending)

    # =========================================================================
    # ЖИЗНЕННЫЙ ЦИКЛ
    # =========================================================================

    def start(self, bus_id: str, trip_id: str | None = None) -> None:
        """
        IDLE → WATCHING: включает непрерывное получение координат.

        Повторный вызов в WATCHING перезапускает наблюдение для новых
        bus_id/trip_id.

        Raises:
            PositionError: UNSUPPORTED, если у устройства нет геолокации
        """
        self._generation += 1
        generation = self._generation
        self._cancel_seed()

        self._sampler.start_watching(
            lambda position: self._on_position(generation, position),
            lambda error: self._on_error(generation, error),
        )

        self._bus_id = bus_id
        self._trip_id = trip_id
        self._status = SessionStatus.WATCHING

    def stop(self) -> None:
        """WATCHING → IDLE. В IDLE ничего не делает."""
        if self._status == SessionStatus.IDLE:
            return

        # Поколение меняется до отмены подписки: фиксация, уже находящаяся
        # в пути, не создаст запись
        self._generation += 1
        self._cancel_seed()
        self._sampler.stop_watching()
        self._status = SessionStatus.IDLE

    def seed(self) -> None:
        """
        Разовый запрос координат сразу после старта.

        Первая точка появляется, не дожидаясь наблюдения. Результат проходит
        через тот же троттл, что и фиксации наблюдения. В IDLE ничего не делает.
        """
        if self._status != SessionStatus.WATCHING:
            return
        self._cancel_seed()
        self._seed_task = asyncio.get_running_loop().create_task(self._seed(self._generation))
        self._pending.add(self._seed_task)
        self._seed_task.add_done_callback(self._pending.discard)

    def _cancel_seed(self) -> None:
        if self._seed_task is not None and not self._seed_task.done():
            self._seed_task.cancel()
        self._seed_task = None

    async def drain(self) -> None:
        """Дожидается завершения уже запущенных записей и разового запроса."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # =========================================================================
    # ОБРАБОТКА ФИКСАЦИЙ
    # =========================================================================

    def _on_position(self, generation: int, position: Position) -> None:
        if generation != self._generation or self._status != SessionStatus.WATCHING:
            return

        if not self._throttle.can_emit(self._clock()):
            self._samples_dropped += 1
            return

        record = build_location_record(
            position,
            bus_id=self._bus_id or "",
            trip_id=self._trip_id,
            max_accuracy=self._max_accuracy,
        )
        task = asyncio.get_running_loop().create_task(self._write(record))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _on_error(self, generation: int, error: PositionError) -> None:
        if generation != self._generation or self._status != SessionStatus.WATCHING:
            return
        task = asyncio.get_running_loop().create_task(self._report_sampling_error(error))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _seed(self, generation: int) -> None:
        try:
            position = await self._sampler.get_current_position()
        except PositionError as e:
            # Ошибки устройства приходят и в наблюдение, о них сообщит _on_error
            if e.code != PositionErrorCode.TIMEOUT:
                return
            if generation == self._generation and self._status == SessionStatus.WATCHING:
                await self._report_sampling_error(e)
            return
        self._on_position(generation, position)

    async def _write(self, record: LocationRecord) -> None:
        """Запись одной точки. Неудача не повторяется: следующая попытка будет через окно троттла."""
        try:
            await self._sink.insert_location(record)
            self._records_written += 1
        except Exception as e:
            self._write_failures += 1
            await log_error(
                f"Не удалось сохранить местоположение автобуса {record.bus_id}: {e}",
                extra={"bus_id": record.bus_id, "trip_id": record.trip_id},
                exc_info=not isinstance(e, WriteFailedError),
            )
            await self._notify("Location Error", "Failed to save bus location")

    async def _report_sampling_error(self, error: PositionError) -> None:
        await log_info(
            f"Ошибка геолокации для автобуса {self._bus_id}: {error.code.value}",
            type_msg=TypeMsg.WARNING,
            extra={"bus_id": self._bus_id, "code": error.code.value},
        )
        await self._notify("Location Error", error.message)

    async def _notify(self, title: str, description: str) -> None:
        if self._notifier is None:
            return
        try:
            await self._notifier(title, description)
        except Exception as e:
            await log_error(f"Не удалось отправить уведомление: {e}")

    def get_stats(self) -> dict[str, int | str | None]:
        """Статистика сессии."""
        return {
            "status": self._status.value,
            "bus_id": self._bus_id,
            "trip_id": self._trip_id,
            "records_written": self._records_written,
            "samples_dropped": self._samples_dropped,
            "write_failures": self._write_failures,
        }
