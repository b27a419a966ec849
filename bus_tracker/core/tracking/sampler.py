# bus_tracker/core/tracking/sampler.py
"""
Получение геопозиции устройства.

PositionProvider — возможность устройства отдавать координаты
(разовый запрос и непрерывное наблюдение). PositionSampler оборачивает
провайдера, приводит ошибки к PositionError и гарантирует не более
одной активной подписки.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable

from bus_tracker.common.exceptions import PositionError, PositionErrorCode
from bus_tracker.shared.models.position import Position


PositionCallback = Callable[[Position], None]
ErrorCallback = Callable[[PositionError], None]


def monotonic_ms() -> float:
    """Монотонные часы в миллисекундах."""
    return time.monotonic() * 1000


@dataclass(frozen=True)
class PositionOptions:
    """Параметры запроса геопозиции."""
    high_accuracy: bool = True
    timeout_ms: int = 30000
    max_fix_age_ms: int = 5000

    @classmethod
    def from_settings(cls) -> "PositionOptions":
        """Создаёт параметры из секции tracking конфига."""
        from bus_tracker.config import settings

        return cls(
            high_accuracy=settings.tracking.HIGH_ACCURACY,
            timeout_ms=settings.tracking.POSITION_TIMEOUT_MS,
            max_fix_age_ms=settings.tracking.MAX_FIX_AGE_MS,
        )


class PositionProvider(ABC):
    """Источник координат устройства."""

    @abstractmethod
    async def get_position(self, options: PositionOptions) -> Position:
        """Разовый запрос. Бросает PositionError."""

    @abstractmethod
    def watch(
        self,
        on_fix: PositionCallback,
        on_error: ErrorCallback,
        options: PositionOptions,
    ) -> int:
        """Регистрирует наблюдение и возвращает его идентификатор."""

    @abstractmethod
    def clear_watch(self, handle: int) -> None:
        """Отменяет наблюдение. Неизвестный идентификатор игнорируется."""


class PushPositionProvider(PositionProvider):
    """
    Провайдер, в который фиксации «вталкиваются» снаружи.

    Устройство кондуктора присылает координаты по WebSocket, обработчик
    соединения вызывает push_fix / push_error, а провайдер раздаёт их
    подписчикам и ожидающим разовым запросам.
    """

    def __init__(self, clock: Callable[[], float] = monotonic_ms) -> None:
        self._clock = clock
        self._watchers: dict[int, tuple[PositionCallback, ErrorCallback, PositionOptions]] = {}
        self._next_handle = 1
        self._waiters: set[asyncio.Future[Position]] = set()
        self._last_fix: Position | None = None
        self._last_fix_at: float | None = None

    @property
    def watcher_count(self) -> int:
        return len(self._watchers)

    @property
    def active_options(self) -> PositionOptions | None:
        """Параметры последней активной подписки (их нужно передать устройству)."""
        if not self._watchers:
            return None
        handle = max(self._watchers)
        return self._watchers[handle][2]

    async def get_position(self, options: PositionOptions) -> Position:
        if self._last_fix is not None and self._last_fix_at is not None:
            if self._clock() - self._last_fix_at <= options.max_fix_age_ms:
                return self._last_fix

        future: asyncio.Future[Position] = asyncio.get_running_loop().create_future()
        self._waiters.add(future)
        try:
            return await asyncio.wait_for(future, timeout=options.timeout_ms / 1000)
        except asyncio.TimeoutError:
            raise PositionError(PositionErrorCode.TIMEOUT) from None
        finally:
            self._waiters.discard(future)

    def watch(
        self,
        on_fix: PositionCallback,
        on_error: ErrorCallback,
        options: PositionOptions,
    ) -> int:
        handle = self._next_handle
        self._next_handle += 1
        self._watchers[handle] = (on_fix, on_error, options)
        return handle

    def clear_watch(self, handle: int) -> None:
        self._watchers.pop(handle, None)

    def push_fix(self, position: Position) -> None:
        """Новая фиксация от устройства."""
        self._last_fix = position
        self._last_fix_at = self._clock()

        for future in list(self._waiters):
            if not future.done():
                future.set_result(position)

        # Колбэк может отменить подписку, поэтому идём по копии
        for on_fix, _, _ in list(self._watchers.values()):
            on_fix(position)

    def push_error(self, code: PositionErrorCode | str, message: str | None = None) -> None:
        """Ошибка геолокации, о которой сообщило устройство."""
        error = PositionError(PositionErrorCode(code), message)

        for future in list(self._waiters):
            if not future.done():
                future.set_exception(error)

        for _, on_error, _ in list(self._watchers.values()):
            on_error(error)


class PositionSampler:
    """
    Разовое и непрерывное получение геопозиции.

    Держит не более одной подписки: повторный start_watching сначала
    отменяет предыдущую. Ошибки не повторяются внутри: решение о
    повторе принимает вызывающий код.
    """

    def __init__(
        self,
        provider: PositionProvider | None,
        options: PositionOptions | None = None,
    ) -> None:
        self._provider = provider
        self._options = options or PositionOptions()
        self._watch_handle: int | None = None

    @property
    def options(self) -> PositionOptions:
        return self._options

    @property
    def is_supported(self) -> bool:
        return self._provider is not None

    @property
    def is_watching(self) -> bool:
        return self._watch_handle is not None

    def _require_provider(self) -> PositionProvider:
        if self._provider is None:
            raise PositionError(PositionErrorCode.UNSUPPORTED)
        return self._provider

    async def get_current_position(self, options: PositionOptions | None = None) -> Position:
        """Разовый запрос геопозиции."""
        provider = self._require_provider()
        return await provider.get_position(options or self._options)

    def start_watching(self, on_position: PositionCallback, on_error: ErrorCallback) -> None:
        """
        Начинает непрерывное наблюдение.

        Raises:
            PositionError: UNSUPPORTED, если у устройства нет геолокации
        """
        provider = self._require_provider()
        self.stop_watching()
        self._watch_handle = provider.watch(on_position, on_error, self._options)

    def stop_watching(self) -> None:
        """Отменяет наблюдение. Без активной подписки ничего не делает."""
        if self._watch_handle is None:
            return
        if self._provider is not None:
            self._provider.clear_watch(self._watch_handle)
        self._watch_handle = None
