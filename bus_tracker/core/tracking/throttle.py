# bus_tracker/core/tracking/throttle.py
"""
Ограничитель частоты отправки геопозиций.
"""

from __future__ import annotations

from dataclasses import dataclass


DEFAULT_MIN_INTERVAL_MS = 5000


@dataclass
class ThrottleState:
    """Состояние троттла. Принадлежит одному экземпляру LocationUpdateThrottle."""
    min_interval_ms: int
    last_emitted_at: float | None = None


class LocationUpdateThrottle:
    """
    Пропускает не более одной отправки за окно min_interval_ms.

    Время передаётся снаружи (миллисекунды), поэтому класс чистый
    и не зависит от часов.
    """

    def __init__(self, min_interval_ms: int = DEFAULT_MIN_INTERVAL_MS) -> None:
        if min_interval_ms < 0:
            raise ValueError("min_interval_ms не может быть отрицательным")
        self._state = ThrottleState(min_interval_ms=min_interval_ms)

    @property
    def min_interval_ms(self) -> int:
        return self._state.min_interval_ms

    @property
    def last_emitted_at(self) -> float | None:
        return self._state.last_emitted_at

    def can_emit(self, now_ms: float) -> bool:
        """
        Разрешена ли отправка в момент now_ms.

        При разрешении запоминает now_ms как момент последней отправки,
        при отказе состояние не меняется.
        """
        last = self._state.last_emitted_at
        if last is None or now_ms - last >= self._state.min_interval_ms:
            self._state.last_emitted_at = now_ms
            return True
        return False
