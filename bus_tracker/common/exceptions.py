# bus_tracker/common/exceptions.py
"""
Иерархия исключений приложения.
"""

from __future__ import annotations

from enum import Enum


class BusTrackerError(Exception):
    """Базовое исключение приложения."""


class PositionErrorCode(str, Enum):
    """Причины, по которым не удалось получить координаты."""
    PERMISSION_DENIED = "permission_denied"
    POSITION_UNAVAILABLE = "position_unavailable"
    TIMEOUT = "timeout"
    UNSUPPORTED = "unsupported"


POSITION_ERROR_MESSAGES: dict[PositionErrorCode, str] = {
    PositionErrorCode.PERMISSION_DENIED: (
        "Location access denied. Please enable location permissions in your browser settings."
    ),
    PositionErrorCode.POSITION_UNAVAILABLE: (
        "Location information unavailable. Please check your GPS settings."
    ),
    PositionErrorCode.TIMEOUT: "Location request timed out. Please try again.",
    PositionErrorCode.UNSUPPORTED: "Geolocation is not supported by this device.",
}


class PositionError(BusTrackerError):
    """Ошибка получения геопозиции."""

    def __init__(self, code: PositionErrorCode, message: str | None = None) -> None:
        self.code = PositionErrorCode(code)
        self.message = message or POSITION_ERROR_MESSAGES[self.code]
        super().__init__(self.message)


class WriteFailedError(BusTrackerError):
    """Хранилище отклонило вставку или обновление."""


class SubscriptionDroppedError(BusTrackerError):
    """Realtime-подписка оборвалась."""


class TrackingStateError(BusTrackerError):
    """Операция недопустима в текущем состоянии трекинга или поездки."""


class NotFoundError(BusTrackerError):
    """Сущность не найдена."""
