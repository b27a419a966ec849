# bus_tracker/shared/models/position.py
"""
Геопозиция, полученная с устройства кондуктора.
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    """Текущее время в UTC."""
    return datetime.now(timezone.utc)


class Position(BaseModel):
    """
    Одна фиксация GPS.

    Неизменяема после создания: сэмплер создаёт её, сессия трекинга
    только читает и передаёт дальше.
    """

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    accuracy: float | None = Field(default=None, ge=0)  # метры
    speed: float | None = Field(default=None, ge=0)
    heading: float | None = Field(default=None, ge=0, lt=360)
    captured_at: datetime = Field(default_factory=utcnow)

    class Config:
        frozen = True
