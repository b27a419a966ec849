# tests/conftest.py
"""
Общие фикстуры и настройки для тестов.
"""

from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

# Устанавливаем переменные окружения перед импортом модулей
os.environ.setdefault("DB_PASSWORD", "test_password")
os.environ.setdefault("REDIS_PASSWORD", "")

from bus_tracker.common.constants import BusStatus, UserRole
from bus_tracker.shared.models.bus import BusSnapshot, LocationRecord, Profile, Trip
from bus_tracker.shared.models.position import Position

BUS_ID = "11111111-1111-1111-1111-111111111111"
OTHER_BUS_ID = "22222222-2222-2222-2222-222222222222"
TRIP_ID = "33333333-3333-3333-3333-333333333333"
CONDUCTOR_ID = "44444444-4444-4444-4444-444444444444"
PASSENGER_ID = "55555555-5555-5555-5555-555555555555"


class FakeClock:
    """Управляемые часы в миллисекундах."""

    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


# =============================================================================
# ФИКСТУРЫ КОНФИГУРАЦИИ
# =============================================================================

@pytest.fixture(scope="session")
def project_root() -> Path:
    """Корневая директория проекта."""
    return Path(__file__).parent.parent


@pytest.fixture(scope="session")
def config_path(project_root: Path) -> Path:
    """Путь к файлу конфигурации."""
    return project_root / "config" / "config.json"


@pytest.fixture
def mock_config() -> dict[str, Any]:
    """Мок конфигурации для тестов."""
    return {
        "_comment_system": "Системные настройки",
        "PROJECT_NAME": "bus_tracker_test",
        "VERSION": "1.0.0-test",
        "DEBUG": True,
        "LOG_LEVEL": "DEBUG",
        "ENVIRONMENT": "test",
        "LOG_TO_FILE": False,
        "LOG_FILE_PATH": "logs/test.log",
        "LOG_FORMAT": "json",
        "TRACKING_SERVICE_PORT": 9090,
        "REALTIME_WS_GATEWAY_PORT": 9089,
        "DB_HOST": "localhost",
        "DB_PORT": 5432,
        "DB_NAME": "bus_tracker_test",
        "DB_USER": "postgres",
        "DB_PASSWORD": "test_password",
        "DB_MIN_POOL_SIZE": 2,
        "DB_MAX_POOL_SIZE": 5,
        "REDIS_HOST": "localhost",
        "REDIS_PORT": 6379,
        "REDIS_DB": 1,
        "REDIS_PASSWORD": "",
        "REDIS_NAMESPACE": "bus_test",
        "RABBITMQ_HOST": "localhost",
        "RABBITMQ_PORT": 5672,
        "RABBITMQ_USER": "guest",
        "RABBITMQ_PASSWORD": "guest",
        "RABBITMQ_VHOST": "/",
        "RABBITMQ_EXCHANGE": "bus.test",
        "TRACKING": {
            "MIN_INTERVAL_MS": 2000,
            "MAX_ACCURACY_METERS": 500.0,
            "HIGH_ACCURACY": False,
            "POSITION_TIMEOUT_MS": 10000,
            "MAX_FIX_AGE_MS": 1000,
            "SEARCH_HISTORY_SIZE": 3,
            "RESUBSCRIBE_DELAY": 0.5,
        },
    }


@pytest.fixture
def temp_config_file(tmp_path: Path, mock_config: dict[str, Any]) -> Path:
    """Создаёт временный файл конфигурации."""
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps(mock_config, ensure_ascii=False, indent=2), encoding="utf-8")
    return config_file


# =============================================================================
# ФИКСТУРЫ ИНФРАСТРУКТУРЫ (МОКИ)
# =============================================================================

@pytest.fixture
def mock_db() -> AsyncMock:
    """Мок менеджера базы данных."""
    db = AsyncMock()
    db.fetchrow = AsyncMock(return_value=None)
    db.fetch = AsyncMock(return_value=[])
    db.execute = AsyncMock(return_value="INSERT 0 1")
    db.fetchval = AsyncMock(return_value=None)
    return db


@pytest.fixture
def mock_redis() -> AsyncMock:
    """Мок клиента Redis."""
    redis = AsyncMock()
    redis.publish = AsyncMock(return_value=1)
    redis.list_push_unique = AsyncMock(return_value=None)
    redis.list_range = AsyncMock(return_value=[])
    redis.pubsub = MagicMock()
    return redis


@pytest.fixture
def mock_event_bus() -> AsyncMock:
    """Мок шины событий."""
    event_bus = AsyncMock()
    event_bus.publish = AsyncMock(return_value=True)
    event_bus.is_connected = True
    event_bus.published_count = 0
    return event_bus


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


# =============================================================================
# ФИКСТУРЫ МОДЕЛЕЙ
# =============================================================================

@pytest.fixture
def make_position():
    """Фабрика фиксаций."""
    def _make(
        latitude: float = 52.52,
        longitude: float = 13.405,
        accuracy: float | None = 10.0,
        speed: float | None = 8.5,
        heading: float | None = 90.0,
    ) -> Position:
        return Position(
            latitude=latitude,
            longitude=longitude,
            accuracy=accuracy,
            speed=speed,
            heading=heading,
        )
    return _make


@pytest.fixture
def make_record():
    """Фабрика записей bus_locations с заданным временем (секунды от эпохи)."""
    def _make(
        recorded_at: float,
        bus_id: str = BUS_ID,
        latitude: float = 52.52,
        longitude: float = 13.405,
    ) -> LocationRecord:
        return LocationRecord(
            bus_id=bus_id,
            trip_id=TRIP_ID,
            latitude=latitude,
            longitude=longitude,
            accuracy=5.0,
            speed=0.0,
            recorded_at=datetime.fromtimestamp(recorded_at, tz=timezone.utc),
        )
    return _make


@pytest.fixture
def sample_bus_data() -> dict[str, Any]:
    """Пример строки таблицы buses."""
    return {
        "id": BUS_ID,
        "bus_number": "B-101",
        "route_name": "Central Line",
        "status": "inactive",
        "from_destination": "Central Station",
        "to_destination": "Airport",
        "stops": ["Market Square", "University"],
        "capacity": 50,
        "conductor_id": CONDUCTOR_ID,
        "updated_at": datetime.now(timezone.utc),
    }


@pytest.fixture
def sample_bus(sample_bus_data: dict[str, Any]) -> BusSnapshot:
    return BusSnapshot(**sample_bus_data)


@pytest.fixture
def sample_trip() -> Trip:
    return Trip(
        id=TRIP_ID,
        bus_id=BUS_ID,
        conductor_id=CONDUCTOR_ID,
        started_at=datetime.now(timezone.utc),
        is_active=True,
    )


@pytest.fixture
def conductor() -> Profile:
    return Profile(
        id=CONDUCTOR_ID,
        email="conductor@example.com",
        full_name="Анна Кондуктор",
        role=UserRole.CONDUCTOR,
    )


@pytest.fixture
def passenger() -> Profile:
    return Profile(
        id=PASSENGER_ID,
        email="passenger@example.com",
        full_name="Пётр Пассажир",
        role=UserRole.PASSENGER,
    )


@pytest.fixture
def active_bus(sample_bus_data: dict[str, Any]) -> BusSnapshot:
    return BusSnapshot(**{**sample_bus_data, "status": BusStatus.ACTIVE})
