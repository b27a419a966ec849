# bus_tracker/common/constants.py
"""
Общие константы и перечисления.
"""

from enum import Enum


class TypeMsg(str, Enum):
    """Типы сообщений для логирования."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class UserRole(str, Enum):
    """Роли пользователей."""
    CONDUCTOR = "conductor"
    PASSENGER = "passenger"
    ADMIN = "admin"

    def __str__(self) -> str:
        return self.value


class BusStatus(str, Enum):
    """Статусы автобуса."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    MAINTENANCE = "maintenance"

    def __str__(self) -> str:
        return self.value


class ChangeTable(str, Enum):
    """Таблицы, изменения которых транслируются в realtime-канал."""
    BUSES = "buses"
    BUS_LOCATIONS = "bus_locations"


class ChangeOperation(str, Enum):
    """Тип изменения строки."""
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


# Префикс Redis-каналов с изменениями таблиц
CHANGES_CHANNEL_PREFIX = "changes:"

# Максимальная точность фиксации, которую принимает колонка numeric(5,2)
MAX_ACCURACY_METERS = 999.99

# Максимальная правдоподобная скорость автобуса (км/ч)
MAX_SPEED_KMH = 200.0
