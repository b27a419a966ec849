# bus_tracker/__init__.py
"""
Bus Tracker — отслеживание автобусов в реальном времени.

Кондукторы передают GPS-координаты назначенного автобуса, пассажиры
ищут маршруты и наблюдают маркер автобуса на карте.
"""

__version__ = "1.0.0"
