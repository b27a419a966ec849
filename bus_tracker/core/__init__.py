# bus_tracker/core/__init__.py
"""
Бизнес-логика без привязки к транспорту: трекинг и поиск маршрутов.
"""
