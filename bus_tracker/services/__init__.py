# bus_tracker/services/__init__.py
"""
FastAPI-сервисы: tracking (кондукторы) и realtime_ws (пассажиры).
"""
