# bus_tracker/services/realtime_ws/__init__.py
"""
Realtime WebSocket Gateway: live-местоположение автобусов для пассажиров.
"""
