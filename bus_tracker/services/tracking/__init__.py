# bus_tracker/services/tracking/__init__.py
"""
Tracking Service: приём GPS от кондукторов, поездки, поиск маршрутов.
"""
