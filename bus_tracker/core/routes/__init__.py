# bus_tracker/core/routes/__init__.py
"""
Поиск маршрутов.
"""

from bus_tracker.core.routes.search import SearchHistory, SearchQuery, matches_route, search_buses

__all__ = ["SearchHistory", "SearchQuery", "matches_route", "search_buses"]
