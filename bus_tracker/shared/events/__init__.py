# bus_tracker/shared/events/__init__.py
"""
Доменные события и события realtime-канала.
"""

from bus_tracker.shared.events.base import DomainEvent, EventMetadata
from bus_tracker.shared.events.change_events import ChangeEvent
from bus_tracker.shared.events.trip_events import RouteChanged, TripEnded, TripStarted

__all__ = [
    "DomainEvent",
    "EventMetadata",
    "ChangeEvent",
    "RouteChanged",
    "TripEnded",
    "TripStarted",
]
