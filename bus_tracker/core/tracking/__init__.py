# bus_tracker/core/tracking/__init__.py
"""
Трекинг автобусов: троттл, сэмплер геопозиции, сессия кондуктора
и согласование отображаемого местоположения у пассажира.
"""

from bus_tracker.core.tracking.throttle import LocationUpdateThrottle, ThrottleState
from bus_tracker.core.tracking.sampler import (
    PositionOptions,
    PositionProvider,
    PositionSampler,
    PushPositionProvider,
)
from bus_tracker.core.tracking.session import (
    SessionStatus,
    TrackingSession,
    build_location_record,
)
from bus_tracker.core.tracking.reconciliation import (
    LiveBusView,
    LiveViewState,
    ViewStatus,
    reconcile,
)

__all__ = [
    "LocationUpdateThrottle",
    "ThrottleState",
    "PositionOptions",
    "PositionProvider",
    "PositionSampler",
    "PushPositionProvider",
    "SessionStatus",
    "TrackingSession",
    "build_location_record",
    "LiveBusView",
    "LiveViewState",
    "ViewStatus",
    "reconcile",
]
