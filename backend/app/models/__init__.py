from .tracking_sessions import TrackingSession
from .tracking_events import TrackingEvent
from .funnels import Funnel, FunnelStep

__all__ = [
    "TrackingSession",
    "TrackingEvent",
    "Funnel",
    "FunnelStep",
]
