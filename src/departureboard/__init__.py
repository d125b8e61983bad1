"""departureboard - Live GTFS-Realtime departure board for transit stations."""

__version__ = "0.1.0"

from .models import DepartureRecord, Route, ScheduleCandidate, StationDepartures, Stop
from .schedule_index import ScheduleIndex
from .station_resolver import StationResolver
from .feed_cache import FeedCache
from .feed_decoder import FeedDecodeError, FeedError
from .reconciler import Reconciler
from .station_board import StationBoard

__all__ = [
    "StationBoard",
    "Reconciler",
    "ScheduleIndex",
    "StationResolver",
    "FeedCache",
    "FeedError",
    "FeedDecodeError",
    "Stop",
    "Route",
    "ScheduleCandidate",
    "DepartureRecord",
    "StationDepartures",
]
