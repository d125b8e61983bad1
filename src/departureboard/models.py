"""Data models for the departure board."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from .timeutil import iso_utc


@dataclass(frozen=True)
class Stop:
    """A stop or station from stops.txt."""
    stop_id: str
    name: str
    parent_station: Optional[str] = None


@dataclass(frozen=True)
class Route:
    """A route from routes.txt."""
    route_id: str
    short_name: Optional[str] = None
    long_name: Optional[str] = None

    @property
    def display_name(self) -> Optional[str]:
        """Short and long name joined with a space, either may be missing."""
        parts = [p for p in (self.short_name, self.long_name) if p]
        return " ".join(parts) if parts else None


@dataclass(frozen=True)
class ScheduleCandidate:
    """A scheduled visit offered by the route-based fallback."""
    time: str  # HH:MM:SS, hours may exceed 23
    trip_id: str
    route_id: str


class ScheduleRelationship(Enum):
    SCHEDULED = 0
    SKIPPED = 1
    NO_DATA = 2
    UNSCHEDULED = 3


@dataclass(frozen=True)
class StopTimeEvent:
    """Predicted arrival or departure at a stop."""
    time: Any = None  # epoch seconds, possibly split into low/high words
    delay: Optional[int] = None  # seconds, None when the feed omits it


@dataclass(frozen=True)
class StopTimeUpdate:
    stop_id: str
    arrival: Optional[StopTimeEvent] = None
    departure: Optional[StopTimeEvent] = None
    schedule_relationship: ScheduleRelationship = ScheduleRelationship.SCHEDULED


@dataclass(frozen=True)
class TripDescriptor:
    trip_id: str
    route_id: str
    headsign: Optional[str] = None


@dataclass(frozen=True)
class TripUpdateEntity:
    entity_id: str
    trip: TripDescriptor
    stop_time_updates: Tuple[StopTimeUpdate, ...] = ()
    kind: str = field(default="trip_update", init=False)


@dataclass(frozen=True)
class VehiclePositionEntity:
    entity_id: str
    trip_id: Optional[str] = None
    stop_id: Optional[str] = None
    kind: str = field(default="vehicle", init=False)


@dataclass(frozen=True)
class AlertEntity:
    entity_id: str
    header: str = ""
    route_ids: Tuple[str, ...] = ()
    kind: str = field(default="alert", init=False)


RealtimeEntity = Union[TripUpdateEntity, VehiclePositionEntity, AlertEntity]


@dataclass(frozen=True)
class FeedSnapshot:
    """Most recent decoded feed and the time its fetch started."""
    fetched_at: float  # Unix timestamp
    entities: Tuple[RealtimeEntity, ...]


@dataclass
class DepartureRecord:
    """One reconciled departure for a station."""
    trip_id: str
    route_id: str
    route_name: Optional[str]
    headsign: Optional[str]
    stop_id: str
    stop_name: Optional[str]
    scheduled: Optional[str]  # HH:MM:SS
    predicted: Optional[str]  # ISO 8601 UTC
    predicted_local: Optional[str]  # HH:MM:SS in station time
    predicted_ts: Optional[int]  # epoch milliseconds
    event_type: str  # "arrival", "departure" or "unknown"
    status: str
    delay_seconds: Optional[int]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tripId": self.trip_id,
            "routeId": self.route_id,
            "routeName": self.route_name,
            "headsign": self.headsign,
            "stopId": self.stop_id,
            "stopName": self.stop_name,
            "scheduled": self.scheduled,
            "predicted": self.predicted,
            "predictedLocal": self.predicted_local,
            "predictedTs": self.predicted_ts,
            "eventType": self.event_type,
            "status": self.status,
            "delaySeconds": self.delay_seconds,
        }


@dataclass
class StationDepartures:
    """Departures for a station, truncated to the requested count."""
    station_id: str
    total: int  # matching records before truncation
    results: List[DepartureRecord]
    fetched_at: Optional[float]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stationId": self.station_id,
            "count": self.total,
            "results": [r.to_dict() for r in self.results],
            "fetchedAt": iso_utc(self.fetched_at) if self.fetched_at is not None else None,
        }
