"""Reconciles real-time stop events against the static schedule."""

import logging
import math
import time
from dataclasses import dataclass
from datetime import timedelta, tzinfo
from typing import Callable, Iterable, List, Optional, Sequence

from .feed_cache import DEFAULT_TTL_SECONDS, FeedCache
from .models import (
    DepartureRecord,
    FeedSnapshot,
    RealtimeEntity,
    StationDepartures,
    StopTimeUpdate,
    TripUpdateEntity,
)
from .schedule_index import ScheduleIndex
from .station_resolver import StationResolver
from .timeutil import (
    SECONDS_PER_DAY,
    int64_from_words,
    iso_utc,
    local_datetime,
    local_hms,
    local_seconds_of_day,
    minutes_apart,
    parse_hms,
)

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 20
ROUTE_MATCH_WINDOW_MINUTES = 30
VISIBLE_BEFORE_MS = 5 * 60 * 1000
VISIBLE_AFTER_MS = 2 * 60 * 60 * 1000

DELAY_SOURCE_FEED = "feed"
DELAY_SOURCE_SCHEDULE = "schedule"
DELAY_SOURCES = (DELAY_SOURCE_FEED, DELAY_SOURCE_SCHEDULE)


@dataclass(frozen=True)
class Prediction:
    """Predicted time and delay pulled from one stop-time update."""
    epoch_seconds: Optional[int]
    delay: Optional[int]
    event_type: str

    @property
    def epoch_ms(self) -> Optional[int]:
        return self.epoch_seconds * 1000 if self.epoch_seconds is not None else None


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def format_status(delay_seconds: Optional[int]) -> str:
    """
    Human-readable status from a delay in seconds.

    More than a minute late reads "Delayed +Nm", more than a minute early
    reads "Early Nm", anything in between is "On time". No delay at all
    means the service is only known from the timetable: "Scheduled".
    """
    if delay_seconds is None:
        return "Scheduled"
    if delay_seconds > 60:
        return f"Delayed +{_round_half_up(delay_seconds / 60)}m"
    if delay_seconds < -60:
        return f"Early {_round_half_up(-delay_seconds / 60)}m"
    return "On time"


def route_short_name(route_id: str) -> str:
    """Route ids look like ``<short>-<version>``; keep the part before the dash."""
    return route_id.split("-", 1)[0]


def extract_prediction(update: StopTimeUpdate) -> Prediction:
    """
    Prefer the arrival event, fall back to departure.

    The delay is only taken from the event whose time is used; an event
    with a delay but no time predicts nothing.
    """
    for event_type, event in (("arrival", update.arrival), ("departure", update.departure)):
        if event is None:
            continue
        seconds = int64_from_words(event.time)
        if seconds is not None:
            return Prediction(epoch_seconds=seconds, delay=event.delay, event_type=event_type)
    return Prediction(epoch_seconds=None, delay=None, event_type="unknown")


def schedule_offset_seconds(scheduled: str, predicted_seconds: int, tz: tzinfo) -> Optional[int]:
    """
    Delay recomputed as predicted instant minus scheduled instant.

    The scheduled time-of-day is placed on the local service date of the
    prediction; offsets beyond half a day are folded back by one day.
    Used only with delay_source="schedule".
    """
    scheduled_seconds = parse_hms(scheduled)
    if scheduled_seconds is None:
        return None

    local = local_datetime(predicted_seconds, tz)
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    scheduled_at = midnight + timedelta(seconds=scheduled_seconds)
    offset = predicted_seconds - int(scheduled_at.timestamp())

    half_day = SECONDS_PER_DAY // 2
    if offset > half_day:
        offset -= SECONDS_PER_DAY
    elif offset < -half_day:
        offset += SECONDS_PER_DAY
    return offset


def sort_records(records: Iterable[DepartureRecord]) -> List[DepartureRecord]:
    """
    Order departures for display.

    Predicted records come first by predicted time. Records without a
    prediction follow, ordered by their zero-padded scheduled string, with
    unscheduled ones last. Ties keep their feed order.

    This is a deliberate total order: records with neither a prediction
    nor a schedule are placed last rather than left where they were.
    """
    def key(record: DepartureRecord):
        if record.predicted_ts is not None:
            return (0, record.predicted_ts, "")
        if record.scheduled is not None:
            return (1, 0, record.scheduled)
        return (2, 0, "")

    return sorted(records, key=key)


class Reconciler:
    """
    Builds the departure list for a station.

    Every trip update stop event at one of the station's stops is matched
    to a scheduled time (exact trip match, then the closest timetable slot
    of the same route within 30 minutes, then the predicted time itself),
    given a delay status, and kept if its prediction falls between five
    minutes ago and two hours ahead.
    """

    def __init__(
        self,
        index: ScheduleIndex,
        feed_cache: FeedCache,
        feed_url: str,
        tz: tzinfo,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        delay_source: str = DELAY_SOURCE_FEED,
        resolver: Optional[StationResolver] = None,
        clock: Callable[[], float] = time.time,
    ):
        if delay_source not in DELAY_SOURCES:
            raise ValueError(f"Unknown delay source '{delay_source}', expected one of {DELAY_SOURCES}")
        self.index = index
        self.resolver = resolver or StationResolver(index)
        self.feed_cache = feed_cache
        self.feed_url = feed_url
        self.tz = tz
        self.ttl_seconds = ttl_seconds
        self.delay_source = delay_source
        self._clock = clock

    def get_departures(
        self,
        station_id: str,
        limit: int = DEFAULT_LIMIT,
        now: Optional[float] = None,
    ) -> StationDepartures:
        """
        Get upcoming departures for a station.

        Args:
            station_id: Parent station or stop id.
            limit: Maximum number of records returned.
            now: Reference Unix time (defaults to the clock).

        Returns:
            StationDepartures with the first ``limit`` records and the
            total before truncation.

        Raises:
            FeedError: If the feed is stale and cannot be refreshed.
        """
        snapshot = self.feed_cache.get_snapshot(self.feed_url, self.ttl_seconds)
        return self.departures_from_snapshot(snapshot, station_id, limit, now)

    def departures_from_snapshot(
        self,
        snapshot: FeedSnapshot,
        station_id: str,
        limit: int = DEFAULT_LIMIT,
        now: Optional[float] = None,
    ) -> StationDepartures:
        """Same as get_departures() but over an already obtained snapshot."""
        stop_ids = self.resolver.resolve_stop_ids(station_id)
        now = self._clock() if now is None else now

        records = sort_records(self.reconcile(snapshot.entities, stop_ids, now))
        logger.debug(f"Station {station_id}: {len(records)} departures in window")

        return StationDepartures(
            station_id=station_id,
            total=len(records),
            results=records[:max(0, limit)],
            fetched_at=snapshot.fetched_at,
        )

    def reconcile(
        self,
        entities: Sequence[RealtimeEntity],
        stop_ids: Iterable[str],
        now: float,
    ) -> List[DepartureRecord]:
        """Build unsorted records for all stop events at the given stops."""
        stop_ids = frozenset(stop_ids)
        now_ms = int(now * 1000)
        records: List[DepartureRecord] = []

        for entity in entities:
            if not isinstance(entity, TripUpdateEntity):
                # Vehicle positions and alerts carry no stop predictions.
                continue

            for update in entity.stop_time_updates:
                if update.stop_id not in stop_ids:
                    continue
                try:
                    record = self._build_record(entity, update)
                except (AttributeError, TypeError, ValueError, OverflowError, OSError) as e:
                    logger.warning(
                        f"Skipping malformed stop update {update.stop_id!r} "
                        f"in trip {entity.trip.trip_id!r}: {e}"
                    )
                    continue

                if record.predicted_ts is not None and not self._is_visible(record.predicted_ts, now_ms):
                    continue
                records.append(record)

        return records

    @staticmethod
    def _is_visible(predicted_ms: int, now_ms: int) -> bool:
        return now_ms - VISIBLE_BEFORE_MS <= predicted_ms <= now_ms + VISIBLE_AFTER_MS

    def _build_record(self, entity: TripUpdateEntity, update: StopTimeUpdate) -> DepartureRecord:
        trip_id = entity.trip.trip_id
        route_id = entity.trip.route_id
        prediction = extract_prediction(update)

        scheduled = self.resolve_scheduled(trip_id, route_id, update.stop_id, prediction.epoch_seconds)

        delay = prediction.delay
        if (
            self.delay_source == DELAY_SOURCE_SCHEDULE
            and scheduled is not None
            and prediction.epoch_seconds is not None
        ):
            delay = schedule_offset_seconds(scheduled, prediction.epoch_seconds, self.tz)

        predicted_seconds = prediction.epoch_seconds
        return DepartureRecord(
            trip_id=trip_id,
            route_id=route_id,
            route_name=self.index.route_name(route_id) or route_id or None,
            headsign=entity.trip.headsign or self.index.headsign(trip_id, update.stop_id),
            stop_id=update.stop_id,
            stop_name=self.index.stop_name(update.stop_id),
            scheduled=scheduled,
            predicted=iso_utc(predicted_seconds) if predicted_seconds is not None else None,
            predicted_local=local_hms(predicted_seconds, self.tz) if predicted_seconds is not None else None,
            predicted_ts=prediction.epoch_ms,
            event_type=prediction.event_type,
            status=format_status(delay),
            delay_seconds=delay,
        )

    def resolve_scheduled(
        self,
        trip_id: str,
        route_id: str,
        stop_id: str,
        predicted_seconds: Optional[int],
    ) -> Optional[str]:
        """
        Find the timetable time for a stop event.

        Tries, in order: the exact (trip, stop) entry; the route's
        timetable at this stop; the predicted time in station local time
        with seconds zeroed. Returns None only when there is neither a
        match nor a prediction.
        """
        exact = self.index.scheduled_time(trip_id, stop_id)
        if exact:
            return exact

        by_route = self._match_route(route_id, stop_id, predicted_seconds)
        if by_route:
            return by_route

        if predicted_seconds is not None:
            return local_hms(predicted_seconds, self.tz)[:5] + ":00"
        return None

    def _match_route(self, route_id: str, stop_id: str, predicted_seconds: Optional[int]) -> Optional[str]:
        if not route_id:
            return None
        candidates = self.index.candidates_for(route_short_name(route_id), stop_id)
        if not candidates:
            return None
        if predicted_seconds is None:
            return candidates[0].time

        predicted_of_day = local_seconds_of_day(predicted_seconds, self.tz)
        best_time = None
        best_distance = None
        for candidate in candidates:
            candidate_of_day = parse_hms(candidate.time)
            if candidate_of_day is None:
                continue
            distance = minutes_apart(candidate_of_day, predicted_of_day)
            if best_distance is None or distance < best_distance:
                best_time, best_distance = candidate.time, distance

        if best_distance is not None and best_distance <= ROUTE_MATCH_WINDOW_MINUTES:
            return best_time
        return None
