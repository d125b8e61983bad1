"""Lookup structures built from GTFS static tables."""

import logging
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Set, Tuple

from .models import Route, ScheduleCandidate, Stop

logger = logging.getLogger(__name__)

TripStopKey = Tuple[str, str]  # (trip_id, stop_id)
RouteStopKey = Tuple[str, str]  # (route short name, stop_id)


def _field(row: Any, name: str) -> str:
    value = row.get(name)
    if value is None:
        return ""
    return str(value).strip()


class ScheduleIndex:
    """
    Read-only lookups over stops, stop_times and routes.

    Build with ScheduleIndex.build(); every structure is frozen afterwards
    so the index can be shared between request threads without locking.
    """

    def __init__(
        self,
        stops: Mapping[str, Stop],
        children: Mapping[str, FrozenSet[str]],
        scheduled_times: Mapping[TripStopKey, str],
        route_candidates: Mapping[RouteStopKey, Tuple[ScheduleCandidate, ...]],
        routes: Mapping[str, Route],
        headsigns: Mapping[TripStopKey, str],
        skipped_rows: Optional[Mapping[str, int]] = None,
    ):
        self.stops = MappingProxyType(dict(stops))
        self.children = MappingProxyType(dict(children))
        self.scheduled_times = MappingProxyType(dict(scheduled_times))
        self.route_candidates = MappingProxyType(dict(route_candidates))
        self.routes = MappingProxyType(dict(routes))
        self.headsigns = MappingProxyType(dict(headsigns))
        self.skipped_rows = MappingProxyType(dict(skipped_rows or {}))

    @classmethod
    def empty(cls) -> "ScheduleIndex":
        return cls({}, {}, {}, {}, {}, {})

    @classmethod
    def build(
        cls,
        stops: Iterable[Mapping[str, Any]],
        stop_times: Iterable[Mapping[str, Any]],
        routes: Iterable[Mapping[str, Any]],
    ) -> "ScheduleIndex":
        """
        Index the three static tables.

        Rows without their id fields are skipped and counted; one warning
        per table reports how many were dropped.
        """
        skipped: Dict[str, int] = {}

        stop_map, children = cls._index_stops(stops, skipped)
        route_map = cls._index_routes(routes, skipped)
        scheduled, candidates, headsigns = cls._index_stop_times(
            stop_times, list(route_map.values()), skipped
        )

        for table, count in skipped.items():
            if count:
                logger.warning(f"Skipped {count} malformed rows in {table}")

        logger.info(
            f"Indexed {len(stop_map)} stops, {len(route_map)} routes, "
            f"{len(scheduled)} scheduled stop times"
        )
        return cls(stop_map, children, scheduled, candidates, route_map, headsigns, skipped)

    @staticmethod
    def _index_stops(rows, skipped):
        stop_map: Dict[str, Stop] = {}
        children: Dict[str, Set[str]] = {}
        skipped["stops"] = 0

        for row in rows:
            if not isinstance(row, Mapping):
                skipped["stops"] += 1
                continue
            stop_id = _field(row, "stop_id")
            if not stop_id:
                skipped["stops"] += 1
                continue

            parent = _field(row, "parent_station") or None
            stop_map[stop_id] = Stop(stop_id=stop_id, name=_field(row, "stop_name"), parent_station=parent)

            if parent:
                children.setdefault(parent, set()).add(stop_id)

        return stop_map, {p: frozenset(c) for p, c in children.items()}

    @staticmethod
    def _index_routes(rows, skipped):
        route_map: Dict[str, Route] = {}
        skipped["routes"] = 0

        for row in rows:
            if not isinstance(row, Mapping):
                skipped["routes"] += 1
                continue
            route_id = _field(row, "route_id")
            if not route_id:
                skipped["routes"] += 1
                continue
            route_map[route_id] = Route(
                route_id=route_id,
                short_name=_field(row, "route_short_name") or None,
                long_name=_field(row, "route_long_name") or None,
            )

        return route_map

    @staticmethod
    def _index_stop_times(rows, routes: List[Route], skipped):
        # The route fallback tests every stop_times row against every route
        # (O(stop_times x routes)). Trip ids only embed the short name, so
        # there is no key to join on.
        scheduled: Dict[TripStopKey, str] = {}
        candidates: Dict[RouteStopKey, List[ScheduleCandidate]] = {}
        headsigns: Dict[TripStopKey, str] = {}
        named_routes = [r for r in routes if r.short_name]
        skipped["stop_times"] = 0

        for row in rows:
            if not isinstance(row, Mapping):
                skipped["stop_times"] += 1
                continue
            trip_id = _field(row, "trip_id")
            stop_id = _field(row, "stop_id")
            if not trip_id or not stop_id:
                skipped["stop_times"] += 1
                continue

            time_of_day = _field(row, "arrival_time") or _field(row, "departure_time")
            if time_of_day:
                scheduled[(trip_id, stop_id)] = time_of_day

            headsign = _field(row, "stop_headsign")
            if headsign:
                headsigns[(trip_id, stop_id)] = headsign

            if not time_of_day:
                continue
            for route in named_routes:
                if route.short_name in trip_id:
                    candidates.setdefault((route.short_name, stop_id), []).append(
                        ScheduleCandidate(time=time_of_day, trip_id=trip_id, route_id=route.route_id)
                    )
                    break

        frozen = {key: tuple(values) for key, values in candidates.items()}
        return scheduled, frozen, headsigns

    def stop_name(self, stop_id: str) -> Optional[str]:
        stop = self.stops.get(stop_id)
        return stop.name if stop and stop.name else None

    def route_name(self, route_id: str) -> Optional[str]:
        route = self.routes.get(route_id)
        return route.display_name if route else None

    def scheduled_time(self, trip_id: str, stop_id: str) -> Optional[str]:
        return self.scheduled_times.get((trip_id, stop_id))

    def candidates_for(self, short_name: str, stop_id: str) -> Tuple[ScheduleCandidate, ...]:
        return self.route_candidates.get((short_name, stop_id), ())

    def children_of(self, parent_id: str) -> FrozenSet[str]:
        return self.children.get(parent_id, frozenset())

    def headsign(self, trip_id: str, stop_id: str) -> Optional[str]:
        return self.headsigns.get((trip_id, stop_id))

    def parent_stations(self) -> List[str]:
        return list(self.children.keys())
