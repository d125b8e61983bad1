"""Station id to stop id expansion."""

import logging
from typing import Dict, FrozenSet, List, Optional

from .schedule_index import ScheduleIndex

logger = logging.getLogger(__name__)


class StationResolver:
    """Maps a station id onto the physical stop ids it stands for."""

    def __init__(self, index: ScheduleIndex):
        self.index = index

    def resolve_stop_ids(self, station_id: str) -> FrozenSet[str]:
        """
        Return the station id together with all of its child stops.

        Feeds key stop-time updates by either the parent station or a
        child platform, so both are included. Unknown ids resolve to
        themselves.
        """
        stop_ids = frozenset({station_id}) | self.index.children_of(station_id)
        logger.debug(f"Station {station_id} resolves to {sorted(stop_ids)}")
        return stop_ids

    def list_stations(self) -> List[Dict[str, Optional[str]]]:
        """Parent stations with display names, sorted by name."""
        stations = [
            {"stationId": parent_id, "name": self.index.stop_name(parent_id)}
            for parent_id in self.index.parent_stations()
        ]
        stations.sort(key=lambda s: ((s["name"] or "").lower(), s["stationId"]))
        return stations

    def lookup(self, stop_id: str) -> Optional[str]:
        return self.index.stop_name(stop_id)
