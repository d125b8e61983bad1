"""Main departure board class."""

import logging
import time
from typing import Any, Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo

from .config import Settings
from .feed_cache import FeedCache
from .gtfs_loader import GTFSLoader, StaticTables
from .models import StationDepartures
from .reconciler import DEFAULT_LIMIT, Reconciler
from .schedule_index import ScheduleIndex
from .snapshots import write_snapshot
from .station_resolver import StationResolver

logger = logging.getLogger(__name__)


class StationBoard:
    """
    Live departure board for transit stations.

    This class wires together:
    - the static schedule index and station resolver
    - the cached GTFS-Realtime feed
    - the reconciler producing departure lists
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        load_static: bool = True,
        feed_cache: Optional[FeedCache] = None,
    ):
        """
        Initialize the board.

        Args:
            settings: Runtime settings; read from the environment if omitted.
            load_static: If True, load GTFS static tables on init. If False,
                call load_tables() before serving requests.
            feed_cache: Shared feed cache; a new one is created if omitted.
        """
        self.settings = settings or Settings.from_env()
        self.tz = ZoneInfo(self.settings.timezone)
        self.feed_cache = feed_cache or FeedCache(timeout=self.settings.http_timeout)
        self.table_counts = {"stops": 0, "stopTimes": 0, "routes": 0}
        self.load_tables(StaticTables())

        if load_static:
            loader = GTFSLoader(
                self.settings.static_dir,
                remote_base=self.settings.remote_base,
                use_remote=self.settings.use_remote,
                timeout=self.settings.http_timeout,
            )
            self.load_tables(loader.load_all())

    def load_tables(self, tables: StaticTables) -> None:
        """
        Index static tables and rebuild the resolver and reconciler.

        Args:
            tables: Row collections for stops, stop_times and routes.
        """
        index = ScheduleIndex.build(tables.stops, tables.stop_times, tables.routes)
        self.index = index
        self.resolver = StationResolver(index)
        self.reconciler = Reconciler(
            index,
            self.feed_cache,
            self.settings.feed_url,
            self.tz,
            ttl_seconds=self.settings.feed_ttl_seconds,
            delay_source=self.settings.delay_source,
            resolver=self.resolver,
        )
        self.table_counts = tables.counts()

    def get_departures(self, station_id: str, limit: int = DEFAULT_LIMIT) -> StationDepartures:
        """
        Get upcoming departures for a station.

        Raises:
            FeedError: If the real-time feed is unavailable.
        """
        return self.reconciler.get_departures(station_id, limit=limit)

    def list_stations(self) -> List[Dict[str, Optional[str]]]:
        return self.resolver.list_stations()

    def lookup_stop(self, stop_id: str) -> Optional[str]:
        return self.resolver.lookup(stop_id)

    def refresh(self, station_ids: Iterable[str] = ()) -> Dict[str, Any]:
        """
        Force a feed refresh and optionally write station snapshots.

        Args:
            station_ids: Stations to write snapshot files for.

        Returns:
            Summary with the refresh time, entity count and written files.

        Raises:
            FeedError: If the refresh fails.
        """
        snapshot = self.feed_cache.get_snapshot(self.settings.feed_url, 0)
        generated_at = time.time()

        written: Dict[str, Optional[str]] = {}
        for station_id in station_ids:
            departures = self.reconciler.departures_from_snapshot(snapshot, station_id, now=generated_at)
            path = write_snapshot(self.settings.snapshot_dir, departures, generated_at)
            written[station_id] = str(path) if path else None

        logger.info(f"Forced refresh: {len(snapshot.entities)} entities, {len(written)} snapshots written")
        return {
            "refreshedAt": snapshot.fetched_at,
            "entities": len(snapshot.entities),
            "snapshots": written,
        }

    def health(self) -> Dict[str, Any]:
        """Static table counters and feed fetch counters."""
        feed_stats = self.feed_cache.stats().get(self.settings.feed_url, {})
        last = self.feed_cache.peek(self.settings.feed_url)
        return {
            "status": "ok",
            "loaded": dict(self.table_counts),
            "skippedRows": dict(self.index.skipped_rows),
            "feed": {
                "url": self.settings.feed_url,
                "lastFetch": last.fetched_at if last else None,
                "fetchCount": feed_stats.get("fetch_count", 0),
                "errorCount": feed_stats.get("error_count", 0),
                "lastError": feed_stats.get("last_error"),
            },
        }
