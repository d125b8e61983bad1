"""Read-through cache for the decoded GTFS-Realtime feed."""

import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional

import requests

from .feed_decoder import FeedError, decode
from .models import FeedSnapshot, RealtimeEntity

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 180


class FeedFetchError(FeedError):
    """The upstream feed could not be downloaded."""


def fetch_feed(feed_url: str, timeout: float = 10) -> bytes:
    """Download raw feed bytes."""
    logger.debug(f"Fetching {feed_url}")
    try:
        response = requests.get(feed_url, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        raise FeedFetchError(f"Failed to fetch {feed_url}: {e}") from e
    return response.content


class FeedCache:
    """
    Holds the latest decoded feed per URL and refreshes it when stale.

    Refreshes are single flight: one lock serialises fetch+decode, and a
    caller that waited for the lock reuses the snapshot produced while it
    waited, provided that fetch started at or after its own request.
    Snapshots are immutable and swapped by reference, so readers always
    see a complete {fetched_at, entities} pair. A failed refresh leaves
    the previous snapshot in place.
    """

    def __init__(
        self,
        fetcher: Optional[Callable[[str], bytes]] = None,
        decoder: Callable[[bytes], List[RealtimeEntity]] = decode,
        clock: Callable[[], float] = time.time,
        timeout: float = 10,
    ):
        self._fetcher = fetcher or (lambda url: fetch_feed(url, timeout=timeout))
        self._decoder = decoder
        self._clock = clock
        self._refresh_lock = threading.Lock()
        self._snapshots: Dict[str, FeedSnapshot] = {}
        self._generations: Dict[str, int] = {}
        self._stats: Dict[str, Dict[str, Any]] = {}

    def get_entities(self, feed_url: str, ttl_seconds: float = DEFAULT_TTL_SECONDS) -> List[RealtimeEntity]:
        """
        Return the feed entities, fetching only when the cache is stale.

        Args:
            feed_url: GTFS-Realtime endpoint.
            ttl_seconds: Maximum snapshot age; 0 forces a refresh.

        Raises:
            FeedError: If a needed refresh fails.
        """
        return list(self.get_snapshot(feed_url, ttl_seconds).entities)

    def get_snapshot(self, feed_url: str, ttl_seconds: float = DEFAULT_TTL_SECONDS) -> FeedSnapshot:
        requested_at = self._clock()
        generation = self._generations.get(feed_url, 0)
        snapshot = self._snapshots.get(feed_url)
        if self._is_fresh(snapshot, requested_at, ttl_seconds):
            logger.debug(f"Using cached feed for {feed_url}")
            return snapshot

        with self._refresh_lock:
            # A refresh that started after our request and completed while
            # we waited serves this caller too.
            snapshot = self._snapshots.get(feed_url)
            if (
                snapshot is not None
                and self._generations.get(feed_url, 0) != generation
                and snapshot.fetched_at >= requested_at
            ):
                return snapshot
            if self._is_fresh(snapshot, self._clock(), ttl_seconds):
                return snapshot
            return self._refresh(feed_url)

    def peek(self, feed_url: str) -> Optional[FeedSnapshot]:
        """Last good snapshot, if any, without refreshing."""
        return self._snapshots.get(feed_url)

    def stats(self) -> Dict[str, Dict[str, Any]]:
        return {url: dict(entry) for url, entry in self._stats.items()}

    @staticmethod
    def _is_fresh(snapshot: Optional[FeedSnapshot], now: float, ttl_seconds: float) -> bool:
        if snapshot is None or ttl_seconds <= 0:
            return False
        return now - snapshot.fetched_at < ttl_seconds

    def _refresh(self, feed_url: str) -> FeedSnapshot:
        stats = self._stats.setdefault(
            feed_url,
            {"fetch_count": 0, "error_count": 0, "last_error": None, "last_error_at": None},
        )
        started_at = self._clock()
        try:
            raw = self._fetcher(feed_url)
            entities = self._decoder(raw)
        except FeedError as e:
            stats["error_count"] += 1
            stats["last_error"] = str(e)
            stats["last_error_at"] = started_at
            logger.error(f"Feed refresh failed for {feed_url}: {e}")
            raise

        snapshot = FeedSnapshot(fetched_at=started_at, entities=tuple(entities))
        snapshots = dict(self._snapshots)
        snapshots[feed_url] = snapshot
        self._snapshots = snapshots
        self._generations[feed_url] = self._generations.get(feed_url, 0) + 1
        stats["fetch_count"] += 1
        logger.info(f"Refreshed {feed_url}: {len(snapshot.entities)} entities")
        return snapshot
