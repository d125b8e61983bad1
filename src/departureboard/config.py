"""Runtime settings read from the environment."""

import os
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from .reconciler import DELAY_SOURCES

DEFAULT_FEED_URL = "https://gtfsrt.api.translink.com.au/api/realtime/SEQ/TripUpdates"
DEFAULT_TIMEZONE = "Australia/Brisbane"


def _safe_int(value: Any, fallback: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return fallback


def _flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    feed_url: str = DEFAULT_FEED_URL
    feed_ttl_seconds: int = 180
    http_timeout: int = 10
    timezone: str = DEFAULT_TIMEZONE
    static_dir: str = "static-gtfs"
    remote_base: str = ""
    use_remote: bool = False
    snapshot_dir: str = "snapshots"
    delay_source: str = "feed"
    host: str = "0.0.0.0"
    port: int = 3000

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from environment variables.

        Unparseable numbers fall back to their defaults; an unknown
        DELAY_SOURCE is rejected.
        """
        env = os.environ if environ is None else environ
        defaults = cls()

        delay_source = env.get("DELAY_SOURCE", defaults.delay_source).strip().lower()
        if delay_source not in DELAY_SOURCES:
            raise ValueError(f"DELAY_SOURCE must be one of {DELAY_SOURCES}, got '{delay_source}'")

        ttl = _safe_int(env.get("FEED_CACHE_TTL"), defaults.feed_ttl_seconds)
        timeout = _safe_int(env.get("HTTP_TIMEOUT"), defaults.http_timeout)

        return cls(
            feed_url=env.get("GTFS_RT_URL") or defaults.feed_url,
            feed_ttl_seconds=max(0, ttl),
            http_timeout=timeout if timeout > 0 else defaults.http_timeout,
            timezone=env.get("STATION_TIMEZONE") or defaults.timezone,
            static_dir=env.get("STATIC_GTFS_DIR") or defaults.static_dir,
            remote_base=env.get("GITHUB_RAW_BASE", defaults.remote_base),
            use_remote=_flag(env.get("USE_REMOTE_GTFS")),
            snapshot_dir=env.get("SNAPSHOT_DIR") or defaults.snapshot_dir,
            delay_source=delay_source,
            host=env.get("HOST") or defaults.host,
            port=_safe_int(env.get("PORT"), defaults.port),
        )
