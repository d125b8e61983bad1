"""GTFS static table loader."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd
import requests

logger = logging.getLogger(__name__)

STOPS_FILE = "stops.txt"
STOP_TIMES_FILE = "stop_times.txt"
ROUTES_FILE = "routes.txt"

Row = Dict[str, str]


@dataclass
class StaticTables:
    """Row collections for the three static tables the board needs."""
    stops: List[Row] = field(default_factory=list)
    stop_times: List[Row] = field(default_factory=list)
    routes: List[Row] = field(default_factory=list)

    def counts(self) -> Dict[str, int]:
        return {
            "stops": len(self.stops),
            "stopTimes": len(self.stop_times),
            "routes": len(self.routes),
        }


class GTFSLoader:
    """
    Loads GTFS static tables from a local directory.

    When a table is missing locally and remote loading is enabled, it is
    downloaded from ``remote_base/<filename>`` into the directory first.
    Unreadable tables load as empty collections so the board can run in
    "no schedule" mode.
    """

    def __init__(
        self,
        static_dir: str,
        remote_base: Optional[str] = None,
        use_remote: bool = False,
        timeout: int = 30,
    ):
        self.static_dir = Path(static_dir)
        self.remote_base = (remote_base or "").rstrip("/")
        self.use_remote = use_remote
        self.timeout = timeout

    def load_all(self) -> StaticTables:
        """Read stops, stop_times and routes."""
        logger.info(f"Loading GTFS files from {self.static_dir}")
        tables = StaticTables(
            stops=self.read_table(STOPS_FILE),
            stop_times=self.read_table(STOP_TIMES_FILE),
            routes=self.read_table(ROUTES_FILE),
        )
        counts = tables.counts()
        logger.info(
            f"Loaded: {counts['stops']} stops, {counts['stopTimes']} stop_times, "
            f"{counts['routes']} routes"
        )
        return tables

    def read_table(self, filename: str) -> List[Row]:
        """Parse one CSV table into string-keyed rows, or [] if unavailable."""
        try:
            path = self._ensure_file(filename)
            frame = pd.read_csv(path, dtype=str, keep_default_na=False, skip_blank_lines=True)
        except (OSError, ValueError, requests.RequestException) as e:
            # pandas parser errors subclass ValueError
            logger.warning(f"{filename} not found or unreadable: {e}")
            return []

        frame.columns = [c.strip() for c in frame.columns]
        return frame.to_dict("records")

    def _ensure_file(self, filename: str) -> Path:
        local_path = self.static_dir / filename
        if local_path.exists():
            logger.debug(f"Using local file: {local_path}")
            return local_path

        if self.use_remote and self.remote_base:
            remote_url = f"{self.remote_base}/{filename}"
            logger.info(f"Downloading {filename} from {remote_url}")
            try:
                self._download(remote_url, local_path)
                return local_path
            except requests.RequestException as e:
                logger.warning(f"Failed to download {filename}: {e}")

        raise FileNotFoundError(f"File not found: {filename}")

    def _download(self, url: str, local_path: Path) -> None:
        response = requests.get(url, timeout=self.timeout)
        response.raise_for_status()
        local_path.parent.mkdir(parents=True, exist_ok=True)
        local_path.write_bytes(response.content)
