"""Per-station departure snapshots written to disk on refresh."""

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, Optional

from .models import StationDepartures
from .timeutil import iso_utc

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


def snapshot_document(departures: StationDepartures, generated_at: float) -> Dict[str, Any]:
    results = []
    for record in departures.results:
        results.append(
            {
                "tripId": record.trip_id,
                "routeId": record.route_id,
                "stopId": record.stop_id,
                "predictedEpoch": record.predicted_ts // 1000 if record.predicted_ts is not None else None,
                "eventType": record.event_type,
                "scheduled": record.scheduled,
                "status": record.status,
            }
        )
    return {
        "stationId": departures.station_id,
        "generatedAt": iso_utc(generated_at),
        "results": results,
    }


def write_snapshot(
    snapshot_dir: str,
    departures: StationDepartures,
    generated_at: float,
) -> Optional[Path]:
    """
    Write ``<snapshot_dir>/<stationId>.json``.

    The file is written next to its final name and renamed into place so
    readers never see a half-written document.

    Returns:
        The written path, or None if the station id has no safe filename.
    """
    filename = _UNSAFE_CHARS.sub("_", departures.station_id).strip(".")
    if not filename:
        logger.warning(f"Cannot derive a snapshot filename for {departures.station_id!r}")
        return None

    directory = Path(snapshot_dir)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{filename}.json"
    tmp_path = path.with_suffix(".json.tmp")

    document = snapshot_document(departures, generated_at)
    tmp_path.write_text(json.dumps(document, indent=2), encoding="utf-8")
    tmp_path.replace(path)
    logger.info(f"Wrote {len(document['results'])} departures to {path}")
    return path
