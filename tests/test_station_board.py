"""Tests for StationBoard, the static loader, snapshots and the HTTP app."""

import json
import shutil
import tempfile
import time
import unittest
from unittest.mock import MagicMock, patch
import sys
from pathlib import Path

import requests

# Add src to path so we can import departureboard
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from departureboard.config import Settings
from departureboard.feed_cache import FeedCache, FeedFetchError
from departureboard.gtfs_loader import GTFSLoader, StaticTables
from departureboard.models import StopTimeEvent, StopTimeUpdate, TripDescriptor, TripUpdateEntity
from departureboard.server import create_app
from departureboard.station_board import StationBoard

FEED_URL = "http://feed.test/TripUpdates"

STOPS_CSV = """stop_id,stop_code,stop_name,stop_lat,stop_lon,location_type,parent_station
place_kgbs,,King George Square,-27.468,153.023,1,
1153,1153,"King George Square, platform 1",-27.468,153.023,0,place_kgbs
1154,1154,"King George Square, platform 2",-27.468,153.023,0,place_kgbs
"""

ROUTES_CSV = """route_id,route_short_name,route_long_name,route_type
66-1593,66,RBWH - UQ Lakes,3
"""

STOP_TIMES_CSV = """trip_id,arrival_time,departure_time,stop_id,stop_sequence
66-T1,08:00:00,08:00:00,1153,1
66-T2,08:15:00,08:15:00,1154,1
"""


def write_tables(directory: Path) -> None:
    (directory / "stops.txt").write_text(STOPS_CSV, encoding="utf-8")
    (directory / "routes.txt").write_text(ROUTES_CSV, encoding="utf-8")
    (directory / "stop_times.txt").write_text(STOP_TIMES_CSV, encoding="utf-8")


def upcoming_entities():
    now = int(time.time())
    return [
        TripUpdateEntity(
            entity_id="e1",
            trip=TripDescriptor(trip_id="66-T1", route_id="66-1593"),
            stop_time_updates=(
                StopTimeUpdate(stop_id="1153", arrival=StopTimeEvent(time=now + 300, delay=120)),
            ),
        ),
        TripUpdateEntity(
            entity_id="e2",
            trip=TripDescriptor(trip_id="66-T2", route_id="66-1593"),
            stop_time_updates=(
                StopTimeUpdate(stop_id="1154", departure=StopTimeEvent(time=now + 60, delay=0)),
            ),
        ),
    ]


class TestGTFSLoader(unittest.TestCase):
    """Test GTFS static table loading."""

    def setUp(self):
        self.tmp = Path(tempfile.mkdtemp())

    def tearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)

    def test_load_all_from_directory(self):
        """Test parsing of the three CSV tables into string rows."""
        write_tables(self.tmp)
        tables = GTFSLoader(str(self.tmp)).load_all()

        self.assertEqual(tables.counts(), {"stops": 3, "stopTimes": 2, "routes": 1})
        self.assertEqual(tables.stops[1]["stop_name"], "King George Square, platform 1")
        self.assertEqual(tables.stops[0]["parent_station"], "")
        self.assertEqual(tables.stop_times[0]["arrival_time"], "08:00:00")
        self.assertEqual(tables.routes[0]["route_short_name"], "66")

    def test_missing_files_load_empty(self):
        """Test that a missing table degrades to an empty collection."""
        tables = GTFSLoader(str(self.tmp / "absent")).load_all()
        self.assertEqual(tables.counts(), {"stops": 0, "stopTimes": 0, "routes": 0})

    @patch("departureboard.gtfs_loader.requests.get")
    def test_remote_download(self, mock_get):
        """Test downloading a missing table from the remote base."""
        mock_get.return_value.content = ROUTES_CSV.encode("utf-8")
        loader = GTFSLoader(str(self.tmp), remote_base="https://raw.test/gtfs/", use_remote=True)

        rows = loader.read_table("routes.txt")

        mock_get.assert_called_once_with("https://raw.test/gtfs/routes.txt", timeout=30)
        self.assertEqual(rows[0]["route_id"], "66-1593")
        self.assertTrue((self.tmp / "routes.txt").exists())

    @patch("departureboard.gtfs_loader.requests.get")
    def test_remote_failure_loads_empty(self, mock_get):
        mock_get.side_effect = requests.ConnectionError("offline")
        loader = GTFSLoader(str(self.tmp), remote_base="https://raw.test/gtfs", use_remote=True)
        self.assertEqual(loader.read_table("stops.txt"), [])

    @patch("departureboard.gtfs_loader.requests.get")
    def test_remote_disabled(self, mock_get):
        loader = GTFSLoader(str(self.tmp), remote_base="https://raw.test/gtfs", use_remote=False)
        self.assertEqual(loader.read_table("stops.txt"), [])
        mock_get.assert_not_called()


class TestSettings(unittest.TestCase):
    """Test environment configuration."""

    def test_defaults(self):
        settings = Settings.from_env({})
        self.assertEqual(settings.feed_ttl_seconds, 180)
        self.assertEqual(settings.timezone, "Australia/Brisbane")
        self.assertEqual(settings.port, 3000)
        self.assertFalse(settings.use_remote)

    def test_overrides_and_bad_numbers(self):
        settings = Settings.from_env(
            {
                "GTFS_RT_URL": FEED_URL,
                "FEED_CACHE_TTL": "not-a-number",
                "USE_REMOTE_GTFS": "true",
                "PORT": "8080",
                "DELAY_SOURCE": "Schedule",
            }
        )
        self.assertEqual(settings.feed_url, FEED_URL)
        self.assertEqual(settings.feed_ttl_seconds, 180)
        self.assertTrue(settings.use_remote)
        self.assertEqual(settings.port, 8080)
        self.assertEqual(settings.delay_source, "schedule")

    def test_invalid_delay_source(self):
        with self.assertRaises(ValueError):
            Settings.from_env({"DELAY_SOURCE": "vibes"})


class TestStationBoard(unittest.TestCase):
    """Test the board facade and its HTTP surface."""

    def setUp(self):
        self.tmp = Path(tempfile.mkdtemp())
        write_tables(self.tmp)
        self.settings = Settings(
            feed_url=FEED_URL,
            static_dir=str(self.tmp),
            snapshot_dir=str(self.tmp / "snapshots"),
        )
        self.fetcher = MagicMock(return_value=b"raw")
        self.entities = upcoming_entities()
        self.feed_cache = FeedCache(fetcher=self.fetcher, decoder=lambda raw: self.entities)
        self.board = StationBoard(self.settings, feed_cache=self.feed_cache)
        self.client = create_app(self.board).test_client()

    def tearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)

    def test_static_tables_loaded(self):
        self.assertEqual(self.board.table_counts, {"stops": 3, "stopTimes": 2, "routes": 1})
        self.assertEqual(self.board.lookup_stop("1153"), "King George Square, platform 1")

    def test_get_departures(self):
        """Test departures ordered by predicted time."""
        departures = self.board.get_departures("place_kgbs")
        self.assertEqual([r.trip_id for r in departures.results], ["66-T2", "66-T1"])
        self.assertEqual(departures.results[0].event_type, "departure")
        self.assertEqual(departures.results[0].scheduled, "08:15:00")
        self.assertEqual(departures.results[1].status, "Delayed +2m")

    def test_no_schedule_mode(self):
        """Test that the board works without static data."""
        board = StationBoard(self.settings, load_static=False, feed_cache=self.feed_cache)
        self.assertEqual(board.get_departures("place_kgbs").results, [])
        results = board.get_departures("1153").results
        self.assertEqual(len(results), 1)
        self.assertIsNotNone(results[0].scheduled)
        self.assertIsNone(results[0].stop_name)

    def test_station_endpoint(self):
        response = self.client.get("/station/place_kgbs?count=1")
        self.assertEqual(response.status_code, 200)

        payload = response.get_json()
        self.assertEqual(payload["stationId"], "place_kgbs")
        self.assertEqual(payload["count"], 2)
        self.assertEqual(len(payload["results"]), 1)
        self.assertEqual(payload["results"][0]["tripId"], "66-T2")
        self.assertEqual(payload["results"][0]["routeName"], "66 RBWH - UQ Lakes")
        self.assertTrue(payload["fetchedAt"].endswith("Z"))

    def test_station_endpoint_bad_count_uses_default(self):
        payload = self.client.get("/station/place_kgbs?count=abc").get_json()
        self.assertEqual(len(payload["results"]), 2)

    def test_station_endpoint_feed_outage(self):
        """Test a structured error when the feed cannot be fetched."""
        self.fetcher.side_effect = FeedFetchError("upstream down")
        response = self.client.get("/station/place_kgbs")
        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.get_json()["stationId"], "place_kgbs")

    def test_cached_feed_survives_outage(self):
        """Test that requests within the TTL succeed from cache during an outage."""
        self.client.get("/station/place_kgbs")
        self.fetcher.side_effect = FeedFetchError("upstream down")
        response = self.client.get("/station/place_kgbs")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.fetcher.call_count, 1)

    def test_stations_list_endpoint(self):
        payload = self.client.get("/stations-list").get_json()
        self.assertEqual(payload, [{"stationId": "place_kgbs", "name": "King George Square"}])

    def test_lookup_endpoint(self):
        response = self.client.get("/lookup/1154")
        self.assertEqual(response.get_json()["name"], "King George Square, platform 2")

        response = self.client.get("/lookup/0000")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.get_json()["name"], "Not found")

    def test_refresh_endpoint_writes_snapshots(self):
        """Test forced refresh with snapshot files."""
        self.client.get("/station/place_kgbs")
        response = self.client.get("/refresh?stations=place_kgbs,1153")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.fetcher.call_count, 2)

        payload = response.get_json()
        self.assertEqual(payload["entities"], 2)
        self.assertEqual(set(payload["snapshots"]), {"place_kgbs", "1153"})

        document = json.loads((self.tmp / "snapshots" / "place_kgbs.json").read_text(encoding="utf-8"))
        self.assertEqual(document["stationId"], "place_kgbs")
        self.assertIn("generatedAt", document)
        first = document["results"][0]
        self.assertEqual(first["tripId"], "66-T2")
        self.assertEqual(first["routeId"], "66-1593")
        self.assertEqual(first["stopId"], "1154")
        self.assertEqual(first["eventType"], "departure")
        self.assertIsInstance(first["predictedEpoch"], int)

    def test_refresh_without_stations(self):
        payload = self.client.get("/refresh").get_json()
        self.assertEqual(payload["snapshots"], {})
        self.assertFalse((self.tmp / "snapshots").exists())

    def test_refresh_failure(self):
        self.fetcher.side_effect = FeedFetchError("upstream down")
        response = self.client.get("/refresh")
        self.assertEqual(response.status_code, 502)

    def test_health_endpoint(self):
        self.client.get("/station/place_kgbs")
        payload = self.client.get("/health").get_json()
        self.assertEqual(payload["loaded"], {"stops": 3, "stopTimes": 2, "routes": 1})
        self.assertEqual(payload["feed"]["fetchCount"], 1)
        self.assertEqual(payload["feed"]["errorCount"], 0)

    def test_load_tables_replaces_index(self):
        self.board.load_tables(StaticTables())
        self.assertIsNone(self.board.lookup_stop("1153"))
        self.assertEqual(self.board.list_stations(), [])


if __name__ == "__main__":
    unittest.main()
