"""HTTP surface for the departure board."""

import logging
from typing import Any, Optional

from flask import Flask, jsonify, request
from flask_cors import CORS

from .config import Settings
from .feed_decoder import FeedError
from .reconciler import DEFAULT_LIMIT
from .station_board import StationBoard
from .timeutil import iso_utc

logger = logging.getLogger(__name__)


def _safe_count(value: Optional[str], fallback: int = DEFAULT_LIMIT) -> int:
    try:
        count = int(value)
    except (TypeError, ValueError):
        return fallback
    return count if count > 0 else fallback


def create_app(board: StationBoard) -> Flask:
    """Build the Flask app serving ``board``."""
    app = Flask(__name__)
    CORS(app)

    @app.route("/station/<station_id>")
    def station(station_id: str) -> Any:
        count = _safe_count(request.args.get("count"))
        try:
            departures = board.get_departures(station_id, limit=count)
        except FeedError as e:
            logger.error(f"Departures for {station_id} unavailable: {e}")
            return jsonify({"error": str(e), "stationId": station_id}), 502
        return jsonify(departures.to_dict())

    @app.route("/stations-list")
    def stations_list() -> Any:
        return jsonify(board.list_stations())

    @app.route("/lookup/<stop_id>")
    def lookup(stop_id: str) -> Any:
        name = board.lookup_stop(stop_id)
        if name is None:
            return jsonify({"stopId": stop_id, "name": "Not found"}), 404
        return jsonify({"stopId": stop_id, "name": name})

    @app.route("/refresh")
    def refresh() -> Any:
        raw = request.args.get("stations", "")
        station_ids = [s.strip() for s in raw.split(",") if s.strip()]
        try:
            summary = board.refresh(station_ids)
        except FeedError as e:
            logger.error(f"Forced refresh failed: {e}")
            return jsonify({"error": str(e)}), 502
        summary["refreshedAt"] = iso_utc(summary["refreshedAt"])
        return jsonify(summary)

    @app.route("/health")
    def health() -> Any:
        return jsonify(board.health())

    return app


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    settings = Settings.from_env()
    board = StationBoard(settings)
    app = create_app(board)
    logger.info(f"Departure board starting on http://{settings.host}:{settings.port}")
    app.run(host=settings.host, port=settings.port, threaded=True)


if __name__ == "__main__":
    main()
