from flask import Flask, Response, current_app, request, send_from_directory
from flask_cors import CORS
from pathlib import Path
from typing import Optional
import argparse
import logging
import os

from .config import IngestConfig, LoggingConfig, ServerConfig, configure_logging
from .heatmap import TileEncodingError
from .helpers import InvalidTileError
from .ingest import TimeWindow
from .refresh import IndexCoordinator
from .scalars import parse_window_bound

logger = logging.getLogger(__name__)


def _coordinator() -> IndexCoordinator:
    return current_app.extensions["tile_heatmap"]


def _window_from_args(args) -> TimeWindow:
    bounds = {}
    for name, end_of_day in (("start", False), ("end", True)):
        raw = args.get(name)
        value = parse_window_bound(raw, end_of_day)
        if raw and value is None:
            logger.warning("Ignoring malformed '%s' parameter: %r", name, raw)
        bounds[name] = value
    return TimeWindow(**bounds)


def create_app(config: Optional[ServerConfig] = None,
               coordinator: Optional[IndexCoordinator] = None) -> Flask:
    """
    Build the tile server. The index is not loaded here; call
    ``coordinator.refresh()`` (main() does) before serving.
    """
    config = config or ServerConfig()
    if coordinator is None:
        coordinator = IndexCoordinator.for_directory(config.data_root, config.ingest)
    static_dir = Path(config.static_dir).resolve()

    app = Flask(__name__)
    CORS(app, resources={r"/*": {"origins": "*"}})
    app.extensions["tile_heatmap"] = coordinator

    @app.get("/")
    def index():
        return send_from_directory(static_dir, "index.html")

    @app.get("/lib/<path:filename>")
    def lib(filename):
        return send_from_directory(static_dir / "lib", filename)

    @app.get("/tiles/<int:z>/<int:x>/<int:y>.png")
    def serve_tile(z, x, y):
        logger.debug("tile request z=%d x=%d y=%d", z, x, y)
        try:
            png = _coordinator().render(z, x, y)
        except InvalidTileError as e:
            logger.warning("Rejected tile %d/%d/%d: %s", z, x, y, e)
            return Response(str(e), status=404, mimetype="text/plain")
        except TileEncodingError:
            logger.exception("Failed to encode tile %d/%d/%d", z, x, y)
            return Response("tile encoding failed", status=500, mimetype="text/plain")
        return Response(png, mimetype="image/png")

    @app.get("/range")
    def refresh_range():
        window = _window_from_args(request.args)
        _coordinator().refresh(window)
        return Response("ok", mimetype="text/plain")

    return app


def parse_args(argv=None) -> ServerConfig:
    parser = argparse.ArgumentParser(description="Serve density heatmap tiles from Parquet point data.")
    parser.add_argument("--root", default=os.environ.get("TILE_ROOT", "partition"),
                        help="directory scanned recursively for .parquet files")
    parser.add_argument("--static", default="www", help="directory holding index.html and lib/")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8080)
    parser.add_argument("--workers", type=int, default=4, help="parallel file readers during ingestion")
    parser.add_argument("--source-crs", default="EPSG:3857",
                        help="CRS of the longitude/latitude columns (EPSG:4326 projects degrees)")
    parser.add_argument("--progress", action="store_true", help="show a progress bar while ingesting")
    parser.add_argument("--debug", action="store_true", help="verbose logging")
    args = parser.parse_args(argv)

    return ServerConfig(
        data_root=args.root,
        static_dir=args.static,
        host=args.host,
        port=args.port,
        ingest=IngestConfig(
            source_crs=args.source_crs,
            max_workers=args.workers,
            show_progress=args.progress,
        ),
        logging=LoggingConfig(debug=args.debug),
    )


def main(argv=None) -> None:
    config = parse_args(argv)
    configure_logging(config.logging)
    logger.info("starting server, data root %s", config.data_root)

    coordinator = IndexCoordinator.for_directory(config.data_root, config.ingest)
    coordinator.refresh()

    app = create_app(config, coordinator)
    app.run(host=config.host, port=config.port, threaded=True)


if __name__ == "__main__":
    main()
