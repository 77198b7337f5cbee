from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import timedelta


# ---------------------------------------------------------------------------
# CONFIG
# ---------------------------------------------------------------------------

@dataclass
class IngestConfig:
    longitude_field: str = "longitude"
    latitude_field: str = "latitude"
    timestamp_field: str = "BaseDateTime"
    default_window: timedelta = timedelta(hours=24)
    # CRS of the longitude/latitude columns. The EPSG:3857 default indexes
    # the raw values; any other CRS is projected to EPSG:3857 first.
    source_crs: str = "EPSG:3857"
    max_workers: int = 4
    show_progress: bool = False


@dataclass
class LoggingConfig:
    debug: bool = False
    format: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"

    @property
    def level(self) -> int:
        return logging.DEBUG if self.debug else logging.INFO


@dataclass
class ServerConfig:
    data_root: str = field(default_factory=lambda: os.environ.get("TILE_ROOT", "partition"))
    static_dir: str = "www"
    host: str = "0.0.0.0"
    port: int = 8080
    ingest: IngestConfig = field(default_factory=IngestConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def configure_logging(cfg: LoggingConfig) -> None:
    logging.basicConfig(level=cfg.level, format=cfg.format, force=True)
    # Werkzeug logs every request line at INFO.
    logging.getLogger("werkzeug").setLevel(logging.INFO if cfg.debug else logging.WARNING)
