from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pyarrow as pa
from pyproj import Transformer
from tqdm import tqdm

from .config import IngestConfig
from .datasource import ParquetSource, find_parquet_files
from .helpers import ORIGIN_SHIFT
from .scalars import (
    coordinates_from_column,
    from_datetime64,
    timestamps_from_column,
    to_datetime64,
)

logger = logging.getLogger(__name__)

MERCATOR_CRS = "EPSG:3857"
LNGLAT_CRS = "EPSG:4326"
EARLIEST = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class TimeWindow:
    """Inclusive time window; either bound may be left open."""

    start: Optional[datetime] = None
    end: Optional[datetime] = None

    def __post_init__(self):
        # Naive bounds are read as UTC.
        for name in ("start", "end"):
            value = getattr(self, name)
            if value is not None and value.tzinfo is None:
                object.__setattr__(self, name, value.replace(tzinfo=timezone.utc))

    @property
    def is_inverted(self) -> bool:
        return self.start is not None and self.end is not None and self.start > self.end


@dataclass
class IngestResult:
    xs: np.ndarray
    ys: np.ndarray
    # Effective window; None when no row carried a usable timestamp.
    window: Optional[TimeWindow] = None
    max_timestamp: Optional[datetime] = None
    files_read: int = 0
    files_skipped: int = 0
    rows_timestamped: int = 0
    rows_dropped: int = 0

    @property
    def point_count(self) -> int:
        return int(self.xs.shape[0])

    def points(self) -> np.ndarray:
        return np.column_stack([self.xs, self.ys])


@dataclass
class _Batch:
    xs: List[np.ndarray] = field(default_factory=list)
    ys: List[np.ndarray] = field(default_factory=list)
    ts: List[np.ndarray] = field(default_factory=list)
    dropped: int = 0

    def concat(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        if not self.xs:
            return _empty_f8(), _empty_f8(), np.empty(0, dtype="datetime64[us]")
        return np.concatenate(self.xs), np.concatenate(self.ys), np.concatenate(self.ts)


def _empty_f8() -> np.ndarray:
    return np.empty(0, dtype=np.float64)


# ---------------------------------------------------------------------------
# PROJECTION
# ---------------------------------------------------------------------------

@lru_cache(maxsize=8)
def _transformer(source_crs: str) -> Transformer:
    return Transformer.from_crs(source_crs, MERCATOR_CRS, always_xy=True)


def project_to_mercator(lon: np.ndarray, lat: np.ndarray,
                        source_crs: str = LNGLAT_CRS) -> Tuple[np.ndarray, np.ndarray]:
    """
    Vectorised lng_lat_to_meters. Rows at or beyond the poles come back
    non-finite and are filtered out later.
    """
    crs = source_crs.upper()
    if crs == MERCATOR_CRS:
        return lon, lat
    if crs == LNGLAT_CRS:
        with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
            x = lon * ORIGIN_SHIFT / 180.0
            y = np.log(np.tan((90.0 + lat) * np.pi / 360.0)) * ORIGIN_SHIFT / np.pi
        return x, y
    x, y = _transformer(source_crs).transform(lon, lat)
    return np.asarray(x, dtype=np.float64), np.asarray(y, dtype=np.float64)


# ---------------------------------------------------------------------------
# READING
# ---------------------------------------------------------------------------

def _read_table(table: pa.Table, cfg: IngestConfig, batch: _Batch) -> None:
    ts = timestamps_from_column(table.column(cfg.timestamp_field))
    keep = ~np.isnat(ts)
    batch.dropped += int((~keep).sum())
    if not keep.any():
        return

    n = table.num_rows
    names = table.column_names
    # Missing coordinate columns fall back to 0.0.
    lon = (coordinates_from_column(table.column(cfg.longitude_field))
           if cfg.longitude_field in names else np.zeros(n, dtype=np.float64))
    lat = (coordinates_from_column(table.column(cfg.latitude_field))
           if cfg.latitude_field in names else np.zeros(n, dtype=np.float64))

    x, y = project_to_mercator(lon[keep], lat[keep], cfg.source_crs)
    batch.xs.append(np.asarray(x, dtype=np.float64))
    batch.ys.append(np.asarray(y, dtype=np.float64))
    batch.ts.append(ts[keep])


def read_file(path, cfg: IngestConfig) -> Optional[_Batch]:
    """
    Read one Parquet file into a batch of timestamped points.
    Returns None when the file cannot be opened at all.
    """
    columns = [cfg.longitude_field, cfg.latitude_field, cfg.timestamp_field]
    try:
        source = ParquetSource(path, columns=columns)
    except (OSError, pa.ArrowException) as e:
        logger.warning("Skipping unreadable file %s: %s", path, e)
        return None

    batch = _Batch()
    names = source.column_names()
    if cfg.timestamp_field not in names:
        logger.warning("%s has no '%s' column, no rows usable", path, cfg.timestamp_field)
        return batch
    for col in (cfg.longitude_field, cfg.latitude_field):
        if col not in names:
            logger.warning("%s has no '%s' column, defaulting it to 0.0", path, col)

    tables = source.iter_tables()
    while True:
        try:
            table = next(tables)
        except StopIteration:
            break
        except (OSError, pa.ArrowException) as e:
            logger.warning("Stopped reading %s after row group error: %s", path, e)
            break
        _read_table(table, cfg, batch)
    return batch


# ---------------------------------------------------------------------------
# WINDOW
# ---------------------------------------------------------------------------

def resolve_window(window: Optional[TimeWindow], max_timestamp: datetime,
                   default_window: timedelta = timedelta(hours=24)) -> TimeWindow:
    window = window or TimeWindow()
    end = window.end if window.end is not None else max_timestamp
    start = window.start
    if start is None:
        try:
            start = end - default_window
        except OverflowError:
            start = EARLIEST
    return TimeWindow(start, end)


def filter_points(xs: np.ndarray, ys: np.ndarray, ts: np.ndarray,
                  window: Optional[TimeWindow] = None,
                  default_window: timedelta = timedelta(hours=24)) -> IngestResult:
    """Apply the time window to timestamped points and drop non-finite coordinates."""
    valid_ts = ts[~np.isnat(ts)]
    if valid_ts.size == 0:
        logger.debug("no points found")
        return IngestResult(_empty_f8(), _empty_f8())

    max_ts = from_datetime64(valid_ts.max())
    resolved = resolve_window(window, max_ts, default_window)
    if resolved.is_inverted:
        logger.warning("Time window start %s is after end %s, no points selected",
                       resolved.start, resolved.end)
        return IngestResult(_empty_f8(), _empty_f8(), resolved, max_ts,
                            rows_timestamped=int(valid_ts.size))

    start64 = to_datetime64(resolved.start)
    end64 = to_datetime64(resolved.end)
    mask = (ts >= start64) & (ts <= end64)

    finite = np.isfinite(xs) & np.isfinite(ys)
    bad = int((mask & ~finite).sum())
    if bad:
        logger.warning("Dropping %d points with non-finite coordinates", bad)
    mask &= finite

    logger.debug("points in range: %d", int(mask.sum()))
    return IngestResult(xs[mask], ys[mask], resolved, max_ts,
                        rows_timestamped=int(valid_ts.size), rows_dropped=bad)


# ---------------------------------------------------------------------------
# PUBLIC API
# ---------------------------------------------------------------------------

def load_points(paths: Sequence, window: Optional[TimeWindow] = None,
                cfg: Optional[IngestConfig] = None) -> IngestResult:
    cfg = cfg or IngestConfig()
    paths = [Path(p) for p in paths]
    batches = {}
    skipped = 0

    with ThreadPoolExecutor(max_workers=max(1, cfg.max_workers)) as ex:
        futures = {ex.submit(read_file, p, cfg): i for i, p in enumerate(paths)}
        for f in tqdm(as_completed(futures), total=len(futures), desc="Ingesting",
                      disable=not cfg.show_progress):
            batch = f.result()
            if batch is None:
                skipped += 1
                continue
            batches[futures[f]] = batch

    merged = _Batch()
    for i in sorted(batches):
        b = batches[i]
        merged.xs.extend(b.xs)
        merged.ys.extend(b.ys)
        merged.ts.extend(b.ts)
        merged.dropped += b.dropped

    xs, ys, ts = merged.concat()
    result = filter_points(xs, ys, ts, window, cfg.default_window)
    result.files_read = len(batches)
    result.files_skipped = skipped
    result.rows_dropped += merged.dropped
    logger.info(
        "Loaded %d points from %d files (%d skipped, window %s .. %s)",
        result.point_count, result.files_read, skipped,
        result.window.start if result.window else None,
        result.window.end if result.window else None,
    )
    return result


def load_points_from_dir(root, window: Optional[TimeWindow] = None,
                         cfg: Optional[IngestConfig] = None) -> IngestResult:
    logger.debug("loading points from %s window=%s", root, window)
    return load_points(find_parquet_files(root), window, cfg)
