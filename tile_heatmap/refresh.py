"""
Ownership of the live spatial index.

Readers take a reference to the current immutable snapshot and never block
one another. A refresh ingests and bulk loads a brand new index without
holding any lock that readers need, then publishes it with a single
reference assignment under the writer lock. Refreshes are serialized, so
the snapshot version only ever increases.
"""
from __future__ import annotations

import enum
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

import numpy as np

from .config import IngestConfig
from .heatmap import render_tile
from .helpers import BBox, tile_bbox, validate_tile
from .ingest import IngestResult, TimeWindow, load_points_from_dir
from .spatial_index import SpatialIndex

logger = logging.getLogger(__name__)


class IndexState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    REFRESHING = "refreshing"


@dataclass(frozen=True)
class IndexSnapshot:
    index: SpatialIndex
    version: int
    window: Optional[TimeWindow] = None
    built_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def point_count(self) -> int:
        return len(self.index)


Loader = Callable[[Optional[TimeWindow]], IngestResult]


class IndexCoordinator:
    def __init__(self, loader: Loader):
        self._loader = loader
        self._snapshot = IndexSnapshot(SpatialIndex.empty(), version=0)
        self._state = IndexState.UNINITIALIZED
        self._write_lock = threading.Lock()

    @classmethod
    def for_directory(cls, root, cfg: Optional[IngestConfig] = None) -> "IndexCoordinator":
        cfg = cfg or IngestConfig()
        return cls(lambda window: load_points_from_dir(root, window, cfg))

    @property
    def state(self) -> IndexState:
        return self._state

    @property
    def snapshot(self) -> IndexSnapshot:
        return self._snapshot

    def refresh(self, window: Optional[TimeWindow] = None) -> IndexSnapshot:
        """Full ingestion and rebuild, then swap. Blocks the caller until published."""
        with self._write_lock:
            previous = self._state
            if previous is IndexState.READY:
                self._state = IndexState.REFRESHING
            try:
                result = self._loader(window)
                index = SpatialIndex.build(result.points())
            except Exception:
                self._state = previous
                raise

            snapshot = IndexSnapshot(index, self._snapshot.version + 1, result.window)
            self._snapshot = snapshot
            self._state = IndexState.READY

        logger.info(
            "Published index v%d with %d points (window %s .. %s)",
            snapshot.version, snapshot.point_count,
            snapshot.window.start if snapshot.window else None,
            snapshot.window.end if snapshot.window else None,
        )
        return snapshot

    def query(self, bbox: BBox) -> np.ndarray:
        snapshot = self._snapshot
        return snapshot.index.query_range(bbox)

    def render(self, zoom: int, x: int, y: int) -> bytes:
        validate_tile(zoom, x, y)
        bbox = tile_bbox(zoom, x, y)
        # Binning and encoding work on the collected points only.
        return render_tile(bbox, self.query(bbox))
