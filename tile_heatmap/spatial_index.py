from __future__ import annotations

import logging
from typing import Iterable, Iterator, NamedTuple, Union

import numpy as np
import shapely
from shapely.strtree import STRtree

from .helpers import BBox

logger = logging.getLogger(__name__)


class Point(NamedTuple):
    """Web Mercator meters."""

    x: float
    y: float


PointsLike = Union[np.ndarray, Iterable[Point], Iterable[tuple]]


def as_xy_array(points: PointsLike) -> np.ndarray:
    arr = np.asarray(points if isinstance(points, np.ndarray) else list(points), dtype=np.float64)
    if arr.size == 0:
        return np.empty((0, 2), dtype=np.float64)
    if arr.ndim != 2 or arr.shape[1] != 2:
        raise ValueError(f"Expected an (n, 2) array of points, got shape {arr.shape}")
    return arr


class SpatialIndex:
    """
    Immutable point index, bulk loaded into a Sort-Tile-Recursive R-tree.

    Each point is stored as a degenerate envelope at its own coordinates, so
    an envelope query with a closed box returns exactly the points inside it,
    boundary included. Duplicates are kept.
    """

    def __init__(self, xy: np.ndarray, node_capacity: int = 10):
        xy = np.array(xy, dtype=np.float64, copy=True).reshape(-1, 2)
        if not np.isfinite(xy).all():
            raise ValueError("Spatial index points must have finite coordinates")
        xy.setflags(write=False)
        self._xy = xy
        self._tree = STRtree(shapely.points(xy[:, 0], xy[:, 1]), node_capacity=node_capacity)

    @classmethod
    def build(cls, points: PointsLike, node_capacity: int = 10) -> "SpatialIndex":
        xy = as_xy_array(points)
        index = cls(xy, node_capacity=node_capacity)
        logger.debug("Bulk loaded spatial index with %d points", len(index))
        return index

    @classmethod
    def empty(cls) -> "SpatialIndex":
        return cls(np.empty((0, 2), dtype=np.float64))

    def __len__(self) -> int:
        return int(self._xy.shape[0])

    @property
    def points(self) -> np.ndarray:
        return self._xy

    def query_range(self, bbox: BBox) -> np.ndarray:
        """(k, 2) array of the points inside the closed box, in no particular order."""
        minx, miny, maxx, maxy = bbox
        if len(self) == 0 or minx > maxx or miny > maxy:
            return np.empty((0, 2), dtype=np.float64)
        idx = self._tree.query(shapely.box(minx, miny, maxx, maxy))
        return self._xy[np.asarray(idx, dtype=np.intp)]

    def iter_range(self, bbox: BBox) -> Iterator[Point]:
        for x, y in self.query_range(bbox):
            yield Point(float(x), float(y))
