from __future__ import annotations

import io
import logging
from typing import Tuple

import numpy as np
from PIL import Image

from .helpers import TILE_SIZE, BBox, tile_bbox
from .spatial_index import PointsLike, SpatialIndex, as_xy_array

logger = logging.getLogger(__name__)


class TileEncodingError(RuntimeError):
    """The RGBA buffer could not be encoded as PNG."""


# ---------------------------------------------------------------------------
# BINNING
# ---------------------------------------------------------------------------

def bin_points(points: PointsLike, bbox: BBox, size: int = TILE_SIZE) -> Tuple[np.ndarray, int]:
    """
    Count points per pixel of a ``size`` x ``size`` grid covering ``bbox``.

    Row 0 is the northern edge. Points landing outside the grid (including
    those exactly on the east or south edge) are discarded.
    Returns the count grid and its maximum.
    """
    xy = as_xy_array(points)
    counts = np.zeros((size, size), dtype=np.uint32)
    if xy.shape[0] == 0:
        return counts, 0

    xleft, ybottom, xright, ytop = bbox
    with np.errstate(divide="ignore", invalid="ignore"):
        fx = np.floor((xy[:, 0] - xleft) / (xright - xleft) * size)
        fy = np.floor((ytop - xy[:, 1]) / (ytop - ybottom) * size)

    inside = (fx >= 0) & (fx < size) & (fy >= 0) & (fy < size)
    px = fx[inside].astype(np.int64)
    py = fy[inside].astype(np.int64)
    logger.debug("points processed: %d, inside grid: %d", xy.shape[0], px.size)

    if px.size:
        flat = np.bincount(py * size + px, minlength=size * size)
        counts = flat.reshape(size, size).astype(np.uint32)

    max_count = int(counts.max())
    logger.debug("max_count=%d", max_count)
    return counts, max_count


# ---------------------------------------------------------------------------
# COLOUR RAMP
# ---------------------------------------------------------------------------

def log_density(counts: np.ndarray, max_count: int) -> np.ndarray:
    """ln(1 + count) / ln(1 + max_count), in [0, 1]."""
    if max_count <= 0:
        return np.zeros(np.shape(counts), dtype=np.float64)
    return np.log1p(np.asarray(counts, dtype=np.float64)) / np.log1p(float(max_count))


def ramp_rgba(values: np.ndarray) -> np.ndarray:
    """Blue (sparse) to red (dense); zero or non-finite density is transparent."""
    values = np.asarray(values, dtype=np.float64)
    rgba = np.zeros(values.shape + (4,), dtype=np.uint8)

    visible = np.isfinite(values) & (values > 0)
    intensity = np.clip(np.sqrt(np.where(visible, values, 0.0)), 0.0, 1.0)
    red = np.rint(255.0 * intensity).astype(np.uint8)

    rgba[..., 0] = np.where(visible, red, 0)
    rgba[..., 2] = np.where(visible, 255 - red, 0)
    rgba[..., 3] = np.where(visible, 255, 0)
    return rgba


def color_map(value: float) -> Tuple[int, int, int, int]:
    r, g, b, a = ramp_rgba(np.array([value]))[0]
    return int(r), int(g), int(b), int(a)


def density_to_rgba(counts: np.ndarray, max_count: int) -> np.ndarray:
    return ramp_rgba(log_density(counts, max_count))


# ---------------------------------------------------------------------------
# ENCODING
# ---------------------------------------------------------------------------

def encode_png(rgba: np.ndarray) -> bytes:
    buf = io.BytesIO()
    try:
        Image.fromarray(np.ascontiguousarray(rgba, dtype=np.uint8)).save(buf, format="PNG")
    except (OSError, ValueError, TypeError) as e:
        raise TileEncodingError(f"PNG encoding failed: {e}") from e
    return buf.getvalue()


# ---------------------------------------------------------------------------
# PUBLIC API
# ---------------------------------------------------------------------------

def render_tile(bbox: BBox, points: PointsLike, size: int = TILE_SIZE) -> bytes:
    counts, max_count = bin_points(points, bbox, size)
    if max_count == 0:
        rgba = np.zeros((size, size, 4), dtype=np.uint8)
    else:
        rgba = density_to_rgba(counts, max_count)
    return encode_png(rgba)


def generate_tile(zoom: int, x: int, y: int, index: SpatialIndex) -> bytes:
    logger.debug("generate_tile z=%d x=%d y=%d", zoom, x, y)
    bbox = tile_bbox(zoom, x, y)
    return render_tile(bbox, index.query_range(bbox))
