import math
import logging
from typing import NamedTuple, Tuple

logger = logging.getLogger(__name__)

EARTH_RADIUS = 6378137.0
ORIGIN_SHIFT = math.pi * EARTH_RADIUS

TILE_SIZE = 256
MAX_ZOOM = 30


class InvalidTileError(ValueError):
    """Tile address outside the XYZ pyramid."""


class TileAddress(NamedTuple):
    zoom: int
    x: int
    y: int


class BBox(NamedTuple):
    """Axis-aligned box in Web Mercator meters, closed on all sides."""

    minx: float
    miny: float
    maxx: float
    maxy: float

    def contains(self, x: float, y: float) -> bool:
        return self.minx <= x <= self.maxx and self.miny <= y <= self.maxy


def validate_tile(zoom: int, x: int, y: int) -> TileAddress:
    if zoom < 0 or zoom > MAX_ZOOM:
        raise InvalidTileError(f"zoom {zoom} outside [0, {MAX_ZOOM}]")
    n = 1 << zoom
    if not (0 <= x < n and 0 <= y < n):
        raise InvalidTileError(f"tile ({x}, {y}) outside [0, {n}) at zoom {zoom}")
    return TileAddress(zoom, x, y)


def lng_lat_to_meters(lon: float, lat: float) -> Tuple[float, float]:
    """
    Project WGS84 degrees to EPSG:3857 meters.

    Diverges as lat approaches +/-90; tiles never ask for those rows.
    """
    x = lon * ORIGIN_SHIFT / 180.0
    y = math.log(math.tan((90.0 + lat) * math.pi / 360.0)) * ORIGIN_SHIFT / math.pi
    logger.debug("lng_lat_to_meters lon=%s lat=%s -> (%s, %s)", lon, lat, x, y)
    return x, y


def meters_to_lng_lat(mx: float, my: float) -> Tuple[float, float]:
    lon = mx / ORIGIN_SHIFT * 180.0
    lat = math.degrees(2.0 * math.atan(math.exp(my / ORIGIN_SHIFT * math.pi)) - math.pi / 2.0)
    return lon, lat


def tile_to_lng_lat(x: int, y: int, zoom: int) -> Tuple[float, float]:
    """Top-left corner of slippy tile (x, y) in degrees."""
    n = 2.0 ** zoom
    lon_deg = x / n * 360.0 - 180.0
    lat_rad = math.atan(math.sinh(math.pi * (1.0 - 2.0 * y / n)))
    return lon_deg, math.degrees(lat_rad)


def tile_origin(x: int, y: int, zoom: int) -> Tuple[float, float]:
    lon_deg, lat_deg = tile_to_lng_lat(x, y, zoom)
    res = lng_lat_to_meters(lon_deg, lat_deg)
    logger.debug(
        "tile_origin x=%d y=%d z=%d lon=%s lat=%s -> (%s, %s)",
        x, y, zoom, lon_deg, lat_deg, res[0], res[1],
    )
    return res


def tile_bbox(zoom: int, x: int, y: int) -> BBox:
    # South-east corner is the origin of the diagonal neighbour.
    xleft, ytop = tile_origin(x, y, zoom)
    xright, ybottom = tile_origin(x + 1, y + 1, zoom)
    logger.debug("bbox: [%s, %s]-[%s, %s]", xleft, ybottom, xright, ytop)
    return BBox(xleft, ybottom, xright, ytop)
