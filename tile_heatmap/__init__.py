from .helpers import BBox, InvalidTileError, TileAddress, lng_lat_to_meters, tile_bbox, tile_origin
from .ingest import IngestResult, TimeWindow, load_points_from_dir
from .spatial_index import Point, SpatialIndex
from .heatmap import TileEncodingError, generate_tile, render_tile
from .refresh import IndexCoordinator, IndexSnapshot, IndexState

__version__ = "0.1.0"
