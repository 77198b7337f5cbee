from datetime import datetime, timedelta, timezone
from pathlib import Path

import pyarrow as pa
import pyarrow.parquet as pq
import pytest

from tile_heatmap.config import IngestConfig


T0 = datetime(2023, 5, 2, 0, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def write_parquet(tmp_path):
    """Write a dict of columns (or a pa.Table) to a parquet file under tmp_path."""

    def _write(relpath, columns, row_group_size=None):
        path = Path(tmp_path) / relpath
        path.parent.mkdir(parents=True, exist_ok=True)
        table = columns if isinstance(columns, pa.Table) else pa.table(columns)
        pq.write_table(table, path, row_group_size=row_group_size)
        return path

    return _write


@pytest.fixture
def meters_cfg():
    """Ingest config that indexes raw column values as meters."""
    return IngestConfig(source_crs="EPSG:3857", max_workers=2)


@pytest.fixture
def hourly_offsets():
    return [timedelta(hours=h) for h in (48, 30, 12, 0)]
