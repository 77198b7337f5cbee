from pathlib import Path
from typing import Iterator, List, Optional, Sequence
import logging

import pyarrow as pa
import pyarrow.parquet as pq

logger = logging.getLogger(__name__)

PARQUET_SUFFIX = ".parquet"


# ------------------------- Parquet source ------------------------- #
class ParquetSource:
    """
    Streams a Parquet file as Arrow tables, one row group at a time.

    Only the requested columns that actually exist in the file are read;
    callers decide what a missing column means.
    """

    def __init__(self, path, columns: Optional[Sequence[str]] = None):
        self.path = str(path)
        self._pf = pq.ParquetFile(self.path)
        self._schema = self._pf.schema_arrow
        self._num_row_groups = self._pf.num_row_groups
        if columns is None:
            self._columns = None
        else:
            self._columns = [c for c in columns if c in self._schema.names]
        logger.info("ParquetSource opened %s with %d row groups", self.path, self._num_row_groups)

    def schema(self) -> pa.Schema:
        return self._schema

    def column_names(self) -> List[str]:
        return list(self._schema.names)

    def iter_tables(self) -> Iterator[pa.Table]:
        for i in range(self._num_row_groups):
            logger.debug("Reading row group %d/%d of %s", i, self._num_row_groups, self.path)
            yield self._pf.read_row_group(i, columns=self._columns)


# ------------------------- Helpers ------------------------- #
def is_parquet_path(path) -> bool:
    return Path(path).suffix.lower() == PARQUET_SUFFIX


def find_parquet_files(root) -> List[Path]:
    """Recursively list Parquet files under ``root`` in a stable order."""
    root = Path(root)
    if not root.exists():
        logger.warning("Data root %s does not exist", root)
        return []
    if root.is_file():
        return [root] if is_parquet_path(root) else []
    return sorted(p for p in root.rglob("*") if p.is_file() and is_parquet_path(p))
