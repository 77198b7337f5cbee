"""
Scalar value model for loosely-typed tabular columns.

Arrow column types are classified into a small set of kinds, and each
target (coordinate or timestamp) has its own conversion rules:

  coordinate:  float32/64, int32/64, uint32/64 -> float64; anything else
               (and nulls) -> 0.0
  timestamp:   timestamp[*]          -> instant
               int32/int64           -> epoch seconds
               date32/date64         -> midnight UTC of that day
               string                -> RFC3339, then "%Y-%m-%d %H:%M:%S"
               anything else (and nulls or unparseable values) -> NaT

Timestamps are carried as numpy ``datetime64[us]`` (naive, UTC) so that a
whole row group can be filtered without building Python objects.
"""
from __future__ import annotations

import enum
import logging
import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Union

import numpy as np
import pyarrow as pa
import pyarrow.compute as pc

logger = logging.getLogger(__name__)

NAT = np.datetime64("NaT", "us")

# Representable range of datetime, in epoch seconds.
MIN_EPOCH_SECONDS = -62135596800
MAX_EPOCH_SECONDS = 253402300799

NAIVE_FORMAT = "%Y-%m-%d %H:%M:%S"

_RFC3339 = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})[Tt ](\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?"
    r"(?:([Zz])|([+-])(\d{2}):(\d{2}))\Z"
)
_DATE_ONLY = re.compile(r"\d{4}-\d{2}-\d{2}\Z")
# RE2 pattern for pyarrow.compute; selects the rows worth handing to parse_rfc3339.
_RFC3339_SHAPE = r"^\s*\d{4}-\d{2}-\d{2}[Tt ]\d{2}:\d{2}:\d{2}(\.\d+)?([Zz]|[+-]\d{2}:\d{2})\s*$"
_NAIVE_FIELDS = (r"^(?P<year>\d+)-(?P<month>\d+)-(?P<day>\d+) "
                 r"(?P<hour>\d+):(?P<minute>\d+):(?P<second>\d+)$")

_UNIT_SECONDS = {"s": 1, "ms": 10 ** -3, "us": 10 ** -6, "ns": 10 ** -9}


class ScalarKind(enum.Enum):
    NUMERIC = "numeric"
    TEMPORAL = "temporal"
    TEXT = "text"
    UNSUPPORTED = "unsupported"


COORDINATE_TYPES = (
    pa.float32(), pa.float64(),
    pa.int32(), pa.int64(),
    pa.uint32(), pa.uint64(),
)
EPOCH_SECONDS_TYPES = (pa.int32(), pa.int64())


def scalar_kind(arrow_type: pa.DataType) -> ScalarKind:
    if pa.types.is_integer(arrow_type) or pa.types.is_floating(arrow_type):
        return ScalarKind.NUMERIC
    if pa.types.is_timestamp(arrow_type) or pa.types.is_date(arrow_type):
        return ScalarKind.TEMPORAL
    if pa.types.is_string(arrow_type) or pa.types.is_large_string(arrow_type):
        return ScalarKind.TEXT
    return ScalarKind.UNSUPPORTED


# ------------------------- text parsing ------------------------- #
def parse_rfc3339(text: str) -> Optional[datetime]:
    m = _RFC3339.match(text.strip())
    if m is None:
        return None
    year, month, day, hour, minute, second = (int(g) for g in m.groups()[:6])
    frac = m.group(7) or ""
    micros = int(frac[:6].ljust(6, "0")) if frac else 0

    if m.group(8):
        tz = timezone.utc
    else:
        offset = timedelta(hours=int(m.group(10)), minutes=int(m.group(11)))
        if m.group(9) == "-":
            offset = -offset
        try:
            tz = timezone(offset)
        except ValueError:
            return None

    try:
        dt = datetime(year, month, day, hour, minute, second, micros, tzinfo=tz)
        return dt.astimezone(timezone.utc)
    except (ValueError, OverflowError):
        return None


def parse_timestamp_text(text: str) -> Optional[datetime]:
    """RFC3339 first, then the naive pattern read as UTC."""
    dt = parse_rfc3339(text)
    if dt is not None:
        return dt
    try:
        return datetime.strptime(text, NAIVE_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        return None


def parse_window_bound(text: Optional[str], end_of_day: bool) -> Optional[datetime]:
    """
    Parse a user supplied window bound: RFC3339, or a bare YYYY-MM-DD
    which expands to 00:00:00 (start) or 23:59:59 (end) of that day.
    Returns None for missing or malformed input.
    """
    if not text:
        return None
    dt = parse_rfc3339(text)
    if dt is not None:
        return dt
    if _DATE_ONLY.match(text.strip()):
        try:
            d = date.fromisoformat(text.strip())
        except ValueError:
            return None
        t = time(23, 59, 59) if end_of_day else time(0, 0, 0)
        return datetime.combine(d, t, tzinfo=timezone.utc)
    return None


# ------------------------- numpy bridging ------------------------- #
def to_datetime64(dt: Union[datetime, np.datetime64, None]) -> np.datetime64:
    if dt is None:
        return NAT
    if isinstance(dt, np.datetime64):
        return dt.astype("datetime64[us]")
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return np.datetime64(dt, "us")


def from_datetime64(value: np.datetime64) -> Optional[datetime]:
    if np.isnat(value):
        return None
    micros = int(value.astype("datetime64[us]").astype(np.int64))
    return datetime(1970, 1, 1, tzinfo=timezone.utc) + timedelta(microseconds=micros)


def _as_array(column) -> pa.Array:
    if isinstance(column, pa.ChunkedArray):
        return column.combine_chunks()
    return column


def _valid_mask(column) -> np.ndarray:
    return np.asarray(pc.is_valid(column).to_numpy(zero_copy_only=False), dtype=bool)


def _int64_values(column) -> np.ndarray:
    if pa.types.is_date32(column.type):
        column = pc.cast(column, pa.int32())
    ints = pc.fill_null(pc.cast(column, pa.int64(), safe=False), 0)
    return np.asarray(ints.to_numpy(zero_copy_only=False), dtype=np.int64)


def _epoch_counts_to_datetime64(values: np.ndarray, valid: np.ndarray, seconds_per_unit: float,
                                unit: str) -> np.ndarray:
    lo = MIN_EPOCH_SECONDS / seconds_per_unit
    hi = MAX_EPOCH_SECONDS / seconds_per_unit
    valid = valid & (values >= lo) & (values <= hi)
    safe = np.where(valid, values, 0)
    out = safe.astype(f"datetime64[{unit}]").astype("datetime64[us]")
    out[~valid] = NAT
    return out


def _naive_text_timestamps(column: pa.Array) -> np.ndarray:
    """
    Vectorised NAIVE_FORMAT parse. strptime in Arrow normalises overflowing
    fields (Feb 30 becomes Mar 2), so a value only counts when every field
    read back from the instant equals the one written in the text.
    """
    parsed = pc.strptime(column, format=NAIVE_FORMAT, unit="us", error_is_null=True)
    written = pc.extract_regex(column, _NAIVE_FIELDS)
    valid = _valid_mask(parsed)
    for i, component in enumerate((pc.year, pc.month, pc.day, pc.hour, pc.minute, pc.second)):
        field_text = pc.struct_field(written, [i])
        same = pc.equal(pc.cast(field_text, pa.int64()), pc.cast(component(parsed), pa.int64()))
        valid &= np.asarray(pc.fill_null(same, False).to_numpy(zero_copy_only=False), dtype=bool)
    return _epoch_counts_to_datetime64(_int64_values(parsed), valid, _UNIT_SECONDS["us"], "us")


# ------------------------- column conversion ------------------------- #
def coordinates_from_column(column) -> np.ndarray:
    """Coerce a column to float64 coordinates; unsupported types and nulls become 0.0."""
    column = _as_array(column)
    n = len(column)
    if not any(column.type.equals(t) for t in COORDINATE_TYPES):
        logger.debug("coordinate column of type %s not numeric, defaulting to 0.0", column.type)
        return np.zeros(n, dtype=np.float64)
    floats = pc.fill_null(pc.cast(column, pa.float64(), safe=False), 0.0)
    return np.asarray(floats.to_numpy(zero_copy_only=False), dtype=np.float64)


def timestamps_from_column(column) -> np.ndarray:
    """Coerce a column to datetime64[us]; unparseable entries become NaT."""
    column = _as_array(column)
    n = len(column)
    arrow_type = column.type
    kind = scalar_kind(arrow_type)

    if kind is ScalarKind.TEMPORAL and pa.types.is_timestamp(arrow_type):
        unit = arrow_type.unit
        return _epoch_counts_to_datetime64(
            _int64_values(column), _valid_mask(column), _UNIT_SECONDS[unit], unit
        )

    if kind is ScalarKind.TEMPORAL and pa.types.is_date32(arrow_type):
        return _epoch_counts_to_datetime64(
            _int64_values(column), _valid_mask(column), 86_400, "D"
        )

    if kind is ScalarKind.TEMPORAL and pa.types.is_date64(arrow_type):
        return _epoch_counts_to_datetime64(
            _int64_values(column), _valid_mask(column), 10 ** -3, "ms"
        )

    if kind is ScalarKind.NUMERIC and any(arrow_type.equals(t) for t in EPOCH_SECONDS_TYPES):
        return _epoch_counts_to_datetime64(
            _int64_values(column), _valid_mask(column), 1, "s"
        )

    if kind is ScalarKind.TEXT:
        out = _naive_text_timestamps(column)
        # Rows shaped like RFC3339 take the Python path and win over the naive reading.
        offsets = pc.fill_null(pc.match_substring_regex(column, _RFC3339_SHAPE), False)
        for i in np.flatnonzero(offsets.to_numpy(zero_copy_only=False)):
            out[i] = to_datetime64(parse_rfc3339(column[int(i)].as_py()))
        return out

    logger.debug("timestamp column of type %s not convertible", arrow_type)
    return np.full(n, NAT, dtype="datetime64[us]")
