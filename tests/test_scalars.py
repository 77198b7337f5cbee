"""
Tests for column classification and coordinate / timestamp coercion.
"""

from datetime import date, datetime, timezone

import numpy as np
import pyarrow as pa
import pytest

from tile_heatmap.scalars import (
    ScalarKind,
    coordinates_from_column,
    from_datetime64,
    parse_timestamp_text,
    parse_window_bound,
    scalar_kind,
    timestamps_from_column,
    to_datetime64,
)

TEN_AM = datetime(2023, 5, 1, 10, 0, 0, tzinfo=timezone.utc)
TEN_AM_EPOCH = 1682935200
TEN_AM_64 = np.datetime64("2023-05-01T10:00:00", "us")


class TestScalarKind:

    @pytest.mark.parametrize("arrow_type,kind", [
        (pa.float64(), ScalarKind.NUMERIC),
        (pa.uint32(), ScalarKind.NUMERIC),
        (pa.timestamp("ms"), ScalarKind.TEMPORAL),
        (pa.date32(), ScalarKind.TEMPORAL),
        (pa.string(), ScalarKind.TEXT),
        (pa.large_string(), ScalarKind.TEXT),
        (pa.bool_(), ScalarKind.UNSUPPORTED),
        (pa.binary(), ScalarKind.UNSUPPORTED),
    ])
    def test_classification(self, arrow_type, kind):
        assert scalar_kind(arrow_type) is kind


class TestCoordinates:

    @pytest.mark.parametrize("arrow_type", [
        pa.float64(), pa.float32(), pa.int32(), pa.int64(), pa.uint32(), pa.uint64(),
    ])
    def test_numeric_types_coerce(self, arrow_type):
        out = coordinates_from_column(pa.array([1, 2, 42], type=arrow_type))
        assert out.dtype == np.float64
        np.testing.assert_allclose(out, [1.0, 2.0, 42.0])

    def test_nulls_default_to_zero(self):
        out = coordinates_from_column(pa.array([1.5, None, -3.0], type=pa.float64()))
        np.testing.assert_array_equal(out, [1.5, 0.0, -3.0])

    @pytest.mark.parametrize("column", [
        pa.array(["1.0", "2.0"]),
        pa.array([1, 2], type=pa.int16()),
        pa.array([True, False]),
    ])
    def test_unsupported_types_default_to_zero(self, column):
        np.testing.assert_array_equal(coordinates_from_column(column), [0.0, 0.0])

    def test_chunked_column(self):
        column = pa.chunked_array([[1.0, 2.0], [3.0]])
        np.testing.assert_array_equal(coordinates_from_column(column), [1.0, 2.0, 3.0])


class TestTimestamps:

    @pytest.mark.parametrize("unit", ["s", "ms", "us", "ns"])
    def test_timestamp_units(self, unit):
        column = pa.array([TEN_AM, None], type=pa.timestamp(unit, tz="UTC"))
        out = timestamps_from_column(column)
        assert out[0] == TEN_AM_64
        assert np.isnat(out[1])

    def test_timestamp_with_offset_zone_is_utc_instant(self):
        column = pa.array([TEN_AM], type=pa.timestamp("ms", tz="Europe/Paris"))
        assert timestamps_from_column(column)[0] == TEN_AM_64

    @pytest.mark.parametrize("arrow_type", [pa.int32(), pa.int64()])
    def test_signed_integers_are_epoch_seconds(self, arrow_type):
        out = timestamps_from_column(pa.array([TEN_AM_EPOCH], type=arrow_type))
        assert out[0] == TEN_AM_64

    def test_unsigned_integers_are_not_timestamps(self):
        out = timestamps_from_column(pa.array([TEN_AM_EPOCH], type=pa.uint32()))
        assert np.isnat(out[0])

    def test_out_of_range_epoch_dropped(self):
        out = timestamps_from_column(pa.array([2 ** 62], type=pa.int64()))
        assert np.isnat(out[0])

    def test_date32_is_midnight(self):
        out = timestamps_from_column(pa.array([date(2023, 5, 1)], type=pa.date32()))
        assert out[0] == np.datetime64("2023-05-01T00:00:00", "us")

    def test_date64_is_midnight(self):
        out = timestamps_from_column(pa.array([date(2023, 5, 1)], type=pa.date64()))
        assert out[0] == np.datetime64("2023-05-01T00:00:00", "us")

    def test_string_fallback_order(self):
        column = pa.array([
            "2023-05-01T10:00:00Z",
            "2023-05-01 10:00:00",
            "2023-05-01T12:00:00+02:00",
            "yesterday-ish",
            None,
        ])
        out = timestamps_from_column(column)
        assert out[0] == TEN_AM_64
        assert out[1] == TEN_AM_64
        assert out[2] == TEN_AM_64
        assert np.isnat(out[3])
        assert np.isnat(out[4])

    def test_floats_are_not_timestamps(self):
        out = timestamps_from_column(pa.array([float(TEN_AM_EPOCH)]))
        assert np.isnat(out[0])

    def test_space_separated_offset_is_not_read_as_naive(self):
        out = timestamps_from_column(pa.array(["2023-05-01 12:00:00+02:00", "2023-05-01 12:00:00"]))
        assert out[0] == TEN_AM_64
        assert out[1] == np.datetime64("2023-05-01T12:00:00", "us")

    def test_invalid_rfc3339_dates_are_nat(self):
        out = timestamps_from_column(pa.array(["2023-02-30T10:00:00Z", "2023-02-30 10:00:00"]))
        assert np.isnat(out).all()

    def test_string_column_agrees_with_scalar_parser(self):
        texts = ["2023-05-01 10:00:00", None, "2023-05-01T10:00:00.250Z", "", "2023-05-01"] * 50
        column = pa.chunked_array([pa.array(texts[:120], type=pa.large_string()),
                                   pa.array(texts[120:], type=pa.large_string())])
        out = timestamps_from_column(column)
        expected = [to_datetime64(parse_timestamp_text(t)) if t is not None else np.datetime64("NaT", "us")
                    for t in texts]
        assert out.tolist() == np.array(expected, dtype="datetime64[us]").tolist()


class TestTextParsing:

    def test_rfc3339_fraction(self):
        dt = parse_timestamp_text("2023-05-01T10:00:00.123456789Z")
        assert dt == TEN_AM.replace(microsecond=123456)

    def test_rfc3339_requires_offset(self):
        assert parse_timestamp_text("2023-05-01T10:00:00") is None

    def test_naive_pattern_is_utc(self):
        assert parse_timestamp_text("2023-05-01 10:00:00") == TEN_AM

    def test_invalid_calendar_date(self):
        assert parse_timestamp_text("2023-02-30T10:00:00Z") is None


class TestWindowBounds:

    def test_date_start_is_midnight(self):
        assert parse_window_bound("2023-05-01", end_of_day=False) == datetime(2023, 5, 1, tzinfo=timezone.utc)

    def test_date_end_is_last_second(self):
        assert parse_window_bound("2023-05-01", end_of_day=True) == datetime(
            2023, 5, 1, 23, 59, 59, tzinfo=timezone.utc)

    def test_rfc3339_kept_as_is(self):
        assert parse_window_bound("2023-05-01T10:00:00Z", end_of_day=True) == TEN_AM

    @pytest.mark.parametrize("text", [None, "", "garbage", "2023-13-01", "2023-05-01 10:00:00"])
    def test_malformed_is_none(self, text):
        assert parse_window_bound(text, end_of_day=False) is None


class TestDatetime64Bridge:

    def test_round_trip(self):
        assert from_datetime64(to_datetime64(TEN_AM)) == TEN_AM

    def test_naive_read_as_utc(self):
        assert to_datetime64(datetime(2023, 5, 1, 10)) == TEN_AM_64

    def test_nat(self):
        assert from_datetime64(np.datetime64("NaT", "us")) is None
        assert np.isnat(to_datetime64(None))
