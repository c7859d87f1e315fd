"""Tests for the temporal mapper."""

from datetime import datetime, timedelta, timezone

from fusion_engine.temporal import (
    TEMPORAL_START_UTC,
    date_from_slider_position,
    iso_day,
    parse_instant,
    temporal_window,
)

NOW = datetime(2025, 1, 1, tzinfo=timezone.utc)


class TestDateFromSliderPosition:
    """Linear mapping of 0..100 onto [start, now]."""

    def test_zero_is_start(self):
        assert date_from_slider_position(0, NOW) == TEMPORAL_START_UTC

    def test_hundred_is_now(self):
        assert date_from_slider_position(100, NOW) == NOW

    def test_hundred_without_now_is_wall_clock(self):
        result = date_from_slider_position(100)
        assert abs(datetime.now(timezone.utc) - result) < timedelta(seconds=5)

    def test_midpoint(self):
        expected = TEMPORAL_START_UTC + (NOW - TEMPORAL_START_UTC) / 2
        assert date_from_slider_position(50, NOW) == expected

    def test_clamps_out_of_range(self):
        assert date_from_slider_position(-20, NOW) == TEMPORAL_START_UTC
        assert date_from_slider_position(250, NOW) == NOW

    def test_monotonic(self):
        dates = [date_from_slider_position(p, NOW) for p in range(0, 101, 5)]
        assert dates == sorted(dates)

    def test_naive_now_taken_as_utc(self):
        naive = datetime(2025, 1, 1)
        assert date_from_slider_position(100, naive) == NOW


class TestIsoDay:

    def test_truncates_to_utc_day(self):
        late = datetime(2024, 3, 9, 23, 30, tzinfo=timezone(timedelta(hours=-5)))
        assert iso_day(late) == "2024-03-10"

    def test_window(self):
        assert temporal_window(100, NOW) == {"startDate": "2020-01-01", "endDate": "2025-01-01"}
        assert temporal_window(0, NOW)["endDate"] == "2020-01-01"


class TestParseInstant:

    def test_zulu(self):
        assert parse_instant("2024-05-01T12:00:00Z") == datetime(2024, 5, 1, 12, tzinfo=timezone.utc)

    def test_date_only(self):
        assert parse_instant("2024-05-01") == datetime(2024, 5, 1, tzinfo=timezone.utc)

    def test_unparseable(self):
        assert parse_instant("3 days ago") is None
        assert parse_instant("") is None
