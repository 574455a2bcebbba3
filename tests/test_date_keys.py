# tests/test_date_keys.py
import datetime
import pytest

from utils import date_keys
from utils.date_keys import (
    days_between_inclusive,
    is_date_key,
    month_bounds,
    parse_date_key,
    parse_timestamp,
    resolve_local_date,
    shift_month,
    to_date_key,
    tz_from_name,
)


def test_to_date_key_zero_pads():
    assert to_date_key(datetime.date(2024, 3, 7)) == "2024-03-07"
    assert to_date_key(datetime.datetime(2024, 3, 7, 23, 59)) == "2024-03-07"
    assert to_date_key(datetime.date(987, 1, 2)) == "0987-01-02"


def test_date_key_round_trip_over_leap_year():
    d = datetime.date(2023, 12, 25)
    while d <= datetime.date(2025, 1, 5):
        key = to_date_key(d)
        assert parse_date_key(key) == d
        assert to_date_key(parse_date_key(key)) == key
        d += datetime.timedelta(days=1)


def test_string_order_matches_date_order():
    days = [datetime.date(2024, 1, 9), datetime.date(2023, 12, 31), datetime.date(2024, 10, 1)]
    assert sorted(to_date_key(d) for d in days) == [to_date_key(d) for d in sorted(days)]


@pytest.mark.parametrize("bad", ["2024-3-7", "2024-02-30", "20240307", "", None, "2024-03-07T00:00:00", 20240307])
def test_parse_date_key_rejects_non_canonical(bad):
    with pytest.raises(ValueError):
        parse_date_key(bad)
    assert is_date_key(bad) is False


def test_utc_event_buckets_to_los_angeles_local_day():
    # 07:10 UTC on March 1st is 23:10 PST on February 29th (DST starts March 10th).
    ts = datetime.datetime(2024, 3, 1, 7, 10, tzinfo=datetime.timezone.utc)
    assert to_date_key(ts, "America/Los_Angeles") == "2024-02-29"
    assert to_date_key(ts, "UTC") == "2024-03-01"


def test_dst_offset_is_used_after_spring_forward():
    # 06:30 UTC on March 15th is 23:30 PDT (UTC-7) on March 14th.
    ts = datetime.datetime(2024, 3, 15, 6, 30, tzinfo=datetime.timezone.utc)
    assert to_date_key(ts, "America/Los_Angeles") == "2024-03-14"
    # One hour later it is already the 15th locally.
    assert to_date_key(ts + datetime.timedelta(hours=1), "America/Los_Angeles") == "2024-03-15"


def test_tz_from_name_aliases_and_fallback(monkeypatch):
    assert tz_from_name(None) is datetime.timezone.utc
    assert tz_from_name("utc") is datetime.timezone.utc
    monkeypatch.setattr(date_keys.config, "DEFAULT_TIMEZONE", "Europe/Warsaw")
    assert str(tz_from_name("Not/AZone")) == "Europe/Warsaw"


@pytest.mark.parametrize(
    "value, expected",
    [
        ("2024-03-01T07:10:00Z", datetime.datetime(2024, 3, 1, 7, 10, tzinfo=datetime.timezone.utc)),
        ("2024-03-01T07:10:00.123456Z", datetime.datetime(2024, 3, 1, 7, 10, 0, 123456, tzinfo=datetime.timezone.utc)),
        ("2024-03-01 07:10:00", datetime.datetime(2024, 3, 1, 7, 10, tzinfo=datetime.timezone.utc)),
        ("2024-03-01T00:10:00-07:00", datetime.datetime(2024, 3, 1, 7, 10, tzinfo=datetime.timezone.utc)),
        (1709277000, datetime.datetime(2024, 3, 1, 7, 10, tzinfo=datetime.timezone.utc)),
        (1709277000000, datetime.datetime(2024, 3, 1, 7, 10, tzinfo=datetime.timezone.utc)),
    ],
)
def test_parse_timestamp_accepts_common_shapes(value, expected):
    assert parse_timestamp(value) == expected


@pytest.mark.parametrize("value", [None, "", "yesterday", "2024-13-45T99:00:00Z", True, {"a": 1}])
def test_parse_timestamp_returns_none_for_garbage(value):
    assert parse_timestamp(value) is None


def test_resolve_local_date_keeps_all_day_dates():
    assert resolve_local_date("2024-03-01", "America/Los_Angeles") == datetime.date(2024, 3, 1)
    assert resolve_local_date("2024-03-01T07:10:00Z", "America/Los_Angeles") == datetime.date(2024, 2, 29)
    assert resolve_local_date("nope", "America/Los_Angeles") is None


def test_calendar_helpers():
    assert days_between_inclusive(datetime.date(2024, 6, 10), datetime.date(2024, 6, 14)) == 5
    assert days_between_inclusive(datetime.date(2024, 6, 10), datetime.date(2024, 6, 10)) == 1
    assert days_between_inclusive(datetime.date(2024, 6, 11), datetime.date(2024, 6, 10)) == 0
    assert month_bounds(2024, 2) == (datetime.date(2024, 2, 1), datetime.date(2024, 2, 29))
    assert month_bounds(2023, 2)[1] == datetime.date(2023, 2, 28)
    assert shift_month(2024, 1, -1) == (2023, 12)
    assert shift_month(2024, 12, 1) == (2025, 1)
    assert shift_month(2024, 6, -18) == (2022, 12)
