from __future__ import annotations

import sys
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from config import settings  # noqa: E402
from utils.datetime_utils import (  # noqa: E402
    days_between,
    days_in_month,
    format_date_key,
    month_bounds,
    normalize_to_midnight,
    parse_date_key,
    parse_date_param,
    week_dates_containing,
)


@pytest.mark.parametrize("key", ["2024-01-01", "2024-02-29", "1999-12-31", "2030-07-04", "2024-10-27"])
def test_date_key_round_trip(key):
    assert format_date_key(parse_date_key(key)) == key


def test_parse_date_key_returns_local_midnight():
    parsed = parse_date_key("2024-03-09")
    assert parsed == datetime(2024, 3, 9, 0, 0, 0, 0)
    assert parsed.tzinfo is None


@pytest.mark.parametrize("raw", ["2024-1-01", "20240101", "", "2024-13-01"])
def test_parse_date_key_rejects_malformed_keys(raw):
    with pytest.raises(ValueError):
        parse_date_key(raw)


def test_normalize_to_midnight_strips_time_and_is_idempotent():
    instant = datetime(2024, 6, 15, 23, 59, 59, 999999)
    once = normalize_to_midnight(instant)
    assert once == datetime(2024, 6, 15)
    assert normalize_to_midnight(once) == once
    assert normalize_to_midnight(date(2024, 6, 15)) == once


def test_aware_instants_are_bucketed_in_local_zone(monkeypatch):
    monkeypatch.setattr(settings, "LOCAL_TIMEZONE", "America/New_York")
    late_utc = datetime(2024, 1, 1, 3, 0, tzinfo=timezone.utc)
    # 22:00 on Dec 31st in New York, not Jan 1st as a UTC rendering would say
    assert normalize_to_midnight(late_utc) == datetime(2023, 12, 31)
    assert format_date_key(late_utc) == "2023-12-31"


def test_parse_date_param_accepts_keys_and_iso_timestamps(monkeypatch):
    monkeypatch.setattr(settings, "LOCAL_TIMEZONE", "America/New_York")
    assert parse_date_param("2024-02-29") == datetime(2024, 2, 29)
    assert parse_date_param("2024-03-01T02:30:00Z") == datetime(2024, 2, 29)
    assert parse_date_param("2024-03-01T14:30:00") == datetime(2024, 3, 1)
    with pytest.raises(ValueError):
        parse_date_param("yesterday")


def test_week_dates_properties_hold_for_a_full_year():
    day = datetime(2024, 1, 1, 13, 45)
    for _ in range(366):
        week = week_dates_containing(day)
        assert len(week) == 7
        assert week == sorted(week)
        assert week[0].weekday() == 0
        assert normalize_to_midnight(day) in week
        assert all(later - earlier == timedelta(days=1) for earlier, later in zip(week, week[1:]))
        day += timedelta(days=1)


def test_sunday_belongs_to_the_preceding_monday():
    week = week_dates_containing(datetime(2024, 1, 7))
    assert format_date_key(week[0]) == "2024-01-01"
    assert format_date_key(week[-1]) == "2024-01-07"


def test_week_spanning_two_months():
    keys = [format_date_key(d) for d in week_dates_containing(datetime(2024, 2, 1))]
    assert keys == [
        "2024-01-29",
        "2024-01-30",
        "2024-01-31",
        "2024-02-01",
        "2024-02-02",
        "2024-02-03",
        "2024-02-04",
    ]


def test_days_between_is_whole_days():
    assert days_between(datetime(2024, 3, 11), datetime(2024, 3, 10)) == 1
    assert days_between(datetime(2024, 11, 4), datetime(2024, 11, 3)) == 1
    assert days_between(datetime(2024, 3, 1), datetime(2024, 2, 1)) == 29
    assert days_between(datetime(2024, 1, 1), datetime(2024, 1, 3)) == -2


def test_month_helpers_handle_leap_years():
    assert days_in_month(2024, 2) == 29
    assert days_in_month(2023, 2) == 28
    assert month_bounds(2024, 4) == (datetime(2024, 4, 1), datetime(2024, 4, 30))
