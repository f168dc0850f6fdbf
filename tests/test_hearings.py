from datetime import datetime, timedelta

import pytest

from conftest import NOW
from services.cases import CaseRecord
from services.hearings import (
    APPEAL,
    FIRST_INSTANCE,
    evaluate_hearing,
    find_candidates,
    format_hearing_datetime,
    is_within_window,
    normalize_hearing_text,
    notification_window,
    parse_hearing_datetime,
)


@pytest.mark.parametrize("offset", [timedelta(hours=23), timedelta(hours=23, minutes=30), timedelta(hours=24)])
def test_window_bounds_are_inclusive(offset):
    assert is_within_window(NOW + offset, NOW)


@pytest.mark.parametrize(
    "offset",
    [timedelta(hours=22, minutes=59), timedelta(hours=24, minutes=1), timedelta(hours=1), -timedelta(hours=1)],
)
def test_outside_window_does_not_match(offset):
    assert not is_within_window(NOW + offset, NOW)


def test_notification_window_span():
    start, end = notification_window(NOW)
    assert start == datetime(2025, 8, 23, 9, 0)
    assert end == datetime(2025, 8, 23, 10, 0)


def test_day_first_and_iso_parse_identically():
    assert parse_hearing_datetime("22-01-2025 14:30") == parse_hearing_datetime("2025-01-22T14:30")
    assert parse_hearing_datetime("22-01-2025 14:30") == datetime(2025, 1, 22, 14, 30)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("22/01/2025 14:30", datetime(2025, 1, 22, 14, 30)),
        ("2-1-2025 9:05", datetime(2025, 1, 2, 9, 5)),
        ("  22-01-2025 14:30  ", datetime(2025, 1, 22, 14, 30)),
        ("2025-01-22T14:30:15", datetime(2025, 1, 22, 14, 30, 15)),
        ("2025-01-22T14:30:00.250", datetime(2025, 1, 22, 14, 30, 0, 250000)),
        ("2025-01-22 14:30", datetime(2025, 1, 22, 14, 30)),
    ],
)
def test_supported_formats(raw, expected):
    assert parse_hearing_datetime(raw) == expected


def test_utc_suffix_is_converted_to_register_time():
    # Tirana is UTC+1 in January and UTC+2 in August.
    assert parse_hearing_datetime("2025-01-22T13:30:00.000Z") == datetime(2025, 1, 22, 14, 30)
    assert parse_hearing_datetime("2025-08-23T08:00Z") == datetime(2025, 8, 23, 10, 0)
    assert parse_hearing_datetime("2025-08-23T08:00Z", "UTC") == datetime(2025, 8, 23, 8, 0)


@pytest.mark.parametrize(
    "raw",
    ["not-a-date", "", "   ", None, 42, "32-13-2025 10:00", "22-01-2025 xx:yy", "2025-02-30T10:00"],
)
def test_unparsable_input_fails_closed(raw):
    assert parse_hearing_datetime(raw) is None
    assert evaluate_hearing(raw, NOW) is None


def test_normalize_leaves_other_shapes_alone():
    assert normalize_hearing_text("2025-01-22T14:30") == "2025-01-22T14:30"
    assert normalize_hearing_text("2025-01-22 14:30") == "2025-01-22 14:30"
    assert normalize_hearing_text("22-01-2025 14:30") == "2025-01-22T14:30"


def test_evaluate_returns_parsed_time_on_match():
    assert evaluate_hearing("23-08-2025 10:00", NOW) == datetime(2025, 8, 23, 10, 0)
    assert evaluate_hearing("24-08-2025 10:00", NOW) is None


def test_lower_bound_still_matches_one_hour_later():
    # At 11:00 the hearing sits exactly on the inclusive lower bound; the
    # ledger is what keeps this second sighting from sending again.
    later = NOW + timedelta(hours=1)
    assert evaluate_hearing("23-08-2025 10:00", later) is not None
    assert evaluate_hearing("23-08-2025 10:00", later + timedelta(minutes=1)) is None


def test_window_uses_wall_clock_hours_across_dst_change():
    # Europe/Tirane moves to summer time at 02:00 on 30 March 2025.
    day_before = datetime(2025, 3, 29, 10, 0)
    expected = datetime(2025, 3, 30, 10, 0)

    assert evaluate_hearing("30-03-2025 10:00", day_before) == expected
    assert evaluate_hearing("2025-03-30T08:00:00Z", day_before) == expected
    assert evaluate_hearing("30-03-2025 10:01", day_before) is None


def test_find_candidates_checks_each_hearing_independently():
    records = [
        CaseRecord(1, "Alba Shpk", "Albpetrol", first_instance_hearing="23-08-2025 09:30",
                   appeal_hearing="2025-08-23T10:00"),
        CaseRecord(2, "Besa", "Drini", first_instance_hearing="30-08-2025 09:30"),
        CaseRecord(3, "Gjon", "Lek", appeal_hearing="garbage"),
        CaseRecord(4, "Ilir", "Mira", first_instance_hearing=None, appeal_hearing="23-08-2025 09:15"),
    ]

    candidates = find_candidates(records, NOW)

    assert [(c.case_id, c.hearing_type) for c in candidates] == [
        (1, FIRST_INSTANCE),
        (1, APPEAL),
        (4, APPEAL),
    ]
    first = candidates[0]
    assert first.raw_timestamp == "23-08-2025 09:30"
    assert first.hearing_datetime_iso == "2025-08-23T09:30"
    assert first.plaintiff_name == "Alba Shpk"
    assert first.to_json()["hearingTimestamp"] == "23-08-2025 09:30"


def test_format_hearing_datetime():
    assert format_hearing_datetime(datetime(2025, 8, 3, 7, 5)) == "03-08-2025 07:05"
