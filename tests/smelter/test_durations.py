from __future__ import annotations

import datetime as dt

import pytest
from hypothesis import given
from hypothesis import strategies as st

from smelter.durations import format_duration, parse_duration


@pytest.mark.parametrize(
    ("raw", "seconds"),
    [
        ("30s", 30),
        ("1m", 60),
        ("1h30m", 5400),
        ("250ms", 0.25),
        ("1.5s", 1.5),
        ("0", 0),
        ("-2m", -120),
        ("+5s", 5),
        ("2h0m0s", 7200),
    ],
)
def test_parse_duration_accepts_go_style_strings(raw: str, seconds: float) -> None:
    assert parse_duration(raw) == dt.timedelta(seconds=seconds)


@pytest.mark.parametrize(
    "raw",
    ["", "30", "5x", "1h 30m", "m", "-", "1.h2", "99999999999999h", "1" + "0" * 400 + "s"],
)
def test_parse_duration_rejects_invalid_strings(raw: str) -> None:
    with pytest.raises(ValueError, match="invalid duration"):
        parse_duration(raw)


def test_format_duration_uses_largest_units() -> None:
    assert format_duration(dt.timedelta(seconds=30)) == "30s"
    assert format_duration(dt.timedelta(minutes=5)) == "5m0s"
    assert format_duration(dt.timedelta(hours=1, seconds=1)) == "1h0m1s"
    assert format_duration(dt.timedelta(0)) == "0s"
    assert format_duration(dt.timedelta(seconds=-90)) == "-1m30s"


@given(st.integers(min_value=0, max_value=10 * 24 * 3600))
def test_format_duration_parses_back_to_the_same_value(seconds: int) -> None:
    delta = dt.timedelta(seconds=seconds)

    assert parse_duration(format_duration(delta)) == delta
