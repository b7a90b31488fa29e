from datetime import datetime, timedelta

import pytest

from erp_api.passwords import validate_password_strength
from erp_api.utils import minutes_until, parse_duration


@pytest.mark.parametrize(
    "value, expected",
    [
        ("30m", timedelta(minutes=30)),
        ("7d", timedelta(days=7)),
        ("24h", timedelta(hours=24)),
        ("90s", timedelta(seconds=90)),
        (" 15m ", timedelta(minutes=15)),
    ],
)
def test_parse_duration(value, expected):
    assert parse_duration(value) == expected


@pytest.mark.parametrize("value", ["", None, "soon", "10w", "-5m", "m30"])
def test_parse_duration_falls_back_to_a_day(value):
    assert parse_duration(value) == timedelta(hours=24)


def test_minutes_until_rounds_up():
    now = datetime(2024, 1, 1, 12, 0, 0)
    assert minutes_until(now + timedelta(minutes=29, seconds=1), now) == 30
    assert minutes_until(now + timedelta(minutes=30), now) == 30


def test_minutes_until_never_negative():
    now = datetime(2024, 1, 1, 12, 0, 0)
    assert minutes_until(now - timedelta(minutes=5), now) == 0


def test_strong_password_passes():
    assert validate_password_strength("Str0ng!Passw0rd") == []


def test_empty_password():
    assert validate_password_strength("") == ["Password is required"]


def test_weak_password_lists_every_broken_rule():
    errors = validate_password_strength("abc")
    assert "Password must be at least 8 characters long" in errors
    assert "Password must contain at least one uppercase letter" in errors
    assert "Password must contain at least one number" in errors
    assert "Password must contain at least one special character" in errors
    assert "Password must contain at least one lowercase letter" not in errors


def test_overlong_password():
    errors = validate_password_strength("Aa1!" * 40)
    assert errors == ["Password must not exceed 128 characters"]
