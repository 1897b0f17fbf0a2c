"""Tests for utils/timezone.py - UTC-everywhere time handling."""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from utils.timezone import from_timestamp, now_utc, to_timestamp, to_utc


class TestNowUtc:
    """Tests for now_utc()."""

    def test_returns_timezone_aware(self):
        """Result must have tzinfo set (not naive)."""
        assert now_utc().tzinfo is not None

    def test_is_utc(self):
        """Result timezone must be specifically UTC."""
        assert now_utc().tzinfo == timezone.utc


class TestToUtc:
    """Tests for to_utc()."""

    def test_raises_on_naive(self):
        """Naive datetime must raise ValueError."""
        with pytest.raises(ValueError, match="naive"):
            to_utc(datetime(2024, 1, 1, 12, 0, 0))

    def test_converts_other_timezone(self):
        """Chicago 12:00 in January should become UTC 18:00."""
        chicago = datetime(2024, 1, 1, 12, 0, 0, tzinfo=ZoneInfo("America/Chicago"))
        result = to_utc(chicago)
        assert result.tzinfo == timezone.utc
        assert result.hour == 18


class TestTimestamps:
    """Tests for JWT-style POSIX second conversion."""

    def test_from_timestamp_is_aware_utc(self):
        result = from_timestamp(0)
        assert result == datetime(1970, 1, 1, tzinfo=timezone.utc)

    def test_to_timestamp_drops_microseconds(self):
        dt = datetime(2026, 1, 1, 12, 0, 0, 999999, tzinfo=timezone.utc)
        assert to_timestamp(dt) == int(datetime(2026, 1, 1, 12, tzinfo=timezone.utc).timestamp())

    def test_to_timestamp_rejects_naive(self):
        with pytest.raises(ValueError):
            to_timestamp(datetime(2026, 1, 1))

    def test_roundtrip_whole_seconds(self):
        dt = datetime(2026, 3, 4, 5, 6, 7, tzinfo=timezone.utc)
        assert from_timestamp(to_timestamp(dt)) == dt
