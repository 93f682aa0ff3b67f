"""
Unit tests for rotation assignment logic.

Tests verify that assign() picks the right member from the layer start date,
the rotation period and the counted days, that overrides win, and that
is_within_window() handles normal, cross-midnight and weekend windows.
"""

import datetime
import sys
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# ruff: noqa: E402
from oncall.core.errors import ConfigurationError
from oncall.core.models import Layer, LayerKind, ScheduleDocument
from oncall.core.rotation import OverrideStore, assign, is_within_window, rotation_cycle
from tests.sample_data import IST, SAMPLE_SCHEDULE


def at(*args) -> datetime.datetime:
    return datetime.datetime(*args, tzinfo=IST)


def make_layer(key="test", kind="weekday", start="2025-09-25T09:30:00+05:30", end="2025-09-25T15:30:00+05:30",
               days_rotate=2, users=("A", "B", "C", "D")) -> Layer:
    return Layer.model_validate(
        {"key": key, "type": kind, "start_time": start, "end_time": end, "days_rotate": days_rotate, "users": users}
    )


class TestWeekdayRotation:
    """Weekday layers count Mon-Fri days from the start date, inclusive."""

    def test_first_day_is_first_member(self):
        layer = make_layer()
        result = assign(layer, at(2025, 9, 25, 10, 0))

        assert result.person == "A", f"Expected A on the start date, got {result.person}"
        assert result.is_override is False

    def test_second_counted_day_stays_in_first_cycle(self):
        layer = make_layer()
        assert assign(layer, at(2025, 9, 26, 10, 0)).person == "A"

    def test_weekend_days_are_not_counted(self):
        """
        Thu 25 and Fri 26 are cycle 0; Sat 27 and Sun 28 are skipped, so
        Mon 29 is the third counted day and starts cycle 1.
        """
        layer = make_layer()
        result = assign(layer, at(2025, 9, 29, 10, 0))

        assert result.person == "B", f"Expected B on Monday, got {result.person}"

    def test_rotation_wraps_around_members(self):
        layer = make_layer(days_rotate=1, users=("A", "B"))
        # Thu=A, Fri=B, Mon=A, Tue=B
        people = [assign(layer, at(2025, 9, day, 12, 0)).person for day in (25, 26, 29, 30)]

        assert people == ["A", "B", "A", "B"]

    def test_dates_before_start_use_first_cycle(self):
        layer = make_layer()
        assert assign(layer, at(2025, 9, 1, 10, 0)).person == "A"

    def test_date_is_taken_in_layer_offset(self):
        """2025-09-29T02:00Z is already 07:30 on Monday in +05:30."""
        layer = make_layer()
        instant = datetime.datetime(2025, 9, 29, 2, 0, tzinfo=datetime.timezone.utc)

        assert assign(layer, instant).person == "B"


class TestOtherLayerKinds:
    def test_zero_period_always_returns_first_member(self):
        layer = make_layer(days_rotate=0, users=("michael", "other"))
        for day in (5, 12, 25, 30):
            assert assign(layer, at(2025, 9, day, 4, 0)).person == "michael"

    def test_weekend_rotation_counts_weekend_days_before_date(self):
        """
        Period 7 over Sat/Sun days: six weekend days lie before Sat 27 Sep
        (cycle 0), eight before Sat 4 Oct (cycle 1).
        """
        layer = make_layer(
            kind="weekend",
            start="2025-09-06T09:30:00+05:30",
            end="2025-09-08T09:30:00+05:30",
            days_rotate=7,
            users=("michael", "kartikeya"),
        )
        assert assign(layer, at(2025, 9, 6, 10, 0)).person == "michael"
        assert assign(layer, at(2025, 9, 27, 10, 0)).person == "michael"
        assert assign(layer, at(2025, 10, 4, 10, 0)).person == "kartikeya"

    def test_daily_layer_counts_every_calendar_day(self):
        layer = make_layer(kind="daily", days_rotate=1, users=("A", "B"))
        # day 0 and day 1 share cycle 0, day 2 is cycle 1
        assert assign(layer, at(2025, 9, 26, 10, 0)).person == "A"
        assert assign(layer, at(2025, 9, 27, 10, 0)).person == "B"

    def test_rotation_cycle_before_start_is_zero(self):
        assert rotation_cycle(-3, 2) == 0
        assert rotation_cycle(0, 2) == 0
        assert rotation_cycle(1, 2) == 0
        assert rotation_cycle(3, 2) == 1


class TestOverrides:
    def test_override_wins_over_rotation(self):
        layer = make_layer()
        overrides = OverrideStore.from_raw({"2025-09-29": {"test": {"person": "zed", "reason": "swap"}}})
        result = assign(layer, at(2025, 9, 29, 10, 0), overrides)

        assert result.person == "zed"
        assert result.is_override is True
        assert result.reason == "swap"

    def test_override_for_other_layer_is_ignored(self):
        layer = make_layer()
        overrides = OverrideStore.from_raw({"2025-09-29": {"layer9": "zed"}})

        assert assign(layer, at(2025, 9, 29, 10, 0), overrides).person == "B"

    def test_legacy_override_key_is_honoured(self):
        layer = make_layer()
        overrides = OverrideStore.from_raw({"Mon Sep 29 2025-test": {"person": "zed", "reason": "legacy"}})
        result = assign(layer, at(2025, 9, 29, 10, 0), overrides)

        assert result.person == "zed"
        assert result.is_override is True


class TestWindows:
    def test_normal_window(self):
        layer = make_layer()
        assert is_within_window(layer, at(2025, 9, 25, 9, 30))
        assert is_within_window(layer, at(2025, 9, 25, 15, 29))
        assert not is_within_window(layer, at(2025, 9, 25, 15, 30))
        assert not is_within_window(layer, at(2025, 9, 25, 9, 29))

    def test_cross_midnight_window(self):
        layer = make_layer(start="2025-09-08T21:30:00+05:30", end="2025-09-09T03:30:00+05:30")
        assert is_within_window(layer, at(2025, 9, 25, 22, 0))
        assert is_within_window(layer, at(2025, 9, 26, 2, 0))
        assert not is_within_window(layer, at(2025, 9, 26, 4, 0))
        assert not is_within_window(layer, at(2025, 9, 25, 21, 0))

    def test_weekend_window_is_bounded(self):
        document = ScheduleDocument.from_raw(SAMPLE_SCHEDULE)
        weekend = document.layer("full_weekend")

        assert is_within_window(weekend, at(2025, 9, 7, 12, 0)), "Sunday noon should be inside the weekend"
        assert is_within_window(weekend, at(2025, 9, 8, 9, 0)), "Monday 09:00 is before the weekend ends"
        assert not is_within_window(weekend, at(2025, 9, 8, 9, 30))
        assert not is_within_window(weekend, at(2025, 9, 9, 0, 0))
        assert not is_within_window(weekend, at(2025, 9, 6, 9, 0))

    def test_weekend_window_longer_than_a_week_is_rejected(self):
        layer = make_layer(kind="weekend", start="2025-09-06T09:30:00+05:30", end="2025-09-20T09:30:00+05:30")
        with pytest.raises(ConfigurationError):
            is_within_window(layer, at(2025, 9, 7, 12, 0))


class TestScheduleDocument:
    def test_invalid_layer_is_skipped_not_fatal(self):
        raw = {
            "weekday": {
                **SAMPLE_SCHEDULE["weekday"],
                "broken": {"type": "weekday", "start_time": "nope", "end_time": "nope", "users": []},
            },
            "weekend": SAMPLE_SCHEDULE["weekend"],
        }
        document = ScheduleDocument.from_raw(raw)

        assert document.layer("broken") is None
        assert "broken" in document.rejected
        assert document.layer("layer1") is not None

    def test_layers_put_weekend_first(self):
        document = ScheduleDocument.from_raw(SAMPLE_SCHEDULE)
        keys = [layer.key for layer in document.layers()]

        assert keys[0] == "full_weekend"
        assert keys[1:] == ["layer1", "layer2", "layer3", "layer4"]

    def test_content_hash_ignores_key_order(self):
        reordered = {"weekend": SAMPLE_SCHEDULE["weekend"], "weekday": dict(reversed(SAMPLE_SCHEDULE["weekday"].items()))}
        first = ScheduleDocument.from_raw(SAMPLE_SCHEDULE)
        second = ScheduleDocument.from_raw(reordered)

        assert first.content_hash() == second.content_hash()

    def test_layer_kind_from_type(self):
        document = ScheduleDocument.from_raw(SAMPLE_SCHEDULE)
        assert document.layer("layer1").kind is LayerKind.WEEKDAY
        assert document.layer("full_weekend").kind is LayerKind.WEEKEND
