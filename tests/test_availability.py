"""
Tests for the availability validator (pure functions, no database).
"""

import pytest
from datetime import date, datetime, timedelta

from marina_api.services.availability import (
    DateRange,
    blocked_ranges,
    find_booking_conflict,
    find_conflict,
    find_hold_conflict,
    live_holds,
    overlaps,
    to_day,
)

NOW = datetime(2025, 5, 20, 12, 0, 0)


def hold_entry(start, end, expires_in_seconds=120):
    return {
        "start": start,
        "end": end,
        "expiresAt": (NOW + timedelta(seconds=expires_in_seconds)).isoformat()
    }


class TestDateRange:
    def test_to_day_strips_time_of_day(self):
        assert to_day("2025-06-01 15:00:01") == date(2025, 6, 1)
        assert to_day("2025-06-01T12:00:00") == date(2025, 6, 1)
        assert to_day(datetime(2025, 6, 1, 23, 59)) == date(2025, 6, 1)

    def test_to_day_rejects_garbage(self):
        with pytest.raises(ValueError):
            to_day("June first")

    def test_inverted_range_rejected(self):
        with pytest.raises(ValueError):
            DateRange.of("2025-06-03", "2025-06-01")

    def test_nights(self):
        assert DateRange.of("2025-06-01", "2025-06-04").nights == 3


class TestOverlap:
    def test_partial_overlap(self):
        assert overlaps(DateRange.of("2025-06-01", "2025-06-03"), DateRange.of("2025-06-02", "2025-06-04"))

    def test_disjoint_ranges(self):
        assert not overlaps(DateRange.of("2025-06-01", "2025-06-03"), DateRange.of("2025-06-05", "2025-06-07"))

    def test_touching_ranges_conflict_by_default(self):
        """Checkout day equal to next check-in day counts as a conflict."""
        assert overlaps(DateRange.of("2025-06-01", "2025-06-03"), DateRange.of("2025-06-03", "2025-06-05"))

    def test_touching_ranges_allowed_with_turnover(self):
        assert not overlaps(
            DateRange.of("2025-06-01", "2025-06-03"),
            DateRange.of("2025-06-03", "2025-06-05"),
            allow_same_day_turnover=True
        )

    def test_containment(self):
        assert overlaps(DateRange.of("2025-06-01", "2025-06-10"), DateRange.of("2025-06-04", "2025-06-05"))


class TestConflicts:
    def test_booking_conflict_returns_entry(self):
        bookings = [{"externalBookingId": "77", "start": "2025-06-01", "end": "2025-06-03"}]

        conflict = find_booking_conflict(DateRange.of("2025-06-02", "2025-06-04"), bookings)

        assert conflict["externalBookingId"] == "77"

    def test_same_booking_is_not_a_conflict(self):
        bookings = [{"externalBookingId": 77, "start": "2025-06-01", "end": "2025-06-03"}]

        conflict = find_booking_conflict(
            DateRange.of("2025-06-01", "2025-06-03"), bookings, ignore_external_id="77"
        )

        assert conflict is None

    def test_malformed_booking_entries_block_nothing(self):
        bookings = [{"externalBookingId": "1"}, {"start": "bad", "end": "2025-06-03"}]

        assert find_booking_conflict(DateRange.of("2025-06-01", "2025-06-03"), bookings) is None

    def test_live_hold_blocks(self):
        holds = {"h1": hold_entry("2025-06-01", "2025-06-03")}

        assert find_hold_conflict(DateRange.of("2025-06-02", "2025-06-04"), holds, NOW) == "h1"

    def test_expired_hold_does_not_block(self):
        holds = {"h1": hold_entry("2025-06-01", "2025-06-03", expires_in_seconds=-1)}

        assert find_hold_conflict(DateRange.of("2025-06-02", "2025-06-04"), holds, NOW) is None

    def test_own_hold_excluded(self):
        holds = {"h1": hold_entry("2025-06-01", "2025-06-03")}

        conflict = find_hold_conflict(DateRange.of("2025-06-01", "2025-06-03"), holds, NOW, exclude_hold_id="h1")

        assert conflict is None

    def test_find_conflict_prefers_bookings(self):
        bookings = [{"externalBookingId": "77", "start": "2025-06-01", "end": "2025-06-03"}]
        holds = {"h1": hold_entry("2025-06-01", "2025-06-03")}

        conflict = find_conflict(DateRange.of("2025-06-02", "2025-06-02"), bookings, holds, NOW)

        assert conflict["type"] == "booking"
        assert conflict["externalBookingId"] == "77"

    def test_find_conflict_reports_hold(self):
        holds = {"h1": hold_entry("2025-06-01", "2025-06-03")}

        conflict = find_conflict(DateRange.of("2025-06-03", "2025-06-05"), [], holds, NOW)

        assert conflict == {"type": "hold", "holdId": "h1"}

    def test_free_range(self):
        assert find_conflict(DateRange.of("2025-07-01", "2025-07-03"), [], {}, NOW) is None


class TestCalendarView:
    def test_live_holds_drops_expired_entries(self):
        holds = {
            "live": hold_entry("2025-06-01", "2025-06-03"),
            "dead": hold_entry("2025-06-05", "2025-06-06", expires_in_seconds=-60),
            "broken": {"start": "2025-06-07", "end": "2025-06-08"},
        }

        assert list(live_holds(holds, NOW)) == ["live"]

    def test_blocked_ranges_sorted_with_sources(self):
        bookings = [{"externalBookingId": "1", "start": "2025-06-10", "end": "2025-06-12"}]
        holds = {
            "h1": hold_entry("2025-06-01", "2025-06-03"),
            "h2": hold_entry("2025-06-20", "2025-06-21", expires_in_seconds=-1),
        }

        ranges = blocked_ranges(bookings, holds, NOW)

        assert ranges == [
            {"start": "2025-06-01", "end": "2025-06-03", "source": "hold"},
            {"start": "2025-06-10", "end": "2025-06-12", "source": "booking"},
        ]
