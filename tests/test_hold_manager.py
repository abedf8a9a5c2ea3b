"""
Tests for hold creation and release.

Covers the core double-booking case: two callers asking for overlapping
ranges on the same unit, where only the first gets a hold until it expires.
"""

import pytest
from datetime import timedelta

from marina_api.models.hold import Hold, HoldReleaseReason, HoldStatus
from marina_api.models.unit import Unit
from marina_api.services.availability import DateRange
from marina_api.services.hold_manager import HoldManager
from marina_api.utils.errors import AvailabilityConflict, NotFound


class TestCreateHold:
    def test_hold_written_to_row_and_unit_map(self, db, make_unit, clock):
        make_unit()
        manager = HoldManager(db, ttl_seconds=120)

        grant = manager.create_hold(
            "u-101", DateRange.of("2025-06-01", "2025-06-03"),
            owner_uid="user-1", correlation_id="corr-1", now=clock()
        )

        hold = db.get(Hold, grant.hold_id)
        unit = db.get(Unit, "u-101")
        assert hold.status == HoldStatus.PENDING.value
        assert hold.expires_at == clock() + timedelta(seconds=120)
        assert hold.correlation_id == "corr-1"
        assert unit.hold_entries[grant.hold_id]["start"] == "2025-06-01"
        assert unit.hold_entries[grant.hold_id]["end"] == "2025-06-03"

    def test_overlapping_second_hold_rejected(self, db, make_unit, clock):
        """A holds 06-01..06-03, B asks for 06-02..06-04 on the same unit."""
        make_unit()
        manager = HoldManager(db, ttl_seconds=120)
        first = manager.create_hold("u-101", DateRange.of("2025-06-01", "2025-06-03"), now=clock())

        with pytest.raises(AvailabilityConflict) as exc_info:
            manager.create_hold("u-101", DateRange.of("2025-06-02", "2025-06-04"), now=clock())

        assert exc_info.value.conflict == {"type": "hold", "holdId": first.hold_id}
        assert exc_info.value.code == "failed_precondition"
        assert len(db.get(Unit, "u-101").hold_entries) == 1
        assert db.query(Hold).count() == 1

    def test_second_hold_succeeds_after_ttl(self, db, make_unit, clock):
        make_unit()
        manager = HoldManager(db, ttl_seconds=120)
        first = manager.create_hold("u-101", DateRange.of("2025-06-01", "2025-06-03"), now=clock())

        clock.advance(seconds=121)
        second = manager.create_hold("u-101", DateRange.of("2025-06-02", "2025-06-04"), now=clock())

        holds = db.get(Unit, "u-101").hold_entries
        assert second.hold_id in holds
        # Expired entries are dropped from the map on the way
        assert first.hold_id not in holds

    def test_conflict_with_confirmed_booking(self, db, make_unit, clock):
        make_unit(bookings=[{"externalBookingId": "77", "start": "2025-06-01", "end": "2025-06-05"}])
        manager = HoldManager(db)

        with pytest.raises(AvailabilityConflict) as exc_info:
            manager.create_hold("u-101", DateRange.of("2025-06-04", "2025-06-06"), now=clock())

        assert exc_info.value.conflict["type"] == "booking"

    def test_other_unit_not_affected(self, db, make_unit, clock):
        make_unit("u-101", resource_id=101)
        make_unit("u-102", resource_id=102)
        manager = HoldManager(db)
        manager.create_hold("u-101", DateRange.of("2025-06-01", "2025-06-03"), now=clock())

        grant = manager.create_hold("u-102", DateRange.of("2025-06-01", "2025-06-03"), now=clock())

        assert grant.unit_id == "u-102"

    def test_unknown_unit(self, db, clock):
        with pytest.raises(NotFound):
            HoldManager(db).create_hold("missing", DateRange.of("2025-06-01", "2025-06-03"), now=clock())


class TestReleaseHold:
    def test_release_removes_map_entry(self, db, make_unit, clock):
        make_unit()
        manager = HoldManager(db)
        grant = manager.create_hold("u-101", DateRange.of("2025-06-01", "2025-06-03"), now=clock())

        changed = manager.release_hold(
            grant.hold_id, HoldReleaseReason.PROVIDER_REJECTED, HoldStatus.FAILED,
            error="resource closed", now=clock()
        )

        hold = db.get(Hold, grant.hold_id)
        assert changed is True
        assert hold.status == HoldStatus.FAILED.value
        assert hold.failure_reason == "provider_rejected"
        assert hold.error_message == "resource closed"
        assert hold.released_at == clock()
        assert db.get(Unit, "u-101").hold_entries == {}

    def test_release_is_idempotent(self, db, make_unit, clock):
        make_unit()
        manager = HoldManager(db)
        grant = manager.create_hold("u-101", DateRange.of("2025-06-01", "2025-06-03"), now=clock())
        manager.release_hold(grant.hold_id, HoldReleaseReason.EXPIRED, HoldStatus.EXPIRED, now=clock())

        assert manager.release_hold(grant.hold_id, HoldReleaseReason.EXPIRED, HoldStatus.EXPIRED, now=clock()) is False
        assert db.get(Hold, grant.hold_id).status == HoldStatus.EXPIRED.value

    def test_release_unknown_hold(self, db):
        assert HoldManager(db).release_hold("nope", HoldReleaseReason.EXPIRED, HoldStatus.EXPIRED) is False

    def test_release_frees_range(self, db, make_unit, clock):
        make_unit()
        manager = HoldManager(db)
        grant = manager.create_hold("u-101", DateRange.of("2025-06-01", "2025-06-03"), now=clock())
        manager.release_hold(grant.hold_id, HoldReleaseReason.PROVIDER_UNREACHABLE, now=clock())

        again = manager.create_hold("u-101", DateRange.of("2025-06-01", "2025-06-03"), now=clock())

        assert again.hold_id != grant.hold_id

    def test_release_cannot_confirm(self, db):
        with pytest.raises(ValueError):
            HoldManager(db).release_hold("h", HoldReleaseReason.EXPIRED, HoldStatus.CONFIRMED)
