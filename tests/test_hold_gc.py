"""
Tests for the hold garbage collector sweeps.
"""

from datetime import date, timedelta

from marina_api.models.hold import Hold, HoldStatus
from marina_api.models.rate_limit import RateLimitCounter
from marina_api.models.unit import Unit
from marina_api.services.availability import DateRange
from marina_api.services.hold_gc import HoldGarbageCollector
from marina_api.services.hold_manager import HoldManager


def collector(db, clock, batch_size=50, max_pages=10):
    return HoldGarbageCollector(db, batch_size=batch_size, max_pages=max_pages, retention_days=7, clock=clock)


def terminal_hold(hold_id, status, updated_at):
    return Hold(
        id=hold_id,
        status=status,
        kind="room",
        unit_id="u-101",
        start_date=date(2025, 6, 1),
        end_date=date(2025, 6, 3),
        expires_at=updated_at,
        created_at=updated_at,
        updated_at=updated_at
    )


class TestExpireStaleHolds:
    def test_expired_holds_released(self, db, make_unit, clock):
        make_unit()
        manager = HoldManager(db, ttl_seconds=120)
        stale = manager.create_hold("u-101", DateRange.of("2025-06-01", "2025-06-03"), now=clock())
        clock.advance(minutes=10)
        fresh = manager.create_hold("u-101", DateRange.of("2025-07-01", "2025-07-03"), now=clock())

        result = collector(db, clock).expire_stale_holds()

        unit = db.get(Unit, "u-101")
        assert result.processed == 1
        assert db.get(Hold, stale.hold_id).status == HoldStatus.EXPIRED.value
        assert db.get(Hold, stale.hold_id).failure_reason == "expired"
        assert db.get(Hold, fresh.hold_id).status == HoldStatus.PENDING.value
        assert list(unit.hold_entries) == [fresh.hold_id]

    def test_pages_through_backlog(self, db, make_unit, clock):
        make_unit()
        manager = HoldManager(db, ttl_seconds=60)
        for day in range(1, 10, 2):
            manager.create_hold(
                "u-101", DateRange(date(2025, 6, day), date(2025, 6, day)), now=clock()
            )
        clock.advance(minutes=5)

        result = collector(db, clock, batch_size=2).expire_stale_holds()

        assert result.processed == 5
        assert result.pages == 3
        assert db.query(Hold).filter(Hold.status == HoldStatus.PENDING.value).count() == 0
        assert db.get(Unit, "u-101").hold_entries == {}

    def test_page_cap(self, db, make_unit, clock):
        make_unit()
        manager = HoldManager(db, ttl_seconds=60)
        for day in range(1, 10, 2):
            manager.create_hold(
                "u-101", DateRange(date(2025, 6, day), date(2025, 6, day)), now=clock()
            )
        clock.advance(minutes=5)

        result = collector(db, clock, batch_size=2, max_pages=1).expire_stale_holds()

        assert result.processed == 2

    def test_nothing_to_do(self, db, clock):
        result = collector(db, clock).expire_stale_holds()

        assert result.processed == 0
        assert result.pages == 0


class TestPurge:
    def test_only_old_terminal_holds_purged(self, db, clock):
        old = clock() - timedelta(days=8)
        recent = clock() - timedelta(days=1)
        db.add_all([
            terminal_hold("old-failed", HoldStatus.FAILED.value, old),
            terminal_hold("old-expired", HoldStatus.EXPIRED.value, old),
            terminal_hold("recent-failed", HoldStatus.FAILED.value, recent),
            terminal_hold("old-pending", HoldStatus.PENDING.value, old),
        ])
        db.commit()

        result = collector(db, clock).purge_terminal_holds()

        remaining = {hold.id for hold in db.query(Hold).all()}
        assert result.processed == 2
        assert remaining == {"recent-failed", "old-pending"}

    def test_expired_counters_purged(self, db, clock):
        db.add_all([
            RateLimitCounter(key="user:a", window_start=clock() - timedelta(hours=2), count=3,
                             expires_at=clock() - timedelta(hours=1)),
            RateLimitCounter(key="user:b", window_start=clock(), count=1,
                             expires_at=clock() + timedelta(hours=1)),
        ])
        db.commit()

        result = collector(db, clock).purge_expired_counters()

        assert result.processed == 1
        assert [row.key for row in db.query(RateLimitCounter).all()] == ["user:b"]
