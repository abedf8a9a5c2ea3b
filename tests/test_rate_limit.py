"""
Tests for the multi-key abuse limiter.
"""

import pytest

from marina_api.models.rate_limit import RateLimitCounter
from marina_api.services.rate_limit_service import RateLimitKey, RateLimitService, build_keys
from marina_api.utils.errors import ResourceExhausted
from marina_api.utils.rate_limiter import hash_identity

BUDGETS = {
    "user": (3, 3600),
    "ip": (5, 3600),
    "email": (2, 3600),
    "device": (5, 3600),
    "slot": (4, 600),
}


class TestBuildKeys:
    def test_identifiers_are_hashed(self):
        keys = build_keys(
            uid="user-1",
            ip="203.0.113.9",
            email="Ana@Example.com ",
            device="fp-123",
            unit_id="u-101",
            start_date="2025-06-01",
            budgets=BUDGETS
        )

        names = [k.key for k in keys]
        assert names[0] == "user:user-1"
        assert f"ip:{hash_identity('203.0.113.9')}" in names
        assert f"email:{hash_identity('ana@example.com')}" in names
        assert "slot:u-101:2025-06-01" in names
        assert not any("203.0.113.9" in name or "example.com" in name for name in names)

    def test_missing_dimensions_skipped(self):
        keys = build_keys(ip="203.0.113.9", budgets=BUDGETS)

        assert [k.key.split(":")[0] for k in keys] == ["ip"]
        assert keys[0].max_attempts == 5

    def test_hash_identity_normalizes(self):
        assert hash_identity("  A@B.ro ") == hash_identity("a@b.ro")
        assert hash_identity("") is None
        assert hash_identity(None) is None


class TestCheckAndIncrement:
    def test_allows_exactly_max_attempts(self, db, clock):
        service = RateLimitService(db)
        keys = [RateLimitKey("user:u1", 2, 60)]

        service.check_and_increment(keys, now=clock())
        decision = service.check_and_increment(keys, now=clock())
        assert decision.counts == {"user:u1": 2}

        with pytest.raises(ResourceExhausted) as exc_info:
            service.check_and_increment(keys, now=clock())
        assert exc_info.value.field == "user"
        assert exc_info.value.status_code == 429

    def test_blocked_attempt_increments_nothing(self, db, clock):
        service = RateLimitService(db)
        tight = RateLimitKey("email:abc", 1, 3600)
        loose = RateLimitKey("ip:def", 10, 3600)
        service.check_and_increment([tight, loose], now=clock())

        with pytest.raises(ResourceExhausted):
            service.check_and_increment([tight, loose], now=clock())

        assert db.get(RateLimitCounter, "ip:def").count == 1
        assert db.get(RateLimitCounter, "email:abc").count == 1

    def test_window_rollover_resets_count(self, db, clock):
        service = RateLimitService(db)
        keys = [RateLimitKey("slot:u-101:2025-06-01", 1, 600)]
        service.check_and_increment(keys, now=clock())

        clock.advance(seconds=600)
        decision = service.check_and_increment(keys, now=clock())

        row = db.get(RateLimitCounter, "slot:u-101:2025-06-01")
        assert decision.allowed
        assert row.count == 1
        assert row.window_start == clock()

    def test_expiry_tracks_window_end(self, db, clock):
        RateLimitService(db).check_and_increment([RateLimitKey("user:u1", 5, 3600)], now=clock())

        row = db.get(RateLimitCounter, "user:u1")
        assert (row.expires_at - row.window_start).total_seconds() == 3600

    def test_duplicate_keys_counted_once(self, db, clock):
        key = RateLimitKey("user:u1", 5, 3600)

        decision = RateLimitService(db).check_and_increment([key, key], now=clock())

        assert decision.counts == {"user:u1": 1}

    def test_no_keys_allowed(self, db):
        assert RateLimitService(db).check_and_increment([]).allowed
