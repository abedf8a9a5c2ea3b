"""
Tests for the reconciliation sweep over pending_local_sync orders.
"""

from datetime import timedelta

import pytest

from marina_api.models.order import Order, OrderStatus, OrderSyncStatus
from marina_api.models.unit import Unit
from marina_api.models.user_booking import UserBookingView, UserProfile
from marina_api.services.reconciliation import (
    OUTCOME_MANUAL_REVIEW,
    OUTCOME_RETRY,
    OUTCOME_SKIPPED,
    OUTCOME_SYNCED,
    ReconciliationSweeper,
    is_terminal_failure,
)
from marina_api.utils.errors import (
    AvailabilityConflict,
    FailedPrecondition,
    InvalidArgument,
    NotFound,
    Unavailable,
)


def sweeper(db, clock, max_retries=3):
    return ReconciliationSweeper(db, max_retries=max_retries, batch_size=10, clock=clock)


class TestReconcile:
    def test_pending_order_becomes_synced(self, db, make_unit, make_order, clock):
        make_unit()
        make_order()

        result = sweeper(db, clock).sweep()

        order = db.get(Order, "9001")
        assert result.synced == 1
        assert order.sync_status == OrderSyncStatus.SYNCED.value
        assert order.status == OrderStatus.CONFIRMED.value
        assert order.sync_error is None
        assert db.get(Unit, "u-101").has_booking("9001")
        assert db.get(UserBookingView, ("user-1", "9001")).sync_status == OrderSyncStatus.SYNCED.value
        assert db.get(UserProfile, "user-1").lifetime_booking_count == 1

    def test_unit_already_listing_booking_counts_as_success(self, db, make_unit, make_order, clock):
        make_unit(bookings=[{"externalBookingId": "9001", "start": "2025-06-01", "end": "2025-06-03"}])
        make_order()

        assert sweeper(db, clock).reconcile_order("9001") == OUTCOME_SYNCED
        assert len(db.get(Unit, "u-101").booking_entries) == 1

    def test_live_hold_overlap_is_retried(self, db, make_unit, make_order, clock):
        expires = (clock() + timedelta(minutes=2)).isoformat()
        make_unit(holds={"other": {"start": "2025-06-02", "end": "2025-06-04", "expiresAt": expires}})
        make_order()

        outcome = sweeper(db, clock).reconcile_order("9001")

        order = db.get(Order, "9001")
        assert outcome == OUTCOME_RETRY
        assert order.sync_status == OrderSyncStatus.PENDING_LOCAL_SYNC.value
        assert order.sync_retry_count == 1
        assert order.last_sync_attempt_at == clock()
        assert "AvailabilityConflict" in order.sync_error

    def test_retry_budget_exhausted(self, db, make_unit, make_order, clock):
        expires = (clock() + timedelta(hours=1)).isoformat()
        make_unit(holds={"other": {"start": "2025-06-02", "end": "2025-06-04", "expiresAt": expires}})
        make_order()
        sweep = sweeper(db, clock, max_retries=2)

        assert sweep.reconcile_order("9001") == OUTCOME_RETRY
        assert sweep.reconcile_order("9001") == OUTCOME_MANUAL_REVIEW

        order = db.get(Order, "9001")
        assert order.sync_status == OrderSyncStatus.FAILED_MANUAL_REVIEW.value
        assert order.sync_retry_count == 2

    def test_hold_expiring_lets_retry_succeed(self, db, make_unit, make_order, clock):
        expires = (clock() + timedelta(minutes=2)).isoformat()
        make_unit(holds={"other": {"start": "2025-06-02", "end": "2025-06-04", "expiresAt": expires}})
        make_order()
        sweep = sweeper(db, clock)
        sweep.reconcile_order("9001")

        clock.advance(minutes=5)

        assert sweep.reconcile_order("9001") == OUTCOME_SYNCED

    def test_committed_booking_overlap_goes_to_review(self, db, make_unit, make_order, clock):
        make_unit(bookings=[{"externalBookingId": "8000", "start": "2025-06-02", "end": "2025-06-05"}])
        make_order()

        outcome = sweeper(db, clock).reconcile_order("9001")

        order = db.get(Order, "9001")
        assert outcome == OUTCOME_MANUAL_REVIEW
        assert order.sync_status == OrderSyncStatus.FAILED_MANUAL_REVIEW.value
        assert order.sync_retry_count == 1

    def test_missing_unit_goes_to_review(self, db, make_order, clock):
        make_order(unit_id="gone")

        assert sweeper(db, clock).reconcile_order("9001") == OUTCOME_MANUAL_REVIEW

    def test_unusable_payload_goes_to_review(self, db, make_unit, make_order, clock):
        make_unit()
        make_order(kind="yacht")

        assert sweeper(db, clock).reconcile_order("9001") == OUTCOME_MANUAL_REVIEW
        assert "InvalidArgument" in db.get(Order, "9001").sync_error

    def test_cancelled_order_synced_without_unit_write(self, db, make_unit, make_order, clock):
        make_unit()
        make_order(status=OrderStatus.CANCELLED.value)

        assert sweeper(db, clock).reconcile_order("9001") == OUTCOME_SYNCED

        order = db.get(Order, "9001")
        assert order.status == OrderStatus.CANCELLED.value
        assert order.sync_status == OrderSyncStatus.SYNCED.value
        assert db.get(Unit, "u-101").booking_entries == []

    def test_non_pending_order_skipped(self, db, make_unit, make_order, clock):
        make_unit()
        make_order(sync_status=OrderSyncStatus.SYNCED.value)

        assert sweeper(db, clock).reconcile_order("9001") == OUTCOME_SKIPPED
        assert sweeper(db, clock).reconcile_order("missing") == OUTCOME_SKIPPED

    def test_sweep_orders_least_recently_attempted_first(self, db, make_unit, make_order, clock):
        make_unit()
        make_order(booking_id="a", start=clock().date() + timedelta(days=10), end=clock().date() + timedelta(days=12))
        make_order(booking_id="b", start=clock().date() + timedelta(days=20), end=clock().date() + timedelta(days=22))
        db.get(Order, "a").last_sync_attempt_at = clock()
        db.commit()

        assert sweeper(db, clock).get_pending_order_ids() == ["b", "a"]


class TestRequeue:
    def test_requeue_resets_budget(self, db, make_order, clock):
        make_order(sync_status=OrderSyncStatus.FAILED_MANUAL_REVIEW.value)
        order = db.get(Order, "9001")
        order.sync_retry_count = 5
        order.sync_error = "boom"
        db.commit()

        requeued = sweeper(db, clock).requeue("9001")

        assert requeued.sync_status == OrderSyncStatus.PENDING_LOCAL_SYNC.value
        assert requeued.sync_retry_count == 0
        assert requeued.sync_error is None

    def test_requeue_requires_manual_review(self, db, make_order, clock):
        make_order(sync_status=OrderSyncStatus.SYNCED.value)

        with pytest.raises(FailedPrecondition):
            sweeper(db, clock).requeue("9001")

    def test_requeue_unknown(self, db, clock):
        with pytest.raises(NotFound):
            sweeper(db, clock).requeue("nope")


class TestTerminalFailures:
    @pytest.mark.parametrize("error,terminal", [
        (InvalidArgument("bad"), True),
        (NotFound("gone"), True),
        (AvailabilityConflict(conflict={"type": "booking", "externalBookingId": "1"}), True),
        (AvailabilityConflict(conflict={"type": "hold", "holdId": "h"}), False),
        (Unavailable("contention"), False),
        (RuntimeError("db hiccup"), False),
    ])
    def test_classification(self, error, terminal):
        assert is_terminal_failure(error) is terminal
