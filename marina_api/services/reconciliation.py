"""
Reconciliation Sweeper

Completes orders the provider confirmed but whose local finalize failed
(sync_status = pending_local_sync). Each order is retried by re-running the
finalize writes without the hold requirement; a unit that already lists the
booking counts as success.

Retry policy:
- retryable failure: sync_retry_count += 1, stays pending until the budget
  (RECONCILE_MAX_RETRIES) is used up, then failed_manual_review
- stored payload unusable, unit missing, or overlap with a committed booking:
  failed_manual_review immediately (retrying cannot fix these)
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..models.order import Order, OrderStatus, OrderSyncStatus
from ..utils import metrics
from ..utils.db_helpers import acquire_row_lock, get_pending_with_skip_locked, run_in_transaction
from ..utils.errors import AvailabilityConflict, FailedPrecondition, InvalidArgument, NotFound
from ..utils.logging_config import get_logger
from .booking_finalizer import BookingDraft, BookingFinalizer, sync_user_view

logger = logging.getLogger(__name__)
structured_logger = get_logger(__name__)

OUTCOME_SYNCED = "synced"
OUTCOME_RETRY = "retry"
OUTCOME_MANUAL_REVIEW = "manual_review"
OUTCOME_SKIPPED = "skipped"


def is_terminal_failure(error: Exception) -> bool:
    if isinstance(error, (InvalidArgument, NotFound)):
        return True
    if isinstance(error, AvailabilityConflict):
        # A live hold goes away by itself; a committed booking does not
        return (error.conflict or {}).get("type") == "booking"
    return False


@dataclass
class ReconciliationResult:
    scanned: int = 0
    synced: int = 0
    retried: int = 0
    manual_review: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "scanned": self.scanned,
            "synced": self.synced,
            "retried": self.retried,
            "manual_review": self.manual_review,
            "skipped": self.skipped,
            "errors": self.errors[:20],
        }


class ReconciliationSweeper:
    def __init__(
        self,
        db: Session,
        max_retries: Optional[int] = None,
        batch_size: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.db = db
        self.max_retries = max_retries or settings.reconcile_max_retries
        self.batch_size = batch_size or settings.reconcile_batch_size
        self.clock = clock or datetime.utcnow
        self.finalizer = BookingFinalizer(db)

    def get_pending_order_ids(self) -> List[str]:
        """One page of pending orders, least recently attempted first."""
        orders = get_pending_with_skip_locked(
            self.db,
            Order,
            Order.sync_status == OrderSyncStatus.PENDING_LOCAL_SYNC.value,
            order_by=Order.last_sync_attempt_at.asc().nulls_first(),
            limit=self.batch_size
        )
        ids = [order.id for order in orders]
        self.db.rollback()
        return ids

    def sweep(self) -> ReconciliationResult:
        result = ReconciliationResult()

        for order_id in self.get_pending_order_ids():
            result.scanned += 1
            try:
                outcome = self.reconcile_order(order_id)
            except Exception as e:
                # Bookkeeping for this order failed too; the next sweep picks it up
                logger.error(f"Reconciliation of order {order_id} failed: {e}", exc_info=True)
                self.db.rollback()
                result.errors.append(f"{order_id}: {e}")
                continue

            if outcome == OUTCOME_SYNCED:
                result.synced += 1
            elif outcome == OUTCOME_RETRY:
                result.retried += 1
            elif outcome == OUTCOME_MANUAL_REVIEW:
                result.manual_review += 1
            else:
                result.skipped += 1

        metrics.record_reconciliation(OUTCOME_SYNCED, result.synced)
        metrics.record_reconciliation(OUTCOME_RETRY, result.retried)
        metrics.record_reconciliation(OUTCOME_MANUAL_REVIEW, result.manual_review)

        if result.scanned:
            logger.info(f"Reconciliation sweep: {result.to_dict()}")
        return result

    def reconcile_order(self, order_id: str) -> str:
        now = self.clock()
        order = self.db.get(Order, order_id)
        if order is None or order.sync_status != OrderSyncStatus.PENDING_LOCAL_SYNC.value:
            self.db.rollback()
            return OUTCOME_SKIPPED

        if order.status == OrderStatus.CANCELLED.value:
            self.db.rollback()
            return self._mark_cancelled_synced(order_id, now)

        try:
            draft = BookingDraft.from_order(order)
            self.db.rollback()
            run_in_transaction(
                self.db,
                lambda db: self.finalizer.apply(db, order_id, draft, now, require_hold=False),
                label=f"reconcile {order_id}"
            )
        except Exception as e:
            self.db.rollback()
            if is_terminal_failure(e):
                self._record_failure(order_id, e, now, terminal=True)
                return OUTCOME_MANUAL_REVIEW
            return self._record_failure(order_id, e, now, terminal=False)

        structured_logger.sync_status_changed(
            order_id,
            OrderSyncStatus.PENDING_LOCAL_SYNC.value,
            OrderSyncStatus.SYNCED.value,
            reason="reconciled"
        )
        return OUTCOME_SYNCED

    def _mark_cancelled_synced(self, order_id: str, now: datetime) -> str:
        """A cancelled booking needs no unit entry; only the bookkeeping closes."""
        def work(db: Session) -> str:
            order = acquire_row_lock(db, Order, Order.id == order_id)
            if order is None or order.sync_status != OrderSyncStatus.PENDING_LOCAL_SYNC.value:
                return OUTCOME_SKIPPED
            order.move_sync_status(OrderSyncStatus.SYNCED)
            order.sync_error = None
            order.last_sync_attempt_at = now
            order.updated_at = now
            sync_user_view(db, order, now)
            return OUTCOME_SYNCED

        outcome = run_in_transaction(self.db, work, label=f"reconcile-cancelled {order_id}")
        if outcome == OUTCOME_SYNCED:
            structured_logger.sync_status_changed(
                order_id,
                OrderSyncStatus.PENDING_LOCAL_SYNC.value,
                OrderSyncStatus.SYNCED.value,
                reason="cancelled"
            )
        return outcome

    def _record_failure(self, order_id: str, error: Exception, now: datetime, terminal: bool) -> str:
        error_text = f"{type(error).__name__}: {error}"[:1000]

        def work(db: Session) -> str:
            order = acquire_row_lock(db, Order, Order.id == order_id)
            if order is None or order.sync_status != OrderSyncStatus.PENDING_LOCAL_SYNC.value:
                return OUTCOME_SKIPPED
            order.sync_retry_count = (order.sync_retry_count or 0) + 1
            order.sync_error = error_text
            order.last_sync_attempt_at = now
            order.updated_at = now
            if terminal or order.sync_retry_count >= self.max_retries:
                order.move_sync_status(OrderSyncStatus.FAILED_MANUAL_REVIEW)
                return OUTCOME_MANUAL_REVIEW
            return OUTCOME_RETRY

        outcome = run_in_transaction(self.db, work, label=f"reconcile-failure {order_id}")

        if outcome == OUTCOME_MANUAL_REVIEW:
            logger.error(f"Order {order_id} needs manual review: {error_text}")
            structured_logger.sync_status_changed(
                order_id,
                OrderSyncStatus.PENDING_LOCAL_SYNC.value,
                OrderSyncStatus.FAILED_MANUAL_REVIEW.value,
                reason=error_text
            )
        elif outcome == OUTCOME_RETRY:
            logger.warning(f"Order {order_id} reconciliation failed, will retry: {error_text}")
        return outcome

    def requeue(self, order_id: str) -> Order:
        """
        Put a failed_manual_review order back in the queue with a fresh
        retry budget (after an operator fixed the cause).

        Raises:
            NotFound: unknown order
            FailedPrecondition: order is not in failed_manual_review
        """
        now = self.clock()

        def work(db: Session) -> Order:
            order = acquire_row_lock(db, Order, Order.id == order_id)
            if order is None:
                raise NotFound(f"Order {order_id} not found")
            if order.sync_status != OrderSyncStatus.FAILED_MANUAL_REVIEW.value:
                raise FailedPrecondition(f"Order {order_id} is {order.sync_status}, not failed_manual_review")
            order.move_sync_status(OrderSyncStatus.PENDING_LOCAL_SYNC)
            order.sync_retry_count = 0
            order.sync_error = None
            order.updated_at = now
            return order

        order = run_in_transaction(self.db, work, label=f"requeue {order_id}")
        structured_logger.sync_status_changed(
            order_id,
            OrderSyncStatus.FAILED_MANUAL_REVIEW.value,
            OrderSyncStatus.PENDING_LOCAL_SYNC.value,
            reason="requeued"
        )
        return order
