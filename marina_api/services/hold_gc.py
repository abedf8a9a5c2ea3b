"""
Hold Garbage Collector

Independent sweeps, each safe to overlap with itself and with live traffic:
- expire_stale_holds: pending holds past expires_at -> expired, unit map cleaned
- purge_terminal_holds: failed/expired holds older than the retention window -> deleted
- purge_expired_counters: rate-limit counters whose window has ended -> deleted
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..models.hold import Hold, HoldReleaseReason, HoldStatus, TERMINAL_HOLD_STATUSES
from ..models.rate_limit import RateLimitCounter
from ..utils import metrics
from ..utils.db_helpers import get_pending_with_skip_locked, run_in_transaction
from ..utils.errors import BookingError
from .hold_manager import HoldManager

logger = logging.getLogger(__name__)


@dataclass
class GCResult:
    processed: int = 0
    pages: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"processed": self.processed, "pages": self.pages, "errors": self.errors[:20]}


class HoldGarbageCollector:
    def __init__(
        self,
        db: Session,
        batch_size: Optional[int] = None,
        max_pages: Optional[int] = None,
        retention_days: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.db = db
        self.batch_size = batch_size or settings.gc_batch_size
        self.max_pages = max_pages or settings.gc_max_pages
        self.retention_days = retention_days or settings.hold_retention_days
        self.clock = clock or datetime.utcnow
        self.hold_manager = HoldManager(db)

    def expire_stale_holds(self) -> GCResult:
        now = self.clock()
        result = GCResult()
        failed_ids = set()

        while result.pages < self.max_pages:
            holds = get_pending_with_skip_locked(
                self.db,
                Hold,
                (Hold.status == HoldStatus.PENDING.value) & (Hold.expires_at <= now) & Hold.id.notin_(list(failed_ids)),
                order_by=Hold.expires_at,
                limit=self.batch_size
            )
            hold_ids = [hold.id for hold in holds]
            self.db.rollback()
            if not hold_ids:
                break
            result.pages += 1

            for hold_id in hold_ids:
                try:
                    if self.hold_manager.release_hold(hold_id, HoldReleaseReason.EXPIRED, HoldStatus.EXPIRED, now=now):
                        result.processed += 1
                except BookingError as e:
                    logger.error(f"Could not expire hold {hold_id}: {e}")
                    failed_ids.add(hold_id)
                    result.errors.append(f"{hold_id}: {e}")

            if len(hold_ids) < self.batch_size:
                break

        metrics.record_hold_gc("expired", result.processed)
        if result.processed or result.errors:
            logger.info(f"Hold expiry sweep: {result.to_dict()}")
        return result

    def purge_terminal_holds(self) -> GCResult:
        cutoff = self.clock() - timedelta(days=self.retention_days)
        result = GCResult()

        def delete_page(db: Session) -> int:
            holds = get_pending_with_skip_locked(
                db,
                Hold,
                Hold.status.in_(TERMINAL_HOLD_STATUSES) & (Hold.updated_at < cutoff),
                order_by=Hold.updated_at,
                limit=self.batch_size
            )
            for hold in holds:
                db.delete(hold)
            return len(holds)

        while result.pages < self.max_pages:
            deleted = run_in_transaction(self.db, delete_page, label="purge-holds")
            if not deleted:
                break
            result.pages += 1
            result.processed += deleted
            if deleted < self.batch_size:
                break

        metrics.record_hold_gc("purged", result.processed)
        if result.processed:
            logger.info(f"Purged {result.processed} terminal holds older than {self.retention_days} days")
        return result

    def purge_expired_counters(self) -> GCResult:
        now = self.clock()
        deleted = self.db.query(RateLimitCounter).filter(
            RateLimitCounter.expires_at <= now
        ).delete(synchronize_session=False)
        self.db.commit()

        metrics.record_hold_gc("counters_purged", deleted)
        if deleted:
            logger.info(f"Purged {deleted} expired rate-limit counters")
        return GCResult(processed=deleted, pages=1)
