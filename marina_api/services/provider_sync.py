"""
Provider Status Sync

Applies status changes the provider pushes for its bookings:

    approved / unapproved  -> provider_approval (and order status)
    deleted / trashed      -> order cancelled, unit booking entry removed
    restored               -> order reopened, unit booking entry re-added

The unit holding a booking entry is found through order.unit_id, then the
unit.resource_id reverse index. Scanning every unit is a last resort and is
logged as a degradation.

Every event is idempotent: replays leave state unchanged.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Mapping, Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..models.order import Order, OrderStatus, OrderSyncStatus, ProviderApproval
from ..models.unit import Unit
from ..models.user_booking import UserBookingView
from ..schemas.order import ProviderWebhookEvent
from ..utils import metrics
from ..utils.db_helpers import acquire_row_lock, run_in_transaction
from ..utils.errors import Unauthenticated
from ..utils.logging_config import get_logger
from .availability import DateRange, find_conflict
from .booking_finalizer import sync_user_view
from .provider_client import SIGNATURE_HEADER, TIMESTAMP_HEADER, verify_signature

logger = logging.getLogger(__name__)
structured_logger = get_logger(__name__)

ACTION_IGNORED = "ignored"
ACTION_UNCHANGED = "unchanged"
ACTION_UPDATED = "updated"
ACTION_CANCELLED = "cancelled"
ACTION_RESTORED = "restored"
ACTION_NEEDS_REVIEW = "needs_review"


@dataclass
class SyncOutcome:
    booking_id: str
    event: str
    action: str
    order_status: Optional[str] = None
    sync_status: Optional[str] = None
    removed_from_unit: bool = False


class ProviderSyncService:
    def __init__(
        self,
        db: Session,
        webhook_secret: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.db = db
        self.webhook_secret = settings.provider_webhook_secret if webhook_secret is None else webhook_secret
        self.clock = clock or datetime.utcnow

    def verify(self, headers: Mapping[str, str], body: bytes, now: Optional[float] = None):
        """
        Check the HMAC signature of an inbound webhook.

        Without a configured secret, requests are accepted outside
        production only.

        Raises:
            Unauthenticated: bad, missing or stale signature
        """
        if not self.webhook_secret:
            if settings.is_production:
                raise Unauthenticated("Provider webhooks are not configured")
            logger.warning("PROVIDER_WEBHOOK_SECRET not set, accepting unsigned provider webhook")
            return

        if not verify_signature(
            self.webhook_secret,
            headers.get(TIMESTAMP_HEADER),
            body,
            headers.get(SIGNATURE_HEADER),
            max_age_seconds=settings.provider_webhook_replay_window_seconds,
            now=now
        ):
            logger.warning("Rejected provider webhook with invalid signature")
            raise Unauthenticated("Invalid webhook signature")

    def handle(self, event: ProviderWebhookEvent) -> SyncOutcome:
        now = self.clock()

        if event.event in ("approved", "unapproved"):
            approved = event.approved if event.approved is not None else event.event == "approved"
            work = lambda db: self._apply_approval(db, event, approved, now)
        elif event.event in ("deleted", "trashed"):
            work = lambda db: self._apply_delete(db, event, now)
        else:
            work = lambda db: self._apply_restore(db, event, now)

        try:
            outcome = run_in_transaction(self.db, work, label=f"provider-{event.event} {event.booking_id}")
        except Exception:
            metrics.record_provider_webhook(event.event, success=False)
            raise

        metrics.record_provider_webhook(event.event, success=True)
        logger.info(f"Provider {event.event} for booking {event.booking_id}: {outcome.action}")
        return outcome

    # ------------------------------------------------------------------
    # Unit lookup
    # ------------------------------------------------------------------

    def _find_unit(self, db: Session, order: Optional[Order], resource_id: Optional[int]) -> Optional[Unit]:
        if order is not None and order.unit_id:
            unit = acquire_row_lock(db, Unit, Unit.id == order.unit_id)
            if unit is not None:
                return unit

        resource_id = resource_id or (order.resource_id if order is not None else None)
        if resource_id:
            unit = acquire_row_lock(db, Unit, Unit.resource_id == resource_id)
            if unit is not None:
                return unit

        return None

    def _scan_for_booking(self, db: Session, booking_id: str) -> Optional[Unit]:
        logger.warning(f"Booking {booking_id} not found through the unit index, scanning all units")
        for (unit_id,) in db.query(Unit.id).all():
            unit = acquire_row_lock(db, Unit, Unit.id == unit_id)
            if unit is not None and unit.has_booking(booking_id):
                return unit
        return None

    # ------------------------------------------------------------------
    # Event handlers (run inside run_in_transaction)
    # ------------------------------------------------------------------

    def _apply_approval(self, db: Session, event: ProviderWebhookEvent, approved: bool, now: datetime) -> SyncOutcome:
        order = acquire_row_lock(db, Order, Order.id == event.booking_id)
        if order is None:
            return SyncOutcome(event.booking_id, event.event, ACTION_IGNORED)

        approval = ProviderApproval.CONFIRMED.value if approved else ProviderApproval.PENDING.value

        if order.status == OrderStatus.CANCELLED.value:
            if not approved:
                changed = order.provider_approval != approval
                order.provider_approval = approval
                if changed:
                    order.updated_at = now
                    sync_user_view(db, order, now)
                return SyncOutcome(
                    event.booking_id, event.event,
                    ACTION_UPDATED if changed else ACTION_UNCHANGED,
                    order.status, order.sync_status
                )
            # Approving a cancelled booking brings it back
            order.provider_approval = approval
            return self._reopen(db, order, event, now)

        status = OrderStatus.CONFIRMED.value if approved else OrderStatus.PENDING.value
        if order.sync_status != OrderSyncStatus.SYNCED.value:
            # Local write still pending; only the approval is recorded
            status = order.status

        if order.provider_approval == approval and order.status == status:
            return SyncOutcome(event.booking_id, event.event, ACTION_UNCHANGED, order.status, order.sync_status)

        order.provider_approval = approval
        order.status = status
        order.updated_at = now
        sync_user_view(db, order, now)
        return SyncOutcome(event.booking_id, event.event, ACTION_UPDATED, order.status, order.sync_status)

    def _apply_delete(self, db: Session, event: ProviderWebhookEvent, now: datetime) -> SyncOutcome:
        order = acquire_row_lock(db, Order, Order.id == event.booking_id)

        unit = self._find_unit(db, order, event.resource_id)
        if unit is None or not unit.has_booking(event.booking_id):
            unit = self._scan_for_booking(db, event.booking_id)

        removed = False
        if unit is not None and unit.has_booking(event.booking_id):
            unit.bookings = [
                entry for entry in unit.booking_entries
                if str(entry.get("externalBookingId")) != str(event.booking_id)
            ]
            unit.updated_at = now
            removed = True

        if order is None:
            return SyncOutcome(event.booking_id, event.event, ACTION_CANCELLED if removed else ACTION_IGNORED, removed_from_unit=removed)

        if order.status == OrderStatus.CANCELLED.value and not removed:
            return SyncOutcome(event.booking_id, event.event, ACTION_UNCHANGED, order.status, order.sync_status)

        order.status = OrderStatus.CANCELLED.value
        order.cancelled_at = order.cancelled_at or now
        order.updated_at = now

        if order.owner_uid:
            if order.provider_approval == ProviderApproval.PENDING.value:
                # Never approved: the booking disappears from the owner's list
                view = db.get(UserBookingView, (order.owner_uid, order.id))
                if view is not None:
                    db.delete(view)
            else:
                view = db.get(UserBookingView, (order.owner_uid, order.id))
                if view is not None:
                    sync_user_view(db, order, now)

        structured_logger.log_with_context(
            logging.INFO,
            f"Booking {order.id} cancelled by provider ({event.event})",
            entity_type="order",
            entity_id=order.id,
            removed_from_unit=removed
        )
        return SyncOutcome(
            event.booking_id, event.event, ACTION_CANCELLED,
            order.status, order.sync_status, removed_from_unit=removed
        )

    def _apply_restore(self, db: Session, event: ProviderWebhookEvent, now: datetime) -> SyncOutcome:
        order = acquire_row_lock(db, Order, Order.id == event.booking_id)
        if order is None:
            return SyncOutcome(event.booking_id, event.event, ACTION_IGNORED)
        if event.approved is not None:
            order.provider_approval = ProviderApproval.CONFIRMED.value if event.approved else ProviderApproval.PENDING.value
        if order.status != OrderStatus.CANCELLED.value:
            return SyncOutcome(event.booking_id, event.event, ACTION_UNCHANGED, order.status, order.sync_status)
        return self._reopen(db, order, event, now)

    def _reopen(self, db: Session, order: Order, event: ProviderWebhookEvent, now: datetime) -> SyncOutcome:
        approved = order.provider_approval == ProviderApproval.CONFIRMED.value
        order.status = OrderStatus.CONFIRMED.value if approved else OrderStatus.PENDING.value
        order.cancelled_at = None
        order.updated_at = now

        unit = self._find_unit(db, order, event.resource_id)
        if unit is None or order.start_date is None or order.end_date is None:
            self._send_to_review(order, "restored booking has no unit or dates")
            return SyncOutcome(order.id, event.event, ACTION_NEEDS_REVIEW, order.status, order.sync_status)

        if not unit.has_booking(order.id):
            requested = DateRange(order.start_date, order.end_date)
            conflict = find_conflict(
                requested,
                unit.booking_entries,
                unit.hold_entries,
                now,
                exclude_hold_id=order.hold_id,
                ignore_external_id=order.id
            )
            if conflict is not None:
                blocker = conflict.get("externalBookingId") or f"hold {conflict.get('holdId')}"
                self._send_to_review(order, f"restored booking overlaps {blocker}")
                return SyncOutcome(order.id, event.event, ACTION_NEEDS_REVIEW, order.status, order.sync_status)
            unit.bookings = unit.booking_entries + [{"externalBookingId": order.id, **requested.as_entry()}]
            unit.updated_at = now

        sync_user_view(db, order, now)
        return SyncOutcome(order.id, event.event, ACTION_RESTORED, order.status, order.sync_status)

    def _send_to_review(self, order: Order, reason: str):
        previous = order.sync_status
        order.move_sync_status(OrderSyncStatus.FAILED_MANUAL_REVIEW)
        order.sync_error = reason
        structured_logger.sync_status_changed(order.id, previous, order.sync_status, reason=reason)
