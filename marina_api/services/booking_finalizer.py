"""
Booking Finalizer

Runs after the provider has returned a real booking id. From here on the
booking exists at the provider no matter what happens locally, so a failed
local write is never reported as a failed booking: it is downgraded to an
Order in pending_local_sync that the reconciliation sweep completes later.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..models.hold import BookingKind, Hold, HoldReleaseReason, HoldStatus
from ..models.order import Order, OrderStatus, OrderSyncStatus, ProviderApproval
from ..models.unit import Unit
from ..models.user_booking import UserBookingView, UserProfile
from ..utils import metrics
from ..utils.db_helpers import acquire_row_lock, run_in_transaction
from ..utils.errors import AvailabilityConflict, HoldInactive, InvalidArgument, NotFound
from ..utils.logging_config import get_logger
from .availability import DateRange, find_conflict
from .hold_manager import HoldManager

logger = logging.getLogger(__name__)
structured_logger = get_logger(__name__)

PENDING_SYNC_WARNING = (
    "Your booking is confirmed. Our records are still being updated and "
    "may take a few minutes to show it."
)


@dataclass
class BookingDraft:
    """Everything needed to write the local records for one booking."""
    unit_id: str
    start: date
    end: date
    kind: str = BookingKind.ROOM.value
    owner_uid: Optional[str] = None
    unit_name: Optional[str] = None
    room_id: Optional[str] = None
    resource_id: Optional[int] = None
    dates: List[str] = field(default_factory=list)
    adults: int = 1
    children: int = 0
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    license_plate: Optional[str] = None
    nightly_rate: Decimal = Decimal("0")
    currency: Optional[str] = None
    hold_id: Optional[str] = None
    correlation_id: Optional[str] = None

    @property
    def range(self) -> DateRange:
        return DateRange(self.start, self.end)

    @property
    def nights(self) -> int:
        return self.range.nights

    @property
    def total_price(self) -> Decimal:
        return Decimal(self.nightly_rate or 0) * self.nights

    @property
    def kind_details(self) -> Dict:
        if self.kind == BookingKind.CAMPING.value:
            return {"kind": self.kind, "license_plate": self.license_plate}
        return {"kind": self.kind, "room_id": self.room_id}

    @classmethod
    def from_order(cls, order: Order) -> "BookingDraft":
        """
        Rebuild a draft from a stored Order.

        Raises:
            InvalidArgument: the stored payload cannot describe a booking
        """
        if not order.unit_id or order.start_date is None or order.end_date is None:
            raise InvalidArgument(f"Order {order.id} is missing unit or dates")
        if order.end_date < order.start_date:
            raise InvalidArgument(f"Order {order.id} has an inverted date range")
        if order.kind not in (BookingKind.ROOM.value, BookingKind.CAMPING.value):
            raise InvalidArgument(f"Order {order.id} has unknown kind {order.kind!r}")

        details = order.kind_details or {}
        return cls(
            unit_id=order.unit_id,
            start=order.start_date,
            end=order.end_date,
            kind=order.kind,
            owner_uid=order.owner_uid,
            unit_name=order.unit_name,
            room_id=order.room_id or details.get("room_id"),
            resource_id=order.resource_id,
            dates=list(order.dates or []),
            adults=order.adults or 1,
            children=order.children or 0,
            first_name=order.first_name,
            last_name=order.last_name,
            email=order.email,
            phone=order.phone,
            license_plate=details.get("license_plate"),
            nightly_rate=Decimal(order.nightly_rate or 0),
            currency=order.currency,
            hold_id=order.hold_id,
            correlation_id=order.correlation_id
        )

    def apply_to_order(self, order: Order):
        order.owner_uid = self.owner_uid
        order.kind = self.kind
        order.kind_details = self.kind_details
        order.room_id = self.room_id
        order.unit_id = self.unit_id
        order.unit_name = self.unit_name
        order.resource_id = self.resource_id
        order.start_date = self.start
        order.end_date = self.end
        order.dates = list(self.dates)
        order.adults = self.adults
        order.children = self.children
        order.first_name = self.first_name
        order.last_name = self.last_name
        order.email = self.email
        order.phone = self.phone
        order.nightly_rate = self.nightly_rate
        order.nights = self.nights
        order.total_price = self.total_price
        order.currency = self.currency or settings.currency
        order.hold_id = self.hold_id
        order.correlation_id = self.correlation_id


@dataclass
class FinalizedBooking:
    booking_id: str
    unit_name: Optional[str]
    nights: int
    total_price: Decimal
    currency: str
    adults: int
    children: int
    already_existed: bool
    sync_status: str
    correlation_id: Optional[str] = None
    warning: Optional[str] = None


def sync_user_view(db: Session, order: Order, now: datetime) -> Optional[UserBookingView]:
    """Upsert the owner's summary row for an order. Anonymous orders have none."""
    if not order.owner_uid:
        return None

    view = db.get(UserBookingView, (order.owner_uid, order.id))
    if view is None:
        view = UserBookingView(owner_uid=order.owner_uid, booking_id=order.id, created_at=now)
        db.add(view)

    view.kind = order.kind
    view.unit_id = order.unit_id
    view.unit_name = order.unit_name
    view.start_date = order.start_date
    view.end_date = order.end_date
    view.nights = order.nights
    view.adults = order.adults
    view.children = order.children
    view.total_price = order.total_price
    view.currency = order.currency
    view.status = order.status
    view.sync_status = order.sync_status
    view.provider_approval = order.provider_approval
    view.updated_at = now
    return view


def increment_lifetime_count(db: Session, uid: str, now: datetime):
    profile = acquire_row_lock(db, UserProfile, UserProfile.uid == uid)
    if profile is None:
        profile = UserProfile(uid=uid, lifetime_booking_count=0, created_at=now)
        db.add(profile)
    profile.lifetime_booking_count = (profile.lifetime_booking_count or 0) + 1
    profile.last_booking_at = now
    profile.updated_at = now


class BookingFinalizer:
    def __init__(self, db: Session):
        self.db = db

    def apply(
        self,
        db: Session,
        booking_id: str,
        draft: BookingDraft,
        now: datetime,
        require_hold: bool = True
    ) -> FinalizedBooking:
        """
        Write the booking into local state. Must run inside run_in_transaction.

        A unit that already lists booking_id is a replay: the hold and
        overlap checks are skipped and no second entry is appended. An order
        that is already synced is returned untouched.

        Raises:
            NotFound: unit is gone
            HoldInactive: hold missing, consumed or expired (first write only)
            AvailabilityConflict: the range now overlaps something else
        """
        hold = None
        if draft.hold_id:
            hold = acquire_row_lock(db, Hold, Hold.id == draft.hold_id)
        hold_active = hold is not None and hold.is_active(now)

        unit = acquire_row_lock(db, Unit, Unit.id == draft.unit_id)
        if unit is None:
            raise NotFound(f"Unit {draft.unit_id} not found", field="unit_id")

        order = acquire_row_lock(db, Order, Order.id == booking_id)
        if order is not None and order.sync_status == OrderSyncStatus.SYNCED.value:
            # Synced orders are never rewritten; only this attempt's hold is cleared
            if draft.hold_id and draft.hold_id in unit.hold_entries:
                remaining = unit.hold_entries
                remaining.pop(draft.hold_id, None)
                unit.holds = remaining
                unit.updated_at = now
            if hold is not None:
                db.delete(hold)
            return FinalizedBooking(
                booking_id=booking_id,
                unit_name=order.unit_name,
                nights=order.nights,
                total_price=order.total_price,
                currency=order.currency,
                adults=order.adults,
                children=order.children,
                already_existed=True,
                sync_status=OrderSyncStatus.SYNCED.value,
                correlation_id=draft.correlation_id
            )

        already_existed = unit.has_booking(booking_id)

        if not already_existed:
            if require_hold and not hold_active:
                raise HoldInactive(f"Hold {draft.hold_id} is no longer active")
            conflict = find_conflict(
                draft.range,
                unit.booking_entries,
                unit.hold_entries,
                now,
                exclude_hold_id=draft.hold_id
            )
            if conflict is not None:
                raise AvailabilityConflict(conflict=conflict)

            entry = {"externalBookingId": booking_id, **draft.range.as_entry()}
            unit.bookings = unit.booking_entries + [entry]

        if draft.hold_id and draft.hold_id in unit.hold_entries:
            remaining = unit.hold_entries
            remaining.pop(draft.hold_id, None)
            unit.holds = remaining
        unit.updated_at = now

        if not draft.unit_name:
            draft.unit_name = unit.name

        if order is None:
            order = Order(
                id=booking_id,
                status=OrderStatus.CONFIRMED.value,
                sync_status=OrderSyncStatus.SYNCED.value,
                provider_approval=ProviderApproval.PENDING.value,
                created_at=now
            )
            db.add(order)
        draft.apply_to_order(order)
        if order.status != OrderStatus.CANCELLED.value:
            order.status = OrderStatus.CONFIRMED.value
        order.move_sync_status(OrderSyncStatus.SYNCED)
        order.sync_error = None
        order.last_sync_attempt_at = now
        order.updated_at = now

        sync_user_view(db, order, now)
        if order.owner_uid:
            increment_lifetime_count(db, order.owner_uid, now)

        if hold is not None:
            db.delete(hold)

        return FinalizedBooking(
            booking_id=booking_id,
            unit_name=order.unit_name,
            nights=order.nights,
            total_price=order.total_price,
            currency=order.currency,
            adults=order.adults,
            children=order.children,
            already_existed=already_existed,
            sync_status=OrderSyncStatus.SYNCED.value,
            correlation_id=draft.correlation_id
        )

    def finalize(self, booking_id: str, draft: BookingDraft, now: Optional[datetime] = None) -> FinalizedBooking:
        """
        Finalize a provider-confirmed booking. Never raises for local
        failures: those produce a pending_local_sync result instead.
        """
        now = now or datetime.utcnow()
        start_time = time.time()

        try:
            result = run_in_transaction(
                self.db,
                lambda db: self.apply(db, booking_id, draft, now),
                label=f"finalize {booking_id}"
            )
        except Exception as e:
            logger.warning(f"[{draft.correlation_id}] Finalize failed for provider booking {booking_id}: {e}")
            return self._fallback(booking_id, draft, e, now)

        structured_logger.booking_finalized(
            booking_id,
            draft.unit_id,
            result.sync_status,
            already_existed=result.already_existed,
            duration_ms=round((time.time() - start_time) * 1000, 1)
        )
        return result

    def _fallback(self, booking_id: str, draft: BookingDraft, error: Exception, now: datetime) -> FinalizedBooking:
        error_text = f"{type(error).__name__}: {error}"[:1000]

        if draft.hold_id:
            try:
                HoldManager(self.db).release_hold(
                    draft.hold_id,
                    HoldReleaseReason.FINALIZATION_FAILED,
                    HoldStatus.FAILED,
                    error=error_text,
                    now=now
                )
            except Exception as release_error:
                # The hold still expires by TTL
                logger.error(f"[{draft.correlation_id}] Could not release hold {draft.hold_id}: {release_error}")

        def write_pending(db: Session):
            order = acquire_row_lock(db, Order, Order.id == booking_id)
            if order is not None and order.sync_status == OrderSyncStatus.SYNCED.value:
                return
            if order is None:
                order = Order(
                    id=booking_id,
                    sync_status=OrderSyncStatus.PENDING_LOCAL_SYNC.value,
                    provider_approval=ProviderApproval.PENDING.value,
                    created_at=now
                )
                db.add(order)
            draft.apply_to_order(order)
            if order.status != OrderStatus.CANCELLED.value:
                order.status = OrderStatus.PENDING.value
            order.move_sync_status(OrderSyncStatus.PENDING_LOCAL_SYNC)
            order.sync_retry_count = 0
            order.sync_error = error_text
            order.updated_at = now

        try:
            run_in_transaction(self.db, write_pending, label=f"pending-sync {booking_id}")
        except Exception:
            # Nothing local refers to this booking now; keep everything needed to rebuild it
            logger.critical(
                f"[{draft.correlation_id}] Provider booking {booking_id} has NO local record: "
                f"unit={draft.unit_id} dates={draft.start}..{draft.end} owner={draft.owner_uid}",
                exc_info=True
            )

        metrics.record_finalize_fallback()
        structured_logger.booking_finalized(booking_id, draft.unit_id, OrderSyncStatus.PENDING_LOCAL_SYNC.value)

        return FinalizedBooking(
            booking_id=booking_id,
            unit_name=draft.unit_name,
            nights=draft.nights,
            total_price=draft.total_price,
            currency=draft.currency or settings.currency,
            adults=draft.adults,
            children=draft.children,
            already_existed=False,
            sync_status=OrderSyncStatus.PENDING_LOCAL_SYNC.value,
            correlation_id=draft.correlation_id,
            warning=PENDING_SYNC_WARNING
        )
