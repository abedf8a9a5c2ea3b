"""
Reservation Service

The reservation saga:

    verify caller -> rate limit -> hold (tx) -> provider call (no tx) -> finalize (tx)

Anything failing before the provider confirms is reported as a failure.
Anything failing after it is absorbed by the finalizer into a
pending_local_sync order (compensation) and completed by reconciliation.
"""

import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional, Union

from sqlalchemy.orm import Session

from ..config import settings
from ..models.hold import BookingKind, HoldReleaseReason, HoldStatus
from ..models.unit import Unit
from ..schemas.reservation import CampingReservationRequest, RoomReservationRequest
from ..utils import metrics
from ..utils.errors import BookingError, FailedPrecondition, InvalidArgument, NotFound
from .availability import DateRange
from .booking_finalizer import BookingDraft, BookingFinalizer, FinalizedBooking
from .captcha_service import HumanVerifier
from .hold_manager import HoldManager
from .provider_client import ProviderClient, ProviderError, ProviderRejected, build_provider_payload
from .rate_limit_service import RateLimitService, build_keys

logger = logging.getLogger(__name__)

ReservationRequest = Union[RoomReservationRequest, CampingReservationRequest]


@dataclass
class UnitSnapshot:
    id: str
    name: str
    kind: str
    room_id: Optional[str]
    resource_id: int
    price_per_night: Decimal


class ReservationService:
    def __init__(
        self,
        db: Session,
        provider_client: Optional[ProviderClient] = None,
        verifier: Optional[HumanVerifier] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.db = db
        self.provider_client = provider_client
        self.verifier = verifier or HumanVerifier()
        self.clock = clock or datetime.utcnow
        self.hold_manager = HoldManager(db)
        self.finalizer = BookingFinalizer(db)
        self.rate_limiter = RateLimitService(db)

    def _resolve_unit(self, request: ReservationRequest) -> UnitSnapshot:
        unit = self.db.get(Unit, request.unit_id)
        if unit is None:
            raise NotFound(f"Unit {request.unit_id} not found", field="unit_id")

        if unit.kind != request.kind:
            raise InvalidArgument(f"Unit {unit.id} is not a {request.kind} unit", field="unit_id")

        if request.kind == BookingKind.ROOM.value and unit.room_id and unit.room_id != request.room_id:
            raise InvalidArgument(f"Unit {unit.id} does not belong to room {request.room_id}", field="room_id")

        if request.resource_id is not None and unit.resource_id is not None and request.resource_id != unit.resource_id:
            raise InvalidArgument("resource_id does not match the unit", field="resource_id")

        resource_id = unit.resource_id or request.resource_id
        if not resource_id:
            raise FailedPrecondition(f"Unit {unit.id} is not linked to a provider resource")

        guests = request.guests.adults + request.guests.children
        if unit.max_guests and guests > unit.max_guests:
            raise InvalidArgument(f"Unit {unit.id} sleeps at most {unit.max_guests} guests", field="guests")

        snapshot = UnitSnapshot(
            id=unit.id,
            name=unit.name,
            kind=unit.kind,
            room_id=unit.room_id,
            resource_id=int(resource_id),
            price_per_night=Decimal(unit.price_per_night or 0)
        )
        # Nothing stays open across the provider call
        self.db.rollback()
        return snapshot

    def reserve(
        self,
        request: ReservationRequest,
        uid: Optional[str] = None,
        client_ip: Optional[str] = None,
        correlation_id: Optional[str] = None
    ) -> FinalizedBooking:
        correlation_id = correlation_id or str(uuid.uuid4())
        kind = request.kind

        try:
            result = self._reserve(request, uid, client_ip, correlation_id)
        except BookingError as e:
            metrics.record_reservation(kind, e.code)
            raise

        metrics.record_reservation(kind, result.sync_status)
        return result

    def _reserve(
        self,
        request: ReservationRequest,
        uid: Optional[str],
        client_ip: Optional[str],
        correlation_id: str
    ) -> FinalizedBooking:
        requested = DateRange(request.start_date, request.end_date)
        if requested.nights < 1:
            raise InvalidArgument("A stay must be at least one night", field="dates")

        # 1. Human verification (anonymous callers only)
        if uid is None:
            self.verifier.verify(request.captcha_token, remote_ip=client_ip)

        # 2. Abuse limits
        keys = build_keys(
            uid=uid,
            ip=client_ip,
            email=request.contact.email,
            device=request.device_fingerprint,
            unit_id=request.unit_id,
            start_date=requested.start.isoformat()
        )
        self.rate_limiter.check_and_increment(keys, now=self.clock())

        # 3. Hold
        unit = self._resolve_unit(request)
        grant = self.hold_manager.create_hold(
            unit.id,
            requested,
            owner_uid=uid,
            kind=request.kind,
            correlation_id=correlation_id,
            now=self.clock()
        )

        draft = BookingDraft(
            unit_id=unit.id,
            start=requested.start,
            end=requested.end,
            kind=request.kind,
            owner_uid=uid,
            unit_name=unit.name,
            room_id=unit.room_id,
            resource_id=unit.resource_id,
            dates=list(request.dates),
            adults=request.guests.adults,
            children=request.guests.children,
            first_name=request.contact.first_name,
            last_name=request.contact.last_name,
            email=request.contact.email,
            phone=request.contact.phone,
            license_plate=getattr(request, "license_plate", None),
            nightly_rate=unit.price_per_night,
            currency=settings.currency,
            hold_id=grant.hold_id,
            correlation_id=correlation_id
        )

        # 4. Provider call, outside any transaction
        client = self.provider_client or ProviderClient(request_id=correlation_id)
        payload = build_provider_payload(
            dates=draft.dates,
            first_name=draft.first_name,
            last_name=draft.last_name,
            email=draft.email,
            phone=draft.phone,
            resource_id=unit.resource_id,
            adults=draft.adults,
            children=draft.children,
            license_plate=draft.license_plate,
            kind=draft.kind
        )
        start_time = time.time()
        try:
            booking = client.create_booking(payload, idempotency_key=grant.hold_id, correlation_id=correlation_id)
        except ProviderError as e:
            metrics.record_provider_call(e.code, time.time() - start_time)
            self._compensate_provider_failure(grant.hold_id, e, correlation_id)
            raise
        metrics.record_provider_call("ok", time.time() - start_time)

        # 5. Finalize (never raises for local failures)
        return self.finalizer.finalize(booking.booking_id, draft, now=self.clock())

    def _compensate_provider_failure(self, hold_id: str, error: ProviderError, correlation_id: str):
        if error.booking_may_exist:
            # The provider may have created it; keep the range blocked until TTL
            logger.warning(
                f"[{correlation_id}] Provider outcome unknown ({error.code}); hold {hold_id} left to expire"
            )
            return

        reason = (
            HoldReleaseReason.PROVIDER_REJECTED
            if isinstance(error, ProviderRejected)
            else HoldReleaseReason.PROVIDER_UNREACHABLE
        )
        try:
            self.hold_manager.release_hold(hold_id, reason, HoldStatus.FAILED, error=error.message, now=self.clock())
        except BookingError as release_error:
            logger.error(f"[{correlation_id}] Could not release hold {hold_id}: {release_error}")
