"""
Hold Manager

Creates and releases holds. A hold lives in two places that always change
together in one transaction: the Hold row, and the entry under its id in
the unit's holds map (which is what availability checks read).
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..models.hold import BookingKind, Hold, HoldReleaseReason, HoldStatus
from ..models.unit import Unit
from ..utils.db_helpers import acquire_row_lock, run_in_transaction
from ..utils.errors import AvailabilityConflict, NotFound
from ..utils.logging_config import get_logger
from .availability import DateRange, find_conflict, live_holds

logger = logging.getLogger(__name__)
structured_logger = get_logger(__name__)


@dataclass
class HoldGrant:
    hold_id: str
    unit_id: str
    unit_name: str
    start: str
    end: str
    expires_at: datetime


class HoldManager:
    def __init__(self, db: Session, ttl_seconds: Optional[int] = None):
        self.db = db
        self.ttl_seconds = ttl_seconds or settings.hold_ttl_seconds

    def create_hold(
        self,
        unit_id: str,
        requested: DateRange,
        owner_uid: Optional[str] = None,
        kind: str = BookingKind.ROOM.value,
        correlation_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> HoldGrant:
        """
        Reserve (unit, range) for ttl_seconds.

        Expired entries in the unit's map are dropped on the way; they no
        longer block anything.

        Raises:
            NotFound: unknown unit
            AvailabilityConflict: overlaps a confirmed booking or a live hold
        """
        now = now or datetime.utcnow()
        expires_at = now + timedelta(seconds=self.ttl_seconds)

        def work(db: Session) -> HoldGrant:
            unit = acquire_row_lock(db, Unit, Unit.id == unit_id)
            if unit is None:
                raise NotFound(f"Unit {unit_id} not found", field="unit_id")

            surviving = live_holds(unit.hold_entries, now)
            conflict = find_conflict(requested, unit.booking_entries, surviving, now)
            if conflict is not None:
                raise AvailabilityConflict(conflict=conflict)

            hold_id = str(uuid.uuid4())
            entry = requested.as_entry()
            entry["expiresAt"] = expires_at.isoformat()
            unit.holds = {**surviving, hold_id: entry}
            unit.updated_at = now

            db.add(Hold(
                id=hold_id,
                status=HoldStatus.PENDING.value,
                kind=kind,
                owner_uid=owner_uid,
                unit_id=unit.id,
                start_date=requested.start,
                end_date=requested.end,
                expires_at=expires_at,
                correlation_id=correlation_id,
                created_at=now,
                updated_at=now
            ))
            return HoldGrant(
                hold_id=hold_id,
                unit_id=unit.id,
                unit_name=unit.name,
                start=entry["start"],
                end=entry["end"],
                expires_at=expires_at
            )

        grant = run_in_transaction(self.db, work, label=f"create-hold {unit_id}")
        structured_logger.hold_created(grant.hold_id, grant.unit_id, grant.start, grant.end, grant.expires_at.isoformat())
        return grant

    def release_hold(
        self,
        hold_id: str,
        reason: HoldReleaseReason,
        status: HoldStatus = HoldStatus.FAILED,
        error: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> bool:
        """
        Take a hold out of its unit's map and move it to a terminal status.

        Idempotent: an already-terminal hold only has a leftover map entry
        removed (if any). Returns True when the hold row changed status.
        """
        if status not in (HoldStatus.FAILED, HoldStatus.EXPIRED):
            raise ValueError(f"Holds are released as failed or expired, not {status.value}")
        now = now or datetime.utcnow()

        def work(db: Session) -> bool:
            hold = acquire_row_lock(db, Hold, Hold.id == hold_id)
            if hold is None:
                # Finalized (row deleted) or already purged
                return False

            unit = acquire_row_lock(db, Unit, Unit.id == hold.unit_id)
            if unit is not None and hold_id in unit.hold_entries:
                remaining = unit.hold_entries
                remaining.pop(hold_id, None)
                unit.holds = remaining
                unit.updated_at = now

            if hold.hold_status.is_terminal:
                return False

            hold.transition_to(status, now, reason=reason.value, error=error)
            return True

        changed = run_in_transaction(self.db, work, label=f"release-hold {hold_id}")
        if changed:
            logger.info(f"Hold {hold_id} released as {status.value} ({reason.value})")
        return changed
