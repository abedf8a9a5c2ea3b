"""
Hold Model

A hold is a short-lived exclusive lease on (unit, date range) taken before
the provider is called. Lifecycle:

    pending -> deleted   (finalized, the row is removed)
    pending -> failed    (provider rejected or local finalize failed)
    pending -> expired   (TTL elapsed unconsumed)

Terminal rows are kept until the retention window passes, then purged.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, Date, DateTime, Text, Integer, Index
from ..database import Base
import enum


class BookingKind(str, enum.Enum):
    ROOM = "room"
    CAMPING = "camping"


class HoldStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self is not HoldStatus.PENDING


HOLD_TRANSITIONS = {
    HoldStatus.PENDING: {HoldStatus.CONFIRMED, HoldStatus.FAILED, HoldStatus.EXPIRED},
    HoldStatus.CONFIRMED: set(),
    HoldStatus.FAILED: set(),
    HoldStatus.EXPIRED: set(),
}

TERMINAL_HOLD_STATUSES = [
    HoldStatus.CONFIRMED.value,
    HoldStatus.FAILED.value,
    HoldStatus.EXPIRED.value,
]


class HoldReleaseReason(str, enum.Enum):
    PROVIDER_REJECTED = "provider_rejected"
    PROVIDER_UNREACHABLE = "provider_unreachable"
    FINALIZATION_FAILED = "finalization_failed"
    EXPIRED = "expired"


class InvalidHoldTransition(Exception):
    pass


class Hold(Base):
    __tablename__ = "holds"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    status = Column(String(20), default=HoldStatus.PENDING.value, nullable=False)
    kind = Column(String(20), default=BookingKind.ROOM.value, nullable=False)
    owner_uid = Column(String(128), nullable=True)

    unit_id = Column(String(64), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    expires_at = Column(DateTime, nullable=False)

    failure_reason = Column(String(50), nullable=True)
    error_message = Column(Text, nullable=True)
    correlation_id = Column(String(64), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    released_at = Column(DateTime, nullable=True)

    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_hold_status_expires", "status", "expires_at"),
        Index("ix_hold_status_updated", "status", "updated_at"),
    )

    @property
    def hold_status(self) -> HoldStatus:
        return HoldStatus(self.status)

    def is_active(self, now: datetime) -> bool:
        """Pending and not yet past its expiry."""
        return self.status == HoldStatus.PENDING.value and self.expires_at > now

    def transition_to(self, target: HoldStatus, now: datetime, reason: str = None, error: str = None):
        current = self.hold_status
        if target not in HOLD_TRANSITIONS[current]:
            raise InvalidHoldTransition(f"Hold {self.id}: {current.value} -> {target.value}")
        self.status = target.value
        self.failure_reason = reason
        self.error_message = error[:1000] if error else None
        self.released_at = now
        self.updated_at = now

    def __repr__(self):
        return f"<Hold {self.id} unit={self.unit_id} {self.start_date}..{self.end_date} status={self.status}>"
