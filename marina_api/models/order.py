"""
Order Model

The canonical local booking record, keyed by the provider's booking id.

status       - business state of the booking (pending / confirmed / cancelled)
sync_status  - whether local bookkeeping mirrors the provider booking:
                 synced                <- finalized in one transaction
                 pending_local_sync    <- provider confirmed, local write failed
                 failed_manual_review  <- reconciliation gave up (operator visible)
"""

from datetime import datetime
from decimal import Decimal
from sqlalchemy import Column, String, Date, DateTime, Integer, Numeric, Text, JSON, Index
from ..database import Base
import enum


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class OrderSyncStatus(str, enum.Enum):
    SYNCED = "synced"
    PENDING_LOCAL_SYNC = "pending_local_sync"
    FAILED_MANUAL_REVIEW = "failed_manual_review"


class ProviderApproval(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"


SYNC_TRANSITIONS = {
    OrderSyncStatus.PENDING_LOCAL_SYNC: {OrderSyncStatus.SYNCED, OrderSyncStatus.FAILED_MANUAL_REVIEW},
    # Operators requeue after fixing the underlying problem
    OrderSyncStatus.FAILED_MANUAL_REVIEW: {OrderSyncStatus.PENDING_LOCAL_SYNC, OrderSyncStatus.SYNCED},
    # Provider-side changes local state cannot absorb (restore into a taken range)
    OrderSyncStatus.SYNCED: {OrderSyncStatus.FAILED_MANUAL_REVIEW},
}


class InvalidSyncTransition(Exception):
    pass


class Order(Base):
    __tablename__ = "orders"

    # Provider booking id, assigned once
    id = Column(String(64), primary_key=True)

    owner_uid = Column(String(128), nullable=True, index=True)
    kind = Column(String(20), nullable=False)
    kind_details = Column(JSON, nullable=True)

    room_id = Column(String(64), nullable=True)
    unit_id = Column(String(64), nullable=True)
    unit_name = Column(String(200), nullable=True)
    resource_id = Column(Integer, nullable=True)

    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    dates = Column(JSON, nullable=True)

    adults = Column(Integer, default=1)
    children = Column(Integer, default=0)

    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    email = Column(String(255), nullable=True)
    phone = Column(String(32), nullable=True)

    nightly_rate = Column(Numeric(10, 2), default=Decimal("0"))
    nights = Column(Integer, default=0)
    total_price = Column(Numeric(10, 2), default=Decimal("0"))
    currency = Column(String(8), nullable=True)

    status = Column(String(20), default=OrderStatus.CONFIRMED.value, nullable=False)
    sync_status = Column(String(30), default=OrderSyncStatus.SYNCED.value, nullable=False)
    provider_approval = Column(String(20), default=ProviderApproval.PENDING.value)

    correlation_id = Column(String(64), nullable=True)
    hold_id = Column(String(36), nullable=True)

    sync_retry_count = Column(Integer, default=0, nullable=False)
    sync_error = Column(Text, nullable=True)
    last_sync_attempt_at = Column(DateTime, nullable=True)

    cancelled_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_order_sync_status", "sync_status", "last_sync_attempt_at"),
        Index("ix_order_unit", "unit_id"),
    )

    def move_sync_status(self, target: OrderSyncStatus):
        current = OrderSyncStatus(self.sync_status)
        if current == target:
            return
        if target not in SYNC_TRANSITIONS[current]:
            raise InvalidSyncTransition(f"Order {self.id}: {current.value} -> {target.value}")
        self.sync_status = target.value

    def __repr__(self):
        return f"<Order {self.id} status={self.status} sync={self.sync_status}>"
