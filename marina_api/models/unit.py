"""
Unit Model

A bookable unit (a room of a room category, or a camping pitch). The unit row
carries its own occupancy:

- bookings: ordered list of confirmed entries
      [{"externalBookingId": "123", "start": "2025-06-01", "end": "2025-06-03"}]
- holds: active leases keyed by hold id
      {"<hold-id>": {"start": "...", "end": "...", "expiresAt": "<iso datetime>"}}

Both are only mutated inside run_in_transaction by the hold manager and the
booking finalizer, guarded by the version counter.
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, List
from sqlalchemy import Column, String, Integer, Numeric, DateTime, JSON, Index
from ..database import Base
from .hold import BookingKind


class Unit(Base):
    __tablename__ = "units"

    id = Column(String(64), primary_key=True)
    name = Column(String(200), nullable=False)
    kind = Column(String(20), default=BookingKind.ROOM.value, nullable=False)

    # Room category the unit belongs to
    room_id = Column(String(64), nullable=True)

    # Provider resource id; unique so unit <-> resource lookups never scan
    resource_id = Column(Integer, nullable=True, unique=True)

    price_per_night = Column(Numeric(10, 2), default=Decimal("0"))
    max_guests = Column(Integer, default=4)

    bookings = Column(JSON, nullable=False, default=list)
    holds = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_unit_room", "room_id"),
    )

    @property
    def booking_entries(self) -> List[Dict]:
        return list(self.bookings or [])

    @property
    def hold_entries(self) -> Dict[str, Dict]:
        return dict(self.holds or {})

    def has_booking(self, external_booking_id: str) -> bool:
        return any(
            str(entry.get("externalBookingId")) == str(external_booking_id)
            for entry in self.booking_entries
        )

    def __repr__(self):
        return f"<Unit {self.id} {self.name}>"
