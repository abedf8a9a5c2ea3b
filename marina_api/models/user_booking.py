"""
Per-owner read models.

UserBookingView is a denormalized, eventually consistent mirror of an Order
used for fast "my bookings" listings. UserProfile carries the owner's
lifetime booking counter.
"""

from datetime import datetime
from decimal import Decimal
from sqlalchemy import Column, String, Date, DateTime, Integer, Numeric
from ..database import Base


class UserBookingView(Base):
    __tablename__ = "user_booking_views"

    owner_uid = Column(String(128), primary_key=True)
    booking_id = Column(String(64), primary_key=True)

    kind = Column(String(20), nullable=False)
    unit_id = Column(String(64), nullable=True)
    unit_name = Column(String(200), nullable=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    nights = Column(Integer, default=0)
    adults = Column(Integer, default=1)
    children = Column(Integer, default=0)
    total_price = Column(Numeric(10, 2), default=Decimal("0"))
    currency = Column(String(8), nullable=True)

    status = Column(String(20), nullable=False)
    sync_status = Column(String(30), nullable=False)
    provider_approval = Column(String(20), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<UserBookingView {self.owner_uid}/{self.booking_id} {self.status}>"


class UserProfile(Base):
    __tablename__ = "user_profiles"

    uid = Column(String(128), primary_key=True)
    lifetime_booking_count = Column(Integer, default=0, nullable=False)
    last_booking_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<UserProfile {self.uid} bookings={self.lifetime_booking_count}>"
