"""
Shared fixtures: an in-memory SQLite database per test, a controllable
clock, and factories for units and provider doubles.
"""

import os

# Must be set before marina_api.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("RECAPTCHA_SECRET", "")
os.environ.setdefault("PROVIDER_WEBHOOK_SECRET", "")

import pytest
from datetime import date, datetime, timedelta
from decimal import Decimal
from unittest.mock import MagicMock

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from marina_api.database import Base
from marina_api import models  # noqa: F401
from marina_api.models.order import Order, OrderStatus, OrderSyncStatus, ProviderApproval
from marina_api.models.unit import Unit
from marina_api.services.booking_finalizer import BookingDraft
from marina_api.services.provider_client import ProviderBooking, ProviderClient

NOW = datetime(2025, 5, 20, 12, 0, 0)


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    Session = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = Session()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def make_unit(db):
    def factory(
        unit_id="u-101",
        kind="room",
        room_id="r-1",
        resource_id=101,
        price=Decimal("250.00"),
        max_guests=4,
        bookings=None,
        holds=None,
        name=None
    ) -> Unit:
        unit = Unit(
            id=unit_id,
            name=name or f"Unit {unit_id}",
            kind=kind,
            room_id=room_id if kind == "room" else None,
            resource_id=resource_id,
            price_per_night=price,
            max_guests=max_guests,
            bookings=bookings or [],
            holds=holds or {},
            created_at=NOW,
            updated_at=NOW
        )
        db.add(unit)
        db.commit()
        return unit
    return factory


@pytest.fixture
def make_order(db):
    def factory(
        booking_id="9001",
        unit_id="u-101",
        owner_uid="user-1",
        start=date(2025, 6, 1),
        end=date(2025, 6, 3),
        status=OrderStatus.PENDING.value,
        sync_status=OrderSyncStatus.PENDING_LOCAL_SYNC.value,
        provider_approval=ProviderApproval.PENDING.value,
        hold_id=None,
        kind="room"
    ) -> Order:
        nights = (end - start).days if start and end else 0
        order = Order(
            id=booking_id,
            owner_uid=owner_uid,
            kind=kind,
            kind_details={"kind": kind, "room_id": "r-1"},
            room_id="r-1",
            unit_id=unit_id,
            unit_name=f"Unit {unit_id}",
            resource_id=101,
            start_date=start,
            end_date=end,
            dates=[start.isoformat(), end.isoformat()] if start and end else [],
            adults=2,
            children=0,
            first_name="Ana",
            last_name="Pop",
            email="ana@example.com",
            phone="+40 721 000 000",
            nightly_rate=Decimal("250.00"),
            nights=nights,
            total_price=Decimal("250.00") * nights,
            currency="RON",
            status=status,
            sync_status=sync_status,
            provider_approval=provider_approval,
            hold_id=hold_id,
            sync_retry_count=0,
            created_at=NOW,
            updated_at=NOW
        )
        db.add(order)
        db.commit()
        return order
    return factory


@pytest.fixture
def make_draft():
    def factory(unit_id="u-101", start=date(2025, 6, 1), end=date(2025, 6, 3), hold_id=None, owner_uid="user-1"):
        return BookingDraft(
            unit_id=unit_id,
            start=start,
            end=end,
            kind="room",
            owner_uid=owner_uid,
            unit_name=f"Unit {unit_id}",
            room_id="r-1",
            resource_id=101,
            dates=[start.isoformat(), end.isoformat()],
            adults=2,
            children=0,
            first_name="Ana",
            last_name="Pop",
            email="ana@example.com",
            phone="+40 721 000 000",
            nightly_rate=Decimal("250.00"),
            currency="RON",
            hold_id=hold_id,
            correlation_id="corr-1"
        )
    return factory


@pytest.fixture
def fake_provider():
    """ProviderClient double handing out sequential booking ids."""
    provider = MagicMock(spec=ProviderClient)
    counter = {"next": 5000}

    def create_booking(payload, idempotency_key, correlation_id):
        counter["next"] += 1
        return ProviderBooking(booking_id=str(counter["next"]), status_code=200, data={"success": True})

    provider.create_booking.side_effect = create_booking
    return provider
