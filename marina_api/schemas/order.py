from pydantic import BaseModel, Field
from typing import List, Literal, Optional
from datetime import date, datetime
from decimal import Decimal


class UserBookingResponse(BaseModel):
    booking_id: str
    kind: str
    unit_id: Optional[str] = None
    unit_name: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    nights: int = 0
    adults: int = 1
    children: int = 0
    total_price: Decimal = Decimal("0")
    currency: Optional[str] = None
    status: str
    sync_status: str
    provider_approval: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class UserBookingsResponse(BaseModel):
    items: List[UserBookingResponse]
    lifetime_booking_count: int = 0


class OrderResponse(BaseModel):
    id: str
    owner_uid: Optional[str] = None
    kind: str
    unit_id: Optional[str] = None
    unit_name: Optional[str] = None
    resource_id: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    nights: Optional[int] = None
    total_price: Optional[Decimal] = None
    currency: Optional[str] = None
    status: str
    sync_status: str
    provider_approval: Optional[str] = None
    sync_retry_count: int = 0
    sync_error: Optional[str] = None
    last_sync_attempt_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class OrderListResponse(BaseModel):
    items: List[OrderResponse]
    total: int


class ProviderWebhookEvent(BaseModel):
    """Status change pushed by the provider for one of its bookings."""
    event: Literal["approved", "unapproved", "deleted", "trashed", "restored"]
    booking_id: str = Field(..., min_length=1, max_length=64)
    resource_id: Optional[int] = None
    approved: Optional[bool] = None
    dates: Optional[List[str]] = None


class ProviderWebhookResult(BaseModel):
    booking_id: str
    event: str
    action: str
    order_status: Optional[str] = None
    sync_status: Optional[str] = None


class SweepResult(BaseModel):
    name: str
    result: dict
