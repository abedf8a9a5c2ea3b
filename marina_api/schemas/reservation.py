from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Annotated, List, Literal, Optional, Union
from datetime import date, timedelta
from decimal import Decimal
import re

from ..services.availability import to_day

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PHONE_PATTERN = re.compile(r"^\+?[0-9 ()\-]{6,20}$")
MAX_STAY_NIGHTS = 60


class Contact(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., max_length=255)
    phone: str = Field(..., max_length=32)

    @field_validator('first_name', 'last_name', mode='before')
    @classmethod
    def strip_names(cls, v):
        if isinstance(v, str):
            v = re.sub(r'<[^>]*>', '', v).strip()
        return v

    @field_validator('email')
    @classmethod
    def validate_email(cls, v: str) -> str:
        v = v.strip().lower()
        if not EMAIL_PATTERN.match(v):
            raise ValueError("Invalid email address")
        return v

    @field_validator('phone')
    @classmethod
    def validate_phone(cls, v: str) -> str:
        v = v.strip()
        if not PHONE_PATTERN.match(v):
            raise ValueError("Invalid phone number")
        return v


class Guests(BaseModel):
    adults: int = Field(1, ge=1, le=20)
    children: int = Field(0, ge=0, le=20)


class ReservationBase(BaseModel):
    unit_id: str = Field(..., min_length=1, max_length=64)
    resource_id: Optional[int] = Field(None, gt=0)
    dates: List[str] = Field(..., min_length=2, max_length=MAX_STAY_NIGHTS + 1)
    contact: Contact
    guests: Guests = Field(default_factory=Guests)
    captcha_token: Optional[str] = Field(None, max_length=4096)
    device_fingerprint: Optional[str] = Field(None, max_length=256)

    @field_validator('dates')
    @classmethod
    def normalize_dates(cls, v: List[str]) -> List[str]:
        """Whole days, sorted, duplicates removed."""
        days = sorted({to_day(item) for item in v})
        return [d.isoformat() for d in days]

    @model_validator(mode='after')
    def validate_range(self):
        """Every day from check-in through check-out, with no gaps."""
        if len(self.dates) < 2:
            raise ValueError("A stay needs a check-in and a check-out date")
        days = [date.fromisoformat(d) for d in self.dates]
        for previous, current in zip(days, days[1:]):
            if (current - previous).days != 1:
                raise ValueError(f"Dates must be consecutive days, missing {previous + timedelta(days=1)}")
        return self

    @property
    def start_date(self) -> date:
        return date.fromisoformat(self.dates[0])

    @property
    def end_date(self) -> date:
        return date.fromisoformat(self.dates[-1])


class RoomReservationRequest(ReservationBase):
    kind: Literal["room"]
    room_id: str = Field(..., min_length=1, max_length=64)


class CampingReservationRequest(ReservationBase):
    kind: Literal["camping"]
    license_plate: str = Field(..., min_length=2, max_length=16)

    @field_validator('license_plate')
    @classmethod
    def normalize_plate(cls, v: str) -> str:
        return re.sub(r'\s+', ' ', v).strip().upper()


ReservationRequest = Annotated[
    Union[RoomReservationRequest, CampingReservationRequest],
    Field(discriminator="kind")
]


class ReservationResponse(BaseModel):
    booking_id: str
    unit_name: Optional[str] = None
    nights: int
    total_price: Decimal
    currency: str
    adults: int
    children: int
    already_existed: bool = False
    sync_status: str
    correlation_id: Optional[str] = None
    warning: Optional[str] = None

    class Config:
        from_attributes = True


class BlockedRange(BaseModel):
    start: str
    end: str
    source: str


class UnitAvailabilityResponse(BaseModel):
    unit_id: str
    unit_name: str
    kind: str
    blocked: List[BlockedRange]
