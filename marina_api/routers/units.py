from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from datetime import datetime

from ..database import get_db
from ..models.unit import Unit
from ..schemas.reservation import BlockedRange, UnitAvailabilityResponse
from ..services.availability import blocked_ranges
from ..utils.errors import NotFound
from ..utils.rate_limiter import get_rate_limit, limiter

router = APIRouter(prefix="/api/units", tags=["Units"])


@router.get("/{unit_id}/availability", response_model=UnitAvailabilityResponse)
@limiter.limit(get_rate_limit("availability"))
def get_unit_availability(
    request: Request,
    unit_id: str,
    db: Session = Depends(get_db)
):
    """Date ranges currently blocked on a unit (confirmed bookings and live holds)."""
    unit = db.get(Unit, unit_id)
    if unit is None:
        raise NotFound(f"Unit {unit_id} not found", field="unit_id")

    ranges = blocked_ranges(unit.booking_entries, unit.hold_entries, datetime.utcnow())
    return UnitAvailabilityResponse(
        unit_id=unit.id,
        unit_name=unit.name,
        kind=unit.kind,
        blocked=[BlockedRange(**r) for r in ranges]
    )
