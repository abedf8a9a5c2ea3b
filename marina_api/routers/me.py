from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional

from ..database import get_db
from ..models.user_booking import UserBookingView, UserProfile
from ..schemas.order import UserBookingResponse, UserBookingsResponse
from ..utils.dependencies import CallerIdentity, get_current_identity

router = APIRouter(prefix="/api/me", tags=["Me"])


@router.get("/bookings", response_model=UserBookingsResponse)
def list_my_bookings(
    status: Optional[str] = Query(None, max_length=20),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    identity: CallerIdentity = Depends(get_current_identity)
):
    """The caller's bookings, newest stay first."""
    query = db.query(UserBookingView).filter(UserBookingView.owner_uid == identity.uid)
    if status:
        query = query.filter(UserBookingView.status == status)

    views = query.order_by(UserBookingView.start_date.desc()).limit(limit).all()
    profile = db.get(UserProfile, identity.uid)

    return UserBookingsResponse(
        items=[UserBookingResponse.model_validate(view) for view in views],
        lifetime_booking_count=profile.lifetime_booking_count if profile else 0
    )
