"""
Reservation endpoint.

Declared with plain `def` so the blocking provider call runs in the
threadpool instead of the event loop.
"""

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session
from typing import Optional
import logging

from ..database import get_db
from ..schemas.reservation import ReservationRequest, ReservationResponse
from ..services.reservation_service import ReservationService
from ..utils.dependencies import CallerIdentity, get_optional_identity
from ..utils.rate_limiter import get_rate_limit, get_real_client_ip, limiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/reservations", tags=["Reservations"])


def get_reservation_service(db: Session = Depends(get_db)) -> ReservationService:
    return ReservationService(db)


@router.post("", response_model=ReservationResponse, status_code=status.HTTP_201_CREATED)
@router.post("/", response_model=ReservationResponse, status_code=status.HTTP_201_CREATED, include_in_schema=False)
@limiter.limit(get_rate_limit("reservation_create"))
def create_reservation(
    request: Request,
    payload: ReservationRequest,
    identity: Optional[CallerIdentity] = Depends(get_optional_identity),
    service: ReservationService = Depends(get_reservation_service)
):
    """
    Reserve a unit for a date range.

    Returns 201 with the provider booking id. When local bookkeeping could
    not be completed the response still succeeds, with
    sync_status=pending_local_sync and a warning.
    """
    correlation_id = getattr(request.state, "correlation_id", None)
    client_ip = get_real_client_ip(request)

    logger.info(
        f"[{correlation_id}] Reservation request: kind={payload.kind} unit={payload.unit_id} "
        f"dates={payload.dates[0]}..{payload.dates[-1]} user={identity.uid if identity else 'anonymous'}"
    )

    result = service.reserve(
        payload,
        uid=identity.uid if identity else None,
        client_ip=client_ip,
        correlation_id=correlation_id
    )
    return ReservationResponse.model_validate(result)
