"""
Inbound status webhooks from the booking provider.

The raw body is read before parsing so the HMAC is checked over the exact
bytes that were signed.
"""

from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool
from pydantic import ValidationError
from sqlalchemy.orm import Session
import logging

from ..database import get_db
from ..schemas.order import ProviderWebhookEvent, ProviderWebhookResult
from ..services.provider_sync import ProviderSyncService
from ..utils.errors import InvalidArgument
from ..utils.rate_limiter import get_rate_limit, limiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/provider/webhooks", tags=["Provider Webhooks"])

MAX_WEBHOOK_BYTES = 64 * 1024


@router.post("/bookings", response_model=ProviderWebhookResult)
@limiter.limit(get_rate_limit("webhook"))
async def receive_booking_status(request: Request, db: Session = Depends(get_db)):
    body = await request.body()
    if len(body) > MAX_WEBHOOK_BYTES:
        raise InvalidArgument("Payload too large")

    service = ProviderSyncService(db)
    service.verify(request.headers, body)

    try:
        event = ProviderWebhookEvent.model_validate_json(body)
    except ValidationError as e:
        logger.warning(f"Malformed provider webhook: {e.errors()[:3]}")
        raise InvalidArgument("Malformed webhook payload")

    outcome = await run_in_threadpool(service.handle, event)
    return ProviderWebhookResult(
        booking_id=outcome.booking_id,
        event=outcome.event,
        action=outcome.action,
        order_status=outcome.order_status,
        sync_status=outcome.sync_status
    )
