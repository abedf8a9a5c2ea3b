"""
Operator endpoints: sync queue inspection, requeue, manual sweeps.
All require the admin role claim.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional
import logging

from ..database import get_db
from ..models.order import Order, OrderSyncStatus
from ..schemas.order import OrderListResponse, OrderResponse, SweepResult
from ..services import scheduler
from ..services.reconciliation import ReconciliationSweeper
from ..utils.dependencies import CallerIdentity, require_admin
from ..utils.errors import InvalidArgument, NotFound

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["Admin"])


@router.get("/orders", response_model=OrderListResponse)
def list_orders(
    sync_status: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    admin: CallerIdentity = Depends(require_admin)
):
    """Orders, optionally filtered by sync status (e.g. failed_manual_review)."""
    query = db.query(Order)
    if sync_status:
        try:
            OrderSyncStatus(sync_status)
        except ValueError:
            raise InvalidArgument(f"Unknown sync_status {sync_status!r}", field="sync_status")
        query = query.filter(Order.sync_status == sync_status)

    total = query.count()
    orders = query.order_by(Order.created_at.desc()).offset(offset).limit(limit).all()
    return OrderListResponse(
        items=[OrderResponse.model_validate(order) for order in orders],
        total=total
    )


@router.get("/orders/{order_id}", response_model=OrderResponse)
def get_order(
    order_id: str,
    db: Session = Depends(get_db),
    admin: CallerIdentity = Depends(require_admin)
):
    order = db.get(Order, order_id)
    if order is None:
        raise NotFound(f"Order {order_id} not found")
    return OrderResponse.model_validate(order)


@router.post("/orders/{order_id}/requeue", response_model=OrderResponse)
def requeue_order(
    order_id: str,
    db: Session = Depends(get_db),
    admin: CallerIdentity = Depends(require_admin)
):
    """Send a failed_manual_review order back to reconciliation with a fresh retry budget."""
    order = ReconciliationSweeper(db).requeue(order_id)
    logger.info(f"Order {order_id} requeued by {admin.uid}")
    return OrderResponse.model_validate(order)


@router.post("/sweeps/{name}", response_model=SweepResult)
def trigger_sweep(
    name: str,
    admin: CallerIdentity = Depends(require_admin)
):
    if name not in scheduler.SWEEPS:
        raise NotFound(f"Unknown sweep {name!r}; expected one of {sorted(scheduler.SWEEPS)}")
    logger.info(f"Sweep {name} triggered manually by {admin.uid}")
    return SweepResult(name=name, result=scheduler.run_sweep(name))


@router.get("/scheduler")
def scheduler_status(admin: CallerIdentity = Depends(require_admin)):
    return scheduler.get_scheduler_status()
